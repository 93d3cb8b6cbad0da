"""
Exception classes for BOS Storage.

Provides the error hierarchy used by the multipart upload engine and the
transport it drives.
"""

from typing import Any, Dict, Optional


class BosStorageError(Exception):
    """Base exception for all BOS Storage errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ValidationError(BosStorageError):
    """Raised for input validation errors."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        details = {"field": field, "value": value}
        super().__init__(f"Validation error for {field}: {message}", details)
        self.field = field
        self.value = value


class ConfigurationError(BosStorageError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class TransientTransportError(BosStorageError):
    """Raised for network-level failures that are worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        details = {"status_code": status_code} if status_code else {}
        super().__init__(message, details)
        self.status_code = status_code


class ServiceError(BosStorageError):
    """Raised when the service rejects a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
        server_time: Optional[float] = None,
    ) -> None:
        details = {
            key: value
            for key, value in (
                ("status_code", status_code),
                ("code", code),
                ("request_id", request_id),
            )
            if value
        }
        super().__init__(message, details)
        self.status_code = status_code
        self.code = code
        self.request_id = request_id
        self.server_time = server_time


class ClockSkewError(ServiceError):
    """Raised when a signature is rejected because the local clock drifted.

    ``server_time`` holds the service's own timestamp (epoch seconds) so the
    caller can correct the shared clock offset before retrying.
    """


class PartFailure(BosStorageError):
    """Raised when a single part exhausted its retries or was rejected."""

    def __init__(
        self,
        part_number: int,
        retry_count: int,
        last_error: Optional[BaseException] = None,
    ) -> None:
        details = {"part_number": part_number, "retry_count": retry_count}
        super().__init__(f"Part {part_number} failed: {last_error}", details)
        self.part_number = part_number
        self.retry_count = retry_count
        self.last_error = last_error


class UploadIncompleteError(BosStorageError):
    """Raised when an upload stopped with one or more failed parts."""

    def __init__(self, upload_id: Optional[str], failures: Dict[int, PartFailure]) -> None:
        failed = sorted(failures)
        super().__init__(
            f"Upload {upload_id} incomplete: {len(failed)} part(s) failed {failed}",
            {"upload_id": upload_id, "failed_parts": failed},
        )
        self.upload_id = upload_id
        self.failures = failures


class CompletionError(BosStorageError):
    """Raised when the service rejects the final multipart assembly."""

    def __init__(self, upload_id: Optional[str], cause: Optional[BaseException] = None) -> None:
        super().__init__(
            f"Failed to complete multipart upload {upload_id}: {cause}",
            {"upload_id": upload_id},
        )
        self.upload_id = upload_id
        self.cause = cause


class InvalidStateError(BosStorageError):
    """Raised when a control call is not allowed in the session's state."""

    def __init__(self, state: str, operation: str, upload_id: Optional[str] = None) -> None:
        details = {"upload_id": upload_id} if upload_id else {}
        super().__init__(f"Cannot {operation} an upload in state {state}", details)
        self.state = state
        self.operation = operation
        self.upload_id = upload_id


class CancelledError(BosStorageError):
    """Raised to callers awaiting an upload that was cancelled."""

    def __init__(self, upload_id: Optional[str] = None) -> None:
        details = {"upload_id": upload_id} if upload_id else {}
        super().__init__("Upload cancelled", details)
        self.upload_id = upload_id
