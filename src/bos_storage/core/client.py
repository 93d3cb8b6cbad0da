"""BOS client for the multipart upload operations."""

import asyncio
import datetime
import ipaddress
import logging
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar, Union
from urllib.parse import quote, urlsplit

import requests
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .exceptions import (
    ClockSkewError,
    ConfigurationError,
    ServiceError,
    TransientTransportError,
    ValidationError,
)
from .models import (
    MAX_PART_NUMBER,
    MIN_PART_NUMBER,
    BosConfig,
    CompleteMultipartUploadRequest,
    CompleteMultipartUploadResult,
    InitiateMultipartUploadResult,
    ListedPart,
    ListMultipartUploadsResult,
    ListPartsResult,
    PartETag,
)
from .signer import BCE_DATE_FORMAT, BceSigner, ClockOffset, Signer

logger = logging.getLogger(__name__)

SKEW_ERROR_CODES = frozenset({"RequestTimeTooSkewed", "RequestExpired"})
RETRIABLE_STATUS_CODES = frozenset({408, 429})

M = TypeVar("M", bound=BaseModel)


def _parse_server_time(headers: Any) -> Optional[float]:
    """Read the service's clock from ``x-bce-date`` or ``Date``."""
    value = headers.get("x-bce-date")
    if value:
        try:
            parsed = datetime.datetime.strptime(value, BCE_DATE_FORMAT)
            return parsed.replace(tzinfo=datetime.timezone.utc).timestamp()
        except ValueError:
            pass
    value = headers.get("Date")
    if value:
        try:
            return parsedate_to_datetime(value).timestamp()
        except (TypeError, ValueError):
            pass
    return None


def _require(field: str, value: Any) -> None:
    if not value:
        raise ValidationError(field, value, "should not be empty")


class BosClient:
    """Blocking client for the BOS multipart upload API."""

    def __init__(
        self,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        *,
        config: Optional[BosConfig] = None,
        signer: Optional[Signer] = None,
        clock: Optional[ClockOffset] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the BOS client.

        Args:
            access_key_id: Access key. If not provided, read from BOS_ACCESS_KEY_ID.
            secret_access_key: Secret key. If not provided, read from BOS_SECRET_ACCESS_KEY.
            endpoint: Service endpoint. If not provided, read from BOS_ENDPOINT.
            config: Full configuration; takes precedence over the arguments above.
            signer: Authorization signer (default: bce-auth-v1 with the config keys).
            clock: Shared clock offset used when signing.
            session: Pre-built requests session.
        """
        if config is None:
            try:
                config = BosConfig.from_env(
                    access_key_id=access_key_id,
                    secret_access_key=secret_access_key,
                    endpoint=endpoint,
                )
            except PydanticValidationError as e:
                raise ConfigurationError(
                    "BOS credentials required. Set BOS_ACCESS_KEY_ID and "
                    "BOS_SECRET_ACCESS_KEY environment variables or pass as parameters."
                ) from e

        self.config = config
        self.signer = signer or BceSigner(config.access_key_id, config.secret_access_key)
        self.clock = clock or ClockOffset()
        self.session = session or requests.Session()

        parts = urlsplit(config.endpoint)
        self.scheme = parts.scheme or "https"
        self.host = parts.netloc
        self.path_style = config.path_style or self._is_ip_host(parts.hostname)

    @staticmethod
    def _is_ip_host(hostname: Optional[str]) -> bool:
        try:
            ipaddress.ip_address(hostname or "")
            return True
        except ValueError:
            return False

    def _locate(self, bucket_name: Optional[str], key: Optional[str]):
        """Return ``(host, resource_path)`` for a bucket/key pair."""
        key_path = (key or "").lstrip("/")
        if not bucket_name:
            return self.host, f"/{key_path}"
        if self.path_style:
            return self.host, f"/{bucket_name}/{key_path}" if key_path else f"/{bucket_name}"
        return f"{bucket_name}.{self.host}", f"/{key_path}"

    def send_request(
        self,
        method: str,
        bucket_name: Optional[str] = None,
        key: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Union[bytes, str]] = None,
    ) -> requests.Response:
        """Sign and send one request, mapping failures onto the error taxonomy."""
        params = {k: ("" if v is None else v) for k, v in (params or {}).items()}
        headers = dict(headers or {})
        host, resource_path = self._locate(bucket_name, key)

        headers["Host"] = host
        if self.config.session_token:
            headers["x-bce-security-token"] = self.config.session_token
        headers["Authorization"] = self.signer.sign(
            method, resource_path, params, headers, self.clock.offset
        )

        url = f"{self.scheme}://{host}{quote(resource_path, safe='/~')}"
        logger.debug(f"{method} {url} params={params}")
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                headers=headers,
                data=body,
                timeout=self.config.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientTransportError(f"{method} {resource_path} failed: {e}") from e

        if response.status_code >= 400:
            raise self._error_from_response(response)
        return response

    @staticmethod
    def _error_from_response(response: requests.Response) -> Exception:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        status = response.status_code
        code = payload.get("code")
        message = payload.get("message") or response.reason or f"HTTP {status}"
        request_id = payload.get("requestId") or response.headers.get("x-bce-request-id")
        server_time = _parse_server_time(response.headers)

        if status in (400, 403) and code in SKEW_ERROR_CODES:
            return ClockSkewError(message, status, code, request_id, server_time)
        if status >= 500 or status in RETRIABLE_STATUS_CODES:
            return TransientTransportError(message, status)
        return ServiceError(message, status, code, request_id, server_time)

    @staticmethod
    def _parse(response: requests.Response, model: Type[M]) -> M:
        """Validate a success body, reporting malformed ones as service errors."""
        try:
            return model.model_validate(response.json())
        except (PydanticValidationError, ValueError) as e:
            raise ServiceError(
                f"Malformed {model.__name__} response: {e}",
                response.status_code,
                "MalformedResponse",
                response.headers.get("x-bce-request-id"),
            ) from e

    # Multipart operations
    def initiate_multipart_upload(
        self,
        bucket_name: str,
        key: str,
        content_type: Optional[str] = None,
        storage_class: Optional[str] = None,
    ) -> InitiateMultipartUploadResult:
        """Start a multipart upload and return the service-issued uploadId."""
        _require("bucket_name", bucket_name)
        _require("key", key)
        headers = {"Content-Type": content_type or "application/octet-stream"}
        if storage_class:
            headers["x-bce-storage-class"] = storage_class
        response = self.send_request(
            "POST", bucket_name, key, params={"uploads": ""}, headers=headers
        )
        return self._parse(response, InitiateMultipartUploadResult)

    def upload_part(
        self,
        bucket_name: str,
        key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> str:
        """Upload one part and return its ETag."""
        _require("bucket_name", bucket_name)
        _require("key", key)
        _require("upload_id", upload_id)
        if not MIN_PART_NUMBER <= part_number <= MAX_PART_NUMBER:
            raise ValidationError(
                "part_number",
                part_number,
                f"the valid range is from {MIN_PART_NUMBER} to {MAX_PART_NUMBER}",
            )
        headers = {
            "Content-Length": str(len(data)),
            "Content-Type": "application/octet-stream",
        }
        response = self.send_request(
            "PUT",
            bucket_name,
            key,
            params={"partNumber": part_number, "uploadId": upload_id},
            headers=headers,
            body=data,
        )
        return response.headers.get("ETag", "").strip('"')

    def complete_multipart_upload(
        self,
        bucket_name: str,
        key: str,
        upload_id: str,
        parts: Union[CompleteMultipartUploadRequest, Sequence[PartETag]],
    ) -> CompleteMultipartUploadResult:
        """Assemble the uploaded parts, which must be ascending by part number."""
        _require("upload_id", upload_id)
        if not isinstance(parts, CompleteMultipartUploadRequest):
            parts = CompleteMultipartUploadRequest(parts=list(parts))
        response = self.send_request(
            "POST",
            bucket_name,
            key,
            params={"uploadId": upload_id},
            headers={"Content-Type": "application/json; charset=UTF-8"},
            body=parts.to_body(),
        )
        return self._parse(response, CompleteMultipartUploadResult)

    def abort_multipart_upload(self, bucket_name: str, key: str, upload_id: str) -> bool:
        """Abort a multipart upload, releasing its uploadId."""
        _require("upload_id", upload_id)
        self.send_request("DELETE", bucket_name, key, params={"uploadId": upload_id})
        logger.info(f"Aborted multipart upload {upload_id} for {bucket_name}/{key}")
        return True

    def list_parts(
        self,
        bucket_name: str,
        key: str,
        upload_id: str,
        max_parts: Optional[int] = None,
        part_number_marker: Optional[int] = None,
    ) -> ListPartsResult:
        """List one page of the parts stored for an upload."""
        _require("upload_id", upload_id)
        params: Dict[str, Any] = {"uploadId": upload_id}
        if max_parts is not None:
            params["maxParts"] = max_parts
        if part_number_marker is not None:
            params["partNumberMarker"] = part_number_marker
        response = self.send_request("GET", bucket_name, key, params=params)
        return self._parse(response, ListPartsResult)

    def list_all_parts(self, bucket_name: str, key: str, upload_id: str) -> List[ListedPart]:
        """List every stored part, following the pagination markers."""
        parts: List[ListedPart] = []
        marker: Optional[int] = None
        while True:
            page = self.list_parts(bucket_name, key, upload_id, part_number_marker=marker)
            parts.extend(page.parts)
            if not page.is_truncated or not page.next_part_number_marker:
                return parts
            marker = page.next_part_number_marker

    def list_multipart_uploads(
        self,
        bucket_name: str,
        prefix: Optional[str] = None,
        key_marker: Optional[str] = None,
        max_uploads: Optional[int] = None,
    ) -> ListMultipartUploadsResult:
        """List the in-progress multipart uploads of a bucket."""
        _require("bucket_name", bucket_name)
        params: Dict[str, Any] = {"uploads": ""}
        if prefix:
            params["prefix"] = prefix
        if key_marker:
            params["keyMarker"] = key_marker
        if max_uploads is not None:
            params["maxUploads"] = max_uploads
        response = self.send_request("GET", bucket_name, params=params)
        return self._parse(response, ListMultipartUploadsResult)

    def cleanup_abandoned_uploads(self, bucket_name: str, max_age_hours: int = 24) -> int:
        """Abort uploads initiated more than ``max_age_hours`` ago.

        Returns:
            Number of uploads cleaned up
        """
        cutoff_time = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(
            hours=max_age_hours
        )
        cleaned_count = 0
        key_marker: Optional[str] = None
        while True:
            page = self.list_multipart_uploads(bucket_name, key_marker=key_marker)
            for upload in page.uploads:
                initiated = upload.initiated
                if initiated is None:
                    continue
                if initiated.tzinfo is None:
                    initiated = initiated.replace(tzinfo=datetime.timezone.utc)
                if initiated >= cutoff_time:
                    continue
                try:
                    self.abort_multipart_upload(bucket_name, upload.key, upload.upload_id)
                    cleaned_count += 1
                except (ServiceError, TransientTransportError) as e:
                    logger.warning(f"Failed to clean up upload {upload.upload_id}: {e}")
            if not page.is_truncated or not page.next_key_marker:
                break
            key_marker = page.next_key_marker

        if cleaned_count > 0:
            logger.info(f"Cleaned up {cleaned_count} abandoned uploads from {bucket_name}")
        return cleaned_count


class AsyncBosClient:
    """Coroutine facade over :class:`BosClient` for the upload engine.

    Blocking calls run in worker threads; the wrapped client's clock offset is
    shared so every signed request sees the same correction.
    """

    def __init__(self, client: BosClient) -> None:
        self.client = client

    @property
    def clock(self) -> ClockOffset:
        return self.client.clock

    async def initiate_multipart_upload(self, *args: Any, **kwargs: Any) -> InitiateMultipartUploadResult:
        return await asyncio.to_thread(self.client.initiate_multipart_upload, *args, **kwargs)

    async def upload_part(self, *args: Any, **kwargs: Any) -> str:
        return await asyncio.to_thread(self.client.upload_part, *args, **kwargs)

    async def complete_multipart_upload(self, *args: Any, **kwargs: Any) -> CompleteMultipartUploadResult:
        return await asyncio.to_thread(self.client.complete_multipart_upload, *args, **kwargs)

    async def abort_multipart_upload(self, *args: Any, **kwargs: Any) -> bool:
        return await asyncio.to_thread(self.client.abort_multipart_upload, *args, **kwargs)

    async def list_all_parts(self, *args: Any, **kwargs: Any) -> List[ListedPart]:
        return await asyncio.to_thread(self.client.list_all_parts, *args, **kwargs)
