"""Final assembly and abort of a multipart upload."""

import logging
from typing import TYPE_CHECKING, Any

from .exceptions import CompletionError, ServiceError, TransientTransportError
from .models import (
    CompleteMultipartUploadRequest,
    CompleteMultipartUploadResult,
    PartETag,
    PartStatus,
)
from .retry import RetryPolicy

if TYPE_CHECKING:
    from .session import UploadSession

logger = logging.getLogger(__name__)


class CompletionCoordinator:
    """Issues the complete or abort call for a session."""

    def __init__(self, client: Any, retry: RetryPolicy) -> None:
        self.client = client
        self.retry = retry

    @staticmethod
    def build_request(session: "UploadSession") -> CompleteMultipartUploadRequest:
        """Pair every part with its ETag, ascending by part number."""
        missing = [p.part_number for p in session.parts if p.status is not PartStatus.DONE]
        if missing:
            raise CompletionError(
                session.upload_id, ValueError(f"parts not uploaded: {missing}")
            )
        ordered = sorted(session.parts, key=lambda p: p.part_number)
        return CompleteMultipartUploadRequest(
            parts=[PartETag(part_number=p.part_number, etag=p.etag) for p in ordered]
        )

    async def complete(self, session: "UploadSession") -> CompleteMultipartUploadResult:
        request = self.build_request(session)
        logger.info(
            f"Sending complete_multipart_upload for {session.upload_id} "
            f"with {len(request.parts)} parts"
        )
        try:
            return await self.retry.call(
                "complete_multipart_upload",
                lambda: self.client.complete_multipart_upload(
                    session.bucket_name, session.object_name, session.upload_id, request
                ),
            )
        except (ServiceError, TransientTransportError) as exc:
            logger.error(f"complete_multipart_upload failed for {session.upload_id}: {exc}")
            raise CompletionError(session.upload_id, exc) from exc

    async def abort(self, session: "UploadSession") -> bool:
        logger.info(f"Aborting multipart upload {session.upload_id}")
        return await self.retry.call(
            "abort_multipart_upload",
            lambda: self.client.abort_multipart_upload(
                session.bucket_name, session.object_name, session.upload_id
            ),
        )
