"""Programmatic API for BOS storage operations."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Union

from .client import BosClient
from .exceptions import ValidationError
from .models import (
    BosConfig,
    CompleteMultipartUploadResult,
    ListMultipartUploadsResult,
    ListPartsResult,
)
from .progress import ProgressListener, StateListener
from .session import UploadSession

logger = logging.getLogger(__name__)


class BosStorageAPI:
    """High-level API for large object uploads."""

    def __init__(
        self,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        config: Optional[BosConfig] = None,
    ):
        """Initialize the BOS Storage API.

        Args:
            access_key_id: Access key (or from BOS_ACCESS_KEY_ID env var)
            secret_access_key: Secret key (or from BOS_SECRET_ACCESS_KEY env var)
            endpoint: Service endpoint (or from BOS_ENDPOINT env var)
            config: Complete client configuration
        """
        self.client = BosClient(access_key_id, secret_access_key, endpoint, config=config)

    def put_super_object(
        self,
        bucket_name: str,
        object_name: str,
        data: Any,
        *,
        upload_id: Optional[str] = None,
        on_progress: Optional[ProgressListener] = None,
        on_state_change: Optional[StateListener] = None,
        **options: Any,
    ) -> UploadSession:
        """Create an upload session for a large object.

        Arguments are validated before returning; no request is sent until
        ``await session.start()``.

        Args:
            bucket_name: Bucket name
            object_name: Object key
            data: File path, bytes-like object or seekable binary file
            upload_id: Existing uploadId to resume
            on_progress: Progress listener
            on_state_change: State-change listener
            **options: chunk_size, part_concurrency, max_retry_count, ...

        Returns:
            The new session, in state ``Created``
        """
        return UploadSession(
            self.client,
            bucket_name,
            object_name,
            data,
            upload_id=upload_id,
            on_progress=on_progress,
            on_state_change=on_state_change,
            **options,
        )

    def upload_file(
        self,
        local_path: Union[str, Path],
        bucket_name: str,
        object_name: Optional[str] = None,
        **options: Any,
    ) -> CompleteMultipartUploadResult:
        """Upload a file and block until it is complete.

        Args:
            local_path: Local file path
            bucket_name: Bucket name
            object_name: Object key (default: filename)
            **options: Passed to :meth:`put_super_object`

        Returns:
            The completion result
        """
        local_path = Path(local_path)
        if not local_path.is_file():
            raise ValidationError("local_path", str(local_path), "local file not found")
        if object_name is None:
            object_name = local_path.name

        session = self.put_super_object(bucket_name, object_name, str(local_path), **options)
        return asyncio.run(session.start())

    # Multipart housekeeping
    def list_parts(
        self, bucket_name: str, object_name: str, upload_id: str, **kwargs: Any
    ) -> ListPartsResult:
        return self.client.list_parts(bucket_name, object_name, upload_id, **kwargs)

    def list_multipart_uploads(self, bucket_name: str, **kwargs: Any) -> ListMultipartUploadsResult:
        return self.client.list_multipart_uploads(bucket_name, **kwargs)

    def abort_multipart_upload(self, bucket_name: str, object_name: str, upload_id: str) -> bool:
        return self.client.abort_multipart_upload(bucket_name, object_name, upload_id)

    def cleanup_abandoned_uploads(self, bucket_name: str, max_age_hours: int = 24) -> int:
        return self.client.cleanup_abandoned_uploads(bucket_name, max_age_hours)


# Convenience functions for quick usage
def put_super_object(
    bucket_name: str,
    object_name: str,
    data: Any,
    access_key_id: Optional[str] = None,
    secret_access_key: Optional[str] = None,
    endpoint: Optional[str] = None,
    **options: Any,
) -> UploadSession:
    """Quick function to create an upload session."""
    api = BosStorageAPI(access_key_id, secret_access_key, endpoint)
    return api.put_super_object(bucket_name, object_name, data, **options)


def upload_file(
    local_path: Union[str, Path],
    bucket_name: str,
    object_name: Optional[str] = None,
    access_key_id: Optional[str] = None,
    secret_access_key: Optional[str] = None,
    endpoint: Optional[str] = None,
    **options: Any,
) -> CompleteMultipartUploadResult:
    """Quick function to upload a file."""
    api = BosStorageAPI(access_key_id, secret_access_key, endpoint)
    return api.upload_file(local_path, bucket_name, object_name, **options)
