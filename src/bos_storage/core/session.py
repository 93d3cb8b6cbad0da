"""Resumable, concurrent multipart upload session."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .client import AsyncBosClient, BosClient
from .completion import CompletionCoordinator
from .exceptions import (
    BosStorageError,
    CancelledError,
    CompletionError,
    InvalidStateError,
    PartFailure,
    UploadIncompleteError,
    ValidationError,
)
from .models import (
    TERMINAL_STATES,
    CompleteMultipartUploadResult,
    Part,
    PartStatus,
    UploadConfig,
    UploadState,
)
from .planner import build_part_table
from .progress import ProgressListener, ProgressReporter, StateListener
from .retry import RetryPolicy
from .scheduler import PartScheduler
from .signer import ClockOffset
from .sources import open_source
from .uploader import PartUploader

logger = logging.getLogger(__name__)


class UploadSession:
    """One multipart upload of one object.

    The part table is planned when the session is created. ``start()``
    initiates the upload (or resyncs an existing ``upload_id``), uploads the
    pending parts with bounded concurrency and completes the object.
    ``pause()``, ``resume()`` and ``cancel()`` may be called while ``start()``
    is running. Once the session reaches ``Completed``, ``Cancelled`` or
    ``Failed`` it cannot be restarted.

    Args:
        client: A :class:`BosClient` or any object with the coroutine
            multipart operations and a ``clock`` attribute.
        bucket_name: Target bucket.
        object_name: Target object key.
        data: File path, bytes-like object or seekable binary file.
        config: Upload tuning; built from ``options`` when omitted.
        upload_id: Existing uploadId to resume instead of initiating a new one.
        on_progress: Called with a :class:`ProgressEvent` after each part.
        on_state_change: Called with a :class:`StateChangeEvent`.
        **options: Fields of :class:`UploadConfig`.
    """

    def __init__(
        self,
        client: Any,
        bucket_name: str,
        object_name: str,
        data: Any,
        *,
        config: Optional[UploadConfig] = None,
        upload_id: Optional[str] = None,
        on_progress: Optional[ProgressListener] = None,
        on_state_change: Optional[StateListener] = None,
        **options: Any,
    ) -> None:
        if not bucket_name:
            raise ValidationError("bucket_name", bucket_name, "should not be empty")
        if not object_name:
            raise ValidationError("object_name", object_name, "should not be empty")

        if isinstance(client, BosClient):
            client = AsyncBosClient(client)
        self.client = client
        self.bucket_name = bucket_name
        self.object_name = object_name
        self.config = config or UploadConfig.build(**options)
        self.source = open_source(data)
        self.total_size = self.source.size
        self.parts: List[Part] = build_part_table(
            self.total_size, self.config.chunk_size, self.config.min_part_size
        )
        self.content_type = self.config.resolve_content_type(object_name)
        self.upload_id = upload_id
        self.state = UploadState.CREATED
        self.result: Optional[CompleteMultipartUploadResult] = None
        self.failures: Dict[int, PartFailure] = {}

        self.reporter = ProgressReporter(self.total_size, on_progress, on_state_change)
        clock = getattr(client, "clock", None) or ClockOffset()
        self._retry = RetryPolicy(self.config.max_retry_count, clock, self.config.retry_backoff)
        self._uploader = PartUploader(client, bucket_name, object_name, self.source, self._retry)
        self._coordinator = CompletionCoordinator(client, self._retry)
        self._scheduler: Optional[PartScheduler] = None
        self._cancel_requested = False
        self._completing = False
        self._init_done = asyncio.Event()
        self._cancel_done = asyncio.Event()

    def __repr__(self) -> str:
        return (
            f"<UploadSession {self.bucket_name}/{self.object_name} "
            f"upload_id={self.upload_id} state={self.state.value} parts={len(self.parts)}>"
        )

    def part(self, part_number: int) -> Part:
        return self.parts[part_number - 1]

    @property
    def uploaded_bytes(self) -> int:
        return sum(p.size for p in self.parts if p.status is PartStatus.DONE)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _set_state(self, state: UploadState, message: str = "", **data: Any) -> None:
        logger.info(f"Upload {self.upload_id} ({self.object_name}): {self.state.value} -> {state.value}")
        self.state = state
        self.reporter.state_changed(state, message or state.value, upload_id=self.upload_id, **data)

    async def start(self) -> CompleteMultipartUploadResult:
        """Run the upload to completion and return the completion result.

        Raises:
            InvalidStateError: if the session was already started or is terminal.
            UploadIncompleteError: if some parts exhausted their retries.
            CompletionError: if the service rejected the final assembly.
            CancelledError: if :meth:`cancel` was called meanwhile.
        """
        if self.state is not UploadState.CREATED:
            raise InvalidStateError(self.state.value, "start", self.upload_id)

        self._set_state(UploadState.INITIATED)
        try:
            if self.upload_id:
                await self._resync()
            else:
                result = await self._retry.call(
                    "initiate_multipart_upload",
                    lambda: self.client.initiate_multipart_upload(
                        self.bucket_name,
                        self.object_name,
                        content_type=self.content_type,
                        storage_class=self.config.storage_class.value,
                    ),
                )
                self.upload_id = result.upload_id
                logger.info(f"Initiated new multipart upload: UploadId={self.upload_id}")
        except BosStorageError as exc:
            if not self._cancel_requested:
                self._set_state(UploadState.FAILED, str(exc))
                raise
        finally:
            self._init_done.set()

        if self._cancel_requested:
            await self._cancel_done.wait()
            raise CancelledError(self.upload_id)

        self._scheduler = PartScheduler(self, self._uploader, self.config.part_concurrency)
        self._set_state(UploadState.RUNNING, total_parts=len(self.parts))
        self.reporter.start(self.uploaded_bytes)
        try:
            await self._scheduler.run()
        except asyncio.CancelledError:
            if not self._cancel_requested:
                self._set_state(UploadState.FAILED, "interrupted")
            raise

        if self._cancel_requested:
            await self._cancel_done.wait()
            raise CancelledError(self.upload_id)

        self.failures = dict(self._scheduler.failures)
        if self.failures:
            self._set_state(UploadState.FAILED, "parts failed", failed_parts=sorted(self.failures))
            logger.info(f"UploadId {self.upload_id} left open for resumption")
            raise UploadIncompleteError(self.upload_id, self.failures)

        self._completing = True
        try:
            self.result = await self._coordinator.complete(self)
        except CompletionError as exc:
            self._set_state(UploadState.FAILED, str(exc))
            raise
        self._set_state(UploadState.COMPLETED, etag=self.result.etag, location=self.result.location)
        return self.result

    def pause(self) -> bool:
        """Stop dispatching new parts; in-flight parts still finish."""
        if self.state is not UploadState.RUNNING or self._completing:
            return False
        self._set_state(UploadState.PAUSED)
        if self._scheduler is not None:
            self._scheduler.wake()
        return True

    def resume(self) -> bool:
        """Re-enable dispatch after :meth:`pause`."""
        if self.state is not UploadState.PAUSED or self._cancel_requested or self._completing:
            return False
        self._set_state(UploadState.RUNNING)
        if self._scheduler is not None:
            self._scheduler.wake()
        return True

    async def cancel(self) -> bool:
        """Stop the upload and abort its uploadId.

        In-flight parts are cancelled and their results discarded before the
        abort call is issued.

        Returns:
            True if the abort call ran, False if there was nothing to cancel.
        """
        if self.is_terminal or self._cancel_requested or self._completing:
            return False
        if self.state is UploadState.CREATED:
            self._set_state(UploadState.CANCELLED)
            self._cancel_done.set()
            return False

        self._cancel_requested = True
        try:
            await self._init_done.wait()
            if self._scheduler is not None:
                self._scheduler.cancel()
                await self._scheduler.settle()
            for part in self.parts:
                if part.status is PartStatus.UPLOADING:
                    part.status = PartStatus.PENDING

            if not self.upload_id:
                self._set_state(UploadState.CANCELLED)
                return False
            try:
                await self._coordinator.abort(self)
            except BosStorageError as exc:
                self._set_state(UploadState.FAILED, f"abort failed: {exc}")
                raise
            self._set_state(UploadState.CANCELLED)
            return True
        finally:
            self._cancel_done.set()

    async def _resync(self) -> None:
        """Mark parts the service already stores as done."""
        listed = await self._retry.call(
            "list_parts",
            lambda: self.client.list_all_parts(self.bucket_name, self.object_name, self.upload_id),
        )
        resumed = 0
        for item in listed:
            if not 1 <= item.part_number <= len(self.parts):
                logger.info(f"Part {item.part_number}: not in the plan, ignoring")
                continue
            part = self.part(item.part_number)
            if item.size != part.size:
                logger.info(
                    f"Part {item.part_number} size mismatch: expected {part.size}, got {item.size}"
                )
                continue
            part.status = PartStatus.DONE
            part.etag = item.etag.strip('"')
            resumed += 1
        logger.info(f"Found {resumed} existing parts to resume from")
