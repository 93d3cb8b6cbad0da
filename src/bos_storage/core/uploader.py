"""Upload of a single part."""

import asyncio
import logging
from typing import Any, Callable, NamedTuple, Optional

from .exceptions import BosStorageError, PartFailure, ValidationError
from .models import Part
from .retry import RetryPolicy
from .sources import DataSource

logger = logging.getLogger(__name__)


class PartOutcome(NamedTuple):
    part_number: int
    etag: Optional[str]
    retry_count: int
    error: Optional[PartFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PartUploader:
    """Reads a part's byte range and sends it with bounded retries.

    The uploader never touches the part table; it reports a
    :class:`PartOutcome` and lets the scheduler record it.
    """

    def __init__(
        self,
        client: Any,
        bucket_name: str,
        object_name: str,
        source: DataSource,
        retry: RetryPolicy,
    ) -> None:
        self.client = client
        self.bucket_name = bucket_name
        self.object_name = object_name
        self.source = source
        self.retry = retry

    async def upload(
        self,
        part: Part,
        upload_id: str,
        on_retry: Optional[Callable[[int, int, Exception], None]] = None,
    ) -> PartOutcome:
        number = part.part_number
        base = retries = part.retry_count

        def note_retry(attempt: int, exc: Exception) -> None:
            nonlocal retries
            retries = base + attempt
            if on_retry is not None:
                on_retry(number, retries, exc)

        try:
            logger.debug(f"Part {number}: reading bytes {part.offset}-{part.end}")
            data = await asyncio.to_thread(self.source.read, part.offset, part.size)
            if len(data) != part.size:
                raise ValidationError(
                    "data", len(data), f"part {number} expected {part.size} bytes"
                )
            etag = await self.retry.call(
                f"Part {number}",
                lambda: self.client.upload_part(
                    self.bucket_name, self.object_name, upload_id, number, data
                ),
                on_retry=note_retry,
            )
        except (BosStorageError, OSError) as exc:
            logger.error(f"Part {number}: failed after {retries} retries: {exc}")
            return PartOutcome(number, None, retries, PartFailure(number, retries, exc))

        return PartOutcome(number, etag, retries)
