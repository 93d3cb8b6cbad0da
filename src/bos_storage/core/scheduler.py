"""Bounded-concurrency dispatch of part uploads."""

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Deque, Dict

from .exceptions import PartFailure
from .models import PartStatus, UploadState
from .uploader import PartOutcome, PartUploader

if TYPE_CHECKING:
    from .session import UploadSession

logger = logging.getLogger(__name__)


class PartScheduler:
    """Keeps up to ``concurrency`` part uploads in flight.

    The scheduler is the only writer of part status while the session runs.
    Pausing stops new dispatches but lets in-flight parts finish; once no part
    is left to dispatch the run ends even while paused. Cancelling cancels the
    in-flight tasks and drops their results.
    """

    def __init__(self, session: "UploadSession", uploader: PartUploader, concurrency: int) -> None:
        self.session = session
        self.uploader = uploader
        self.concurrency = concurrency
        self.failures: Dict[int, PartFailure] = {}
        self.max_in_flight = 0
        self._pending: Deque[int] = deque(
            part.part_number for part in session.parts if part.status is PartStatus.PENDING
        )
        self._in_flight: Dict[int, asyncio.Task] = {}
        self._signal = asyncio.Event()
        self._cancelled = False

    def wake(self) -> None:
        """Re-evaluate the session state (after pause, resume or cancel)."""
        self._signal.set()

    def cancel(self) -> None:
        self._cancelled = True
        self._pending.clear()
        for task in self._in_flight.values():
            task.cancel()
        self.wake()

    async def settle(self) -> None:
        """Wait until every in-flight task has finished or been cancelled."""
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run(self) -> None:
        try:
            while not self._cancelled:
                self._dispatch()
                if not self._in_flight:
                    if self.session.state is UploadState.PAUSED and self._pending:
                        await self._signal.wait()
                        self._signal.clear()
                        continue
                    return

                waiter = asyncio.ensure_future(self._signal.wait())
                try:
                    await asyncio.wait(
                        {waiter, *self._in_flight.values()},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                finally:
                    waiter.cancel()
                self._signal.clear()

                for number, task in list(self._in_flight.items()):
                    if task.done():
                        del self._in_flight[number]
                        self._settle(number, task)
        finally:
            for task in self._in_flight.values():
                task.cancel()

    def _dispatch(self) -> None:
        upload_id = self.session.upload_id
        while (
            self.session.state is UploadState.RUNNING
            and self._pending
            and len(self._in_flight) < self.concurrency
        ):
            number = self._pending.popleft()
            part = self.session.part(number)
            if part.status is not PartStatus.PENDING or number in self._in_flight:
                continue
            part.status = PartStatus.UPLOADING
            self._in_flight[number] = asyncio.create_task(
                self.uploader.upload(part, upload_id, on_retry=self._on_retry),
                name=f"upload-part-{number}",
            )
            self.max_in_flight = max(self.max_in_flight, len(self._in_flight))

    def _on_retry(self, part_number: int, retry_count: int, exc: Exception) -> None:
        self.session.part(part_number).retry_count = retry_count
        self.session.reporter.state_changed(
            self.session.state,
            "part-retry",
            part_number=part_number,
            retry_count=retry_count,
            error=str(exc),
        )

    def _settle(self, number: int, task: asyncio.Task) -> None:
        part = self.session.part(number)
        if self._cancelled or task.cancelled():
            part.status = PartStatus.PENDING
            return

        exc = task.exception()
        if exc is not None:
            outcome = PartOutcome(number, None, part.retry_count, PartFailure(number, part.retry_count, exc))
        else:
            outcome = task.result()

        part.retry_count = outcome.retry_count
        if outcome.ok:
            part.status = PartStatus.DONE
            part.etag = outcome.etag
            self.session.reporter.part_done(number, part.size)
            logger.info(
                f"Part {number}: uploaded, progress: {self.session.reporter.percent:.1f}%"
            )
            return

        part.status = PartStatus.FAILED
        self.failures[number] = outcome.error
        self.session.reporter.state_changed(
            self.session.state,
            "part-failed",
            part_number=number,
            retry_count=outcome.retry_count,
            error=str(outcome.error.last_error),
        )
