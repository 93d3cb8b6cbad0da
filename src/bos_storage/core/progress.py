"""Progress and state-change notifications."""

import logging
import time
from typing import Any, Callable, List, Optional

from .models import ProgressEvent, StateChangeEvent, UploadState

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], Any]
StateListener = Callable[[StateChangeEvent], Any]


class ProgressReporter:
    """Aggregates uploaded bytes and fans events out to listeners."""

    def __init__(
        self,
        total_bytes: int,
        on_progress: Optional[ProgressListener] = None,
        on_state_change: Optional[StateListener] = None,
    ) -> None:
        self.total_bytes = total_bytes
        self.uploaded_bytes = 0
        self.start_time: Optional[float] = None
        self._baseline = 0
        self._progress_listeners: List[ProgressListener] = []
        self._state_listeners: List[StateListener] = []
        self.subscribe(on_progress, on_state_change)

    def subscribe(
        self,
        on_progress: Optional[ProgressListener] = None,
        on_state_change: Optional[StateListener] = None,
    ) -> None:
        if on_progress is not None:
            self._progress_listeners.append(on_progress)
        if on_state_change is not None:
            self._state_listeners.append(on_state_change)

    @property
    def percent(self) -> float:
        if not self.total_bytes:
            return 0.0
        return 100.0 * self.uploaded_bytes / self.total_bytes

    @property
    def speed_mbps(self) -> float:
        """MB/s over the bytes sent since :meth:`start`."""
        if self.start_time is None:
            return 0.0
        elapsed = time.time() - self.start_time
        sent = self.uploaded_bytes - self._baseline
        return (sent / (1024 * 1024)) / elapsed if elapsed > 0 else 0.0

    def start(self, already_uploaded: int = 0) -> None:
        self.start_time = time.time()
        self.uploaded_bytes = self._baseline = already_uploaded
        if already_uploaded:
            self._emit_progress(None)

    def part_done(self, part_number: int, size: int) -> None:
        self.uploaded_bytes += size
        self._emit_progress(part_number)

    def state_changed(self, state: UploadState, message: str = "", **data: Any) -> None:
        event = StateChangeEvent(state=state, message=message, data=data)
        for listener in self._state_listeners:
            self._deliver(listener, event)

    def _emit_progress(self, part_number: Optional[int]) -> None:
        event = ProgressEvent(
            uploaded_bytes=self.uploaded_bytes,
            total_bytes=self.total_bytes,
            percent=self.percent,
            speed_mbps=self.speed_mbps,
            part_number=part_number,
        )
        for listener in self._progress_listeners:
            self._deliver(listener, event)

    @staticmethod
    def _deliver(listener: Callable[[Any], Any], event: Any) -> None:
        try:
            listener(event)
        except Exception as e:
            logger.warning(f"Progress callback error: {e}")
