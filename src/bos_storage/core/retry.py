"""Bounded retry loop shared by every multipart call."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import ClockSkewError, TransientTransportError
from .models import MAX_RETRY_COUNT
from .signer import ClockOffset

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, Exception], None]


class RetryPolicy:
    """Retry transient transport failures and clock-skew rejections.

    A clock-skew rejection first moves the shared clock offset to the
    service's reported time so the next attempt is signed with corrected time.
    Any other error propagates immediately.
    """

    def __init__(
        self,
        max_retry_count: int = MAX_RETRY_COUNT,
        clock: Optional[ClockOffset] = None,
        backoff: float = 0.0,
    ) -> None:
        self.max_retry_count = max_retry_count
        self.clock = clock
        self.backoff = backoff

    async def call(
        self,
        description: str,
        func: Callable[[], Awaitable[T]],
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        retries = 0
        while True:
            try:
                return await func()
            except ClockSkewError as exc:
                if exc.server_time is not None and self.clock is not None:
                    self.clock.sync(exc.server_time)
                last_error: Exception = exc
            except TransientTransportError as exc:
                last_error = exc

            if retries >= self.max_retry_count:
                logger.error(f"{description}: exceeded max_retry_count ({self.max_retry_count})")
                raise last_error

            retries += 1
            logger.warning(f"{description}: attempt {retries} failed: {last_error}")
            if on_retry is not None:
                on_retry(retries, last_error)
            if self.backoff > 0:
                delay = self.backoff * 2 ** (retries - 1)
                logger.info(f"{description}: retrying in {delay}s...")
                await asyncio.sleep(delay)
