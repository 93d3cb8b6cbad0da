"""Tests for the bounded retry loop."""

from unittest.mock import AsyncMock, patch

import pytest

from bos_storage.core.exceptions import (
    ClockSkewError,
    ServiceError,
    TransientTransportError,
)
from bos_storage.core.retry import RetryPolicy
from bos_storage.core.signer import ClockOffset


@pytest.mark.asyncio
async def test_returns_after_transient_failures():
    func = AsyncMock(side_effect=[TransientTransportError("reset"), "ok"])
    retries = []

    result = await RetryPolicy(3).call("op", func, on_retry=lambda n, e: retries.append(n))

    assert result == "ok"
    assert func.await_count == 2
    assert retries == [1]


@pytest.mark.asyncio
async def test_gives_up_after_max_retry_count():
    func = AsyncMock(side_effect=TransientTransportError("reset"))

    with pytest.raises(TransientTransportError):
        await RetryPolicy(2).call("op", func)

    assert func.await_count == 3


@pytest.mark.asyncio
async def test_zero_retries_means_one_attempt():
    func = AsyncMock(side_effect=TransientTransportError("reset"))

    with pytest.raises(TransientTransportError):
        await RetryPolicy(0).call("op", func)

    assert func.await_count == 1


@pytest.mark.asyncio
async def test_service_errors_are_not_retried():
    func = AsyncMock(side_effect=ServiceError("denied", 403, "AccessDenied"))

    with pytest.raises(ServiceError):
        await RetryPolicy(3).call("op", func)

    assert func.await_count == 1


@pytest.mark.asyncio
async def test_clock_skew_syncs_before_retrying():
    clock = ClockOffset()
    seen = []

    async def func():
        seen.append(clock.offset)
        if len(seen) == 1:
            raise ClockSkewError("skewed", 403, "RequestTimeTooSkewed", server_time=0.0)
        return "ok"

    assert await RetryPolicy(3, clock).call("op", func) == "ok"

    assert seen[0] == 0.0
    assert seen[1] < 0


@pytest.mark.asyncio
async def test_backoff_doubles():
    func = AsyncMock(side_effect=[TransientTransportError("a"), TransientTransportError("b"), "ok"])

    with patch("bos_storage.core.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        await RetryPolicy(3, backoff=0.5).call("op", func)

    assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]
