"""Tests for retry and backoff helpers."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from mempool_tracker.ingestor.node_client import NodeRPCError
from mempool_tracker.ingestor.retry import (
    BLOCK_RETRY,
    PENDING_TRANSACTION_RETRY,
    RetryPolicy,
    backoff_delay,
    retry_until_found,
)


@pytest.fixture
def no_sleep():
    with patch("mempool_tracker.ingestor.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestRetryPolicy:
    def test_default_budgets(self):
        assert PENDING_TRANSACTION_RETRY == RetryPolicy(attempts=10, delay_seconds=0.3)
        assert BLOCK_RETRY == RetryPolicy(attempts=5, delay_seconds=0.5)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0, delay_seconds=0.1)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=1, delay_seconds=-1)


class TestRetryUntilFound:
    """Tests for the bounded lookup loop."""

    @pytest.mark.asyncio
    async def test_returns_first_result(self, no_sleep):
        fetch = AsyncMock(return_value={"hash": "0x1"})

        result = await retry_until_found(fetch, PENDING_TRANSACTION_RETRY)

        assert result == {"hash": "0x1"}
        fetch.assert_awaited_once()
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_until_visible(self, no_sleep):
        fetch = AsyncMock(side_effect=[None, None, {"hash": "0x1"}])

        result = await retry_until_found(fetch, PENDING_TRANSACTION_RETRY)

        assert result == {"hash": "0x1"}
        assert fetch.await_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [0.3, 0.3]

    @pytest.mark.asyncio
    async def test_exhaustion_returns_none(self, no_sleep):
        fetch = AsyncMock(return_value=None)

        result = await retry_until_found(fetch, BLOCK_RETRY)

        assert result is None
        assert fetch.await_count == 5
        # No sleep after the last attempt.
        assert no_sleep.await_count == 4

    @pytest.mark.asyncio
    async def test_transport_errors_count_as_attempts(self, no_sleep):
        fetch = AsyncMock(side_effect=[NodeRPCError("timeout"), {"number": 1}])

        result = await retry_until_found(fetch, BLOCK_RETRY)

        assert result == {"number": 1}

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, no_sleep):
        fetch = AsyncMock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            await retry_until_found(fetch, BLOCK_RETRY)

    @pytest.mark.asyncio
    async def test_abort_stops_before_next_attempt(self, no_sleep):
        fetch = AsyncMock(return_value=None)
        calls = iter([False, False, True])

        result = await retry_until_found(fetch, PENDING_TRANSACTION_RETRY, should_abort=lambda: next(calls))

        assert result is None
        assert fetch.await_count == 2


class TestBackoffDelay:
    def test_doubles_from_base(self):
        delays = [backoff_delay(attempt, 5000) for attempt in range(1, 5)]

        assert delays == [5000, 10000, 20000, 40000]

    def test_attempt_is_one_based(self):
        with pytest.raises(ValueError):
            backoff_delay(0, 5.0)
