"""Bounded retry helpers for node lookups and reconnection backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from mempool_tracker.ingestor.node_client import NodeClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry budget."""

    attempts: int
    delay_seconds: float

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")


# Freshly announced transactions may not have reached the node we query yet.
PENDING_TRANSACTION_RETRY = RetryPolicy(attempts=10, delay_seconds=0.3)
BLOCK_RETRY = RetryPolicy(attempts=5, delay_seconds=0.5)


async def retry_until_found(
    fetch: Callable[[], Awaitable[T | None]],
    policy: RetryPolicy,
    *,
    description: str = "lookup",
    should_abort: Callable[[], bool] | None = None,
) -> T | None:
    """Call ``fetch`` until it returns a value or the budget runs out.

    A None result (not found yet) and ``NodeClientError`` (transport failure)
    both count as a failed attempt. Other exceptions propagate.

    Args:
        fetch: Zero-argument coroutine factory.
        policy: Attempt count and fixed delay.
        description: Label for log lines.
        should_abort: Checked before every attempt; True ends the loop early.

    Returns:
        The first non-None result, or None when every attempt failed.
    """
    last_error: Exception | None = None
    for attempt in range(1, policy.attempts + 1):
        if should_abort and should_abort():
            logger.debug("Abandoning %s: shutdown requested", description)
            return None
        try:
            result = await fetch()
            if result is not None:
                return result
        except NodeClientError as e:
            last_error = e
            logger.debug(
                "%s failed (attempt %d/%d): %s",
                description,
                attempt,
                policy.attempts,
                e,
            )
        if attempt < policy.attempts:
            await asyncio.sleep(policy.delay_seconds)

    if last_error is not None:
        logger.warning(
            "%s gave up after %d attempts: %s", description, policy.attempts, last_error
        )
    else:
        logger.debug("%s not found after %d attempts", description, policy.attempts)
    return None


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Exponential backoff: ``base_delay * 2 ** (attempt - 1)``.

    ``attempt`` is 1-based, so the first reconnect waits ``base_delay``.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    return base_delay * (2 ** (attempt - 1))
