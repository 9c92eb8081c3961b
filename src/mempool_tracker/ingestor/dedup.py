"""Admission gate that keeps re-announced transactions from being processed twice.

Two backends share the ``try_admit`` contract:

- ``DedupCache`` keeps hashes in process memory.
- ``RedisDedupCache`` stores them as expiring Redis keys so several monitor
  processes can share one gate.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300  # 5 minutes
DEFAULT_REDIS_KEY_PREFIX = "mempool:seen:"


class AdmissionGate(Protocol):
    async def try_admit(self, tx_hash: str) -> bool: ...


class DedupCache:
    """In-memory set of recently seen hashes with lazy expiry.

    Entries live for ``ttl_seconds`` after admission. Expired entries are
    evicted oldest-first during ``try_admit`` calls; there is no background
    sweep.

    ``try_admit`` never suspends between the membership check and the insert,
    so concurrent coroutines on one event loop admit a given hash at most once.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._ttl = ttl_seconds
        self._clock = clock
        self._admitted: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._admitted)

    def __contains__(self, tx_hash: object) -> bool:
        return isinstance(tx_hash, str) and tx_hash.lower() in self._admitted

    async def try_admit(self, tx_hash: str) -> bool:
        """Return True the first time ``tx_hash`` is seen within the window."""
        return self._admit(tx_hash)

    def _admit(self, tx_hash: str) -> bool:
        now = self._clock()
        self._evict_expired(now)
        key = tx_hash.lower()
        if key in self._admitted:
            return False
        self._admitted[key] = now
        return True

    def _evict_expired(self, now: float) -> None:
        # Insertion order equals admission order, so the oldest entry is first.
        cutoff = now - self._ttl
        while self._admitted:
            oldest_hash, admitted_at = next(iter(self._admitted.items()))
            if admitted_at > cutoff:
                break
            del self._admitted[oldest_hash]


class RedisDedupCache:
    """Redis-backed gate using ``SET NX EX``; Redis handles expiry."""

    def __init__(
        self,
        redis: Redis,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        *,
        key_prefix: str = DEFAULT_REDIS_KEY_PREFIX,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._redis = redis
        self._ttl = ttl_seconds
        self._key_prefix = key_prefix

    def _key(self, tx_hash: str) -> str:
        return f"{self._key_prefix}{tx_hash.lower()}"

    async def try_admit(self, tx_hash: str) -> bool:
        was_set = await self._redis.set(self._key(tx_hash), "1", nx=True, ex=self._ttl)
        return bool(was_set)
