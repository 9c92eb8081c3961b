"""JSON-RPC client for transaction, block and receipt lookups.

This module wraps ``web3.AsyncWeb3`` with:
- Token bucket rate limiting to respect provider limits
- A strict split between "not found yet" (returned as None) and transport
  failures (raised as ``NodeRPCError``)
- Plain-dict results so callers never depend on web3 response types
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from web3 import AsyncWeb3
from web3.exceptions import BlockNotFound, TransactionNotFound, Web3Exception
from web3.providers import AsyncHTTPProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_REQUEST_TIMEOUT = 30


class NodeClientError(Exception):
    """Base exception for node client errors."""


class NodeRPCError(NodeClientError):
    """Raised when an RPC call fails at the transport or provider level."""


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class NodeClient:
    """Node RPC client used by the pending-transaction and block handlers.

    Every lookup returns None when the node does not know the object (yet)
    and raises ``NodeRPCError`` when the call itself failed. Retrying is left
    to the caller, which knows how patient it can afford to be.

    Example:
        ```python
        client = NodeClient("https://eth.llamarpc.com")
        tx = await client.get_transaction("0x...")
        if tx is None:
            ...  # not propagated to this node yet
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        request_timeout: int = DEFAULT_REQUEST_TIMEOUT,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        """Initialize the node client.

        Args:
            rpc_url: HTTP(S) JSON-RPC endpoint.
            max_requests_per_second: Rate limit for RPC calls.
            request_timeout: Per-request timeout in seconds.
            web3: Pre-built client, mainly for tests.
        """
        self._rpc_url = rpc_url
        self._w3 = web3 or AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        self._rate_limiter = RateLimiter.create(max_requests_per_second)

    async def _call(self, func_name: str, *args: Any, **kwargs: Any) -> Any:
        """Run ``w3.eth.<func_name>``; not-found errors propagate untouched."""
        await self._rate_limiter.acquire()
        method = getattr(self._w3.eth, func_name)
        try:
            return await method(*args, **kwargs)
        except (TransactionNotFound, BlockNotFound):
            raise
        except (Web3Exception, OSError, TimeoutError) as e:
            raise NodeRPCError(f"RPC call {func_name} failed: {e}") from e

    async def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        """Fetch a transaction by hash, pending or mined."""
        try:
            tx = await self._call("get_transaction", tx_hash)
        except TransactionNotFound:
            return None
        return dict(tx) if tx is not None else None

    async def get_block(
        self,
        block_number: int,
        *,
        full_transactions: bool = True,
    ) -> dict[str, Any] | None:
        """Fetch a block, by default with full transaction bodies."""
        try:
            block = await self._call("get_block", block_number, full_transactions)
        except BlockNotFound:
            return None
        if block is None:
            return None
        block_dict = dict(block)
        block_dict["transactions"] = [
            dict(tx) if not isinstance(tx, (bytes, str)) else tx
            for tx in block_dict.get("transactions", [])
        ]
        return block_dict

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Fetch the receipt of a mined transaction."""
        try:
            receipt = await self._call("get_transaction_receipt", tx_hash)
        except TransactionNotFound:
            return None
        if receipt is None:
            return None
        receipt_dict = dict(receipt)
        receipt_dict["logs"] = [dict(log) for log in receipt_dict.get("logs", [])]
        return receipt_dict

    async def health_check(self) -> bool:
        """Check if the client can reach the RPC endpoint."""
        try:
            await self._call("get_block", "latest", False)
            return True
        except (NodeRPCError, BlockNotFound):
            return False

    async def aclose(self) -> None:
        """Close the provider session to avoid leaked aiohttp sessions."""
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if not callable(disconnect):
            return
        try:
            result = disconnect()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning("Failed to close RPC provider session: %s", e)
