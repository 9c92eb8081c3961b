"""Node event-stream client (``newPendingTransactions`` / ``newHeads``).

The manager owns the one websocket subscription of a monitor. It issues
``eth_subscribe`` for pending transactions and new block headers, hands every
notification to its own task, and reconnects with exponential backoff when the
connection drops. After ``max_reconnect_attempts`` consecutive failures it
gives up for good and surfaces ``ReconnectExhaustedError``.

States: IDLE -> RUNNING -> RECONNECTING -> RUNNING | STOPPED. STOPPED is
terminal; a new manager instance is needed to start again.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from mempool_tracker.ingestor.dedup import AdmissionGate
from mempool_tracker.ingestor.models import to_hex, to_int
from mempool_tracker.ingestor.retry import backoff_delay

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_RECONNECT_BASE_DELAY = 5.0  # seconds
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10
DEFAULT_SUBSCRIBE_TIMEOUT = 10.0  # seconds
DEFAULT_DRAIN_TIMEOUT = 5.0  # seconds
RECV_POLL_INTERVAL = 1.0  # seconds

PENDING_SUBSCRIPTION = "newPendingTransactions"
BLOCK_SUBSCRIPTION = "newHeads"


class ConnectionState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


@dataclass
class SubscriptionStats:
    pending_received: int = 0
    blocks_received: int = 0
    duplicates_skipped: int = 0
    reconnect_count: int = 0
    connected_since: float | None = None
    last_message_time: float | None = None
    last_error: str | None = None


class SubscriptionError(Exception):
    """Base exception for node subscription errors."""


class SubscriptionConnectionError(SubscriptionError):
    """Raised when the websocket connection or ``eth_subscribe`` fails."""


class ReconnectExhaustedError(SubscriptionError):
    """Raised when reconnection attempts are used up; the manager is stopped."""


PendingCallback = Callable[[str], Awaitable[None]]
BlockCallback = Callable[[int], Awaitable[None]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]
Connector = Callable[[str], Awaitable[Any]]


class NodeSubscriptionManager:
    """Websocket subscription to a node's pending-transaction and block feeds.

    Example:
        ```python
        manager = NodeSubscriptionManager(
            ws_url="wss://node.example/ws",
            on_pending=handle_pending,
            on_block=handle_block,
            gate=DedupCache(),
        )
        await manager.start()
        try:
            await manager.wait()  # raises ReconnectExhaustedError on give-up
        finally:
            await manager.stop()
        ```
    """

    def __init__(
        self,
        *,
        ws_url: str,
        on_pending: PendingCallback,
        on_block: BlockCallback,
        gate: AdmissionGate,
        on_state_change: StateCallback | None = None,
        reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        subscribe_timeout: float = DEFAULT_SUBSCRIBE_TIMEOUT,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
        connector: Connector | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            ws_url: Node websocket endpoint (ws:// or wss://).
            on_pending: Called once per admitted pending transaction hash.
            on_block: Called once per new block number.
            gate: Dedup gate consulted before ``on_pending`` runs.
            on_state_change: Optional callback for state transitions.
            reconnect_base_delay: First reconnect delay in seconds.
            max_reconnect_attempts: Consecutive failed reconnects before giving up.
            ping_interval: Websocket keepalive interval in seconds.
            subscribe_timeout: How long to wait for ``eth_subscribe`` replies.
            drain_timeout: How long ``stop()`` waits for in-flight handlers.
            connector: Replacement for ``websockets.connect``, mainly for tests.
        """
        self._ws_url = ws_url
        self._on_pending = on_pending
        self._on_block = on_block
        self._gate = gate
        self._on_state_change = on_state_change
        self._reconnect_base_delay = reconnect_base_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._ping_interval = ping_interval
        self._subscribe_timeout = subscribe_timeout
        self._drain_timeout = drain_timeout
        self._connector = connector or self._default_connect

        self._state = ConnectionState.IDLE
        self._stats = SubscriptionStats()
        self._reconnect_attempts = 0

        self._ws: ClientConnection | Any | None = None
        self._stop_event: asyncio.Event | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self._request_id = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> SubscriptionStats:
        return self._stats

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def is_running(self) -> bool:
        return self._state == ConnectionState.RUNNING

    @property
    def is_stopping(self) -> bool:
        """True once ``stop()`` was requested or the manager gave up."""
        if self._state == ConnectionState.STOPPED:
            return True
        return self._stop_event is not None and self._stop_event.is_set()

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Node subscription state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def _default_connect(self, url: str) -> ClientConnection:
        return await websockets.connect(
            url,
            ping_interval=self._ping_interval,
            ping_timeout=self._ping_interval * 2,
            max_size=2**22,
        )

    async def _connect(self) -> Any:
        try:
            ws = await self._connector(self._ws_url)
        except Exception as e:
            self._stats.last_error = str(e)
            raise SubscriptionConnectionError(f"Failed to connect to {self._ws_url}: {e}") from e
        logger.info("Connected to node event stream: %s", self._ws_url)
        return ws

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _subscribe(self, ws: Any) -> tuple[dict[str, str], list[dict[str, Any]]]:
        """Subscribe to both feeds on a fresh connection.

        Returns:
            Mapping of subscription id to feed name, plus any notifications that
            arrived before both confirmations did.
        """
        requests: dict[int, str] = {}
        for feed in (PENDING_SUBSCRIPTION, BLOCK_SUBSCRIPTION):
            request_id = self._next_request_id()
            requests[request_id] = feed
            await ws.send(
                json.dumps(
                    {"jsonrpc": "2.0", "id": request_id, "method": "eth_subscribe", "params": [feed]}
                )
            )

        subscriptions: dict[str, str] = {}
        early: list[dict[str, Any]] = []
        try:
            async with asyncio.timeout(self._subscribe_timeout):
                while len(subscriptions) < len(requests):
                    data = self._decode(await ws.recv())
                    if data is None:
                        continue
                    request_id = data.get("id")
                    if request_id in requests:
                        if data.get("error") or not data.get("result"):
                            raise SubscriptionConnectionError(
                                f"eth_subscribe {requests[request_id]} rejected: {data.get('error')}"
                            )
                        subscriptions[str(data["result"])] = requests[request_id]
                    elif data.get("method") == "eth_subscription":
                        early.append(data)
        except TimeoutError as e:
            raise SubscriptionConnectionError("Timed out waiting for eth_subscribe replies") from e

        logger.debug("Subscriptions confirmed: %s", subscriptions)
        return subscriptions, early

    @staticmethod
    def _decode(message: Any) -> dict[str, Any] | None:
        if isinstance(message, bytes):
            message = message.decode()
        try:
            data = json.loads(message)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Invalid JSON message on node event stream")
            return None
        return data if isinstance(data, dict) else None

    def _handle_notification(self, data: dict[str, Any], subscriptions: dict[str, str]) -> None:
        params = data.get("params") or {}
        feed = subscriptions.get(str(params.get("subscription")))
        result = params.get("result")
        if feed is None or result is None:
            logger.debug("Ignoring notification for unknown subscription")
            return

        self._stats.last_message_time = time.time()
        if feed == PENDING_SUBSCRIPTION:
            # Some nodes push full transaction objects instead of hashes.
            raw_hash = result.get("hash") if isinstance(result, dict) else result
            if not raw_hash:
                return
            self._stats.pending_received += 1
            self._spawn(self._dispatch_pending(to_hex(raw_hash)))
        elif feed == BLOCK_SUBSCRIPTION:
            try:
                number = to_int(result.get("number") if isinstance(result, dict) else result)
            except (TypeError, ValueError):
                logger.warning("Unparseable block header notification: %r", result)
                return
            self._stats.blocks_received += 1
            self._spawn(self._dispatch_block(number))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _dispatch_pending(self, tx_hash: str) -> None:
        if self.is_stopping:
            return
        try:
            admitted = await self._gate.try_admit(tx_hash)
        except Exception as e:
            logger.warning("Dedup gate failed for %s: %s", tx_hash, e)
            return
        if not admitted:
            self._stats.duplicates_skipped += 1
            logger.debug("Transaction already in cache: %s", tx_hash)
            return
        try:
            await self._on_pending(tx_hash)
        except Exception as e:
            logger.error("Error handling pending transaction %s: %s", tx_hash, e)

    async def _dispatch_block(self, block_number: int) -> None:
        if self.is_stopping:
            return
        try:
            await self._on_block(block_number)
        except Exception as e:
            logger.error("Error analyzing block %d: %s", block_number, e)

    async def _listen(self, ws: Any, subscriptions: dict[str, str]) -> None:
        while self._stop_event and not self._stop_event.is_set():
            try:
                message = await asyncio.wait_for(ws.recv(), timeout=RECV_POLL_INTERVAL)
            except TimeoutError:
                continue
            data = self._decode(message)
            if data is not None and data.get("method") == "eth_subscription":
                self._handle_notification(data, subscriptions)

    async def _wait_backoff(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; return True if stop was requested meanwhile."""
        if not self._stop_event:
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except TimeoutError:
            return False

    async def _supervise(self) -> None:
        if self._stop_event is None:
            return
        try:
            while not self._stop_event.is_set():
                try:
                    self._ws = await self._connect()
                    subscriptions, early = await self._subscribe(self._ws)
                    self._reconnect_attempts = 0
                    self._stats.connected_since = time.time()
                    await self._set_state(ConnectionState.RUNNING)
                    for data in early:
                        self._handle_notification(data, subscriptions)
                    await self._listen(self._ws, subscriptions)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._stats.last_error = str(e)
                    if not self._stop_event.is_set():
                        if isinstance(e, websockets.ConnectionClosed):
                            logger.warning("Node event stream connection closed: %s", e)
                        else:
                            logger.error("Node event stream error: %s", e)
                finally:
                    with contextlib.suppress(Exception):
                        if self._ws is not None:
                            await self._ws.close()
                    self._ws = None

                if self._stop_event.is_set():
                    break

                self._reconnect_attempts += 1
                if self._reconnect_attempts > self._max_reconnect_attempts:
                    logger.critical(
                        "Max reconnection attempts (%d) reached; node subscription stopped",
                        self._max_reconnect_attempts,
                    )
                    await self._set_state(ConnectionState.STOPPED)
                    raise ReconnectExhaustedError(
                        f"Gave up after {self._max_reconnect_attempts} reconnection attempts: "
                        f"{self._stats.last_error}"
                    )

                delay = backoff_delay(self._reconnect_attempts, self._reconnect_base_delay)
                self._stats.reconnect_count += 1
                await self._set_state(ConnectionState.RECONNECTING)
                logger.info(
                    "Reconnecting in %.1fs (attempt %d/%d)",
                    delay,
                    self._reconnect_attempts,
                    self._max_reconnect_attempts,
                )
                if await self._wait_backoff(delay):
                    break
        finally:
            if self._state != ConnectionState.STOPPED:
                await self._set_state(ConnectionState.STOPPED)

    async def start(self) -> None:
        """Start the subscription supervisor.

        Returns as soon as the supervisor task is scheduled; the state moves to
        RUNNING once both subscriptions are confirmed.

        Raises:
            RuntimeError: If the manager was already stopped.
        """
        if self._state == ConnectionState.STOPPED:
            raise RuntimeError("Node subscription manager is stopped; create a new instance")
        if self._supervisor is not None:
            logger.warning("Node subscription already running")
            return

        self._stop_event = asyncio.Event()
        logger.info("Starting node subscription: %s", self._ws_url)
        self._supervisor = asyncio.create_task(self._supervise(), name="node-subscription")

    async def wait(self) -> None:
        """Block until the supervisor exits.

        Raises:
            ReconnectExhaustedError: If reconnection gave up.
        """
        if self._supervisor is None:
            return
        try:
            await self._supervisor
        except asyncio.CancelledError:
            if self._supervisor.cancelled():
                return
            raise

    async def stop(self) -> None:
        """Close the subscription and drain in-flight handlers.

        Safe to call concurrently with running handlers; handlers that start
        after this point return without doing work.
        """
        if self._supervisor is None:
            logger.warning("Node subscription stop() called before start()")
            return
        if self._stop_event:
            self._stop_event.set()

        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()

        supervisor = self._supervisor
        if not supervisor.done():
            await asyncio.wait({supervisor}, timeout=self._drain_timeout)
            if not supervisor.done():
                supervisor.cancel()
        with contextlib.suppress(asyncio.CancelledError, SubscriptionError):
            await supervisor

        await self._drain_inflight()
        logger.info("Node subscription stopped")

    async def _drain_inflight(self) -> None:
        if not self._inflight:
            return
        _, pending = await asyncio.wait(set(self._inflight), timeout=self._drain_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Cancelled %d handlers still running at shutdown", len(pending))
