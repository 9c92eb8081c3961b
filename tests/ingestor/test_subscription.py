"""Tests for the node subscription manager."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from unittest.mock import AsyncMock

import pytest

from mempool_tracker.ingestor.dedup import DedupCache
from mempool_tracker.ingestor.subscription import (
    BLOCK_SUBSCRIPTION,
    PENDING_SUBSCRIPTION,
    ConnectionState,
    NodeSubscriptionManager,
    ReconnectExhaustedError,
)

PENDING_SUB_ID = "0xpending"
BLOCK_SUB_ID = "0xblocks"


class FakeWebSocket:
    """Scripted node websocket that confirms ``eth_subscribe`` requests."""

    def __init__(self, *, reject: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._reject = reject
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, message: str) -> None:
        request = json.loads(message)
        self.sent.append(request)
        if self._reject:
            self._incoming.put_nowait(
                json.dumps({"jsonrpc": "2.0", "id": request["id"], "error": {"message": "nope"}})
            )
            return
        feed = request["params"][0]
        sub_id = PENDING_SUB_ID if feed == PENDING_SUBSCRIPTION else BLOCK_SUB_ID
        self._incoming.put_nowait(json.dumps({"jsonrpc": "2.0", "id": request["id"], "result": sub_id}))

    async def recv(self) -> Any:
        message = await self._incoming.get()
        if isinstance(message, Exception):
            raise message
        return message

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(ConnectionError("closed"))

    def push(self, subscription: str, result: Any) -> None:
        self._incoming.put_nowait(
            json.dumps(
                {
                    "jsonrpc": "2.0",
                    "method": "eth_subscription",
                    "params": {"subscription": subscription, "result": result},
                }
            )
        )

    def push_pending(self, result: Any) -> None:
        self.push(PENDING_SUB_ID, result)

    def push_block(self, header: dict[str, Any]) -> None:
        self.push(BLOCK_SUB_ID, header)

    def drop(self) -> None:
        self._incoming.put_nowait(ConnectionError("connection reset"))


class Connector:
    """Hands out scripted sockets; ``None`` entries simulate refused connections."""

    def __init__(self, sockets: list[FakeWebSocket | None] | None = None) -> None:
        self.sockets = list(sockets or [])
        self.calls = 0

    async def __call__(self, url: str) -> FakeWebSocket:
        self.calls += 1
        if not self.sockets:
            raise OSError("connection refused")
        ws = self.sockets.pop(0)
        if ws is None:
            raise OSError("connection refused")
        return ws


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


def make_manager(connector: Connector, **kwargs: Any) -> NodeSubscriptionManager:
    params: dict[str, Any] = {
        "ws_url": "ws://node.test",
        "on_pending": AsyncMock(),
        "on_block": AsyncMock(),
        "gate": DedupCache(),
        "connector": connector,
        "drain_timeout": 0.5,
    }
    params.update(kwargs)
    return NodeSubscriptionManager(**params)


def record_backoff(manager: NodeSubscriptionManager) -> list[float]:
    delays: list[float] = []

    async def fake_wait(delay: float) -> bool:
        delays.append(delay)
        return False

    manager._wait_backoff = fake_wait  # type: ignore[method-assign]
    return delays


class TestLifecycle:
    """Tests for start/stop and state transitions."""

    @pytest.mark.asyncio
    async def test_running_after_both_subscriptions_confirmed(self):
        ws = FakeWebSocket()
        states: list[ConnectionState] = []

        async def on_state(state: ConnectionState) -> None:
            states.append(state)

        manager = make_manager(Connector([ws]), on_state_change=on_state)
        assert manager.state is ConnectionState.IDLE

        await manager.start()
        await wait_until(lambda: manager.is_running)

        assert [r["params"] for r in ws.sent] == [[PENDING_SUBSCRIPTION], [BLOCK_SUBSCRIPTION]]
        assert all(r["method"] == "eth_subscribe" for r in ws.sent)
        assert states == [ConnectionState.RUNNING]

        await manager.stop()
        assert manager.state is ConnectionState.STOPPED
        assert ws.closed

    @pytest.mark.asyncio
    async def test_second_start_is_a_warning_noop(self, caplog):
        connector = Connector([FakeWebSocket()])
        manager = make_manager(connector)

        await manager.start()
        with caplog.at_level(logging.WARNING):
            await manager.start()
        await wait_until(lambda: manager.is_running)

        assert connector.calls == 1
        assert "already running" in caplog.text
        await manager.stop()

    @pytest.mark.asyncio
    async def test_stop_before_start_warns(self, caplog):
        manager = make_manager(Connector())

        with caplog.at_level(logging.WARNING):
            await manager.stop()

        assert "before start" in caplog.text
        assert manager.state is ConnectionState.IDLE

    @pytest.mark.asyncio
    async def test_cannot_restart_after_stop(self):
        manager = make_manager(Connector([FakeWebSocket()]))
        await manager.start()
        await wait_until(lambda: manager.is_running)
        await manager.stop()

        with pytest.raises(RuntimeError):
            await manager.start()


class TestDispatch:
    """Tests for routing notifications to handlers."""

    @pytest.mark.asyncio
    async def test_pending_hash_dispatched_once(self):
        ws = FakeWebSocket()
        on_pending = AsyncMock()
        manager = make_manager(Connector([ws]), on_pending=on_pending)
        await manager.start()
        await wait_until(lambda: manager.is_running)

        ws.push_pending("0xAAA")
        ws.push_pending("0xaaa")
        ws.push_pending("0xbbb")
        await wait_until(lambda: manager.stats.pending_received == 3 and manager.inflight_count == 0)

        assert sorted(c.args[0] for c in on_pending.await_args_list) == ["0xaaa", "0xbbb"]
        assert manager.stats.duplicates_skipped == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_full_transaction_notification_uses_hash(self):
        ws = FakeWebSocket()
        on_pending = AsyncMock()
        manager = make_manager(Connector([ws]), on_pending=on_pending)
        await manager.start()
        await wait_until(lambda: manager.is_running)

        ws.push_pending({"hash": "0xccc", "from": "0x1"})
        await wait_until(lambda: on_pending.await_count == 1)

        on_pending.assert_awaited_once_with("0xccc")
        await manager.stop()

    @pytest.mark.asyncio
    async def test_block_header_dispatched_with_number(self):
        ws = FakeWebSocket()
        on_block = AsyncMock()
        manager = make_manager(Connector([ws]), on_block=on_block)
        await manager.start()
        await wait_until(lambda: manager.is_running)

        ws.push_block({"number": "0x10", "hash": "0xbeef"})
        await wait_until(lambda: on_block.await_count == 1)

        on_block.assert_awaited_once_with(16)
        assert manager.stats.blocks_received == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_slow_block_does_not_delay_pending(self):
        ws = FakeWebSocket()
        release = asyncio.Event()
        on_pending = AsyncMock()

        async def slow_block(number: int) -> None:
            await release.wait()

        manager = make_manager(Connector([ws]), on_pending=on_pending, on_block=slow_block)
        await manager.start()
        await wait_until(lambda: manager.is_running)

        ws.push_block({"number": "0x1"})
        ws.push_pending("0xddd")
        await wait_until(lambda: on_pending.await_count == 1 and manager.inflight_count == 1)

        assert manager.stats.blocks_received == 1
        release.set()
        await manager.stop()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_stream(self):
        ws = FakeWebSocket()
        on_pending = AsyncMock(side_effect=[RuntimeError("boom"), None])
        manager = make_manager(Connector([ws]), on_pending=on_pending)
        await manager.start()
        await wait_until(lambda: manager.is_running)

        ws.push_pending("0x1")
        ws.push_pending("0x2")
        await wait_until(lambda: on_pending.await_count == 2)

        assert manager.is_running
        await manager.stop()

    @pytest.mark.asyncio
    async def test_unknown_subscription_and_bad_json_ignored(self):
        ws = FakeWebSocket()
        on_pending = AsyncMock()
        manager = make_manager(Connector([ws]), on_pending=on_pending)
        await manager.start()
        await wait_until(lambda: manager.is_running)

        ws.push("0xother", "0x1")
        ws._incoming.put_nowait("not json")
        ws.push_pending("0x2")
        await wait_until(lambda: on_pending.await_count == 1)

        on_pending.assert_awaited_once_with("0x2")
        await manager.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_stuck_handlers(self):
        ws = FakeWebSocket()
        started = asyncio.Event()

        async def stuck(tx_hash: str) -> None:
            started.set()
            await asyncio.Event().wait()

        manager = make_manager(Connector([ws]), on_pending=stuck, drain_timeout=0.05)
        await manager.start()
        await wait_until(lambda: manager.is_running)
        ws.push_pending("0x1")
        await asyncio.wait_for(started.wait(), timeout=1)

        await manager.stop()

        assert manager.inflight_count == 0


class TestReconnect:
    """Tests for reconnection with exponential backoff."""

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        connector = Connector()
        manager = make_manager(connector, reconnect_base_delay=5.0, max_reconnect_attempts=10)
        delays = record_backoff(manager)

        await manager.start()
        with pytest.raises(ReconnectExhaustedError):
            await manager.wait()

        assert manager.state is ConnectionState.STOPPED
        # Initial connect plus ten reconnects.
        assert connector.calls == 11
        assert delays == [5.0 * 2**i for i in range(10)]
        assert delays[:4] == [5.0, 10.0, 20.0, 40.0]

    @pytest.mark.asyncio
    async def test_successful_reconnect_resets_counter(self):
        ws = FakeWebSocket()
        connector = Connector([None, None, ws])
        manager = make_manager(connector)
        delays = record_backoff(manager)

        await manager.start()
        await wait_until(lambda: manager.is_running)

        assert delays == [5.0, 10.0]
        assert manager.reconnect_attempts == 0
        await manager.stop()

    @pytest.mark.asyncio
    async def test_dropped_connection_resubscribes(self):
        first, second = FakeWebSocket(), FakeWebSocket()
        states: list[ConnectionState] = []

        async def on_state(state: ConnectionState) -> None:
            states.append(state)

        manager = make_manager(Connector([first, second]), on_state_change=on_state)
        record_backoff(manager)
        await manager.start()
        await wait_until(lambda: manager.is_running)

        first.drop()
        await wait_until(lambda: len(second.sent) == 2 and manager.is_running)

        assert states == [ConnectionState.RUNNING, ConnectionState.RECONNECTING, ConnectionState.RUNNING]
        assert manager.stats.reconnect_count == 1
        assert first.closed
        await manager.stop()

    @pytest.mark.asyncio
    async def test_rejected_subscription_counts_as_failure(self):
        connector = Connector([FakeWebSocket(reject=True)])
        manager = make_manager(connector, max_reconnect_attempts=1)
        record_backoff(manager)

        await manager.start()
        with pytest.raises(ReconnectExhaustedError):
            await manager.wait()

        assert connector.calls == 2
