"""Main pipeline orchestrator for the mempool tracker.

This module provides the Pipeline class that wires the node subscription,
the classifier, the store sink and the block correlator together.

Pipeline flow:
    newPendingTransactions -> dedup -> fetch -> store -> classify -> store
    newHeads -> fetch block -> receipts -> store outcomes -> metrics
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from mempool_tracker.classifier import TransactionClassifier
from mempool_tracker.config import Settings, get_settings
from mempool_tracker.correlator import BlockCorrelator
from mempool_tracker.ingestor.dedup import AdmissionGate, DedupCache, RedisDedupCache
from mempool_tracker.ingestor.models import PendingObservation
from mempool_tracker.ingestor.node_client import NodeClient
from mempool_tracker.ingestor.retry import retry_until_found
from mempool_tracker.ingestor.subscription import (
    ConnectionState,
    NodeSubscriptionManager,
    ReconnectExhaustedError,
)
from mempool_tracker.storage.database import DatabaseManager
from mempool_tracker.storage.sink import SqlStoreSink

if TYPE_CHECKING:
    from mempool_tracker.classifier.models import Classification
    from mempool_tracker.storage.sink import StoreSink

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    pending_processed: int = 0
    pending_not_found: int = 0
    classifications: int = 0
    hot_transactions: int = 0
    blocks_processed: int = 0
    metrics_written: int = 0
    block_hot_transactions: int = 0
    errors: int = 0
    last_pending_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator for the mempool tracker.

    Example:
        ```python
        from mempool_tracker.config import get_settings
        from mempool_tracker.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, classify and log but persist nothing. Overrides
                settings.dry_run.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._node_client: NodeClient | None = None
        self._sink: StoreSink | None = None
        self._gate: AdmissionGate | None = None
        self._classifier = TransactionClassifier()
        self._correlator: BlockCorrelator | None = None
        self._subscription: NodeSubscriptionManager | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._subscription_task: asyncio.Task[None] | None = None
        self._fatal_error: BaseException | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def fatal_error(self) -> BaseException | None:
        """The error that stopped the pipeline, if any."""
        return self._fatal_error

    def _should_abort(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        self._fatal_error = None
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings
        monitor = settings.monitor

        logger.debug("Initializing node client...")
        self._node_client = NodeClient(
            settings.node.rpc_url,
            max_requests_per_second=settings.node.max_requests_per_second,
        )

        if self._dry_run:
            logger.info("Dry run: nothing will be persisted")
        else:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(settings.database.url)
            self._sink = SqlStoreSink(self._db_manager)

        if monitor.dedup_backend == "redis":
            if not settings.redis.url:
                raise ValueError("REDIS_URL is required when MONITOR_DEDUP_BACKEND=redis")
            logger.debug("Initializing Redis dedup backend...")
            self._redis = Redis.from_url(settings.redis.url)
            self._gate = RedisDedupCache(self._redis, ttl_seconds=monitor.dedup_ttl_seconds)
        else:
            self._gate = DedupCache(ttl_seconds=monitor.dedup_ttl_seconds)

        if self._sink is not None:
            self._correlator = BlockCorrelator(
                self._node_client,
                self._sink,
                block_retry=monitor.block_retry,
                receipt_retry=monitor.block_retry,
                should_abort=self._should_abort,
                classifier=self._classifier,
                hot_threshold=monitor.hot_transaction_threshold,
            )

        self._subscription = NodeSubscriptionManager(
            ws_url=settings.node.ws_url,
            on_pending=self._on_pending_transaction,
            on_block=self._on_new_block,
            gate=self._gate,
            on_state_change=self._on_connection_state,
            reconnect_base_delay=monitor.reconnect_base_delay_ms / 1000,
            max_reconnect_attempts=monitor.max_reconnect_attempts,
        )

    async def _start_background_services(self) -> None:
        if self._subscription is None:
            return
        await self._subscription.start()
        self._subscription_task = asyncio.create_task(self._run_subscription())

    async def _run_subscription(self) -> None:
        """Wait on the subscription; a give-up stops the whole pipeline."""
        if self._subscription is None:
            return
        try:
            await self._subscription.wait()
        except ReconnectExhaustedError as e:
            self._fatal_error = e
            self._stats.last_error = str(e)
            self._state = PipelineState.ERROR
            logger.critical("Node subscription gave up, stopping pipeline: %s", e)
        finally:
            if self._stop_event:
                self._stop_event.set()

    async def _on_connection_state(self, state: ConnectionState) -> None:
        if state == ConnectionState.RECONNECTING:
            logger.warning("Node subscription lost; events are not delivered until it reconnects")

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._subscription:
            logger.debug("Stopping node subscription...")
            await self._subscription.stop()

        if self._subscription_task:
            self._subscription_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._subscription_task
            self._subscription_task = None

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._node_client:
            await self._node_client.aclose()
            self._node_client = None

        if self._db_manager:
            await self._db_manager.dispose()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def _on_pending_transaction(self, tx_hash: str) -> None:
        """Record, classify and store one newly announced transaction.

        The hash has already passed the dedup gate. Each suspension point is
        followed by a stop check so a shutdown abandons the remaining work.
        """
        node = self._node_client
        if node is None or self._should_abort():
            return

        try:
            tx = await retry_until_found(
                lambda: node.get_transaction(tx_hash),
                self._settings.monitor.pending_retry,
                description=f"pending transaction {tx_hash}",
                should_abort=self._should_abort,
            )
            if tx is None:
                self._stats.pending_not_found += 1
                return
            if self._should_abort():
                return

            observation = PendingObservation.from_transaction(tx)
            self._stats.pending_processed += 1
            self._stats.last_pending_time = observation.detected_at
            logger.info(
                "Pending transaction detected: %s from=%s to=%s gas_limit=%s",
                observation.tx_hash,
                observation.sender,
                observation.recipient or "CONTRACT_DEPLOY",
                observation.gas_limit,
            )

            if not self._dry_run and self._sink is not None:
                await self._sink.save_pending(observation)
                if self._should_abort():
                    return

            classification = self._classifier.classify(
                observation.recipient, observation.call_data
            ).for_transaction(observation.tx_hash)
            self._stats.classifications += 1
            self._log_classification(classification)

            if not self._dry_run and self._sink is not None:
                await self._sink.save_classification(classification)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Error processing pending transaction %s: %s", tx_hash, e)

    def _log_classification(self, classification: Classification) -> None:
        score = self._classifier.hot_score(classification)
        if score >= self._settings.monitor.hot_transaction_threshold:
            self._stats.hot_transactions += 1
            logger.info(
                "HOT transaction detected: %s type=%s confidence=%.2f score=%.2f router=%s",
                classification.tx_hash,
                classification.type.value,
                classification.confidence,
                score,
                classification.router_address,
            )
        else:
            logger.debug(
                "Transaction classified: %s type=%s confidence=%.2f",
                classification.tx_hash,
                classification.type.value,
                classification.confidence,
            )

    async def _on_new_block(self, block_number: int) -> None:
        """Verify predictions against the receipts of a new block."""
        if self._correlator is None or self._should_abort():
            return
        try:
            report = await self._correlator.process_block(block_number)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Error analyzing block %d: %s", block_number, e)
            return
        self._stats.blocks_processed += 1
        self._stats.metrics_written += report.metrics_written
        self._stats.block_hot_transactions += report.hot_transactions
        self._stats.errors += report.errors

    async def run(self) -> None:
        """Start the pipeline and run until interrupted or the subscription gives up.

        Raises:
            ReconnectExhaustedError: If the node subscription gave up.
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

        if self._fatal_error is not None:
            raise self._fatal_error

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
