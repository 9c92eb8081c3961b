"""Block correlator: verify pending-time predictions against mined receipts.

For each new block the correlator fetches the block with full transaction
bodies, fetches every receipt, stores the mined outcome and then joins it with
the stored observation and classification to produce a ``Metric``.

The join fails closed: a transaction that was never observed pending (for
example because the monitor started mid-flight) produces no metric.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from mempool_tracker.classifier.models import TransactionType
from mempool_tracker.classifier.registry import EVENT_TOPIC_TYPES
from mempool_tracker.correlator.models import BlockReport, EventLog, Metric, MinedOutcome
from mempool_tracker.ingestor.models import to_hex, to_int
from mempool_tracker.ingestor.retry import BLOCK_RETRY, RetryPolicy, retry_until_found

if TYPE_CHECKING:
    from mempool_tracker.classifier.classifier import TransactionClassifier
    from mempool_tracker.ingestor.node_client import NodeClient
    from mempool_tracker.storage.sink import StoreSink

logger = logging.getLogger(__name__)


def infer_actual_type(
    logs: Iterable[EventLog],
    predicted: TransactionType,
    *,
    succeeded: bool = True,
) -> TransactionType:
    """Infer what a mined transaction actually did from its event logs.

    Failed transactions are UNKNOWN. Otherwise the first topic of each log is
    matched against known event signatures in priority order (pair created,
    mint, swap, transfer). With no match the prediction cannot be checked and
    the predicted type is returned as-is.
    """
    if not succeeded:
        return TransactionType.UNKNOWN
    first_topics = {log.first_topic.lower() for log in logs if log.first_topic}
    for topic, tx_type in EVENT_TOPIC_TYPES:
        if topic in first_topics:
            return tx_type
    return predicted


def latency_ms(detected_at: datetime, mined_at: datetime) -> int:
    """Milliseconds between detection and the block timestamp."""
    return int((mined_at - detected_at).total_seconds() * 1000)


class BlockCorrelator:
    """Stores mined outcomes and computes prediction metrics.

    Example:
        ```python
        correlator = BlockCorrelator(node_client, sink)
        report = await correlator.process_block(19_000_000)
        ```
    """

    def __init__(
        self,
        node: NodeClient,
        sink: StoreSink,
        *,
        block_retry: RetryPolicy = BLOCK_RETRY,
        receipt_retry: RetryPolicy = BLOCK_RETRY,
        should_abort: Callable[[], bool] | None = None,
        classifier: TransactionClassifier | None = None,
        hot_threshold: float | None = None,
    ) -> None:
        """Initialize the correlator.

        Args:
            node: Node RPC client.
            sink: Store for outcomes and metrics.
            block_retry: Retry budget for block lookups.
            receipt_retry: Retry budget for receipt lookups.
            should_abort: Returns True once the monitor is shutting down.
            classifier: If given with ``hot_threshold``, mined transactions are
                classified again and hot ones are logged.
            hot_threshold: Hot score at which a mined transaction is logged.
        """
        self._node = node
        self._sink = sink
        self._block_retry = block_retry
        self._receipt_retry = receipt_retry
        self._should_abort = should_abort or (lambda: False)
        self._classifier = classifier
        self._hot_threshold = hot_threshold

    async def process_block(self, block_number: int) -> BlockReport:
        """Record outcomes and metrics for every transaction in a block."""
        report = BlockReport(block_number=block_number)
        logger.info("Analyzing block %d", block_number)

        block = await retry_until_found(
            lambda: self._node.get_block(block_number, full_transactions=True),
            self._block_retry,
            description=f"block {block_number}",
            should_abort=self._should_abort,
        )
        if not block or not block.get("transactions"):
            return report

        block_hash = to_hex(block.get("hash"))
        mined_at = datetime.fromtimestamp(to_int(block.get("timestamp")), tz=UTC)

        for tx in block["transactions"]:
            if self._should_abort():
                logger.debug("Abandoning block %d: shutdown requested", block_number)
                break
            tx_hash = self._tx_hash(tx)
            if not tx_hash:
                continue
            report.transactions_seen += 1
            try:
                await self._process_transaction(tx, tx_hash, block_number, block_hash, mined_at, report)
            except Exception as e:
                report.errors += 1
                logger.error("Error processing mined transaction %s in block %d: %s", tx_hash, block_number, e)

        logger.debug(
            "Block %d: %d txs, %d outcomes, %d metrics, %d receipts missing, %d errors",
            block_number,
            report.transactions_seen,
            report.outcomes_stored,
            report.metrics_written,
            report.receipts_missing,
            report.errors,
        )
        return report

    async def _process_transaction(
        self,
        tx: Any,
        tx_hash: str,
        block_number: int,
        block_hash: str,
        mined_at: datetime,
        report: BlockReport,
    ) -> None:
        receipt = await retry_until_found(
            lambda: self._node.get_transaction_receipt(tx_hash),
            self._receipt_retry,
            description=f"receipt {tx_hash}",
            should_abort=self._should_abort,
        )
        if not receipt:
            report.receipts_missing += 1
            return

        self._log_if_hot(tx, tx_hash, report)

        outcome = MinedOutcome.from_receipt(
            receipt,
            tx_hash=tx_hash,
            block_number=block_number,
            block_hash=block_hash,
            mined_at=mined_at,
        )
        await self._sink.save_mined(outcome)
        report.outcomes_stored += 1

        if await self.calculate_metrics(outcome.tx_hash, mined_at) is not None:
            report.metrics_written += 1

    def _log_if_hot(self, tx: Any, tx_hash: str, report: BlockReport) -> None:
        # Hash-only block bodies carry nothing to classify.
        if self._classifier is None or self._hot_threshold is None or not hasattr(tx, "get"):
            return
        classification = self._classifier.classify(tx.get("to"), tx.get("input") or tx.get("data"))
        score = self._classifier.hot_score(classification)
        if score < self._hot_threshold:
            return
        report.hot_transactions += 1
        logger.info(
            "HOT transaction detected (from block): %s type=%s confidence=%.2f score=%.2f router=%s",
            tx_hash,
            classification.type.value,
            classification.confidence,
            score,
            classification.router_address,
        )

    @staticmethod
    def _tx_hash(tx: Any) -> str | None:
        if isinstance(tx, (bytes, bytearray, str)):
            return to_hex(tx)
        raw = tx.get("hash") if hasattr(tx, "get") else None
        return to_hex(raw) if raw else None

    async def calculate_metrics(self, tx_hash: str, mined_at: datetime) -> Metric | None:
        """Join observation, classification and outcome into a metric.

        Returns:
            The metric that was stored, or None if any side of the join is
            missing or a metric already existed.
        """
        pending = await self._sink.get_pending(tx_hash)
        classification = await self._sink.get_classification(tx_hash)
        if pending is None or classification is None:
            logger.debug("Cannot calculate metrics, missing pending data: %s", tx_hash)
            return None

        outcome = await self._sink.get_mined(tx_hash)
        if outcome is None:
            logger.debug("Cannot calculate metrics, mined transaction missing: %s", tx_hash)
            return None

        elapsed = latency_ms(pending.detected_at, mined_at)
        if elapsed < 0:
            logger.warning(
                "Negative latency for %s (%d ms): clock skew between detection and block time",
                tx_hash,
                elapsed,
            )

        actual = infer_actual_type(outcome.logs, classification.type, succeeded=outcome.succeeded)
        metric = Metric(
            tx_hash=tx_hash.lower(),
            predicted_type=classification.type,
            actual_type=actual,
            was_mined=True,
            latency_ms=elapsed,
            prediction_correct=actual == classification.type,
        )

        if not await self._sink.save_metric(metric):
            logger.debug("Metric already recorded for %s", tx_hash)
            return None

        logger.debug(
            "Metrics recorded: tx=%s latency=%dms predicted=%s actual=%s",
            tx_hash,
            elapsed,
            metric.predicted_type.value,
            metric.actual_type.value,
        )
        return metric
