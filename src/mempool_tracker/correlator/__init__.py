"""Verification layer - Match mined transactions back to predictions."""

from mempool_tracker.correlator.correlator import BlockCorrelator, infer_actual_type
from mempool_tracker.correlator.models import (
    BlockReport,
    EventLog,
    Metric,
    MinedOutcome,
    ReceiptStatus,
)

__all__ = [
    "BlockCorrelator",
    "BlockReport",
    "EventLog",
    "Metric",
    "MinedOutcome",
    "ReceiptStatus",
    "infer_actual_type",
]
