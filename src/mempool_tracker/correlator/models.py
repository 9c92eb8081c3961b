"""Data models for mined outcomes and prediction metrics."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import IntEnum
from typing import Any

from mempool_tracker.classifier.models import TransactionType
from mempool_tracker.ingestor.models import to_address, to_decimal, to_hex, to_int


class ReceiptStatus(IntEnum):
    FAILURE = 0
    SUCCESS = 1


@dataclass(frozen=True)
class EventLog:
    """Summary of one log emitted by a mined transaction."""

    address: str
    topics: tuple[str, ...]
    data: str

    @property
    def first_topic(self) -> str | None:
        return self.topics[0] if self.topics else None

    @classmethod
    def from_receipt_log(cls, log: Mapping[str, Any]) -> EventLog:
        return cls(
            address=to_address(log.get("address")) or "",
            topics=tuple(to_hex(t) for t in log.get("topics") or ()),
            data=to_hex(log.get("data") or "0x"),
        )

    def to_dict(self) -> dict[str, object]:
        return {"address": self.address, "topics": list(self.topics), "data": self.data}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EventLog:
        return cls(
            address=str(data.get("address") or ""),
            topics=tuple(str(t) for t in data.get("topics") or ()),
            data=str(data.get("data") or "0x"),
        )


@dataclass(frozen=True)
class MinedOutcome:
    """Post-execution record of a transaction, built from its receipt.

    Attributes:
        tx_hash: Transaction hash.
        block_number: Block that included the transaction.
        block_hash: Hash of that block.
        transaction_index: Position within the block.
        status: Receipt status (success or failure).
        gas_used: Gas consumed.
        effective_gas_price: Price actually paid per gas unit in wei.
        mined_at: Block timestamp.
        logs: Emitted event logs.
    """

    tx_hash: str
    block_number: int
    block_hash: str
    transaction_index: int
    status: ReceiptStatus
    gas_used: Decimal
    effective_gas_price: Decimal
    mined_at: datetime
    logs: tuple[EventLog, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == ReceiptStatus.SUCCESS

    @classmethod
    def from_receipt(
        cls,
        receipt: Mapping[str, Any],
        *,
        block_hash: str,
        mined_at: datetime,
        tx_hash: str | None = None,
        block_number: int | None = None,
    ) -> MinedOutcome:
        """Build an outcome from a receipt; ``tx_hash``/``block_number`` fill gaps."""
        return cls(
            tx_hash=to_hex(receipt.get("transactionHash") or tx_hash),
            block_number=to_int(receipt.get("blockNumber"), default=block_number or 0),
            block_hash=block_hash,
            transaction_index=to_int(receipt.get("transactionIndex")),
            status=ReceiptStatus.SUCCESS if to_int(receipt.get("status")) == 1 else ReceiptStatus.FAILURE,
            gas_used=to_decimal(receipt.get("gasUsed")) or Decimal(0),
            effective_gas_price=to_decimal(receipt.get("effectiveGasPrice")) or Decimal(0),
            mined_at=mined_at,
            logs=tuple(EventLog.from_receipt_log(log) for log in receipt.get("logs") or ()),
        )


@dataclass(frozen=True)
class Metric:
    """Verification of one prediction against its mined outcome."""

    tx_hash: str
    predicted_type: TransactionType
    actual_type: TransactionType
    was_mined: bool
    latency_ms: int
    prediction_correct: bool
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def mempool_time_seconds(self) -> float:
        return self.latency_ms / 1000.0

    def to_dict(self) -> dict[str, object]:
        return {
            "tx_hash": self.tx_hash,
            "predicted_type": self.predicted_type.value,
            "actual_type": self.actual_type.value,
            "was_mined": self.was_mined,
            "latency_ms": self.latency_ms,
            "prediction_correct": self.prediction_correct,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


@dataclass
class BlockReport:
    """Counters for one processed block."""

    block_number: int
    transactions_seen: int = 0
    outcomes_stored: int = 0
    receipts_missing: int = 0
    metrics_written: int = 0
    hot_transactions: int = 0
    errors: int = 0


def logs_from_dicts(items: Sequence[Mapping[str, Any]] | None) -> tuple[EventLog, ...]:
    return tuple(EventLog.from_dict(item) for item in items or ())
