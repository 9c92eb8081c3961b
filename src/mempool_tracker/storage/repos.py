"""Repository pattern implementations for data access.

One repository per table. Every write is an ``INSERT ... ON CONFLICT DO
NOTHING`` keyed by transaction hash, so duplicate notifications are absorbed
by the database and the first write wins. Reads convert rows back into the
domain dataclasses used by the pipeline.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from mempool_tracker.classifier.models import Classification, TransactionType
from mempool_tracker.correlator.models import Metric, MinedOutcome, ReceiptStatus, logs_from_dicts
from mempool_tracker.ingestor.models import PendingObservation
from mempool_tracker.storage.models import (
    AnalysisMetricModel,
    MinedTransactionModel,
    PendingTransactionModel,
    TransactionClassificationModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from mempool_tracker.storage.models import Base

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


async def _insert_if_absent(session: AsyncSession, model: type[Base], values: dict[str, Any]) -> bool:
    """Insert one row, doing nothing if the primary key already exists.

    Returns:
        True if a row was written.
    """
    bind = session.get_bind()
    if bind.dialect.name == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(index_elements=["tx_hash"])
    else:
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(index_elements=["tx_hash"])
    result = await session.execute(stmt)
    await session.flush()
    return bool(result.rowcount and result.rowcount > 0)


class PendingTransactionRepository:
    """Repository for pending observations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, observation: PendingObservation) -> bool:
        values = {
            "tx_hash": observation.tx_hash.lower(),
            "sender": observation.sender.lower(),
            "recipient": observation.recipient.lower() if observation.recipient else None,
            "value": observation.value,
            "gas_limit": observation.gas_limit,
            "gas_price": observation.gas_price,
            "max_fee_per_gas": observation.max_fee_per_gas,
            "max_priority_fee_per_gas": observation.max_priority_fee_per_gas,
            "call_data": observation.call_data,
            "nonce": observation.nonce,
            "detected_at": observation.detected_at,
            "created_at": datetime.now(UTC),
        }
        return await _insert_if_absent(self.session, PendingTransactionModel, values)

    async def get_by_hash(self, tx_hash: str) -> PendingObservation | None:
        result = await self.session.execute(
            select(PendingTransactionModel).where(PendingTransactionModel.tx_hash == tx_hash.lower())
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return PendingObservation(
            tx_hash=model.tx_hash,
            sender=model.sender,
            recipient=model.recipient,
            value=Decimal(model.value),
            gas_limit=Decimal(model.gas_limit),
            gas_price=Decimal(model.gas_price) if model.gas_price is not None else None,
            max_fee_per_gas=Decimal(model.max_fee_per_gas) if model.max_fee_per_gas is not None else None,
            max_priority_fee_per_gas=(
                Decimal(model.max_priority_fee_per_gas)
                if model.max_priority_fee_per_gas is not None
                else None
            ),
            call_data=model.call_data,
            nonce=model.nonce,
            detected_at=as_utc(model.detected_at),
        )


class ClassificationRepository:
    """Repository for transaction classifications."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, classification: Classification) -> bool:
        if not classification.tx_hash:
            raise ValueError("Classification is not bound to a transaction hash")
        values = {
            "tx_hash": classification.tx_hash.lower(),
            "classification_type": classification.type.value,
            "confidence": Decimal(str(classification.confidence)),
            "method_signature": classification.method_signature,
            "router_address": classification.router_address,
            "tokens_json": json.dumps(list(classification.tokens_involved)),
            "metadata_json": json.dumps(classification.metadata, default=str, sort_keys=True),
            "classified_at": classification.classified_at,
        }
        return await _insert_if_absent(self.session, TransactionClassificationModel, values)

    async def get_by_hash(self, tx_hash: str) -> Classification | None:
        result = await self.session.execute(
            select(TransactionClassificationModel).where(
                TransactionClassificationModel.tx_hash == tx_hash.lower()
            )
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return Classification(
            type=TransactionType.parse(model.classification_type),
            confidence=float(model.confidence),
            method_signature=model.method_signature,
            router_address=model.router_address,
            tokens_involved=tuple(json.loads(model.tokens_json or "[]")),
            metadata=json.loads(model.metadata_json or "{}"),
            tx_hash=model.tx_hash,
            classified_at=as_utc(model.classified_at),
        )


class MinedTransactionRepository:
    """Repository for mined outcomes."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, outcome: MinedOutcome) -> bool:
        values = {
            "tx_hash": outcome.tx_hash.lower(),
            "block_number": outcome.block_number,
            "block_hash": outcome.block_hash,
            "transaction_index": outcome.transaction_index,
            "status": int(outcome.status),
            "gas_used": outcome.gas_used,
            "effective_gas_price": outcome.effective_gas_price,
            "mined_at": outcome.mined_at,
            "logs_json": json.dumps([log.to_dict() for log in outcome.logs]),
        }
        return await _insert_if_absent(self.session, MinedTransactionModel, values)

    async def get_by_hash(self, tx_hash: str) -> MinedOutcome | None:
        result = await self.session.execute(
            select(MinedTransactionModel).where(MinedTransactionModel.tx_hash == tx_hash.lower())
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return MinedOutcome(
            tx_hash=model.tx_hash,
            block_number=model.block_number,
            block_hash=model.block_hash,
            transaction_index=model.transaction_index,
            status=ReceiptStatus(model.status),
            gas_used=Decimal(model.gas_used),
            effective_gas_price=Decimal(model.effective_gas_price),
            mined_at=as_utc(model.mined_at),
            logs=logs_from_dicts(json.loads(model.logs_json or "[]")),
        )


class MetricRepository:
    """Repository for analysis metrics."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, metric: Metric) -> bool:
        values = {
            "tx_hash": metric.tx_hash.lower(),
            "predicted_type": metric.predicted_type.value,
            "actual_type": metric.actual_type.value,
            "was_mined": metric.was_mined,
            "latency_ms": metric.latency_ms,
            "prediction_correct": metric.prediction_correct,
            "analyzed_at": metric.analyzed_at,
        }
        return await _insert_if_absent(self.session, AnalysisMetricModel, values)

    async def get_by_hash(self, tx_hash: str) -> Metric | None:
        result = await self.session.execute(
            select(AnalysisMetricModel).where(AnalysisMetricModel.tx_hash == tx_hash.lower())
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return Metric(
            tx_hash=model.tx_hash,
            predicted_type=TransactionType.parse(model.predicted_type),
            actual_type=TransactionType.parse(model.actual_type),
            was_mined=model.was_mined,
            latency_ms=model.latency_ms,
            prediction_correct=model.prediction_correct,
            analyzed_at=as_utc(model.analyzed_at),
        )
