"""Read-only aggregates over the stored observations, predictions and metrics.

All aggregates degrade to zeros and empty maps when nothing has been stored
yet, so callers never have to special-case a fresh database.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func, select

from mempool_tracker.classifier.models import TransactionType
from mempool_tracker.storage.models import (
    AnalysisMetricModel,
    MinedTransactionModel,
    PendingTransactionModel,
    TransactionClassificationModel,
)
from mempool_tracker.storage.repos import as_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

HOT_TYPES = (
    TransactionType.CONTRACT_DEPLOY,
    TransactionType.ADD_LIQUIDITY,
    TransactionType.CREATE_PAIR,
)


def _percent(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


@dataclass(frozen=True)
class TypeAccuracy:
    correct: int
    total: int

    @property
    def accuracy(self) -> float:
        return _percent(self.correct, self.total)


@dataclass(frozen=True)
class AnalyticsSummary:
    """Headline numbers for the operator report.

    Attributes:
        total_pending: Pending observations stored.
        total_mined: Mined outcomes stored.
        total_analyzed: Metrics stored.
        avg_latency_ms: Mean detection-to-block latency, rounded.
        accuracy: Percentage of metrics whose prediction was correct.
        hot_transactions: Classifications of a hot type.
        type_breakdown: Classification count per type.
        accuracy_by_type: Metric accuracy per predicted type.
    """

    total_pending: int = 0
    total_mined: int = 0
    total_analyzed: int = 0
    avg_latency_ms: int = 0
    accuracy: float = 0.0
    hot_transactions: int = 0
    type_breakdown: dict[str, int] = field(default_factory=dict)
    accuracy_by_type: dict[str, TypeAccuracy] = field(default_factory=dict)


@dataclass(frozen=True)
class RecentTransaction:
    """A recent classification joined with its detection time and metric."""

    tx_hash: str
    classification_type: str
    confidence: float
    detected_at: datetime | None
    router_address: str | None
    method_signature: str | None
    metadata: dict[str, Any]
    was_mined: bool | None = None
    latency_ms: int | None = None


class AnalyticsRepository:
    """Aggregate queries over all four tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _count(self, model: Any) -> int:
        result = await self.session.execute(select(func.count()).select_from(model))
        return int(result.scalar_one() or 0)

    async def summary(self) -> AnalyticsSummary:
        total_pending = await self._count(PendingTransactionModel)
        total_mined = await self._count(MinedTransactionModel)

        correct_expr = func.sum(case((AnalysisMetricModel.prediction_correct.is_(True), 1), else_=0))
        totals = await self.session.execute(
            select(
                func.count(AnalysisMetricModel.tx_hash),
                correct_expr,
                func.sum(AnalysisMetricModel.latency_ms),
            )
        )
        total_analyzed, total_correct, total_latency = totals.one()
        total_analyzed = int(total_analyzed or 0)
        total_correct = int(total_correct or 0)
        total_latency = int(total_latency or 0)

        by_type_rows = await self.session.execute(
            select(
                TransactionClassificationModel.classification_type,
                func.count(TransactionClassificationModel.tx_hash),
            ).group_by(TransactionClassificationModel.classification_type)
        )
        type_breakdown = {row[0]: int(row[1]) for row in by_type_rows.all()}
        hot_values = {t.value for t in HOT_TYPES}
        hot_transactions = sum(count for name, count in type_breakdown.items() if name in hot_values)

        accuracy_rows = await self.session.execute(
            select(
                AnalysisMetricModel.predicted_type,
                correct_expr,
                func.count(AnalysisMetricModel.tx_hash),
            ).group_by(AnalysisMetricModel.predicted_type)
        )
        accuracy_by_type = {
            row[0]: TypeAccuracy(correct=int(row[1] or 0), total=int(row[2])) for row in accuracy_rows.all()
        }

        return AnalyticsSummary(
            total_pending=total_pending,
            total_mined=total_mined,
            total_analyzed=total_analyzed,
            avg_latency_ms=round(total_latency / total_analyzed) if total_analyzed > 0 else 0,
            accuracy=_percent(total_correct, total_analyzed),
            hot_transactions=hot_transactions,
            type_breakdown=type_breakdown,
            accuracy_by_type=accuracy_by_type,
        )

    async def recent_transactions(self, limit: int = 20) -> list[RecentTransaction]:
        """Newest classifications first, with detection time and metric if known."""
        stmt = (
            select(
                TransactionClassificationModel,
                PendingTransactionModel.detected_at,
                AnalysisMetricModel.was_mined,
                AnalysisMetricModel.latency_ms,
            )
            .outerjoin(
                PendingTransactionModel,
                PendingTransactionModel.tx_hash == TransactionClassificationModel.tx_hash,
            )
            .outerjoin(
                AnalysisMetricModel,
                AnalysisMetricModel.tx_hash == TransactionClassificationModel.tx_hash,
            )
            .order_by(TransactionClassificationModel.classified_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        recent = []
        for classification, detected_at, was_mined, latency in result.all():
            recent.append(
                RecentTransaction(
                    tx_hash=classification.tx_hash,
                    classification_type=classification.classification_type,
                    confidence=float(classification.confidence),
                    detected_at=as_utc(detected_at) if detected_at is not None else None,
                    router_address=classification.router_address,
                    method_signature=classification.method_signature,
                    metadata=json.loads(classification.metadata_json or "{}"),
                    was_mined=was_mined,
                    latency_ms=latency,
                )
            )
        return recent
