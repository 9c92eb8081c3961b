"""SQLAlchemy models for persistent storage.

This module defines the database schema for pending observations, their
classifications, mined outcomes and the per-transaction analysis metrics.
All four tables are keyed by transaction hash.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator, TypeEngine


class WeiAmount(TypeDecorator):
    """Unsigned 256-bit wei amount.

    Stored as NUMERIC(78, 0) where the backend supports it. SQLite coerces
    NUMERIC to a 64-bit integer or a float, so there the digits are kept as
    text.
    """

    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(78))
        return dialect.type_descriptor(Numeric(78, 0))

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(int(value))
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class PendingTransactionModel(Base):
    """A transaction as first seen in the mempool."""

    __tablename__ = "pending_transactions"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    sender: Mapped[str] = mapped_column(String(42), nullable=False)
    # NULL for contract creations.
    recipient: Mapped[str | None] = mapped_column(String(42), nullable=True)

    value: Mapped[Decimal] = mapped_column(WeiAmount(), nullable=False)
    gas_limit: Mapped[Decimal] = mapped_column(WeiAmount(), nullable=False)
    gas_price: Mapped[Decimal | None] = mapped_column(WeiAmount(), nullable=True)
    max_fee_per_gas: Mapped[Decimal | None] = mapped_column(WeiAmount(), nullable=True)
    max_priority_fee_per_gas: Mapped[Decimal | None] = mapped_column(WeiAmount(), nullable=True)

    call_data: Mapped[str] = mapped_column(Text, nullable=False)
    nonce: Mapped[int] = mapped_column(Integer, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_pending_transactions_detected_at", "detected_at"),
        Index("idx_pending_transactions_recipient", "recipient"),
    )


class TransactionClassificationModel(Base):
    """Predicted intent of a pending transaction."""

    __tablename__ = "transaction_classifications"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    classification_type: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence: Mapped[Decimal] = mapped_column(Numeric(4, 3), nullable=False)
    method_signature: Mapped[str | None] = mapped_column(String(10), nullable=True)
    router_address: Mapped[str | None] = mapped_column(String(42), nullable=True)

    tokens_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    classified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_transaction_classifications_type", "classification_type"),
        Index("idx_transaction_classifications_classified_at", "classified_at"),
    )


class MinedTransactionModel(Base):
    """Receipt-derived outcome of an included transaction."""

    __tablename__ = "mined_transactions"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    block_number: Mapped[int] = mapped_column(Integer, nullable=False)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    transaction_index: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[int] = mapped_column(Integer, nullable=False)
    gas_used: Mapped[Decimal] = mapped_column(WeiAmount(), nullable=False)
    effective_gas_price: Mapped[Decimal] = mapped_column(WeiAmount(), nullable=False)
    mined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    logs_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    __table_args__ = (Index("idx_mined_transactions_block_number", "block_number"),)


class AnalysisMetricModel(Base):
    """Verification of one prediction against what was mined."""

    __tablename__ = "analysis_metrics"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    predicted_type: Mapped[str] = mapped_column(String(32), nullable=False)
    actual_type: Mapped[str] = mapped_column(String(32), nullable=False)
    was_mined: Mapped[bool] = mapped_column(Boolean, nullable=False)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    prediction_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    analyzed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_analysis_metrics_predicted_type", "predicted_type"),
        Index("idx_analysis_metrics_analyzed_at", "analyzed_at"),
    )
