"""Initial schema for pending, classified and mined transactions plus metrics.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

from mempool_tracker.storage.models import WeiAmount

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Pending transactions table
    op.create_table(
        "pending_transactions",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("sender", sa.String(42), nullable=False),
        sa.Column("recipient", sa.String(42), nullable=True),
        sa.Column("value", WeiAmount(), nullable=False),
        sa.Column("gas_limit", WeiAmount(), nullable=False),
        sa.Column("gas_price", WeiAmount(), nullable=True),
        sa.Column("max_fee_per_gas", WeiAmount(), nullable=True),
        sa.Column("max_priority_fee_per_gas", WeiAmount(), nullable=True),
        sa.Column("call_data", sa.Text(), nullable=False),
        sa.Column("nonce", sa.Integer(), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("tx_hash"),
    )
    op.create_index("idx_pending_transactions_detected_at", "pending_transactions", ["detected_at"])
    op.create_index("idx_pending_transactions_recipient", "pending_transactions", ["recipient"])

    # Classifications table
    op.create_table(
        "transaction_classifications",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("classification_type", sa.String(32), nullable=False),
        sa.Column("confidence", sa.Numeric(4, 3), nullable=False),
        sa.Column("method_signature", sa.String(10), nullable=True),
        sa.Column("router_address", sa.String(42), nullable=True),
        sa.Column("tokens_json", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False),
        sa.Column("classified_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("tx_hash"),
    )
    op.create_index(
        "idx_transaction_classifications_type", "transaction_classifications", ["classification_type"]
    )
    op.create_index(
        "idx_transaction_classifications_classified_at",
        "transaction_classifications",
        ["classified_at"],
    )

    # Mined transactions table
    op.create_table(
        "mined_transactions",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("block_number", sa.Integer(), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("transaction_index", sa.Integer(), nullable=False),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("gas_used", WeiAmount(), nullable=False),
        sa.Column("effective_gas_price", WeiAmount(), nullable=False),
        sa.Column("mined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("logs_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("tx_hash"),
    )
    op.create_index("idx_mined_transactions_block_number", "mined_transactions", ["block_number"])

    # Analysis metrics table
    op.create_table(
        "analysis_metrics",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("predicted_type", sa.String(32), nullable=False),
        sa.Column("actual_type", sa.String(32), nullable=False),
        sa.Column("was_mined", sa.Boolean(), nullable=False),
        sa.Column("latency_ms", sa.Integer(), nullable=False),
        sa.Column("prediction_correct", sa.Boolean(), nullable=False),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("tx_hash"),
    )
    op.create_index("idx_analysis_metrics_predicted_type", "analysis_metrics", ["predicted_type"])
    op.create_index("idx_analysis_metrics_analyzed_at", "analysis_metrics", ["analyzed_at"])


def downgrade() -> None:
    op.drop_index("idx_analysis_metrics_analyzed_at", table_name="analysis_metrics")
    op.drop_index("idx_analysis_metrics_predicted_type", table_name="analysis_metrics")
    op.drop_table("analysis_metrics")

    op.drop_index("idx_mined_transactions_block_number", table_name="mined_transactions")
    op.drop_table("mined_transactions")

    op.drop_index("idx_transaction_classifications_classified_at", table_name="transaction_classifications")
    op.drop_index("idx_transaction_classifications_type", table_name="transaction_classifications")
    op.drop_table("transaction_classifications")

    op.drop_index("idx_pending_transactions_recipient", table_name="pending_transactions")
    op.drop_index("idx_pending_transactions_detected_at", table_name="pending_transactions")
    op.drop_table("pending_transactions")
