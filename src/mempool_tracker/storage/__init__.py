"""Storage layer - Database schemas, repositories and the store sink."""

from mempool_tracker.storage.analytics import (
    AnalyticsRepository,
    AnalyticsSummary,
    RecentTransaction,
    TypeAccuracy,
)
from mempool_tracker.storage.database import DatabaseManager, engine_options, to_async_url
from mempool_tracker.storage.models import (
    AnalysisMetricModel,
    Base,
    MinedTransactionModel,
    PendingTransactionModel,
    TransactionClassificationModel,
)
from mempool_tracker.storage.repos import (
    ClassificationRepository,
    MetricRepository,
    MinedTransactionRepository,
    PendingTransactionRepository,
)
from mempool_tracker.storage.sink import SqlStoreSink, StoreSink

__all__ = [
    "AnalysisMetricModel",
    "AnalyticsRepository",
    "AnalyticsSummary",
    "Base",
    "ClassificationRepository",
    "DatabaseManager",
    "MetricRepository",
    "MinedTransactionModel",
    "MinedTransactionRepository",
    "PendingTransactionModel",
    "PendingTransactionRepository",
    "RecentTransaction",
    "SqlStoreSink",
    "StoreSink",
    "TransactionClassificationModel",
    "TypeAccuracy",
    "engine_options",
    "to_async_url",
]
