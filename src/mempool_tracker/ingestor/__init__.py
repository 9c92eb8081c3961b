"""Data ingestion layer - Node subscription, lookups and dedup."""

from mempool_tracker.ingestor.dedup import DedupCache, RedisDedupCache
from mempool_tracker.ingestor.models import PendingObservation
from mempool_tracker.ingestor.node_client import NodeClient, NodeClientError, NodeRPCError
from mempool_tracker.ingestor.retry import RetryPolicy

__all__ = [
    "DedupCache",
    "NodeClient",
    "NodeClientError",
    "NodeRPCError",
    "PendingObservation",
    "RedisDedupCache",
    "RetryPolicy",
]
