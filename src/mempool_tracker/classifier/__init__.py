"""Classification layer - Transaction intent heuristics."""

from mempool_tracker.classifier.classifier import Route, TransactionClassifier
from mempool_tracker.classifier.models import Classification, TransactionType

__all__ = [
    "Classification",
    "Route",
    "TransactionClassifier",
    "TransactionType",
]
