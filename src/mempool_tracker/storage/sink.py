"""Store sink used by the pipeline and the block correlator.

The sink is the only state shared between concurrently running handlers.
Each call opens its own short session, so handlers never share a session.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from mempool_tracker.storage.repos import (
    ClassificationRepository,
    MetricRepository,
    MinedTransactionRepository,
    PendingTransactionRepository,
)

if TYPE_CHECKING:
    from mempool_tracker.classifier.models import Classification
    from mempool_tracker.correlator.models import Metric, MinedOutcome
    from mempool_tracker.ingestor.models import PendingObservation
    from mempool_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class StoreSink(Protocol):
    """Idempotent keyed-by-hash store.

    The ``save_*`` methods return True when a new record was written and
    False when the hash was already present. A duplicate is not an error.
    """

    async def save_pending(self, observation: PendingObservation) -> bool: ...

    async def save_classification(self, classification: Classification) -> bool: ...

    async def save_mined(self, outcome: MinedOutcome) -> bool: ...

    async def save_metric(self, metric: Metric) -> bool: ...

    async def get_pending(self, tx_hash: str) -> PendingObservation | None: ...

    async def get_classification(self, tx_hash: str) -> Classification | None: ...

    async def get_mined(self, tx_hash: str) -> MinedOutcome | None: ...

    async def get_metric(self, tx_hash: str) -> Metric | None: ...


class SqlStoreSink:
    """``StoreSink`` backed by the SQLAlchemy repositories."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    async def save_pending(self, observation: PendingObservation) -> bool:
        async with self._db.session() as session:
            written = await PendingTransactionRepository(session).insert_if_absent(observation)
        if not written:
            logger.debug("Pending transaction already stored: %s", observation.tx_hash)
        return written

    async def save_classification(self, classification: Classification) -> bool:
        async with self._db.session() as session:
            written = await ClassificationRepository(session).insert_if_absent(classification)
        if not written:
            logger.debug("Classification already stored: %s", classification.tx_hash)
        return written

    async def save_mined(self, outcome: MinedOutcome) -> bool:
        async with self._db.session() as session:
            return await MinedTransactionRepository(session).insert_if_absent(outcome)

    async def save_metric(self, metric: Metric) -> bool:
        async with self._db.session() as session:
            return await MetricRepository(session).insert_if_absent(metric)

    async def get_pending(self, tx_hash: str) -> PendingObservation | None:
        async with self._db.session() as session:
            return await PendingTransactionRepository(session).get_by_hash(tx_hash)

    async def get_classification(self, tx_hash: str) -> Classification | None:
        async with self._db.session() as session:
            return await ClassificationRepository(session).get_by_hash(tx_hash)

    async def get_mined(self, tx_hash: str) -> MinedOutcome | None:
        async with self._db.session() as session:
            return await MinedTransactionRepository(session).get_by_hash(tx_hash)

    async def get_metric(self, tx_hash: str) -> Metric | None:
        async with self._db.session() as session:
            return await MetricRepository(session).get_by_hash(tx_hash)
