"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from mempool_tracker.classifier.models import Classification
from mempool_tracker.correlator.models import Metric, MinedOutcome
from mempool_tracker.ingestor.models import PendingObservation

UNISWAP_V2_ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
UNISWAP_V2_FACTORY = "0x5c69bee701ef814a2b6a3edd4b1652cb9cc5aa6f"


def word(address_or_int: str | int) -> str:
    """ABI-encode one argument as a 32-byte hex word (no 0x)."""
    if isinstance(address_or_int, int):
        return format(address_or_int, "064x")
    return address_or_int.lower().removeprefix("0x").rjust(64, "0")


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


class MemorySink:
    """In-memory StoreSink with first-write-wins semantics."""

    def __init__(self) -> None:
        self.pending: dict[str, PendingObservation] = {}
        self.classifications: dict[str, Classification] = {}
        self.mined: dict[str, MinedOutcome] = {}
        self.metrics: dict[str, Metric] = {}

    @staticmethod
    def _put(table: dict, key: str, value: object) -> bool:
        key = key.lower()
        if key in table:
            return False
        table[key] = value
        return True

    async def save_pending(self, observation: PendingObservation) -> bool:
        return self._put(self.pending, observation.tx_hash, observation)

    async def save_classification(self, classification: Classification) -> bool:
        return self._put(self.classifications, classification.tx_hash, classification)

    async def save_mined(self, outcome: MinedOutcome) -> bool:
        return self._put(self.mined, outcome.tx_hash, outcome)

    async def save_metric(self, metric: Metric) -> bool:
        return self._put(self.metrics, metric.tx_hash, metric)

    async def get_pending(self, tx_hash: str) -> PendingObservation | None:
        return self.pending.get(tx_hash.lower())

    async def get_classification(self, tx_hash: str) -> Classification | None:
        return self.classifications.get(tx_hash.lower())

    async def get_mined(self, tx_hash: str) -> MinedOutcome | None:
        return self.mined.get(tx_hash.lower())

    async def get_metric(self, tx_hash: str) -> Metric | None:
        return self.metrics.get(tx_hash.lower())


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def swap_call_data() -> str:
    """swapExactTokensForTokens(amountIn, amountOutMin, path, to, deadline) head."""
    return "0x38ed1739" + word(10**18) + word(5) + word(0xA0) + word("0x" + "ab" * 20) + word(1_700_000_000)


@pytest.fixture
def sample_observation() -> PendingObservation:
    return PendingObservation.from_transaction(
        {
            "hash": tx_hash(1),
            "from": "0x" + "11" * 20,
            "to": UNISWAP_V2_ROUTER,
            "value": 0,
            "gas": 250_000,
            "gasPrice": 30 * 10**9,
            "input": "0x38ed1739",
            "nonce": 7,
        },
        detected_at=datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC),
    )
