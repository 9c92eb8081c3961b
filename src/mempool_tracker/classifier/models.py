"""Data models for the classifier module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class TransactionType(str, Enum):
    """Semantic intent of a transaction."""

    CONTRACT_DEPLOY = "contract_deploy"
    ADD_LIQUIDITY = "add_liquidity"
    CREATE_PAIR = "create_pair"
    SWAP = "swap"
    TOKEN_TRANSFER = "token_transfer"
    TOKEN_APPROVAL = "token_approval"
    TOKEN_MINT = "token_mint"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> TransactionType:
        """Map a stored string back to a member, falling back to UNKNOWN."""
        if value is None:
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Classification:
    """Predicted intent of a pending transaction.

    Attributes:
        tx_hash: Transaction hash (empty until bound to a transaction).
        type: Predicted transaction type.
        confidence: Confidence score (0.0 to 1.0).
        method_signature: 4-byte selector as ``0x``-prefixed hex, if any.
        router_address: Known DEX router the transaction targets, if any.
        tokens_involved: Up to five candidate token addresses from call data.
        metadata: Free-form details (router name, chain, method name...).
        classified_at: When the classification was produced.
    """

    type: TransactionType
    confidence: float
    method_signature: str | None = None
    router_address: str | None = None
    tokens_involved: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    tx_hash: str = ""
    classified_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    def for_transaction(self, tx_hash: str) -> Classification:
        """Return a copy bound to ``tx_hash``."""
        return Classification(
            type=self.type,
            confidence=self.confidence,
            method_signature=self.method_signature,
            router_address=self.router_address,
            tokens_involved=self.tokens_involved,
            metadata=dict(self.metadata),
            tx_hash=tx_hash.lower(),
            classified_at=self.classified_at,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "tx_hash": self.tx_hash,
            "type": self.type.value,
            "confidence": self.confidence,
            "method_signature": self.method_signature,
            "router_address": self.router_address,
            "tokens_involved": list(self.tokens_involved),
            "metadata": self.metadata,
            "classified_at": self.classified_at.isoformat(),
        }
