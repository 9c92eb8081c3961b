"""Data models for node ingestion.

Web3 returns ``AttributeDict`` objects holding ``HexBytes`` values; the helpers
here normalize them into plain lower-case hex strings and ints so downstream
code never touches provider types.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any


def to_hex(value: Any) -> str:
    """Render bytes-like or string values as lower-case ``0x`` hex."""
    if value is None:
        return "0x"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def to_int(value: Any, default: int = 0) -> int:
    """Parse ints that may arrive as hex strings (raw JSON-RPC) or ints (web3)."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(to_int(value))


def to_address(value: Any) -> str | None:
    if not value:
        return None
    return str(value).lower()


@dataclass(frozen=True)
class PendingObservation:
    """A transaction seen in the mempool, recorded once per hash.

    Attributes:
        tx_hash: Transaction hash (lower-case hex).
        sender: ``from`` address.
        recipient: ``to`` address, None for contract creation.
        value: Transferred value in wei.
        gas_limit: Gas limit.
        gas_price: Legacy gas price in wei, if set.
        max_fee_per_gas: EIP-1559 fee cap in wei, if set.
        max_priority_fee_per_gas: EIP-1559 tip in wei, if set.
        call_data: Input data as hex.
        nonce: Sender nonce.
        detected_at: When the monitor first fetched the transaction.
    """

    tx_hash: str
    sender: str
    recipient: str | None
    value: Decimal
    gas_limit: Decimal
    call_data: str
    nonce: int
    gas_price: Decimal | None = None
    max_fee_per_gas: Decimal | None = None
    max_priority_fee_per_gas: Decimal | None = None
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_contract_creation(self) -> bool:
        return self.recipient is None

    @classmethod
    def from_transaction(
        cls,
        tx: Mapping[str, Any],
        *,
        detected_at: datetime | None = None,
    ) -> PendingObservation:
        """Build an observation from a web3 / JSON-RPC transaction object.

        Args:
            tx: Transaction mapping as returned by ``eth_getTransactionByHash``.
            detected_at: Detection time; defaults to now.

        Raises:
            ValueError: If the transaction carries no hash.
        """
        raw_hash = tx.get("hash")
        if not raw_hash:
            raise ValueError("Transaction has no hash")
        return cls(
            tx_hash=to_hex(raw_hash),
            sender=to_address(tx.get("from")) or "0x0",
            recipient=to_address(tx.get("to")),
            value=to_decimal(tx.get("value")) or Decimal(0),
            gas_limit=to_decimal(tx.get("gas")) or Decimal(0),
            gas_price=to_decimal(tx.get("gasPrice")),
            max_fee_per_gas=to_decimal(tx.get("maxFeePerGas")),
            max_priority_fee_per_gas=to_decimal(tx.get("maxPriorityFeePerGas")),
            call_data=to_hex(tx.get("input") or tx.get("data") or "0x"),
            nonce=to_int(tx.get("nonce")),
            detected_at=detected_at or datetime.now(UTC),
        )
