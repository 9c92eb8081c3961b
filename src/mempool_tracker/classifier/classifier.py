"""Heuristic transaction intent classifier.

Classification runs a fixed decision table, evaluated in strict priority
order:

1. No recipient: contract deployment.
2. Recipient is a known DEX router: classify by selector, router metadata.
3. Recipient is a known DEX factory: classify by selector, default create_pair.
4. Anything else: global selector lookup.

The classifier only reads the static registry and holds no state, so one
instance can be shared by every handler.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from enum import Enum

from mempool_tracker.classifier.models import Classification, TransactionType
from mempool_tracker.classifier.registry import (
    CONSTRUCTOR_PREAMBLE,
    lookup_factory,
    lookup_method,
    lookup_router,
)

logger = logging.getLogger(__name__)

MAX_TOKENS = 5
SELECTOR_HEX_LENGTH = 10  # "0x" + 4 bytes
WORD_HEX_LENGTH = 64
HEX_WORD = re.compile(r"[0-9a-f]{64}")
ADDRESS_HEX_LENGTH = 40

DEPLOY_CONFIDENCE_WITH_PREAMBLE = 0.95
DEPLOY_CONFIDENCE = 0.85
ROUTER_CONFIDENCE = 0.9
ROUTER_UNKNOWN_METHOD_CONFIDENCE = 0.3
FACTORY_CONFIDENCE = 0.85
SELECTOR_CONFIDENCE = 0.6
UNKNOWN_CONFIDENCE = 0.2

ROUTER_BONUS = 1.5

# Base "interest" weight per type for the hot-transaction score.
TYPE_WEIGHTS: dict[TransactionType, float] = {
    TransactionType.CONTRACT_DEPLOY: 10,
    TransactionType.ADD_LIQUIDITY: 9,
    TransactionType.CREATE_PAIR: 9,
    TransactionType.TOKEN_MINT: 8,
    TransactionType.SWAP: 5,
    TransactionType.TOKEN_TRANSFER: 2,
    TransactionType.TOKEN_APPROVAL: 1,
    TransactionType.UNKNOWN: 0,
}
# Upper bound of hot_score: heaviest type, full confidence, router bonus.
MAX_HOT_SCORE = max(TYPE_WEIGHTS.values()) * ROUTER_BONUS


class Route(Enum):
    """Branches of the classification decision table."""

    DEPLOY = "deploy"
    KNOWN_ROUTER = "known_router"
    KNOWN_FACTORY = "known_factory"
    SELECTOR_FALLBACK = "selector_fallback"


def normalize_call_data(call_data: str | bytes | None) -> str:
    """Return call data as lower-case ``0x``-prefixed hex."""
    if call_data is None:
        return "0x"
    if isinstance(call_data, (bytes, bytearray, memoryview)):
        return "0x" + bytes(call_data).hex()
    text = str(call_data).strip().lower()
    if not text.startswith("0x"):
        text = "0x" + text
    return text


def extract_selector(call_data: str) -> str | None:
    """Return the 4-byte method selector, or None when call data is too short."""
    if len(call_data) < SELECTOR_HEX_LENGTH:
        return None
    return call_data[:SELECTOR_HEX_LENGTH]


def extract_token_addresses(call_data: str, *, limit: int = MAX_TOKENS) -> tuple[str, ...]:
    """Pull plausible addresses out of ABI-encoded arguments.

    Walks the 32-byte words that follow the selector. A word counts as an
    address when its upper 12 bytes are zero and the remaining 20 are not.
    This is not an ABI decode: amounts that happen to fit in 160 bits are
    picked up too.
    """
    body = call_data[SELECTOR_HEX_LENGTH:]
    tokens: list[str] = []
    for start in range(0, len(body) - WORD_HEX_LENGTH + 1, WORD_HEX_LENGTH):
        word = body[start : start + WORD_HEX_LENGTH]
        if not HEX_WORD.fullmatch(word):
            return tuple(tokens)
        padding, tail = word[:-ADDRESS_HEX_LENGTH], word[-ADDRESS_HEX_LENGTH:]
        if set(padding) != {"0"} or set(tail) == {"0"}:
            continue
        address = "0x" + tail
        if address not in tokens:
            tokens.append(address)
            if len(tokens) >= limit:
                break
    return tuple(tokens)


class TransactionClassifier:
    """Infer transaction intent from recipient address and call data.

    Example:
        ```python
        classifier = TransactionClassifier()
        result = classifier.classify(
            "0x7a250d5630b4cf539739df2c5dacb4c659f2488d",
            "0x38ed1739...",
        )
        assert result.type is TransactionType.SWAP
        ```
    """

    def __init__(self) -> None:
        self._handlers: dict[Route, Callable[[str | None, str], Classification]] = {
            Route.DEPLOY: self._classify_deploy,
            Route.KNOWN_ROUTER: self._classify_router,
            Route.KNOWN_FACTORY: self._classify_factory,
            Route.SELECTOR_FALLBACK: self._classify_by_selector,
        }

    @staticmethod
    def route(recipient: str | None) -> Route:
        """Pick the decision-table branch for ``recipient``."""
        if not recipient:
            return Route.DEPLOY
        if lookup_router(recipient) is not None:
            return Route.KNOWN_ROUTER
        if lookup_factory(recipient) is not None:
            return Route.KNOWN_FACTORY
        return Route.SELECTOR_FALLBACK

    def classify(self, recipient: str | None, call_data: str | bytes | None) -> Classification:
        """Classify a transaction.

        Args:
            recipient: Target address, or None for contract creation.
            call_data: Transaction input as hex string or bytes.

        Returns:
            Classification with confidence in [0, 1].
        """
        data = normalize_call_data(call_data)
        address = recipient.lower() if recipient else None
        return self._handlers[self.route(address)](address, data)

    def _classify_deploy(self, recipient: str | None, data: str) -> Classification:
        has_preamble = len(data) > SELECTOR_HEX_LENGTH and data.startswith(CONSTRUCTOR_PREAMBLE)
        return Classification(
            type=TransactionType.CONTRACT_DEPLOY,
            confidence=DEPLOY_CONFIDENCE_WITH_PREAMBLE if has_preamble else DEPLOY_CONFIDENCE,
            method_signature=extract_selector(data),
            metadata={
                "bytecode_length": len(data),
                "likely_constructor": has_preamble,
            },
        )

    def _classify_router(self, recipient: str | None, data: str) -> Classification:
        router = lookup_router(recipient)
        if router is None:
            return self._classify_by_selector(recipient, data)
        selector = extract_selector(data)
        method = lookup_method(selector)
        tokens = extract_token_addresses(data)

        if method is None:
            logger.debug("Unknown method %s on known router %s", selector, router.name)
            return Classification(
                type=TransactionType.UNKNOWN,
                confidence=ROUTER_UNKNOWN_METHOD_CONFIDENCE,
                method_signature=selector,
                router_address=recipient,
                tokens_involved=tokens,
                metadata={"router": router.name, "chain": router.chain},
            )

        return Classification(
            type=method.type,
            confidence=ROUTER_CONFIDENCE,
            method_signature=selector,
            router_address=recipient,
            tokens_involved=tokens,
            metadata={"method": method.name, "router": router.name, "chain": router.chain},
        )

    def _classify_factory(self, recipient: str | None, data: str) -> Classification:
        factory = lookup_factory(recipient)
        selector = extract_selector(data)
        method = lookup_method(selector)
        return Classification(
            type=method.type if method else TransactionType.CREATE_PAIR,
            confidence=FACTORY_CONFIDENCE,
            method_signature=selector,
            tokens_involved=extract_token_addresses(data),
            metadata={"factory": factory, "method": method.name if method else "Unknown"},
        )

    def _classify_by_selector(self, recipient: str | None, data: str) -> Classification:
        selector = extract_selector(data)
        method = lookup_method(selector)
        if method is None:
            return Classification(
                type=TransactionType.UNKNOWN,
                confidence=UNKNOWN_CONFIDENCE,
                method_signature=selector,
                metadata={"reason": "Unknown method signature"},
            )
        return Classification(
            type=method.type,
            confidence=SELECTOR_CONFIDENCE,
            method_signature=selector,
            tokens_involved=extract_token_addresses(data),
            metadata={"method": method.name},
        )

    @staticmethod
    def hot_score(classification: Classification) -> float:
        """Weighted interest score: type weight x confidence x router bonus."""
        base = TYPE_WEIGHTS.get(classification.type, 0)
        bonus = ROUTER_BONUS if classification.router_address else 1.0
        return base * classification.confidence * bonus
