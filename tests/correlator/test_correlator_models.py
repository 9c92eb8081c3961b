"""Tests for correlator data models."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from hexbytes import HexBytes

from mempool_tracker.classifier.models import TransactionType
from mempool_tracker.correlator.models import (
    EventLog,
    Metric,
    MinedOutcome,
    ReceiptStatus,
    logs_from_dicts,
)

MINED_AT = datetime(2026, 1, 1, 12, 0, 12, tzinfo=UTC)


class TestEventLog:
    def test_from_receipt_log_normalizes_hex(self):
        log = EventLog.from_receipt_log(
            {
                "address": "0xABCDEF0000000000000000000000000000000001",
                "topics": [HexBytes("0x" + "AA" * 32)],
                "data": HexBytes("0x01"),
            }
        )

        assert log.address == "0xabcdef0000000000000000000000000000000001"
        assert log.topics == ("0x" + "aa" * 32,)
        assert log.data == "0x01"
        assert log.first_topic == "0x" + "aa" * 32

    def test_anonymous_log_has_no_first_topic(self):
        log = EventLog.from_receipt_log({"address": "0x1", "topics": []})

        assert log.first_topic is None
        assert log.data == "0x"

    def test_dict_form_survives_storage(self):
        log = EventLog(address="0x1", topics=("0xaa", "0xbb"), data="0x")

        assert logs_from_dicts([log.to_dict()]) == (log,)
        assert logs_from_dicts(None) == ()


class TestMinedOutcome:
    """Tests for building outcomes from receipts."""

    def test_from_web3_receipt(self):
        outcome = MinedOutcome.from_receipt(
            {
                "transactionHash": HexBytes("0x" + "12" * 32),
                "blockNumber": 100,
                "transactionIndex": 3,
                "status": 1,
                "gasUsed": 21000,
                "effectiveGasPrice": 30 * 10**9,
                "logs": [],
            },
            block_hash="0xbb",
            mined_at=MINED_AT,
        )

        assert outcome.tx_hash == "0x" + "12" * 32
        assert outcome.block_number == 100
        assert outcome.transaction_index == 3
        assert outcome.status is ReceiptStatus.SUCCESS
        assert outcome.succeeded
        assert outcome.gas_used == Decimal(21000)
        assert outcome.effective_gas_price == Decimal(30 * 10**9)

    def test_raw_receipt_with_gaps(self):
        outcome = MinedOutcome.from_receipt(
            {"status": "0x0", "gasUsed": "0x5208"},
            block_hash="0xbb",
            mined_at=MINED_AT,
            tx_hash="0xABC",
            block_number=7,
        )

        assert outcome.tx_hash == "0xabc"
        assert outcome.block_number == 7
        assert outcome.status is ReceiptStatus.FAILURE
        assert not outcome.succeeded
        assert outcome.gas_used == Decimal(21000)
        assert outcome.effective_gas_price == Decimal(0)


class TestMetric:
    def test_to_dict_and_seconds(self):
        metric = Metric(
            tx_hash="0x1",
            predicted_type=TransactionType.SWAP,
            actual_type=TransactionType.CREATE_PAIR,
            was_mined=True,
            latency_ms=1500,
            prediction_correct=False,
            analyzed_at=MINED_AT,
        )

        assert metric.mempool_time_seconds == 1.5
        assert metric.to_dict() == {
            "tx_hash": "0x1",
            "predicted_type": "swap",
            "actual_type": "create_pair",
            "was_mined": True,
            "latency_ms": 1500,
            "prediction_correct": False,
            "analyzed_at": MINED_AT.isoformat(),
        }
