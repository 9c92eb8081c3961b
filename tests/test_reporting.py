"""Tests for the operator report and command line parser."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mempool_tracker.__main__ import build_parser, main, run_monitor
from mempool_tracker.ingestor.subscription import ReconnectExhaustedError
from mempool_tracker.reporting import format_report
from mempool_tracker.storage.analytics import AnalyticsSummary, RecentTransaction, TypeAccuracy


@pytest.fixture
def summary() -> AnalyticsSummary:
    return AnalyticsSummary(
        total_pending=10,
        total_mined=6,
        total_analyzed=4,
        avg_latency_ms=2333,
        accuracy=75.0,
        hot_transactions=2,
        type_breakdown={"swap": 6, "contract_deploy": 2, "create_pair": 2},
        accuracy_by_type={"swap": TypeAccuracy(correct=2, total=3), "create_pair": TypeAccuracy(1, 1)},
    )


class TestFormatReport:
    """Tests for format_report."""

    def test_empty_summary_has_placeholders(self):
        report = format_report(AnalyticsSummary())

        assert "--- SUMMARY STATISTICS ---" in report
        assert "Total Transactions Detected: 0" in report
        assert "Accuracy: 0.00%" in report
        assert "(no classifications yet)" in report
        assert "(no verified predictions yet)" in report
        assert "RECENT TRANSACTIONS" not in report

    def test_populated_sections(self, summary):
        report = format_report(summary)

        assert "Average Latency: 2333ms" in report
        assert "Hot Transactions: 2" in report
        assert "2/3 (66.7%)" in report
        # Largest type first, ties by name.
        lines = report.splitlines()
        start = lines.index("--- TYPE DISTRIBUTION ---") + 1
        distribution = lines[start : start + 3]
        assert [line.split()[0] for line in distribution] == ["swap", "contract_deploy", "create_pair"]

    def test_recent_transactions(self, summary):
        recent = [
            RecentTransaction(
                tx_hash="0xaaa",
                classification_type="swap",
                confidence=0.9,
                detected_at=datetime(2026, 1, 1, 12, 0, tzinfo=UTC),
                router_address="0xrouter",
                method_signature="0x38ed1739",
                metadata={"router": "Uniswap V2"},
                was_mined=True,
                latency_ms=1500,
            ),
            RecentTransaction(
                tx_hash="0xbbb",
                classification_type="unknown",
                confidence=0.2,
                detected_at=None,
                router_address=None,
                method_signature=None,
                metadata={},
            ),
        ]

        report = format_report(summary, recent)

        assert "--- RECENT TRANSACTIONS ---" in report
        assert "[2026-01-01T12:00:00+00:00] 0xaaa" in report
        assert "Confidence: 90.0%" in report
        assert "Router: 0xrouter (Uniswap V2)" in report
        assert "Latency: 1500ms (1.50s in mempool)" in report
        assert "[unknown] 0xbbb" in report
        assert "Method: N/A" in report
        assert "Status: PENDING" in report


class TestCommandLine:
    """Tests for the argparse entry point."""

    def test_run_flags(self):
        parser = build_parser()

        assert parser.parse_args(["run"]).dry_run is None
        assert parser.parse_args(["run", "--dry-run"]).dry_run is True

    def test_report_limit(self):
        parser = build_parser()

        assert parser.parse_args(["report"]).limit == 20
        assert parser.parse_args(["report", "--limit", "5"]).limit == 5

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_main_dispatches_report(self):
        settings = MagicMock()
        settings.get_logging_level.return_value = 20
        with (
            patch("mempool_tracker.__main__.get_settings", return_value=settings),
            patch("mempool_tracker.__main__.configure_logging"),
            patch("mempool_tracker.__main__.print_report", new_callable=AsyncMock, return_value=0) as report,
        ):
            assert main(["report", "--limit", "3"]) == 0

        report.assert_awaited_once_with(settings, limit=3)

    @pytest.mark.asyncio
    async def test_run_monitor_exit_code_on_give_up(self):
        settings = MagicMock()
        with patch("mempool_tracker.__main__.Pipeline") as pipeline_cls:
            pipeline_cls.return_value.run = AsyncMock(side_effect=ReconnectExhaustedError("gave up"))

            assert await run_monitor(settings, dry_run=True) == 1

        settings.validate_requirements.assert_called_once()
        pipeline_cls.assert_called_once_with(settings, dry_run=True)
