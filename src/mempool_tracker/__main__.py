"""Command line entry point.

Usage:
    python -m mempool_tracker run [--dry-run]
    python -m mempool_tracker init-db
    python -m mempool_tracker report [--limit N]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from mempool_tracker.config import Settings, get_settings
from mempool_tracker.ingestor.subscription import ReconnectExhaustedError
from mempool_tracker.pipeline import Pipeline
from mempool_tracker.reporting import format_report
from mempool_tracker.storage.analytics import AnalyticsRepository
from mempool_tracker.storage.database import DatabaseManager

logger = logging.getLogger("mempool_tracker")


def configure_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def run_monitor(settings: Settings, *, dry_run: bool | None) -> int:
    settings.validate_requirements()
    logger.info("Configuration: %s", settings.redacted_summary())
    pipeline = Pipeline(settings, dry_run=dry_run)
    try:
        await pipeline.run()
    except ReconnectExhaustedError as e:
        logger.critical("Monitor stopped: %s", e)
        return 1
    return 0


async def init_database(settings: Settings) -> int:
    db = DatabaseManager(settings.database.url)
    try:
        await db.create_schema()
    finally:
        await db.dispose()
    return 0


async def print_report(settings: Settings, *, limit: int) -> int:
    db = DatabaseManager(settings.database.url)
    try:
        async with db.session() as session:
            repo = AnalyticsRepository(session)
            summary = await repo.summary()
            recent = await repo.recent_transactions(limit=limit)
    finally:
        await db.dispose()
    print(format_report(summary, recent))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mempool_tracker",
        description="Classify pending transactions and verify predictions against mined blocks",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Monitor the mempool until interrupted")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Classify and log without persisting (overrides DRY_RUN)",
    )

    subparsers.add_parser("init-db", help="Create the database schema")

    report_parser = subparsers.add_parser("report", help="Print the analytics report")
    report_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of recent transactions to include (default: 20)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.get_logging_level())

    try:
        if args.command == "run":
            return asyncio.run(run_monitor(settings, dry_run=args.dry_run))
        if args.command == "init-db":
            return asyncio.run(init_database(settings))
        return asyncio.run(print_report(settings, limit=args.limit))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())
