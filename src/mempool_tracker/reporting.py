"""Plain-text operator report built from the analytics aggregates."""

from __future__ import annotations

from collections.abc import Sequence

from mempool_tracker.storage.analytics import AnalyticsSummary, RecentTransaction

RULE = "=" * 80


def _format_recent(tx: RecentTransaction) -> list[str]:
    detected = tx.detected_at.isoformat() if tx.detected_at else "unknown"
    lines = [
        f"[{detected}] {tx.tx_hash}",
        f"  Type: {tx.classification_type}",
        f"  Confidence: {tx.confidence * 100:.1f}%",
        f"  Method: {tx.method_signature or 'N/A'}",
    ]
    if tx.router_address:
        router_name = tx.metadata.get("router")
        suffix = f" ({router_name})" if router_name else ""
        lines.append(f"  Router: {tx.router_address}{suffix}")
    if tx.was_mined is None:
        lines.append("  Status: PENDING")
    else:
        lines.append(f"  Status: {'MINED' if tx.was_mined else 'UNMINED'}")
        if tx.latency_ms is not None:
            lines.append(f"  Latency: {tx.latency_ms}ms ({tx.latency_ms / 1000:.2f}s in mempool)")
    return lines


def format_report(summary: AnalyticsSummary, recent: Sequence[RecentTransaction] = ()) -> str:
    """Render the summary and recent transactions as a text report."""
    lines = [RULE, "MEMPOOL MONITORING REPORT", RULE, ""]

    lines.append("--- SUMMARY STATISTICS ---")
    lines.append(f"Total Transactions Detected: {summary.total_pending}")
    lines.append(f"Total Transactions Mined: {summary.total_mined}")
    lines.append(f"Total Predictions Verified: {summary.total_analyzed}")
    lines.append(f"Accuracy: {summary.accuracy:.2f}%")
    lines.append(f"Average Latency: {summary.avg_latency_ms}ms")
    lines.append(f"Hot Transactions: {summary.hot_transactions}")
    lines.append("")

    lines.append("--- TYPE DISTRIBUTION ---")
    if summary.type_breakdown:
        for tx_type, count in sorted(summary.type_breakdown.items(), key=lambda kv: (-kv[1], kv[0])):
            lines.append(f"  {tx_type:<16} {count}")
    else:
        lines.append("  (no classifications yet)")
    lines.append("")

    lines.append("--- ACCURACY BY TYPE ---")
    if summary.accuracy_by_type:
        for tx_type, stats in sorted(summary.accuracy_by_type.items()):
            lines.append(f"  {tx_type:<16} {stats.correct}/{stats.total} ({stats.accuracy:.1f}%)")
    else:
        lines.append("  (no verified predictions yet)")
    lines.append("")

    if recent:
        lines.append("--- RECENT TRANSACTIONS ---")
        for tx in recent:
            lines.extend(_format_recent(tx))
            lines.append("")

    lines.append(RULE)
    return "\n".join(lines)
