"""CLI reporting — user-facing summaries for batch backtests, scans and key usage."""

from fluxquant.alerts.models import ScanReport
from fluxquant.backtest.models import BatchResult, SymbolFailure
from fluxquant.market.key_pool import UsageStatistics

RATE_LIMITED_MESSAGE = "Rate limited by every data provider; try again later."
NETWORK_MESSAGE = "Network unavailable: no data provider could be reached."


def failure_message(failures: list[SymbolFailure]) -> str:
    """Actionable message for a set of per-symbol failures."""
    if not failures:
        return ""
    if all(f.rate_limited for f in failures):
        return RATE_LIMITED_MESSAGE
    if all(f.network_unavailable for f in failures):
        return NETWORK_MESSAGE
    return f"{len(failures)} symbol(s) failed: " + ", ".join(f.symbol for f in failures)


def batch_summary(batch: BatchResult) -> dict:
    """JSON-ready summary of a multi-symbol backtest, best return first."""
    summary = batch.to_dict()
    summary["results"] = [r.to_dict() for r in batch.sorted_by("total_return_percent")]
    if batch.failures:
        summary["message"] = (
            failure_message(batch.failures)
            if batch.total_failure
            else f"{len(batch.results)} succeeded, {len(batch.failures)} failed"
        )
    return summary


def scan_summary(report: ScanReport) -> dict:
    summary = report.to_dict()
    if report.total_failure:
        summary["message"] = failure_message(report.failures)
    elif report.failures:
        summary["message"] = (
            f"Scanned {report.scanned}/{report.symbols} symbols; "
            f"{len(report.failures)} failed"
        )
    return summary


def format_key_usage(stats: UsageStatistics) -> str:
    """Console table of per-key usage."""
    lines = [
        "──────────────── Provider Key Usage ────────────────",
        f"  Keys:      {stats.active_keys}/{stats.total_keys} active",
        f"  Requests:  {stats.total_requests} used, {stats.available_requests} available",
        f"  Exhausted: {stats.exhaustion_events} event(s)",
    ]
    for d in stats.per_key_detail:
        state = "active" if d.is_active else "EXHAUSTED"
        lines.append(f"  {d.id:<20} {d.used:>5}/{d.limit:<5} {state}")
    lines.append("────────────────────────────────────────────────────")
    return "\n".join(lines)
