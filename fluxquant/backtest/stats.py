"""Backtest statistics — pure functions for trade and equity-curve analysis."""

import math
from typing import Optional

from fluxquant.backtest.models import Trade


def calculate_stats(
    trades: list[Trade],
    equity_values: list[float],
    initial_capital: float,
    periods_per_year: int = 252,
) -> dict:
    """Compute summary statistics for one replay.

    Args:
        trades: Closed trades, in time order.
        equity_values: Equity at every bar close, starting with the
            initial capital.
        initial_capital: Starting equity.
        periods_per_year: Annualisation factor for the Sharpe ratio.

    Returns:
        Dict with ``total_trades``, ``winning_trades``, ``losing_trades``,
        ``win_rate`` (0–100), ``average_win``, ``average_loss``,
        ``profit_factor``, ``total_return_percent``, ``max_drawdown``
        (non-negative %), ``sharpe_ratio`` and ``final_capital``.
    """
    pnls = [t.pnl_percent for t in trades]
    total = len(pnls)
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    profit_factor: Optional[float] = (
        gross_profit / gross_loss if gross_loss > 0 else None
    )

    final_capital = equity_values[-1] if equity_values else initial_capital

    return {
        "total_trades": total,
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "win_rate": 100.0 * len(winners) / total if total else 0.0,
        "average_win": gross_profit / len(winners) if winners else 0.0,
        "average_loss": gross_loss / len(losers) if losers else 0.0,
        "profit_factor": profit_factor,
        "total_return_percent": (final_capital / initial_capital - 1.0) * 100.0,
        "max_drawdown": _max_drawdown_pct(equity_values),
        "sharpe_ratio": _sharpe(period_returns(equity_values), periods_per_year),
        "final_capital": final_capital,
    }


# ── Helpers ──────────────────────────────────────────────────────────────


def period_returns(equity_values: list[float]) -> list[float]:
    """Bar-to-bar simple returns of an equity curve.  A zero base yields 0."""
    returns: list[float] = []
    for prev, cur in zip(equity_values, equity_values[1:]):
        returns.append((cur - prev) / prev if prev > 0 else 0.0)
    return returns


def _sharpe(returns: list[float], periods_per_year: int = 252) -> float:
    """Annualised Sharpe ratio from a series of period returns.

    Uses sample standard deviation (n − 1).  Returns 0.0 when the series
    has fewer than 2 observations or zero variance.
    """
    n = len(returns)
    if n < 2:
        return 0.0
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / (n - 1)
    std = math.sqrt(variance)
    if std == 0 or not math.isfinite(std):
        return 0.0
    return (mean / std) * math.sqrt(periods_per_year)


def _max_drawdown_pct(equity_values: list[float]) -> float:
    """Largest peak-to-trough decline of the equity curve, as a positive %."""
    peak = 0.0
    max_dd = 0.0
    for value in equity_values:
        if value > peak:
            peak = value
        if peak > 0:
            dd = (peak - value) / peak
            if dd > max_dd:
                max_dd = dd
    return max_dd * 100.0
