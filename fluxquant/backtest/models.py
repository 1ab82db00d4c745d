"""Backtest data models — trades, per-symbol results, and batch outcomes."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Trade:
    """A closed round-trip produced by one replay."""

    entry_time: datetime
    exit_time: datetime
    entry_price: float
    exit_price: float
    side: int  # +1 long, -1 short
    pnl_percent: float
    exit_reason: str
    holding_days: int
    commission: float = 0.0

    def to_dict(self) -> dict:
        return {
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "side": "long" if self.side > 0 else "short",
            "pnl_percent": round(self.pnl_percent, 4),
            "exit_reason": self.exit_reason,
            "holding_days": self.holding_days,
            "commission": round(self.commission, 4),
        }


@dataclass(frozen=True)
class BacktestResult:
    """Summary of one replay.  Every metric derives from ``trades`` and the equity curve."""

    symbol: str
    strategy_name: str
    start_date: Optional[str]
    end_date: Optional[str]
    trades: list[Trade]
    total_return_percent: float
    total_trades: int
    win_rate: float
    max_drawdown: float
    sharpe_ratio: float
    initial_capital: float = 0.0
    final_capital: float = 0.0
    winning_trades: int = 0
    losing_trades: int = 0
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: Optional[float] = None
    equity_curve: list[tuple[datetime, float]] = field(default_factory=list)

    def to_dict(self, include_curve: bool = False) -> dict:
        data = {
            "symbol": self.symbol,
            "strategy_name": self.strategy_name,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "total_return_percent": round(self.total_return_percent, 4),
            "total_trades": self.total_trades,
            "win_rate": round(self.win_rate, 4),
            "max_drawdown": round(self.max_drawdown, 4),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
            "initial_capital": self.initial_capital,
            "final_capital": round(self.final_capital, 2),
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "average_win": round(self.average_win, 4),
            "average_loss": round(self.average_loss, 4),
            "profit_factor": (
                round(self.profit_factor, 4) if self.profit_factor is not None else None
            ),
            "trades": [t.to_dict() for t in self.trades],
        }
        if include_curve:
            data["equity_curve"] = [
                {"date": ts.isoformat(), "value": round(v, 2)} for ts, v in self.equity_curve
            ]
        return data


@dataclass(frozen=True)
class SymbolFailure:
    """A symbol that could not be backtested or scanned."""

    symbol: str
    reason: str
    rate_limited: bool = False
    network_unavailable: bool = False

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "reason": self.reason,
            "rate_limited": self.rate_limited,
            "network_unavailable": self.network_unavailable,
        }


@dataclass(frozen=True)
class BatchResult:
    """Outcome of ``run_multi_symbol``: successes plus per-symbol failures."""

    results: list[BacktestResult]
    failures: list[SymbolFailure]

    @property
    def total_failure(self) -> bool:
        """``True`` when nothing succeeded and something failed."""
        return not self.results and bool(self.failures)

    def sorted_by(self, key: str = "total_return_percent", descending: bool = True) -> list[BacktestResult]:
        """Results ordered by any numeric ``BacktestResult`` field."""
        return sorted(self.results, key=lambda r: getattr(r, key), reverse=descending)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "failures": [f.to_dict() for f in self.failures],
            "succeeded": len(self.results),
            "failed": len(self.failures),
        }
