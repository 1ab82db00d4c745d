"""Backtest engine — replays a price series through a strategy.

Iterates bars chronologically, evaluating the strategy's entry/exit flags
and simulating long trades with virtual equity.  No real orders are placed.
Entries and signal exits fill at the bar's close; stop-loss and take-profit
fill intrabar at their trigger level (or at the open on a gap through it).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from fluxquant.backtest.models import BacktestResult, BatchResult, SymbolFailure, Trade
from fluxquant.backtest.stats import calculate_stats
from fluxquant.errors import AllProvidersFailedError, FluxQuantError
from fluxquant.market.gateway import MarketDataGateway
from fluxquant.market.models import PricePoint, validate_series
from fluxquant.strategy.models import StrategyConfig
from fluxquant.strategy.registry import Strategy, get_strategy

logger = logging.getLogger("fluxquant.backtest")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BacktestSettings:
    """Capital and sizing knobs for a replay."""

    initial_capital: float = 10_000.0
    position_fraction: float = 1.0
    periods_per_year: int = 252
    request_delay_ms: int = 100
    commission: float = 0.0  # fixed fee per fill
    commission_percent: float = 0.0  # percent of notional per fill

    def __post_init__(self) -> None:
        if self.initial_capital <= 0:
            raise ValueError(f"initial_capital must be positive, got {self.initial_capital}")
        if not 0 < self.position_fraction <= 1:
            raise ValueError(
                f"position_fraction must be in (0, 1], got {self.position_fraction}"
            )
        if self.periods_per_year <= 0:
            raise ValueError(f"periods_per_year must be positive, got {self.periods_per_year}")
        if self.request_delay_ms < 0:
            raise ValueError(f"request_delay_ms must be >= 0, got {self.request_delay_ms}")
        if self.commission < 0:
            raise ValueError(f"commission must be >= 0, got {self.commission}")
        if not 0 <= self.commission_percent < 100:
            raise ValueError(
                f"commission_percent must be in [0, 100), got {self.commission_percent}"
            )

    def fee(self, notional: float) -> float:
        """Commission charged on one fill of *notional*."""
        return self.commission + notional * self.commission_percent / 100.0


@dataclass
class _Position:
    entry_index: int
    entry_price: float
    units: float
    cash: float
    cost: float  # cash committed at entry, fees included
    entry_fee: float


class BacktestEngine:
    """Runs strategies over historical data fetched through the gateway.

    Args:
        gateway: Source of historical price series.
        settings: Capital, sizing and annualisation knobs.
        sleep: Awaitable used for the inter-symbol delay (injectable for tests).
    """

    def __init__(
        self,
        gateway: Optional[MarketDataGateway] = None,
        settings: Optional[BacktestSettings] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._settings = settings or BacktestSettings()
        self._sleep = sleep

    @property
    def settings(self) -> BacktestSettings:
        return self._settings

    # ── Public API ───────────────────────────────────────────────────────

    async def run(
        self,
        symbol: str,
        strategy: Union[StrategyConfig, Strategy],
        period_days: int,
    ) -> BacktestResult:
        """Fetch *period_days* of history for *symbol* and replay it.

        Raises ``StrategyConfigError``/``UnknownStrategyError`` before any
        network call, and ``AllProvidersFailedError`` when no provider can
        serve the history.
        """
        rules = self._resolve(strategy)
        if period_days <= 0:
            raise ValueError(f"period_days must be positive, got {period_days}")
        if self._gateway is None:
            raise RuntimeError("BacktestEngine.run needs a MarketDataGateway")
        series = await self._gateway.fetch_historical(symbol, period_days)
        return self.replay(symbol, series, rules)

    async def run_multi_symbol(
        self,
        symbols: list[str],
        strategy: Union[StrategyConfig, Strategy],
        period_days: int,
    ) -> BatchResult:
        """Backtest each symbol sequentially, collecting per-symbol failures.

        A bad strategy config fails the whole call up front.  Provider and
        data failures for one symbol are recorded and the batch continues.
        """
        rules = self._resolve(strategy)
        if period_days <= 0:
            raise ValueError(f"period_days must be positive, got {period_days}")
        results: list[BacktestResult] = []
        failures: list[SymbolFailure] = []
        delay = self._settings.request_delay_ms / 1000.0

        for i, symbol in enumerate(symbols):
            if i > 0 and delay > 0:
                await self._sleep(delay)
            try:
                results.append(await self.run(symbol, rules, period_days))
            except AllProvidersFailedError as exc:
                logger.warning("Backtest %s skipped: %s", symbol, exc)
                failures.append(SymbolFailure(
                    symbol=symbol,
                    reason=str(exc),
                    rate_limited=exc.rate_limited,
                    network_unavailable=exc.network_unavailable,
                ))
            except (FluxQuantError, ValueError) as exc:
                logger.warning("Backtest %s failed: %s", symbol, exc)
                failures.append(SymbolFailure(symbol=symbol, reason=str(exc)))

        logger.info(
            "Batch backtest (%s): %d succeeded, %d failed",
            rules.name, len(results), len(failures),
        )
        return BatchResult(results=results, failures=failures)

    def replay(
        self,
        symbol: str,
        series: list[PricePoint],
        strategy: Union[StrategyConfig, Strategy],
    ) -> BacktestResult:
        """Replay *series* through *strategy*.  Pure: no I/O, no randomness.

        Args:
            symbol: Label carried into the result.
            series: Bars with strictly increasing timestamps.
            strategy: A ``StrategyConfig`` or an already-built ``Strategy``.

        Returns:
            A ``BacktestResult`` whose metrics derive from its trades and
            the bar-by-bar equity curve.
        """
        rules = self._resolve(strategy)
        validate_series(series)
        settings = self._settings

        entry_flags, exit_flags = rules.signals(series)

        equity = settings.initial_capital
        position: Optional[_Position] = None
        trades: list[Trade] = []
        curve = []

        for i, bar in enumerate(series):
            # 1 — Manage the open position
            if position is not None:
                exit_ = self._check_exit(rules, position, bar, i, exit_flags[i])
                if exit_ is not None:
                    price, reason = exit_
                    trade, proceeds = self._close(series, position, i, price, reason)
                    equity = position.cash + proceeds
                    trades.append(trade)
                    position = None
                else:
                    equity = position.cash + position.units * bar.close

            # 2 — Open on an entry flag (one action per bar)
            elif entry_flags[i] and bar.close > 0:
                invest = equity * settings.position_fraction
                # Solve notional + fee(notional) == invest
                notional = (invest - settings.commission) / (1 + settings.commission_percent / 100.0)
                if notional > 0:
                    position = _Position(
                        entry_index=i,
                        entry_price=bar.close,
                        units=notional / bar.close,
                        cash=equity - invest,
                        cost=invest,
                        entry_fee=invest - notional,
                    )

            curve.append((bar.timestamp, equity))

        # Close any remaining position at the last close
        if position is not None:
            last = len(series) - 1
            trade, proceeds = self._close(series, position, last, series[-1].close, "end_of_data")
            trades.append(trade)
            curve[-1] = (series[-1].timestamp, position.cash + proceeds)

        equity_values = [settings.initial_capital] + [v for _, v in curve]
        stats = calculate_stats(
            trades, equity_values, settings.initial_capital, settings.periods_per_year,
        )

        return BacktestResult(
            symbol=symbol,
            strategy_name=rules.name,
            start_date=series[0].timestamp.date().isoformat() if series else None,
            end_date=series[-1].timestamp.date().isoformat() if series else None,
            trades=trades,
            total_return_percent=stats["total_return_percent"],
            total_trades=stats["total_trades"],
            win_rate=stats["win_rate"],
            max_drawdown=stats["max_drawdown"],
            sharpe_ratio=stats["sharpe_ratio"],
            initial_capital=settings.initial_capital,
            final_capital=stats["final_capital"],
            winning_trades=stats["winning_trades"],
            losing_trades=stats["losing_trades"],
            average_win=stats["average_win"],
            average_loss=stats["average_loss"],
            profit_factor=stats["profit_factor"],
            equity_curve=curve,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _resolve(strategy: Union[StrategyConfig, Strategy]) -> Strategy:
        if isinstance(strategy, Strategy):
            return strategy
        return get_strategy(strategy)

    @staticmethod
    def _check_exit(
        rules: Strategy,
        position: _Position,
        bar: PricePoint,
        index: int,
        exit_flag: bool,
    ) -> Optional[tuple[float, str]]:
        """Return ``(exit_price, reason)`` if *bar* closes the position.

        Precedence when several fire on one bar: stop-loss, take-profit,
        signal, max holding.
        """
        entry = position.entry_price

        if rules.stop_loss_pct > 0:
            stop = entry * (1 - rules.stop_loss_pct / 100.0)
            if bar.low <= stop:
                return min(bar.open, stop), "stop_loss"

        if rules.take_profit_pct > 0:
            target = entry * (1 + rules.take_profit_pct / 100.0)
            if bar.high >= target:
                return max(bar.open, target), "take_profit"

        if exit_flag:
            return bar.close, "signal"

        if rules.max_holding_days > 0 and index - position.entry_index >= rules.max_holding_days:
            return bar.close, "max_holding"

        return None

    def _close(
        self,
        series: list[PricePoint],
        position: _Position,
        index: int,
        exit_price: float,
        reason: str,
    ) -> tuple[Trade, float]:
        """Build the closed ``Trade`` and return it with the net sale proceeds."""
        gross = position.units * exit_price
        exit_fee = self._settings.fee(gross)
        proceeds = gross - exit_fee
        trade = Trade(
            entry_time=series[position.entry_index].timestamp,
            exit_time=series[index].timestamp,
            entry_price=position.entry_price,
            exit_price=exit_price,
            side=1,
            pnl_percent=(proceeds - position.cost) / position.cost * 100.0,
            exit_reason=reason,
            holding_days=index - position.entry_index,
            commission=position.entry_fee + exit_fee,
        )
        return trade, proceeds
