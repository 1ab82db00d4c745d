"""Tests for the backtest engine, its statistics, and batch runs.

Covers exit precedence and fill prices, lookahead safety, the Sharpe
ratio, and per-symbol failure handling in ``run_multi_symbol``.
"""

import math
from datetime import timedelta

import pytest

from conftest import T0, make_series
from fluxquant.backtest.engine import BacktestEngine, BacktestSettings
from fluxquant.backtest.models import BatchResult, Trade
from fluxquant.backtest.stats import _max_drawdown_pct, _sharpe, calculate_stats, period_returns
from fluxquant.errors import AllProvidersFailedError, ProviderFailure, StrategyConfigError
from fluxquant.market.models import PricePoint
from fluxquant.strategy.models import StrategyConfig
from fluxquant.strategy.registry import Strategy


# ── Helpers ──────────────────────────────────────────────────────────────


class _ScriptedStrategy(Strategy):
    """Enters and exits on fixed bar indices."""

    name = "Scripted"

    def __init__(self, entries=(0,), exits=(), **risk):
        self._entries = set(entries)
        self._exits = set(exits)
        super().__init__(StrategyConfig(self.name, risk))

    def signals(self, series):
        n = len(series)
        return [i in self._entries for i in range(n)], [i in self._exits for i in range(n)]


def _bars(*ohlc):
    return [
        PricePoint(T0 + timedelta(days=i), o, h, l, c, 1_000_000.0)
        for i, (o, h, l, c) in enumerate(ohlc)
    ]


def _trade(pnl):
    return Trade(T0, T0 + timedelta(days=1), 100.0, 100.0 + pnl, 1, pnl, "signal", 1)


def _rise_then_fall():
    return make_series([100.0 + i for i in range(45)] + [144.0 - i for i in range(1, 46)])


class _FakeGateway:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    async def fetch_historical(self, symbol, days):
        self.calls.append((symbol, days))
        if symbol in self.failing:
            raise AllProvidersFailedError(
                symbol, [ProviderFailure("keyed", "rate_limited", "HTTP 429")],
            )
        return _rise_then_fall()[-days:]


class _RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


# ── Replay ───────────────────────────────────────────────────────────────


class TestReplay:
    def test_sma_cross_rise_then_fall(self):
        result = BacktestEngine().replay("AAPL", _rise_then_fall(), StrategyConfig("SMA-Cross"))
        assert result.total_trades == len(result.trades) >= 1
        first = result.trades[0]
        assert first.entry_price == 129.0
        assert first.exit_reason == "signal"
        assert result.max_drawdown > 0
        assert result.strategy_name == "SMA-Cross"
        assert result.start_date == "2025-01-01"
        assert len(result.equity_curve) == 90

    def test_no_lookahead(self):
        engine = BacktestEngine()
        series = _rise_then_fall()
        full = engine.replay("X", series, StrategyConfig("SMA-Cross"))
        prefix = engine.replay("X", series[:60], StrategyConfig("SMA-Cross"))
        assert prefix.equity_curve == full.equity_curve[:60]
        assert prefix.trades[0].entry_time == full.trades[0].entry_time

    def test_flat_series_has_no_trades(self):
        result = BacktestEngine().replay("X", make_series([100.0] * 40), StrategyConfig("SMA-Cross"))
        assert result.trades == []
        assert result.win_rate == 0.0
        assert result.sharpe_ratio == 0.0
        assert math.isfinite(result.sharpe_ratio)
        assert result.total_return_percent == 0.0
        assert result.max_drawdown == 0.0
        assert result.profit_factor is None

    def test_empty_series(self):
        result = BacktestEngine().replay("X", [], StrategyConfig("SMA-Cross"))
        assert result.total_trades == 0
        assert result.start_date is None and result.end_date is None

    def test_rejects_unordered_series(self):
        series = make_series([1.0, 2.0, 3.0])
        with pytest.raises(ValueError):
            BacktestEngine().replay("X", [series[1], series[0]], StrategyConfig("SMA-Cross"))


class TestExits:
    def test_stop_loss_fills_at_stop(self):
        bars = _bars((100, 101, 99, 100), (98, 99, 94, 96))
        result = BacktestEngine().replay("X", bars, _ScriptedStrategy(stop_loss_pct=5))
        trade = result.trades[0]
        assert trade.exit_reason == "stop_loss"
        assert trade.exit_price == pytest.approx(95.0)
        assert trade.pnl_percent == pytest.approx(-5.0)

    def test_stop_loss_gap_fills_at_open(self):
        bars = _bars((100, 101, 99, 100), (90, 91, 89, 90))
        result = BacktestEngine().replay("X", bars, _ScriptedStrategy(stop_loss_pct=5))
        assert result.trades[0].exit_price == 90
        assert result.trades[0].pnl_percent == pytest.approx(-10.0)

    def test_take_profit_fills_at_target(self):
        bars = _bars((100, 101, 99, 100), (101, 112, 100, 108))
        result = BacktestEngine().replay("X", bars, _ScriptedStrategy(take_profit_pct=10))
        assert result.trades[0].exit_reason == "take_profit"
        assert result.trades[0].exit_price == pytest.approx(110.0)

    def test_take_profit_gap_fills_at_open(self):
        bars = _bars((100, 101, 99, 100), (115, 118, 114, 116))
        result = BacktestEngine().replay("X", bars, _ScriptedStrategy(take_profit_pct=10))
        assert result.trades[0].exit_price == 115

    def test_stop_loss_wins_over_take_profit(self):
        bars = _bars((100, 101, 99, 100), (100, 111, 94, 100))
        rules = _ScriptedStrategy(stop_loss_pct=5, take_profit_pct=10)
        assert BacktestEngine().replay("X", bars, rules).trades[0].exit_reason == "stop_loss"

    def test_signal_exit_at_close(self):
        bars = _bars(*[(100, 101, 99, 100 + i) for i in range(5)])
        result = BacktestEngine().replay("X", bars, _ScriptedStrategy(exits=(2,)))
        trade = result.trades[0]
        assert (trade.exit_reason, trade.exit_price, trade.holding_days) == ("signal", 102, 2)

    def test_max_holding(self):
        bars = _bars(*[(100, 101, 99, 100)] * 6)
        result = BacktestEngine().replay("X", bars, _ScriptedStrategy(max_holding_days=3))
        trade = result.trades[0]
        assert trade.exit_reason == "max_holding"
        assert trade.holding_days == 3
        assert trade.exit_time == bars[3].timestamp

    def test_open_position_closed_at_end_of_data(self):
        bars = _bars((100, 101, 99, 100), (100, 106, 99, 105))
        trade = BacktestEngine().replay("X", bars, _ScriptedStrategy()).trades[-1]
        assert trade.exit_reason == "end_of_data"
        assert trade.exit_price == 105
        assert trade.pnl_percent == pytest.approx(5.0)

    def test_no_reentry_on_exit_bar(self):
        bars = _bars(*[(100, 101, 99, 100)] * 5)
        rules = _ScriptedStrategy(entries=range(5), exits=(2,))
        trades = BacktestEngine().replay("X", bars, rules).trades
        assert trades[0].exit_time == bars[2].timestamp
        assert trades[1].entry_time == bars[3].timestamp


class TestSizing:
    def test_position_fraction(self):
        bars = _bars((100, 101, 99, 100), (150, 201, 149, 200))
        engine = BacktestEngine(settings=BacktestSettings(position_fraction=0.5))
        result = engine.replay("X", bars, _ScriptedStrategy())
        assert result.final_capital == pytest.approx(15_000.0)
        assert result.total_return_percent == pytest.approx(50.0)

    @pytest.mark.parametrize("kwargs", [
        {"initial_capital": 0},
        {"position_fraction": 0},
        {"position_fraction": 1.5},
        {"periods_per_year": 0},
        {"request_delay_ms": -1},
        {"commission": -1.0},
        {"commission_percent": 100.0},
    ])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            BacktestSettings(**kwargs)


class TestCommission:
    def _doubling(self):
        return _bars((100, 101, 99, 100), (150, 201, 149, 200))

    def test_fixed_commission_charged_on_both_fills(self):
        engine = BacktestEngine(settings=BacktestSettings(commission=10.0))
        result = engine.replay("X", self._doubling(), _ScriptedStrategy())
        trade = result.trades[0]
        assert trade.commission == pytest.approx(20.0)
        assert result.final_capital == pytest.approx(19_970.0)
        assert trade.pnl_percent == pytest.approx(99.7)
        assert result.equity_curve[-1][1] == pytest.approx(19_970.0)

    def test_percent_commission_reduces_final_capital(self):
        free = BacktestEngine().replay("X", self._doubling(), _ScriptedStrategy())
        engine = BacktestEngine(settings=BacktestSettings(commission_percent=1.0))
        result = engine.replay("X", self._doubling(), _ScriptedStrategy())
        assert free.final_capital == pytest.approx(20_000.0)
        assert result.final_capital == pytest.approx(20_000.0 / 1.01 * 0.99)
        assert result.final_capital < free.final_capital
        assert result.trades[0].commission == pytest.approx(10_000.0 / 1.01 * 0.03)

    def test_commission_turns_flat_trade_into_loss(self):
        bars = _bars(*[(100, 101, 99, 100)] * 3)
        engine = BacktestEngine(settings=BacktestSettings(commission=5.0))
        result = engine.replay("X", bars, _ScriptedStrategy(exits=(2,)))
        assert result.trades[0].pnl_percent < 0
        assert result.losing_trades == 1

    def test_fee_above_capital_skips_entry(self):
        engine = BacktestEngine(settings=BacktestSettings(commission=20_000.0))
        result = engine.replay("X", self._doubling(), _ScriptedStrategy())
        assert result.trades == []
        assert result.final_capital == pytest.approx(10_000.0)


# ── Stats ────────────────────────────────────────────────────────────────


class TestStats:
    def test_trade_counts(self):
        stats = calculate_stats([_trade(10), _trade(-5), _trade(5)], [100.0, 110.0], 100.0)
        assert stats["total_trades"] == 3
        assert stats["winning_trades"] == 2
        assert stats["losing_trades"] == 1
        assert stats["win_rate"] == pytest.approx(200 / 3)
        assert stats["average_win"] == pytest.approx(7.5)
        assert stats["average_loss"] == pytest.approx(5.0)
        assert stats["profit_factor"] == pytest.approx(3.0)
        assert stats["total_return_percent"] == pytest.approx(10.0)

    def test_sharpe_needs_two_returns(self):
        assert _sharpe([0.01]) == 0.0
        assert _sharpe([0.01, 0.01]) == 0.0

    def test_sharpe_uses_sample_stdev(self):
        expected = 0.02 / math.sqrt(0.0002) * math.sqrt(252)
        assert _sharpe([0.01, 0.03]) == pytest.approx(expected)
        assert _sharpe([0.01, 0.03], periods_per_year=365) == pytest.approx(
            0.02 / math.sqrt(0.0002) * math.sqrt(365)
        )

    def test_max_drawdown(self):
        assert _max_drawdown_pct([100, 120, 90, 130]) == pytest.approx(25.0)
        assert _max_drawdown_pct([100, 110, 120]) == 0.0

    def test_period_returns_zero_base(self):
        assert period_returns([0.0, 10.0, 20.0]) == [0.0, 1.0]


# ── Batch runs ───────────────────────────────────────────────────────────


class TestRunMultiSymbol:
    @pytest.mark.asyncio
    async def test_partial_failure(self):
        gateway = _FakeGateway(failing={"BAD"})
        sleep = _RecordingSleep()
        engine = BacktestEngine(gateway, sleep=sleep)
        batch = await engine.run_multi_symbol(["AAA", "BAD", "CCC"], StrategyConfig("SMA-Cross"), 90)
        assert [r.symbol for r in batch.results] == ["AAA", "CCC"]
        assert len(batch.failures) == 1
        failure = batch.failures[0]
        assert failure.symbol == "BAD"
        assert failure.rate_limited and not failure.network_unavailable
        assert not batch.total_failure
        assert sleep.delays == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_total_failure(self):
        engine = BacktestEngine(_FakeGateway(failing={"A", "B"}), sleep=_RecordingSleep())
        batch = await engine.run_multi_symbol(["A", "B"], StrategyConfig("SMA-Cross"), 30)
        assert batch.results == []
        assert batch.total_failure

    @pytest.mark.asyncio
    async def test_bad_config_fails_before_fetching(self):
        gateway = _FakeGateway()
        engine = BacktestEngine(gateway, sleep=_RecordingSleep())
        with pytest.raises(StrategyConfigError):
            await engine.run_multi_symbol(
                ["AAA"], StrategyConfig("SMA-Cross", {"fast": 50, "slow": 10}), 90,
            )
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_period_must_be_positive(self):
        with pytest.raises(ValueError):
            await BacktestEngine(_FakeGateway()).run("AAA", StrategyConfig("SMA-Cross"), 0)

    @pytest.mark.asyncio
    async def test_run_requires_gateway(self):
        with pytest.raises(RuntimeError):
            await BacktestEngine().run("AAA", StrategyConfig("SMA-Cross"), 30)

    def test_sorted_by_return(self):
        engine = BacktestEngine()
        up = engine.replay("UP", _bars((100, 101, 99, 100), (100, 121, 99, 120)), _ScriptedStrategy())
        down = engine.replay("DN", _bars((100, 101, 99, 100), (100, 101, 79, 80)), _ScriptedStrategy())
        batch = BatchResult(results=[down, up], failures=[])
        assert [r.symbol for r in batch.sorted_by()] == ["UP", "DN"]
        assert batch.to_dict()["succeeded"] == 2
