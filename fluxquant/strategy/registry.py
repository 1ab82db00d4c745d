"""Strategy registry — maps strategy names to rule classes.

A strategy turns a price series into per-bar entry and exit flags.  Flags
at index ``i`` only look at bars ``0..i``, so the backtest engine can
replay them bar by bar without lookahead.  Every strategy also accepts the
shared risk knobs ``stop_loss_pct``, ``take_profit_pct`` and
``max_holding_days`` (0 disables each).
"""

import math
import re

from fluxquant.errors import StrategyConfigError, UnknownStrategyError
from fluxquant.market.models import PricePoint
from fluxquant.strategy import indicators
from fluxquant.strategy.models import StrategyConfig

_RISK_DEFAULTS: dict[str, float] = {
    "stop_loss_pct": 0.0,
    "take_profit_pct": 0.0,
    "max_holding_days": 0.0,
}


def _ready(*values: float) -> bool:
    return not any(math.isnan(v) for v in values)


class Strategy:
    """Base class: parameter validation plus the risk knobs."""

    name = ""
    defaults: dict[str, float] = {}
    integer_params: tuple[str, ...] = ()

    def __init__(self, config: StrategyConfig) -> None:
        unknown = set(config.parameters) - set(self.defaults) - set(_RISK_DEFAULTS)
        if unknown:
            raise StrategyConfigError(
                f"Unknown parameter(s) for '{self.name}': {', '.join(sorted(unknown))}"
            )
        params = {**_RISK_DEFAULTS, **self.defaults, **config.parameters}
        for key in self.integer_params:
            if params[key] < 1 or params[key] != int(params[key]):
                raise StrategyConfigError(
                    f"'{key}' of '{self.name}' must be a positive integer, got {params[key]}"
                )
            params[key] = int(params[key])
        for key in _RISK_DEFAULTS:
            if params[key] < 0:
                raise StrategyConfigError(
                    f"'{key}' of '{self.name}' must be >= 0, got {params[key]}"
                )
        self.config = StrategyConfig(self.name, params)
        self.params = params
        self.validate()

    @property
    def stop_loss_pct(self) -> float:
        return self.params["stop_loss_pct"]

    @property
    def take_profit_pct(self) -> float:
        return self.params["take_profit_pct"]

    @property
    def max_holding_days(self) -> int:
        return int(self.params["max_holding_days"])

    def validate(self) -> None:
        """Strategy-specific parameter checks.  Raise ``StrategyConfigError``."""

    def signals(self, series: list[PricePoint]) -> tuple[list[bool], list[bool]]:
        """Return ``(entry, exit)`` flags, one per bar."""
        raise NotImplementedError


class SmaCrossStrategy(Strategy):
    """Long while the fast SMA is above the slow SMA."""

    name = "SMA-Cross"
    defaults = {"fast": 10, "slow": 30}
    integer_params = ("fast", "slow")

    def validate(self) -> None:
        if self.params["fast"] >= self.params["slow"]:
            raise StrategyConfigError(
                f"'fast' ({self.params['fast']}) must be < 'slow' ({self.params['slow']})"
            )

    def signals(self, series):
        closes = indicators.closes_of(series)
        fast = indicators.sma(closes, self.params["fast"])
        slow = indicators.sma(closes, self.params["slow"])
        entry = [_ready(f, s) and f > s for f, s in zip(fast, slow)]
        exit_ = [_ready(f, s) and f < s for f, s in zip(fast, slow)]
        return entry, exit_


class RsiMeanReversionStrategy(Strategy):
    """Buy oversold, sell overbought."""

    name = "RSI Mean Reversion"
    defaults = {"period": 14, "oversold": 30, "overbought": 70}
    integer_params = ("period",)

    def validate(self) -> None:
        lo, hi = self.params["oversold"], self.params["overbought"]
        if not 0 < lo < hi < 100:
            raise StrategyConfigError(
                f"Need 0 < oversold ({lo}) < overbought ({hi}) < 100"
            )

    def signals(self, series):
        values = indicators.rsi(indicators.closes_of(series), self.params["period"])
        entry = [_ready(v) and v < self.params["oversold"] for v in values]
        exit_ = [_ready(v) and v > self.params["overbought"] for v in values]
        return entry, exit_


class MacdCrossoverStrategy(Strategy):
    """Enter when MACD crosses above its signal line, exit on the cross below."""

    name = "MACD Crossover"
    defaults = {"fast": 12, "slow": 26, "signal": 9}
    integer_params = ("fast", "slow", "signal")

    def validate(self) -> None:
        if self.params["fast"] >= self.params["slow"]:
            raise StrategyConfigError(
                f"'fast' ({self.params['fast']}) must be < 'slow' ({self.params['slow']})"
            )

    def signals(self, series):
        line, sig, _ = indicators.macd(
            indicators.closes_of(series),
            self.params["fast"], self.params["slow"], self.params["signal"],
        )
        n = len(series)
        entry = [False] * n
        exit_ = [False] * n
        for i in range(1, n):
            if not _ready(line[i], sig[i], line[i - 1], sig[i - 1]):
                continue
            entry[i] = line[i] > sig[i] and line[i - 1] <= sig[i - 1]
            exit_[i] = line[i] < sig[i] and line[i - 1] >= sig[i - 1]
        return entry, exit_


class BollingerReversionStrategy(Strategy):
    """Buy below the lower band, sell above the upper band."""

    name = "Bollinger Reversion"
    defaults = {"period": 20, "k": 2.0}
    integer_params = ("period",)

    def validate(self) -> None:
        if self.params["k"] <= 0:
            raise StrategyConfigError(f"'k' must be positive, got {self.params['k']}")

    def signals(self, series):
        closes = indicators.closes_of(series)
        upper, _, lower = indicators.bollinger(closes, self.params["period"], self.params["k"])
        entry = [_ready(lo) and c < lo for c, lo in zip(closes, lower)]
        exit_ = [_ready(up) and c > up for c, up in zip(closes, upper)]
        return entry, exit_


class BollingerBreakoutStrategy(Strategy):
    """Buy a close above the upper band on rising volume; exit below the middle band."""

    name = "Bollinger Breakout"
    defaults = {"period": 20, "k": 2.0, "volume_factor": 1.5}
    integer_params = ("period",)

    def validate(self) -> None:
        if self.params["k"] <= 0:
            raise StrategyConfigError(f"'k' must be positive, got {self.params['k']}")
        if self.params["volume_factor"] < 0:
            raise StrategyConfigError(
                f"'volume_factor' must be >= 0, got {self.params['volume_factor']}"
            )

    def signals(self, series):
        closes = indicators.closes_of(series)
        upper, middle, _ = indicators.bollinger(closes, self.params["period"], self.params["k"])
        n = len(series)
        entry = [False] * n
        exit_ = [False] * n
        for i in range(1, n):
            if not _ready(upper[i], middle[i]):
                continue
            entry[i] = (
                closes[i] > upper[i]
                and series[i].volume > series[i - 1].volume * self.params["volume_factor"]
            )
            exit_[i] = closes[i] < middle[i]
        return entry, exit_


class StochasticReversalStrategy(Strategy):
    """Buy when %K turns up through %D while oversold; sell the mirror case."""

    name = "Stochastic Reversal"
    defaults = {"k_period": 14, "d_period": 3, "oversold": 20, "overbought": 80}
    integer_params = ("k_period", "d_period")

    def validate(self) -> None:
        lo, hi = self.params["oversold"], self.params["overbought"]
        if not 0 < lo < hi < 100:
            raise StrategyConfigError(
                f"Need 0 < oversold ({lo}) < overbought ({hi}) < 100"
            )

    def signals(self, series):
        pct_k, pct_d = indicators.stochastic(
            series, self.params["k_period"], self.params["d_period"],
        )
        n = len(series)
        entry = [False] * n
        exit_ = [False] * n
        for i in range(1, n):
            k, d, prev_k, prev_d = pct_k[i], pct_d[i], pct_k[i - 1], pct_d[i - 1]
            if not _ready(k, d, prev_k, prev_d):
                continue
            entry[i] = k < self.params["oversold"] and k > d and prev_k <= prev_d
            exit_[i] = k > self.params["overbought"] and k < d and prev_k >= prev_d
        return entry, exit_


STRATEGY_REGISTRY: dict[str, type[Strategy]] = {
    cls.name: cls
    for cls in (
        SmaCrossStrategy,
        RsiMeanReversionStrategy,
        MacdCrossoverStrategy,
        BollingerReversionStrategy,
        BollingerBreakoutStrategy,
        StochasticReversalStrategy,
    )
}


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


_BY_SLUG = {_slug(name): cls for name, cls in STRATEGY_REGISTRY.items()}


def resolve_name(name: str) -> str:
    """Canonical registry name for *name* (``sma_cross`` → ``SMA-Cross``).

    Raises ``UnknownStrategyError`` if no strategy matches.
    """
    cls = STRATEGY_REGISTRY.get(name) or _BY_SLUG.get(_slug(name))
    if cls is None:
        raise UnknownStrategyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return cls.name


def get_strategy(config: StrategyConfig) -> Strategy:
    """Instantiate the strategy named by *config* with its parameters.

    Raises ``UnknownStrategyError`` for an unregistered name and
    ``StrategyConfigError`` for invalid parameters.
    """
    cls = STRATEGY_REGISTRY[resolve_name(config.name)]
    return cls(config)


def default_catalog() -> list[StrategyConfig]:
    """The built-in strategies with their default parameters."""
    return [StrategyConfig(cls.name, dict(cls.defaults)) for cls in STRATEGY_REGISTRY.values()]
