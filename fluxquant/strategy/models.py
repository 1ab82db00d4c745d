"""Strategy data models — configs, indicator snapshots, and scorer output."""

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from fluxquant.errors import StrategyConfigError


@dataclass(frozen=True)
class StrategyConfig:
    """A named, parameterised rule set for the backtest engine.

    ``parameters`` is frozen into a read-only mapping on construction.
    """

    name: str
    parameters: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise StrategyConfigError("Strategy name must be non-empty")
        cleaned: dict[str, float] = {}
        for key, value in dict(self.parameters).items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise StrategyConfigError(
                    f"Parameter '{key}' of strategy '{self.name}' must be numeric, "
                    f"got {value!r}"
                )
            if not math.isfinite(value):
                raise StrategyConfigError(
                    f"Parameter '{key}' of strategy '{self.name}' must be finite"
                )
            cleaned[key] = value
        object.__setattr__(self, "parameters", MappingProxyType(cleaned))

    def get(self, key: str, default: float) -> float:
        return self.parameters.get(key, default)

    def to_dict(self) -> dict:
        return {"name": self.name, "parameters": dict(self.parameters)}


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Latest indicator values for one symbol, as consumed by the scorer.

    Built by ``indicators.snapshot``; fields fall back to neutral values
    when the series is too short.
    """

    price: float
    sma20: float
    sma50: float
    ema12: float
    ema26: float
    rsi: float
    macd: float
    macd_signal: float
    macd_histogram: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    stoch_k: float
    stoch_d: float
    bars: int = 0

    @classmethod
    def neutral(cls, price: float) -> "IndicatorSnapshot":
        """Snapshot with no information: RSI 50, flat MACD, bands on price."""
        return cls(
            price=price,
            sma20=price,
            sma50=price,
            ema12=price,
            ema26=price,
            rsi=50.0,
            macd=0.0,
            macd_signal=0.0,
            macd_histogram=0.0,
            bb_upper=price,
            bb_middle=price,
            bb_lower=price,
            stoch_k=50.0,
            stoch_d=50.0,
            bars=0,
        )


@dataclass(frozen=True)
class ScoreResult:
    """Output of the signal scorer."""

    recommendation: str  # strong_buy | buy | hold | sell | strong_sell
    score: float
    confidence: float
    risk_level: str  # low | medium | high
    potential: str  # very_low | low | medium | high | very_high
    rationale: str
    cap_bucket: Optional[str] = None

    @property
    def direction(self) -> int:
        """+1 for buy-side, -1 for sell-side, 0 for hold."""
        if self.recommendation in ("buy", "strong_buy"):
            return 1
        if self.recommendation in ("sell", "strong_sell"):
            return -1
        return 0
