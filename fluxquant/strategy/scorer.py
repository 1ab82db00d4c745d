"""Signal scorer — deterministic decision table over a quote and its indicators.

Three market factors (momentum, liquidity, capitalisation) and a handful of
indicator confirmations each nudge a base score and confidence by fixed
deltas.  Both are clamped to [0, 1].  The rationale is the concatenation of
every rule that fired, in evaluation order.
"""

from typing import Optional

from fluxquant.market.models import Quote
from fluxquant.strategy.models import IndicatorSnapshot, ScoreResult

_BASE_SCORE = 0.5
_BASE_CONFIDENCE = 0.5

# Market-cap buckets (USD)
MICRO_CAP = 300_000_000
SMALL_CAP = 2_000_000_000
MID_CAP = 10_000_000_000


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def cap_bucket(market_cap: Optional[float]) -> Optional[str]:
    """``micro`` / ``small`` / ``mid`` / ``large``, or ``None`` when unknown."""
    if market_cap is None or market_cap <= 0:
        return None
    if market_cap < MICRO_CAP:
        return "micro"
    if market_cap < SMALL_CAP:
        return "small"
    if market_cap < MID_CAP:
        return "mid"
    return "large"


def score(quote: Quote, ind: IndicatorSnapshot) -> ScoreResult:
    """Score *quote* given its indicator snapshot.

    Pure and reproducible: identical inputs give identical output.
    """
    s = _BASE_SCORE
    c = _BASE_CONFIDENCE
    risk = 0.0
    reasons: list[str] = []

    # Momentum
    cp = quote.change_percent
    if cp >= 10:
        s += 0.2
        c += 0.1
        reasons.append(f"Strong upward momentum ({cp:+.1f}%)")
    elif cp >= 3:
        s += 0.1
        c += 0.05
        reasons.append(f"Positive momentum ({cp:+.1f}%)")
    elif cp <= -10:
        s -= 0.2
        c += 0.1
        reasons.append(f"Strong downward momentum ({cp:+.1f}%)")
    elif cp <= -3:
        s -= 0.1
        c += 0.05
        reasons.append(f"Negative momentum ({cp:+.1f}%)")
    else:
        c -= 0.05
        reasons.append(f"Flat price action ({cp:+.1f}%)")
    if abs(cp) >= 15:
        risk += 0.3
    elif abs(cp) >= 5:
        risk += 0.15

    # Liquidity
    vol = quote.volume
    if vol >= 10_000_000:
        c += 0.1
        reasons.append("High liquidity")
    elif vol >= 1_000_000:
        c += 0.05
        reasons.append("Adequate liquidity")
    elif vol < 100_000:
        c -= 0.15
        risk += 0.2
        reasons.append("Thin liquidity")

    # Capitalisation
    bucket = cap_bucket(quote.market_cap)
    if bucket == "micro":
        s += 0.05
        c -= 0.1
        risk += 0.3
        reasons.append("Micro-cap: speculative upside")
    elif bucket == "small":
        c -= 0.05
        risk += 0.2
        reasons.append("Small-cap")
    elif bucket == "mid":
        risk += 0.1
        reasons.append("Mid-cap")
    elif bucket == "large":
        c += 0.1
        reasons.append("Large-cap stability")

    # Indicator confirmations
    if ind.rsi < 30:
        s += 0.1
        risk += 0.1
        reasons.append(f"RSI oversold ({ind.rsi:.0f})")
    elif ind.rsi > 70:
        s -= 0.1
        risk += 0.1
        reasons.append(f"RSI overbought ({ind.rsi:.0f})")

    if ind.macd_histogram > 0:
        s += 0.05
        reasons.append("MACD above signal")
    elif ind.macd_histogram < 0:
        s -= 0.05
        reasons.append("MACD below signal")

    if ind.bars >= 50:
        if ind.price > ind.sma50:
            s += 0.05
            c += 0.05
            reasons.append("Price above 50-day SMA")
        elif ind.price < ind.sma50:
            s -= 0.05
            c += 0.05
            reasons.append("Price below 50-day SMA")

    s = _clamp(s)
    c = _clamp(c)
    risk = _clamp(risk)

    return ScoreResult(
        recommendation=_recommendation(s),
        score=s,
        confidence=c,
        risk_level="high" if risk > 0.7 else "medium" if risk > 0.4 else "low",
        potential=_potential(s, c, risk),
        rationale="; ".join(reasons),
        cap_bucket=bucket,
    )


def _recommendation(s: float) -> str:
    if s >= 0.75:
        return "strong_buy"
    if s >= 0.6:
        return "buy"
    if s <= 0.25:
        return "strong_sell"
    if s <= 0.4:
        return "sell"
    return "hold"


def _potential(s: float, c: float, risk: float) -> str:
    combined = (s + c + (1 - risk)) / 3
    if combined > 0.8:
        return "very_high"
    if combined > 0.6:
        return "high"
    if combined > 0.4:
        return "medium"
    if combined > 0.2:
        return "low"
    return "very_low"
