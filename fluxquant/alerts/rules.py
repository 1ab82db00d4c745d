"""Alert rules — turn a quote plus indicators into alert candidates.

Each rule is a named pure function returning an ``AlertCandidate`` or
``None``.  Confidence is on the [0, 1] scale.  ``classify_priority`` maps a
candidate's confidence and the quote's momentum to a priority bucket.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from fluxquant.alerts.models import AlertCandidate
from fluxquant.market.models import Quote
from fluxquant.strategy import scorer
from fluxquant.strategy.models import IndicatorSnapshot

RuleFn = Callable[[Quote, IndicatorSnapshot], Optional[AlertCandidate]]


@dataclass(frozen=True)
class AlertRule:
    name: str
    evaluate: RuleFn


# ── Priority ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PriorityThresholds:
    """Cut-offs for ``classify_priority``.  ``high``/``medium`` apply to
    ``confidence × |change_percent|``."""

    critical_confidence: float = 0.85
    critical_change: float = 15.0
    high: float = 8.0
    medium: float = 3.0


def classify_priority(
    confidence: float,
    change_percent: float,
    thresholds: PriorityThresholds = PriorityThresholds(),
) -> str:
    move = abs(change_percent)
    if confidence >= thresholds.critical_confidence and move >= thresholds.critical_change:
        return "critical"
    weighted = confidence * move
    if weighted >= thresholds.high:
        return "high"
    if weighted >= thresholds.medium:
        return "medium"
    return "low"


# ── Rules ────────────────────────────────────────────────────────────────

_POTENTIAL_MOVE = {
    "very_high": 0.25,
    "high": 0.15,
    "medium": 0.08,
    "low": 0.04,
    "very_low": 0.02,
}


def signal_scorer(quote: Quote, ind: IndicatorSnapshot) -> Optional[AlertCandidate]:
    """Alert on any non-hold recommendation from the signal scorer."""
    result = scorer.score(quote, ind)
    if result.direction == 0:
        return None
    move = _POTENTIAL_MOVE[result.potential]
    return AlertCandidate(
        symbol=quote.symbol,
        strategy_name="Signal Scorer",
        signal="buy" if result.direction > 0 else "sell",
        confidence=result.confidence,
        target_price=quote.price * (1 + result.direction * move),
        reasoning=f"{result.recommendation} ({result.risk_level} risk): {result.rationale}",
    )


def momentum_breakout(quote: Quote, ind: IndicatorSnapshot) -> Optional[AlertCandidate]:
    move = abs(quote.change_percent)
    if move <= 8 or quote.volume <= 1_000_000:
        return None
    bullish = quote.change_percent > 0
    return AlertCandidate(
        symbol=quote.symbol,
        strategy_name="Momentum Breakout",
        signal="buy" if bullish else "sell",
        confidence=min(0.95, 0.6 + move * 0.02),
        target_price=quote.price * (1.15 if bullish else 0.85),
        reasoning=(
            f"Strong {'bullish' if bullish else 'bearish'} momentum: "
            f"{move:.1f}% move on {quote.volume / 1e6:.1f}M volume"
        ),
    )


def reversal(quote: Quote, ind: IndicatorSnapshot) -> Optional[AlertCandidate]:
    """Contrarian call after an outsized move."""
    cp = quote.change_percent
    if abs(cp) <= 12:
        return None
    oversold = cp < 0
    return AlertCandidate(
        symbol=quote.symbol,
        strategy_name="Reversal Detector",
        signal="buy" if oversold else "sell",
        confidence=min(0.85, 0.5 + abs(cp) * 0.015),
        target_price=quote.price * (1.20 if oversold else 0.80),
        reasoning=(
            f"{'Oversold' if oversold else 'Overbought'} after {abs(cp):.1f}% move "
            f"(RSI {ind.rsi:.0f}); mean reversion likely"
        ),
    )


def volume_surge(quote: Quote, ind: IndicatorSnapshot) -> Optional[AlertCandidate]:
    cp = quote.change_percent
    if quote.volume <= 5_000_000 or abs(cp) <= 5:
        return None
    return AlertCandidate(
        symbol=quote.symbol,
        strategy_name="Volume Surge",
        signal="buy" if cp > 0 else "watch",
        confidence=min(0.9, 0.7 + quote.volume / 1e6 * 0.02),
        target_price=quote.price * 1.12,
        reasoning=(
            f"Volume surge ({quote.volume / 1e6:.1f}M) with {cp:+.1f}% move "
            f"suggests institutional activity"
        ),
    )


def gem_scanner(quote: Quote, ind: IndicatorSnapshot) -> Optional[AlertCandidate]:
    """Small caps with strong upside momentum on real volume."""
    cap = quote.market_cap
    cp = quote.change_percent
    if cap is None or cap <= 0 or quote.volume <= 1_000_000:
        return None
    cap_m = cap / 1e6
    if cap < 200_000_000 and cp > 20:
        signal, confidence, mult = "buy", min(0.92, 0.7 + cp * 0.008), 3.0
        reasoning = f"Micro-cap (${cap_m:.0f}M) with explosive momentum ({cp:+.1f}%)"
    elif cap < 1_000_000_000 and cp > 12:
        signal, confidence, mult = "buy", min(0.88, 0.6 + cp * 0.012), 2.0
        reasoning = f"Low-cap (${cap_m:.0f}M) with strong momentum ({cp:+.1f}%)"
    elif cap < 1_000_000_000 and 5 < cp < 15:
        signal, confidence, mult = "watch", min(0.75, 0.55 + cp * 0.015), 1.5
        reasoning = f"Low-cap (${cap_m:.0f}M) accumulating ({cp:+.1f}%)"
    else:
        return None
    return AlertCandidate(
        symbol=quote.symbol,
        strategy_name="Gem Scanner",
        signal=signal,
        confidence=confidence,
        target_price=quote.price * mult,
        reasoning=reasoning,
    )


def trend_following(quote: Quote, ind: IndicatorSnapshot) -> Optional[AlertCandidate]:
    cp = quote.change_percent
    if not 6 < cp < 12:
        return None
    if ind.bars >= 50 and ind.price < ind.sma50:
        return None
    return AlertCandidate(
        symbol=quote.symbol,
        strategy_name="Trend Following",
        signal="buy",
        confidence=min(0.82, 0.65 + cp * 0.012),
        target_price=quote.price * 1.18,
        reasoning=f"Steady uptrend ({cp:+.1f}%) with room to continue",
    )


DEFAULT_RULES: tuple[AlertRule, ...] = (
    AlertRule("Signal Scorer", signal_scorer),
    AlertRule("Momentum Breakout", momentum_breakout),
    AlertRule("Reversal Detector", reversal),
    AlertRule("Volume Surge", volume_surge),
    AlertRule("Gem Scanner", gem_scanner),
    AlertRule("Trend Following", trend_following),
)
