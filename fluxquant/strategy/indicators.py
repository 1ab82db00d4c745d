"""Technical indicators — SMA, EMA, RSI, MACD, Bollinger Bands, Stochastic.

Pure functions over closes (or a ``PricePoint`` series), no I/O.  Every
series function returns a list the same length as its input, with
``float('nan')`` before the indicator is ready, and each value depends only
on data up to its own index.  ``snapshot`` collapses the latest values into
an ``IndicatorSnapshot`` with neutral defaults; pass ``strict=True`` to get
``InsufficientDataError`` instead.
"""

import math

from fluxquant.errors import InsufficientDataError
from fluxquant.market.models import PricePoint
from fluxquant.strategy.models import IndicatorSnapshot

NAN = float("nan")


def _require(values: list, needed: int, label: str) -> None:
    if len(values) < needed:
        raise InsufficientDataError(
            f"Need at least {needed} points for {label}, got {len(values)}"
        )


def _check_period(period: int) -> None:
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")


def closes_of(series: list[PricePoint]) -> list[float]:
    return [p.close for p in series]


# ── Moving averages ──────────────────────────────────────────────────────


def sma(values: list[float], period: int) -> list[float]:
    """Simple moving average over a rolling window of *period* values."""
    _check_period(period)
    out = [NAN] * len(values)
    window_sum = 0.0
    for i, v in enumerate(values):
        window_sum += v
        if i >= period:
            window_sum -= values[i - period]
        if i >= period - 1:
            out[i] = window_sum / period
    return out


def ema(values: list[float], period: int) -> list[float]:
    """Exponential moving average, seeded with the SMA of the first *period* values.

    ``EMA_i = v_i × k + EMA_{i-1} × (1 − k)`` where ``k = 2 / (period + 1)``.
    NaN inputs (e.g. an unready upstream series) are skipped until the first
    *period* finite values are available.
    """
    _check_period(period)
    out = [NAN] * len(values)
    k = 2.0 / (period + 1)
    seed: list[float] = []
    prev = NAN
    for i, v in enumerate(values):
        if math.isnan(v):
            continue
        if len(seed) < period:
            seed.append(v)
            if len(seed) == period:
                prev = sum(seed) / period
                out[i] = prev
            continue
        prev = v * k + prev * (1 - k)
        out[i] = prev
    return out


# ── RSI ──────────────────────────────────────────────────────────────────


def rsi(values: list[float], period: int = 14) -> list[float]:
    """Wilder's Relative Strength Index.

    Seeds average gain/loss with the mean of the first *period* deltas, then
    smooths ``avg = (prev × (period − 1) + current) / period``.  Ready from
    index *period*.
    """
    _check_period(period)
    out = [NAN] * len(values)
    if len(values) < period + 1:
        return out

    deltas = [values[i] - values[i - 1] for i in range(1, len(values))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [max(-d, 0.0) for d in deltas]

    def _from_avgs(ag: float, al: float) -> float:
        if al == 0:
            return 100.0 if ag > 0 else 50.0
        return 100.0 - 100.0 / (1.0 + ag / al)

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    out[period] = _from_avgs(avg_gain, avg_loss)
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out[i + 1] = _from_avgs(avg_gain, avg_loss)
    return out


# ── MACD ─────────────────────────────────────────────────────────────────


def macd(
    values: list[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> tuple[list[float], list[float], list[float]]:
    """MACD line (EMA fast − EMA slow), its signal EMA, and the histogram."""
    if fast >= slow:
        raise ValueError(f"MACD fast period ({fast}) must be < slow period ({slow})")
    fast_ema = ema(values, fast)
    slow_ema = ema(values, slow)
    line = [
        f - s if not (math.isnan(f) or math.isnan(s)) else NAN
        for f, s in zip(fast_ema, slow_ema)
    ]
    signal_line = ema(line, signal)
    hist = [
        m - s if not (math.isnan(m) or math.isnan(s)) else NAN
        for m, s in zip(line, signal_line)
    ]
    return line, signal_line, hist


# ── Bollinger Bands ──────────────────────────────────────────────────────


def bollinger(
    values: list[float],
    period: int = 20,
    k: float = 2.0,
) -> tuple[list[float], list[float], list[float]]:
    """Bollinger Bands: ``SMA(period) ± k × σ(period)`` (population σ).

    Returns ``(upper, middle, lower)``.
    """
    _check_period(period)
    n = len(values)
    upper = [NAN] * n
    middle = [NAN] * n
    lower = [NAN] * n
    for i in range(period - 1, n):
        window = values[i - period + 1 : i + 1]
        mean = sum(window) / period
        sigma = math.sqrt(sum((x - mean) ** 2 for x in window) / period)
        middle[i] = mean
        upper[i] = mean + k * sigma
        lower[i] = mean - k * sigma
    return upper, middle, lower


# ── Stochastic ───────────────────────────────────────────────────────────


def stochastic(
    series: list[PricePoint],
    k_period: int = 14,
    d_period: int = 3,
) -> tuple[list[float], list[float]]:
    """Stochastic oscillator.

    ``%K = (close − lowN) / (highN − lowN) × 100`` over *k_period* bars;
    a flat window (highN == lowN) yields 50.  ``%D`` is the *d_period* SMA
    of ``%K``.
    """
    _check_period(k_period)
    _check_period(d_period)
    n = len(series)
    pct_k = [NAN] * n
    for i in range(k_period - 1, n):
        window = series[i - k_period + 1 : i + 1]
        high_n = max(p.high for p in window)
        low_n = min(p.low for p in window)
        span = high_n - low_n
        pct_k[i] = 50.0 if span == 0 else (series[i].close - low_n) / span * 100.0

    pct_d = [NAN] * n
    for i in range(k_period - 1 + d_period - 1, n):
        pct_d[i] = sum(pct_k[i - d_period + 1 : i + 1]) / d_period
    return pct_k, pct_d


# ── Snapshot ─────────────────────────────────────────────────────────────


def _last(values: list[float], default: float) -> float:
    if not values or math.isnan(values[-1]):
        return default
    return values[-1]


def snapshot(series: list[PricePoint], strict: bool = False) -> IndicatorSnapshot:
    """Latest value of every indicator for *series*.

    Non-strict mode substitutes neutral defaults (RSI 50, flat MACD, bands
    and averages on the current price) for anything not yet ready.  Strict
    mode raises ``InsufficientDataError`` unless all indicators are ready,
    which takes 50 bars (SMA 50).
    """
    if not series:
        raise InsufficientDataError("Cannot snapshot an empty series")
    if strict:
        _require(series, 50, "a full indicator snapshot")

    closes = closes_of(series)
    price = closes[-1]
    upper, middle, lower = bollinger(closes)
    line, signal_line, hist = macd(closes)
    pct_k, pct_d = stochastic(series)

    return IndicatorSnapshot(
        price=price,
        sma20=_last(sma(closes, 20), price),
        sma50=_last(sma(closes, 50), price),
        ema12=_last(ema(closes, 12), price),
        ema26=_last(ema(closes, 26), price),
        rsi=_last(rsi(closes), 50.0),
        macd=_last(line, 0.0),
        macd_signal=_last(signal_line, 0.0),
        macd_histogram=_last(hist, 0.0),
        bb_upper=_last(upper, price),
        bb_middle=_last(middle, price),
        bb_lower=_last(lower, price),
        stoch_k=_last(pct_k, 50.0),
        stoch_d=_last(pct_d, 50.0),
        bars=len(series),
    )


def latest_rsi(values: list[float], period: int = 14, strict: bool = False) -> float:
    """Most recent RSI, or 50 when there is not enough data (non-strict)."""
    if strict:
        _require(values, period + 1, f"RSI({period})")
    return _last(rsi(values, period), 50.0)


def latest_bollinger(
    values: list[float], period: int = 20, k: float = 2.0, strict: bool = False,
) -> tuple[float, float, float]:
    """Most recent ``(upper, middle, lower)``; centred on the last price when short."""
    if strict:
        _require(values, period, f"Bollinger({period})")
    if not values:
        raise InsufficientDataError("Cannot compute Bollinger Bands of an empty series")
    price = values[-1]
    upper, middle, lower = bollinger(values, period, k)
    return _last(upper, price), _last(middle, price), _last(lower, price)
