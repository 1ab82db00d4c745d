"""Shared fixtures: a manually advanced clock and price-series builders."""

from datetime import datetime, timedelta, timezone

import pytest

from fluxquant.config import Config
from fluxquant.market.models import PricePoint, Quote

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return ManualClock()


def make_series(closes, start: datetime = T0, volume: float = 1_000_000.0):
    """Daily bars with open = previous close and a 1% high/low band."""
    points = []
    prev = closes[0]
    for i, close in enumerate(closes):
        open_ = prev
        points.append(
            PricePoint(
                timestamp=start + timedelta(days=i),
                open=open_,
                high=max(open_, close) * 1.01,
                low=min(open_, close) * 0.99,
                close=close,
                volume=volume,
            )
        )
        prev = close
    return points


def make_quote(symbol="AAPL", price=100.0, change_percent=0.0, volume=5_000_000.0,
               market_cap=None, source="test"):
    return Quote(
        symbol=symbol,
        price=price,
        change=price * change_percent / 100.0,
        change_percent=change_percent,
        volume=volume,
        market_cap=market_cap,
        timestamp=T0,
        source=source,
    )


def make_config(tmp_path, **overrides) -> Config:
    """Demo-mode config backed by a throwaway database, with no request delay."""
    values = dict(
        db_path=str(tmp_path / "fluxquant.db"),
        log_level="INFO",
        api_port=8080,
        alpha_vantage_keys=(),
        alpha_vantage_daily_limit=500,
        twelve_data_keys=(),
        twelve_data_daily_limit=800,
        request_timeout_seconds=15.0,
        request_delay_ms=0,
        quote_cache_seconds=120.0,
        history_cache_seconds=900.0,
        scan_cooldown_seconds=300.0,
        scan_interval_minutes=15.0,
        scan_history_days=60,
        alert_min_confidence=0.6,
        alert_refresh_policy="leave",
        alert_retention_days=7,
        sharpe_periods_per_year=252,
        initial_capital=10_000.0,
        position_fraction=1.0,
        commission=0.0,
        commission_percent=0.0,
        demo_mode=True,
        crypto_universe=("bitcoin",),
        stock_universe=("AAPL", "MSFT"),
    )
    values.update(overrides)
    return Config(**values)
