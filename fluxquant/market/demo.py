"""Demo-mode provider — deterministic synthetic quotes and series.

Only wired in when ``DEMO_MODE`` / ``--demo`` is set.  Each symbol gets its
own seeded generator so repeated runs produce identical data.
"""

import random
import zlib
from datetime import datetime, timedelta, timezone
from typing import Optional

from fluxquant.market.models import PricePoint, Quote

_BASE_PRICES: dict[str, float] = {
    "bitcoin": 45_000.0,
    "BTC": 45_000.0,
    "ethereum": 2_800.0,
    "ETH": 2_800.0,
    "AAPL": 180.0,
    "NVDA": 450.0,
    "TSLA": 250.0,
}


class DemoProvider:
    """Synthetic random-walk market data for offline demos.

    Args:
        anchor: Date of the last generated bar.  Defaults to today (UTC).
    """

    name = "demo"
    requires_key = False

    def __init__(self, anchor: Optional[datetime] = None) -> None:
        anchor = anchor or datetime.now(timezone.utc)
        self._anchor = anchor.replace(hour=0, minute=0, second=0, microsecond=0)

    def supports(self, symbol: str) -> bool:
        return True

    def _rng(self, symbol: str) -> random.Random:
        return random.Random(zlib.crc32(symbol.encode("utf-8")))

    def _volatility(self, symbol: str) -> float:
        return 0.05 if symbol.lower() == symbol or symbol in ("BTC", "ETH") else 0.03

    def _series(self, symbol: str, days: int) -> list[PricePoint]:
        rng = self._rng(symbol)
        base = _BASE_PRICES.get(symbol, 100.0)
        price = base * (0.8 + rng.random() * 0.4)
        vol = self._volatility(symbol)
        start = self._anchor - timedelta(days=days - 1)
        points: list[PricePoint] = []
        for i in range(days):
            change = (rng.random() - 0.5) * vol + 0.0005
            open_ = price
            close = price * (1 + change)
            points.append(
                PricePoint(
                    timestamp=start + timedelta(days=i),
                    open=open_,
                    high=max(open_, close) * (1 + rng.random() * 0.02),
                    low=min(open_, close) * (1 - rng.random() * 0.02),
                    close=close,
                    volume=float(rng.randint(500_000, 1_500_000)),
                )
            )
            price = close
        return points

    async def fetch_quote(self, symbol: str, api_key: Optional[str] = None) -> Quote:
        prev, last = self._series(symbol, 90)[-2:]
        change = last.close - prev.close
        return Quote(
            symbol=symbol,
            price=last.close,
            change=change,
            change_percent=change / prev.close * 100.0,
            volume=last.volume,
            market_cap=last.close * 19_000_000,
            timestamp=last.timestamp,
            source=self.name,
        )

    async def fetch_historical(
        self, symbol: str, days: int, api_key: Optional[str] = None,
    ) -> list[PricePoint]:
        return self._series(symbol, days)
