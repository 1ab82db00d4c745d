"""Vendor market-data adapters.

Each adapter performs a single HTTP attempt and normalises the vendor
payload into ``Quote`` / ``PricePoint``.  Failures are mapped onto the
``ProviderError`` hierarchy; retrying against another vendor is the
gateway's job, not the adapter's.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, runtime_checkable

import httpx

from fluxquant.errors import (
    ProviderResponseError,
    ProviderUnavailableError,
    RateLimitedError,
)
from fluxquant.market.models import PricePoint, Quote

logger = logging.getLogger("fluxquant.providers")

_SERVER_ERROR_FLOOR = 500


@runtime_checkable
class MarketDataProvider(Protocol):
    """Contract every vendor adapter satisfies."""

    name: str
    requires_key: bool

    def supports(self, symbol: str) -> bool:
        """Whether this vendor can serve *symbol* at all."""
        ...

    async def fetch_quote(self, symbol: str, api_key: Optional[str] = None) -> Quote:
        ...

    async def fetch_historical(
        self, symbol: str, days: int, api_key: Optional[str] = None,
    ) -> list[PricePoint]:
        ...


class HttpProvider:
    """Shared HTTP plumbing for the concrete adapters."""

    name = "http"
    requires_key = False

    def __init__(self, base_url: str, timeout: float = 15.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {"Accept": "application/json", "User-Agent": "fluxquant/0.1"}

    async def _get_json(self, path: str, params: Optional[dict] = None):
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    url,
                    headers=self._headers,
                    params=params,
                    timeout=self._timeout,
                )
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(self.name, f"transport error: {exc}") from exc

        if resp.status_code == 429:
            raise RateLimitedError(self.name, "HTTP 429 Too Many Requests")
        if resp.status_code >= _SERVER_ERROR_FLOOR:
            raise ProviderUnavailableError(self.name, f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise ProviderResponseError(self.name, f"HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderResponseError(self.name, "response is not JSON") from exc

    def _parse_error(self, message: str) -> ProviderResponseError:
        return ProviderResponseError(self.name, message)


def _ts(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _day(value: str) -> datetime:
    return datetime.strptime(value[:10], "%Y-%m-%d").replace(tzinfo=timezone.utc)


def _or(value, fallback) -> float:
    return float(value if value is not None else fallback)


def _dedupe_sorted(points: list[PricePoint]) -> list[PricePoint]:
    """Sort by time and keep the last bar for any repeated timestamp."""
    by_time: dict[datetime, PricePoint] = {}
    for p in points:
        by_time[p.timestamp] = p
    return [by_time[t] for t in sorted(by_time)]


# ── CoinGecko (crypto, free) ─────────────────────────────────────────────


class CoinGeckoProvider(HttpProvider):
    """CoinGecko public API.  Symbols are CoinGecko ids (``bitcoin``)."""

    name = "coingecko"

    def __init__(self, base_url: str = "https://api.coingecko.com/api/v3", timeout: float = 15.0) -> None:
        super().__init__(base_url, timeout)

    def supports(self, symbol: str) -> bool:
        return symbol == symbol.lower()

    async def fetch_quote(self, symbol: str, api_key: Optional[str] = None) -> Quote:
        data = await self._get_json(
            "/coins/markets", params={"vs_currency": "usd", "ids": symbol},
        )
        if not isinstance(data, list) or not data:
            raise self._parse_error(f"unknown coin id '{symbol}'")
        row = data[0]
        try:
            price = float(row["current_price"])
            updated = row.get("last_updated")
            return Quote(
                symbol=symbol,
                price=price,
                change=float(row.get("price_change_24h") or 0.0),
                change_percent=float(row.get("price_change_percentage_24h") or 0.0),
                volume=float(row.get("total_volume") or 0.0),
                market_cap=float(row["market_cap"]) if row.get("market_cap") else None,
                timestamp=(
                    datetime.fromisoformat(updated.replace("Z", "+00:00"))
                    if updated else datetime.now(timezone.utc)
                ),
                source=self.name,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise self._parse_error(f"malformed market row: {exc}") from exc

    async def fetch_historical(
        self, symbol: str, days: int, api_key: Optional[str] = None,
    ) -> list[PricePoint]:
        data = await self._get_json(
            f"/coins/{symbol}/market_chart",
            params={"vs_currency": "usd", "days": days, "interval": "daily"},
        )
        try:
            prices = data["prices"]
            volumes = {int(ts): float(v) for ts, v in data.get("total_volumes", [])}
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise self._parse_error(f"malformed market_chart: {exc}") from exc

        # Daily closes only; open is the previous close.
        points: list[PricePoint] = []
        prev_close: Optional[float] = None
        try:
            for ts_ms, close in prices:
                close = float(close)
                open_ = prev_close if prev_close is not None else close
                points.append(
                    PricePoint(
                        timestamp=_ts(ts_ms / 1000).replace(hour=0, minute=0, second=0, microsecond=0),
                        open=open_,
                        high=max(open_, close),
                        low=min(open_, close),
                        close=close,
                        volume=volumes.get(int(ts_ms), 0.0),
                    )
                )
                prev_close = close
        except (TypeError, ValueError, OverflowError, OSError) as exc:
            raise self._parse_error(f"malformed price row: {exc}") from exc
        return _dedupe_sorted(points)


# ── Yahoo Finance chart API (stocks, free) ───────────────────────────────


class YahooFinanceProvider(HttpProvider):
    """Unofficial Yahoo Finance chart endpoint.  Symbols are tickers (``AAPL``)."""

    name = "yahoo"

    def __init__(self, base_url: str = "https://query1.finance.yahoo.com", timeout: float = 15.0) -> None:
        super().__init__(base_url, timeout)

    def supports(self, symbol: str) -> bool:
        return symbol == symbol.upper()

    async def _chart(self, symbol: str, params: dict) -> dict:
        data = await self._get_json(f"/v8/finance/chart/{symbol}", params=params)
        if not isinstance(data, dict):
            raise self._parse_error("unexpected payload type")
        chart = data.get("chart") or {}
        if chart.get("error"):
            raise self._parse_error(str(chart["error"].get("description", chart["error"])))
        results = chart.get("result") or []
        if not results or not isinstance(results[0], dict):
            raise self._parse_error(f"no chart result for '{symbol}'")
        return results[0]

    async def fetch_quote(self, symbol: str, api_key: Optional[str] = None) -> Quote:
        result = await self._chart(symbol, {"range": "5d", "interval": "1d"})
        try:
            meta = result.get("meta") or {}
            price = float(meta["regularMarketPrice"])
            prev = float(meta.get("chartPreviousClose") or meta.get("previousClose") or price)
            volume = float(meta.get("regularMarketVolume") or 0.0)
            stamp = (
                _ts(meta["regularMarketTime"]) if meta.get("regularMarketTime")
                else datetime.now(timezone.utc)
            )
        except (AttributeError, KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
            raise self._parse_error(f"malformed chart meta: {exc}") from exc
        change = price - prev
        return Quote(
            symbol=symbol,
            price=price,
            change=change,
            change_percent=(change / prev * 100.0) if prev else 0.0,
            volume=volume,
            market_cap=None,
            timestamp=stamp,
            source=self.name,
        )

    async def fetch_historical(
        self, symbol: str, days: int, api_key: Optional[str] = None,
    ) -> list[PricePoint]:
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=days)
        result = await self._chart(
            symbol,
            {"period1": int(start.timestamp()), "period2": int(end.timestamp()), "interval": "1d"},
        )
        try:
            stamps = result["timestamp"]
            q = result["indicators"]["quote"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise self._parse_error(f"malformed chart series: {exc}") from exc

        points: list[PricePoint] = []
        try:
            for i, ts in enumerate(stamps):
                close = q["close"][i]
                if close is None:  # halted / missing bar
                    continue
                points.append(
                    PricePoint(
                        timestamp=_ts(ts),
                        open=_or(q["open"][i], close),
                        high=_or(q["high"][i], close),
                        low=_or(q["low"][i], close),
                        close=float(close),
                        volume=_or(q["volume"][i], 0.0),
                    )
                )
        except (KeyError, IndexError, TypeError, ValueError, OverflowError, OSError) as exc:
            raise self._parse_error(f"malformed chart bar: {exc}") from exc
        return _dedupe_sorted(points)


# ── Alpha Vantage (stocks, quota-limited) ────────────────────────────────


class AlphaVantageProvider(HttpProvider):
    """Alpha Vantage REST API.  Needs a key from the pool on every call."""

    name = "alphavantage"
    requires_key = True

    def __init__(self, base_url: str = "https://www.alphavantage.co", timeout: float = 15.0) -> None:
        super().__init__(base_url, timeout)

    def supports(self, symbol: str) -> bool:
        return symbol == symbol.upper()

    async def _query(self, params: dict, api_key: Optional[str]) -> dict:
        if not api_key:
            raise self._parse_error("an API key is required")
        data = await self._get_json("/query", params={**params, "apikey": api_key})
        if not isinstance(data, dict):
            raise self._parse_error("unexpected payload type")
        # Alpha Vantage reports throttling with HTTP 200 and a note.
        note = data.get("Note") or data.get("Information")
        if note:
            raise RateLimitedError(self.name, note)
        if "Error Message" in data:
            raise self._parse_error(data["Error Message"])
        return data

    async def fetch_quote(self, symbol: str, api_key: Optional[str] = None) -> Quote:
        data = await self._query({"function": "GLOBAL_QUOTE", "symbol": symbol}, api_key)
        gq = data.get("Global Quote") or {}
        if not gq:
            raise self._parse_error(f"no quote for '{symbol}'")
        try:
            return Quote(
                symbol=symbol,
                price=float(gq["05. price"]),
                change=float(gq["09. change"]),
                change_percent=float(str(gq["10. change percent"]).rstrip("%")),
                volume=float(gq["06. volume"]),
                market_cap=None,
                timestamp=_day(gq["07. latest trading day"]),
                source=self.name,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise self._parse_error(f"malformed Global Quote: {exc}") from exc

    async def fetch_historical(
        self, symbol: str, days: int, api_key: Optional[str] = None,
    ) -> list[PricePoint]:
        outputsize = "compact" if days <= 100 else "full"
        data = await self._query(
            {"function": "TIME_SERIES_DAILY", "symbol": symbol, "outputsize": outputsize},
            api_key,
        )
        series = data.get("Time Series (Daily)")
        if not series:
            raise self._parse_error(f"no daily series for '{symbol}'")
        try:
            points = [
                PricePoint(
                    timestamp=_day(day),
                    open=float(bar["1. open"]),
                    high=float(bar["2. high"]),
                    low=float(bar["3. low"]),
                    close=float(bar["4. close"]),
                    volume=float(bar["5. volume"]),
                )
                for day, bar in series.items()
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise self._parse_error(f"malformed daily bar: {exc}") from exc
        return _dedupe_sorted(points)[-days:]


# ── Twelve Data (stocks, quota-limited) ──────────────────────────────────


class TwelveDataProvider(HttpProvider):
    """Twelve Data REST API.  Needs a key from the pool on every call."""

    name = "twelvedata"
    requires_key = True

    def __init__(self, base_url: str = "https://api.twelvedata.com", timeout: float = 15.0) -> None:
        super().__init__(base_url, timeout)

    def supports(self, symbol: str) -> bool:
        return symbol == symbol.upper()

    async def _call(self, path: str, params: dict, api_key: Optional[str]) -> dict:
        if not api_key:
            raise self._parse_error("an API key is required")
        data = await self._get_json(path, params={**params, "apikey": api_key})
        if not isinstance(data, dict):
            raise self._parse_error("unexpected payload type")
        if data.get("status") == "error":
            if str(data.get("code")) == "429":
                raise RateLimitedError(self.name, data.get("message", "rate limited"))
            raise self._parse_error(data.get("message", "error status"))
        return data

    async def fetch_quote(self, symbol: str, api_key: Optional[str] = None) -> Quote:
        data = await self._call("/quote", {"symbol": symbol}, api_key)
        try:
            return Quote(
                symbol=symbol,
                price=float(data["close"]),
                change=float(data["change"]),
                change_percent=float(data["percent_change"]),
                volume=float(data.get("volume") or 0.0),
                market_cap=None,
                timestamp=_day(data["datetime"]),
                source=self.name,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise self._parse_error(f"malformed quote: {exc}") from exc

    async def fetch_historical(
        self, symbol: str, days: int, api_key: Optional[str] = None,
    ) -> list[PricePoint]:
        data = await self._call(
            "/time_series",
            {"symbol": symbol, "interval": "1day", "outputsize": days},
            api_key,
        )
        try:
            points = [
                PricePoint(
                    timestamp=_day(v["datetime"]),
                    open=float(v["open"]),
                    high=float(v["high"]),
                    low=float(v["low"]),
                    close=float(v["close"]),
                    volume=float(v.get("volume") or 0.0),
                )
                for v in data["values"]
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise self._parse_error(f"malformed time series: {exc}") from exc
        return _dedupe_sorted(points)
