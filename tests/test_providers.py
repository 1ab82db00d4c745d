"""Tests for fluxquant.market.providers — vendor adapters with mocked HTTP responses."""

import httpx
import pytest

from conftest import make_series
from fluxquant.errors import ProviderResponseError, ProviderUnavailableError, RateLimitedError
from fluxquant.market.gateway import MarketDataGateway
from fluxquant.market.providers import (
    AlphaVantageProvider,
    CoinGeckoProvider,
    TwelveDataProvider,
    YahooFinanceProvider,
)

# ── Mock vendor responses ───────────────────────────────────────────────

MOCK_COINGECKO_MARKETS = [
    {
        "id": "bitcoin",
        "current_price": 45000.0,
        "price_change_24h": 900.0,
        "price_change_percentage_24h": 2.04,
        "total_volume": 25_000_000_000,
        "market_cap": 880_000_000_000,
        "last_updated": "2025-01-10T12:00:00.000Z",
    }
]

MOCK_COINGECKO_CHART = {
    "prices": [
        [1736467200000, 44000.0],
        [1736553600000, 44500.0],
        [1736640000000, 45000.0],
    ],
    "total_volumes": [
        [1736467200000, 1.0e9],
        [1736553600000, 1.1e9],
        [1736640000000, 1.2e9],
    ],
}

MOCK_YAHOO_CHART = {
    "chart": {
        "result": [
            {
                "meta": {
                    "regularMarketPrice": 190.0,
                    "chartPreviousClose": 200.0,
                    "regularMarketVolume": 50_000_000,
                    "regularMarketTime": 1736553600,
                },
                "timestamp": [1736467200, 1736553600, 1736640000],
                "indicators": {
                    "quote": [
                        {
                            "open": [199.0, 200.0, 195.0],
                            "high": [201.0, 202.0, 196.0],
                            "low": [198.0, 194.0, 189.0],
                            "close": [200.0, None, 190.0],
                            "volume": [1000, 1100, 1200],
                        }
                    ]
                },
            }
        ],
        "error": None,
    }
}

MOCK_AV_QUOTE = {
    "Global Quote": {
        "01. symbol": "MSFT",
        "05. price": "410.50",
        "06. volume": "21000000",
        "07. latest trading day": "2025-01-10",
        "09. change": "-4.10",
        "10. change percent": "-0.9889%",
    }
}

MOCK_AV_DAILY = {
    "Time Series (Daily)": {
        "2025-01-10": {"1. open": "3", "2. high": "4", "3. low": "2", "4. close": "3.5", "5. volume": "10"},
        "2025-01-08": {"1. open": "1", "2. high": "2", "3. low": "1", "4. close": "1.5", "5. volume": "10"},
        "2025-01-09": {"1. open": "2", "2. high": "3", "3. low": "1", "4. close": "2.5", "5. volume": "10"},
    }
}

MOCK_TWELVE_QUOTE = {
    "symbol": "NVDA",
    "datetime": "2025-01-10",
    "close": "140.0",
    "change": "7.0",
    "percent_change": "5.26",
    "volume": "300000000",
}


def _install(monkeypatch, payload=None, status=200, text=None, exc=None, seen=None):
    """Patch ``httpx.AsyncClient.get`` to return a canned response."""

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        if seen is not None:
            seen.append({"url": url, "params": params})
        if exc is not None:
            raise exc
        request = httpx.Request("GET", url)
        if text is not None:
            return httpx.Response(status, text=text, request=request)
        return httpx.Response(status, json=payload, request=request)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)


class TestHttpErrors:
    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self, monkeypatch):
        _install(monkeypatch, payload={}, status=429)
        with pytest.raises(RateLimitedError):
            await CoinGeckoProvider().fetch_quote("bitcoin")

    @pytest.mark.asyncio
    async def test_5xx_is_unavailable(self, monkeypatch):
        _install(monkeypatch, payload={}, status=503)
        with pytest.raises(ProviderUnavailableError):
            await CoinGeckoProvider().fetch_quote("bitcoin")

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self, monkeypatch):
        _install(monkeypatch, exc=httpx.ConnectError("boom"))
        with pytest.raises(ProviderUnavailableError) as info:
            await YahooFinanceProvider().fetch_quote("AAPL")
        assert info.value.kind == "network"

    @pytest.mark.asyncio
    async def test_non_json_is_parse_error(self, monkeypatch):
        _install(monkeypatch, text="<html>oops</html>")
        with pytest.raises(ProviderResponseError):
            await CoinGeckoProvider().fetch_quote("bitcoin")


class TestCoinGecko:
    @pytest.mark.asyncio
    async def test_quote(self, monkeypatch):
        seen = []
        _install(monkeypatch, MOCK_COINGECKO_MARKETS, seen=seen)
        quote = await CoinGeckoProvider().fetch_quote("bitcoin")
        assert quote.price == 45000.0
        assert quote.change_percent == pytest.approx(2.04)
        assert quote.market_cap == 880_000_000_000
        assert quote.source == "coingecko"
        assert seen[0]["params"]["ids"] == "bitcoin"

    @pytest.mark.asyncio
    async def test_unknown_coin(self, monkeypatch):
        _install(monkeypatch, [])
        with pytest.raises(ProviderResponseError, match="unknown coin"):
            await CoinGeckoProvider().fetch_quote("nope")

    @pytest.mark.asyncio
    async def test_history(self, monkeypatch):
        _install(monkeypatch, MOCK_COINGECKO_CHART)
        series = await CoinGeckoProvider().fetch_historical("bitcoin", 3)
        assert [p.close for p in series] == [44000.0, 44500.0, 45000.0]
        assert series[1].open == 44000.0
        assert series[2].volume == 1.2e9
        assert series[0].timestamp < series[1].timestamp

    def test_supports_lowercase_ids_only(self):
        provider = CoinGeckoProvider()
        assert provider.supports("bitcoin")
        assert not provider.supports("AAPL")


class TestYahoo:
    @pytest.mark.asyncio
    async def test_quote_from_meta(self, monkeypatch):
        _install(monkeypatch, MOCK_YAHOO_CHART)
        quote = await YahooFinanceProvider().fetch_quote("AAPL")
        assert quote.price == 190.0
        assert quote.change == pytest.approx(-10.0)
        assert quote.change_percent == pytest.approx(-5.0)
        assert quote.market_cap is None

    @pytest.mark.asyncio
    async def test_history_skips_missing_bars(self, monkeypatch):
        _install(monkeypatch, MOCK_YAHOO_CHART)
        series = await YahooFinanceProvider().fetch_historical("AAPL", 3)
        assert [p.close for p in series] == [200.0, 190.0]

    @pytest.mark.asyncio
    async def test_chart_error(self, monkeypatch):
        _install(monkeypatch, {"chart": {"result": None, "error": {"description": "No data found"}}})
        with pytest.raises(ProviderResponseError, match="No data found"):
            await YahooFinanceProvider().fetch_quote("ZZZZ")


class TestAlphaVantage:
    @pytest.mark.asyncio
    async def test_quote(self, monkeypatch):
        seen = []
        _install(monkeypatch, MOCK_AV_QUOTE, seen=seen)
        quote = await AlphaVantageProvider().fetch_quote("MSFT", api_key="k1")
        assert quote.price == 410.50
        assert quote.change_percent == pytest.approx(-0.9889)
        assert seen[0]["params"]["apikey"] == "k1"

    @pytest.mark.asyncio
    async def test_note_means_rate_limited(self, monkeypatch):
        _install(monkeypatch, {"Note": "Thank you for using Alpha Vantage! call frequency"})
        with pytest.raises(RateLimitedError):
            await AlphaVantageProvider().fetch_quote("MSFT", api_key="k1")

    @pytest.mark.asyncio
    async def test_error_message_is_parse_error(self, monkeypatch):
        _install(monkeypatch, {"Error Message": "Invalid API call"})
        with pytest.raises(ProviderResponseError):
            await AlphaVantageProvider().fetch_quote("MSFT", api_key="k1")

    @pytest.mark.asyncio
    async def test_requires_key(self):
        with pytest.raises(ProviderResponseError, match="API key"):
            await AlphaVantageProvider().fetch_quote("MSFT")

    @pytest.mark.asyncio
    async def test_history_sorted_and_trimmed(self, monkeypatch):
        _install(monkeypatch, MOCK_AV_DAILY)
        series = await AlphaVantageProvider().fetch_historical("MSFT", 2, api_key="k1")
        assert [p.close for p in series] == [2.5, 3.5]


class TestTwelveData:
    @pytest.mark.asyncio
    async def test_quote(self, monkeypatch):
        _install(monkeypatch, MOCK_TWELVE_QUOTE)
        quote = await TwelveDataProvider().fetch_quote("NVDA", api_key="t1")
        assert quote.price == 140.0
        assert quote.change_percent == pytest.approx(5.26)

    @pytest.mark.asyncio
    async def test_error_status_429(self, monkeypatch):
        _install(monkeypatch, {"status": "error", "code": 429, "message": "API credits exhausted"})
        with pytest.raises(RateLimitedError):
            await TwelveDataProvider().fetch_quote("NVDA", api_key="t1")

    @pytest.mark.asyncio
    async def test_error_status_other(self, monkeypatch):
        _install(monkeypatch, {"status": "error", "code": 400, "message": "symbol not found"})
        with pytest.raises(ProviderResponseError, match="symbol not found"):
            await TwelveDataProvider().fetch_quote("NVDA", api_key="t1")


# ── Malformed payloads ──────────────────────────────────────────────────


def _yahoo_chart(quote):
    return {
        "chart": {
            "result": [{"timestamp": [1736467200, 1736553600, 1736640000],
                        "indicators": {"quote": [quote]}}],
            "error": None,
        }
    }


class _BackupProvider:
    name = "backup"
    requires_key = False

    def __init__(self):
        self.calls = 0

    def supports(self, symbol):
        return True

    async def fetch_quote(self, symbol, api_key=None):
        raise AssertionError("not used")

    async def fetch_historical(self, symbol, days, api_key=None):
        self.calls += 1
        return make_series([10.0, 11.0, 12.0])


class TestMalformedPayloads:
    @pytest.mark.asyncio
    async def test_yahoo_ragged_arrays_are_parse_errors(self, monkeypatch):
        _install(monkeypatch, _yahoo_chart({
            "open": [1.0, 2.0, 3.0], "high": [1.0, 2.0, 3.0], "low": [1.0, 2.0, 3.0],
            "close": [1.0, 2.0], "volume": [0, 0, 0],
        }))
        with pytest.raises(ProviderResponseError, match="malformed chart bar"):
            await YahooFinanceProvider().fetch_historical("AAPL", 3)

    @pytest.mark.asyncio
    async def test_yahoo_missing_open_is_parse_error(self, monkeypatch):
        _install(monkeypatch, _yahoo_chart({
            "high": [1.0, 2.0, 3.0], "low": [1.0, 2.0, 3.0],
            "close": [1.0, 2.0, 3.0], "volume": [0, 0, 0],
        }))
        with pytest.raises(ProviderResponseError):
            await YahooFinanceProvider().fetch_historical("AAPL", 3)

    @pytest.mark.asyncio
    async def test_yahoo_list_payload_is_parse_error(self, monkeypatch):
        _install(monkeypatch, [1, 2, 3])
        with pytest.raises(ProviderResponseError, match="unexpected payload"):
            await YahooFinanceProvider().fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_coingecko_null_close_is_parse_error(self, monkeypatch):
        _install(monkeypatch, {"prices": [[1736467200000, 44000.0], [1736553600000, None]]})
        with pytest.raises(ProviderResponseError, match="malformed price row"):
            await CoinGeckoProvider().fetch_historical("bitcoin", 2)

    @pytest.mark.asyncio
    async def test_coingecko_short_row_is_parse_error(self, monkeypatch):
        _install(monkeypatch, {"prices": [[1736467200000]]})
        with pytest.raises(ProviderResponseError):
            await CoinGeckoProvider().fetch_historical("bitcoin", 1)

    @pytest.mark.asyncio
    async def test_twelvedata_non_numeric_code(self, monkeypatch):
        _install(monkeypatch, {"status": "error", "code": "bad", "message": "odd"})
        with pytest.raises(ProviderResponseError, match="odd"):
            await TwelveDataProvider().fetch_quote("NVDA", api_key="t1")

    @pytest.mark.asyncio
    async def test_gateway_falls_back_on_malformed_history(self, monkeypatch, clock):
        _install(monkeypatch, _yahoo_chart({
            "high": [1.0, 2.0, 3.0], "low": [1.0, 2.0, 3.0],
            "close": [1.0, 2.0], "volume": [0, 0, 0],
        }))
        backup = _BackupProvider()
        gateway = MarketDataGateway([YahooFinanceProvider(), backup], clock=clock)
        series = await gateway.fetch_historical("AAPL", 3)
        assert [p.close for p in series] == [10.0, 11.0, 12.0]
        assert backup.calls == 1
