"""Market data gateway — ordered provider fallback backed by the key pool.

Providers are tried in order.  Quota-limited providers need a credential
lease first; when none is available the provider is skipped without a
network call.  Any provider failure moves on to the next one, and only when
the whole chain fails does the caller see ``AllProvidersFailedError``.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from fluxquant.clock import Clock, utc_now
from fluxquant.errors import (
    AllProvidersFailedError,
    ProviderError,
    ProviderFailure,
    RateLimitedError,
)
from fluxquant.market.cache import TTLCache
from fluxquant.market.key_pool import ProviderKeyPool
from fluxquant.market.models import CredentialHandle, PricePoint, Quote, validate_series
from fluxquant.market.providers import MarketDataProvider

logger = logging.getLogger("fluxquant.gateway")

# Bounded wait for a credential lease held by a concurrent caller
_LEASE_WAIT_SECONDS = 2.0
_LEASE_POLL_SECONDS = 0.05


class MarketDataGateway:
    """Fetches quotes and history from an ordered provider chain.

    Args:
        providers: Provider adapters, highest priority first.
        key_pool: Pool supplying credentials for ``requires_key`` providers.
        clock: Returns the current aware UTC time (drives the caches).
        quote_ttl: How long a fetched quote is served from cache.
        history_ttl: How long a fetched series is served from cache.
        lease_wait: Max seconds to wait when all credentials are leased.
    """

    def __init__(
        self,
        providers: list[MarketDataProvider],
        key_pool: Optional[ProviderKeyPool] = None,
        clock: Clock = utc_now,
        quote_ttl: timedelta = timedelta(minutes=2),
        history_ttl: timedelta = timedelta(minutes=15),
        lease_wait: float = _LEASE_WAIT_SECONDS,
    ) -> None:
        if not providers:
            raise ValueError("MarketDataGateway needs at least one provider")
        self._providers = list(providers)
        self._key_pool = key_pool or ProviderKeyPool(clock=clock)
        self._quotes: TTLCache[Quote] = TTLCache(quote_ttl, clock=clock)
        self._history: TTLCache[list[PricePoint]] = TTLCache(history_ttl, clock=clock)
        self._lease_wait = lease_wait

    @property
    def key_pool(self) -> ProviderKeyPool:
        return self._key_pool

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers]

    # ── Public API ───────────────────────────────────────────────────────

    async def fetch_quote(self, symbol: str) -> Quote:
        """Return a normalised ``Quote`` for *symbol*.

        Raises ``AllProvidersFailedError`` listing each provider's failure.
        """
        cached = self._quotes.get(symbol)
        if cached is not None:
            return cached

        quote = await self._first_success(
            symbol, lambda p, key: p.fetch_quote(symbol, api_key=key),
        )
        self._quotes.put(symbol, quote)
        return quote

    async def fetch_historical(self, symbol: str, days: int) -> list[PricePoint]:
        """Return up to *days* daily bars for *symbol*, oldest first."""
        if days <= 0:
            raise ValueError(f"days must be positive, got {days}")
        key = (symbol, days)
        cached = self._history.get(key)
        if cached is not None:
            return list(cached)

        series = await self._first_success(
            symbol, lambda p, api_key: p.fetch_historical(symbol, days, api_key=api_key),
        )
        series = validate_series(series[-days:])
        self._history.put(key, series)
        return list(series)

    # ── Fallback chain ───────────────────────────────────────────────────

    async def _first_success(
        self,
        symbol: str,
        call: Callable[[MarketDataProvider, Optional[str]], Awaitable],
    ):
        failures: list[ProviderFailure] = []

        for provider in self._providers:
            if not provider.supports(symbol):
                continue

            handle: Optional[CredentialHandle] = None
            if provider.requires_key:
                handle, failure = await self._lease(provider.name)
                if handle is None:
                    failures.append(failure)
                    logger.warning(
                        "Skipping %s for %s: %s", provider.name, symbol, failure.message,
                    )
                    continue

            try:
                result = await call(provider, handle.api_key if handle else None)
            except RateLimitedError as exc:
                if handle is not None:
                    self._key_pool.mark_exhausted(handle)
                failures.append(ProviderFailure(provider.name, exc.kind, exc.message))
                logger.warning("%s rate-limited for %s: %s", provider.name, symbol, exc.message)
                continue
            except ProviderError as exc:
                if handle is not None:
                    # A parse error was a served request; a network error was not.
                    if exc.kind == "parse":
                        self._key_pool.record_usage(handle)
                    else:
                        self._key_pool.release(handle)
                failures.append(ProviderFailure(provider.name, exc.kind, exc.message))
                logger.warning(
                    "%s failed for %s (%s): %s; falling back",
                    provider.name, symbol, exc.kind, exc.message,
                )
                continue
            except Exception as exc:
                # Unmapped adapter failure: treat the payload as unparseable.
                if handle is not None:
                    self._key_pool.record_usage(handle)
                failures.append(ProviderFailure(provider.name, "parse", repr(exc)))
                logger.exception(
                    "%s raised an unexpected error for %s; falling back", provider.name, symbol,
                )
                continue
            except BaseException:
                if handle is not None:
                    self._key_pool.release(handle)
                raise

            if handle is not None:
                self._key_pool.record_usage(handle)
            return result

        raise AllProvidersFailedError(symbol, failures)

    async def _lease(
        self, provider: str,
    ) -> tuple[Optional[CredentialHandle], Optional[ProviderFailure]]:
        """Acquire a credential, waiting briefly if all are leased by others."""
        if not self._key_pool.has_provider(provider):
            return None, ProviderFailure(provider, "exhausted", "no credentials configured")

        waited = 0.0
        while True:
            handle = self._key_pool.acquire(provider)
            if handle is not None:
                return handle, None
            if self._key_pool.is_exhausted(provider):
                return None, ProviderFailure(provider, "exhausted", "all credentials exhausted")
            if waited >= self._lease_wait:
                return None, ProviderFailure(provider, "busy", "all credentials in use")
            await asyncio.sleep(_LEASE_POLL_SECONDS)
            waited += _LEASE_POLL_SECONDS
