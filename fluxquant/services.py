"""Service container — builds the key pool, gateway, backtester and scanner.

Every service is an explicit object constructed from a ``Config``; nothing
is module-global, so tests and the CLI can build independent instances.
"""

import logging
from datetime import timedelta
from typing import Optional

from fluxquant.alerts.scanner import AlertScanner, ScannerSettings
from fluxquant.backtest.engine import BacktestEngine, BacktestSettings
from fluxquant.clock import Clock, utc_now
from fluxquant.config import Config
from fluxquant.market.demo import DemoProvider
from fluxquant.market.gateway import MarketDataGateway
from fluxquant.market.key_pool import ProviderKeyPool
from fluxquant.market.models import ProviderCredential
from fluxquant.market.providers import (
    AlphaVantageProvider,
    CoinGeckoProvider,
    MarketDataProvider,
    TwelveDataProvider,
    YahooFinanceProvider,
)
from fluxquant.repos.alert_repo import AlertRepo
from fluxquant.repos.backtest_repo import BacktestRepo
from fluxquant.repos.cooldown_repo import CooldownRepo
from fluxquant.repos.credential_repo import CredentialRepo
from fluxquant.repos.db import init_db

logger = logging.getLogger("fluxquant.services")


def build_credentials(config: Config, clock: Clock = utc_now) -> list[ProviderCredential]:
    """One credential per configured API key, with ids ``<provider>-<n>``."""
    now = clock()
    credentials = []
    for provider, keys, limit in (
        (AlphaVantageProvider.name, config.alpha_vantage_keys, config.alpha_vantage_daily_limit),
        (TwelveDataProvider.name, config.twelve_data_keys, config.twelve_data_daily_limit),
    ):
        for i, key in enumerate(keys, start=1):
            credentials.append(ProviderCredential(
                id=f"{provider}-{i}",
                provider_name=provider,
                api_key=key,
                daily_limit=limit,
                used=0,
                window_start=now,
            ))
    return credentials


def restore_usage(
    configured: list[ProviderCredential],
    stored: list[ProviderCredential],
) -> list[ProviderCredential]:
    """Carry persisted usage onto freshly configured credentials.

    A stored row applies only when id and provider match.  Usage is clamped
    to the configured limit, which may have shrunk since it was saved.
    """
    by_id = {c.id: c for c in stored}
    for cred in configured:
        prev = by_id.get(cred.id)
        if prev is None or prev.provider_name != cred.provider_name:
            continue
        cred.used = min(prev.used, cred.daily_limit)
        cred.window_start = prev.window_start
    return configured


def build_providers(config: Config, demo: bool = False) -> list[MarketDataProvider]:
    """Ordered provider chain: free sources first, quota-limited after."""
    if demo:
        return [DemoProvider()]
    timeout = config.request_timeout_seconds
    providers: list[MarketDataProvider] = [
        CoinGeckoProvider(timeout=timeout),
        YahooFinanceProvider(timeout=timeout),
    ]
    if config.alpha_vantage_keys:
        providers.append(AlphaVantageProvider(timeout=timeout))
    if config.twelve_data_keys:
        providers.append(TwelveDataProvider(timeout=timeout))
    return providers


class Services:
    """Fully wired application services for one process.

    Args:
        config: Loaded configuration.
        demo: Use the synthetic demo provider instead of vendor APIs.
        clock: Shared clock for caches, key pool and scanner.
    """

    def __init__(
        self,
        config: Config,
        demo: Optional[bool] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config
        self.demo = config.demo_mode if demo is None else demo

        init_db(config.db_path)
        self.alert_repo = AlertRepo(config.db_path)
        self.cooldown_repo = CooldownRepo(config.db_path)
        self.credential_repo = CredentialRepo(config.db_path)
        self.backtest_repo = BacktestRepo(config.db_path)

        credentials = restore_usage(
            build_credentials(config, clock),
            self.credential_repo.load_provider_credentials(),
        )
        self.key_pool = ProviderKeyPool(credentials, clock=clock)

        self.gateway = MarketDataGateway(
            build_providers(config, self.demo),
            key_pool=self.key_pool,
            clock=clock,
            quote_ttl=timedelta(seconds=config.quote_cache_seconds),
            history_ttl=timedelta(seconds=config.history_cache_seconds),
        )

        self.backtester = BacktestEngine(
            self.gateway,
            BacktestSettings(
                initial_capital=config.initial_capital,
                position_fraction=config.position_fraction,
                commission=config.commission,
                commission_percent=config.commission_percent,
                periods_per_year=config.sharpe_periods_per_year,
                request_delay_ms=config.request_delay_ms,
            ),
        )

        self.scanner = AlertScanner(
            self.gateway,
            config.universes,
            alert_repo=self.alert_repo,
            cooldown_repo=self.cooldown_repo,
            settings=ScannerSettings(
                cooldown=timedelta(seconds=config.scan_cooldown_seconds),
                interval=timedelta(minutes=config.scan_interval_minutes),
                history_days=config.scan_history_days,
                min_confidence=config.alert_min_confidence,
                refresh_policy=config.alert_refresh_policy,
                retention=timedelta(days=config.alert_retention_days),
                request_delay_ms=config.request_delay_ms,
            ),
            clock=clock,
        )
        self.scanner.load()

        logger.info(
            "Services ready: providers=%s, credentials=%d%s",
            ", ".join(self.gateway.provider_names),
            len(credentials),
            " (demo mode)" if self.demo else "",
        )

    def persist_key_usage(self) -> None:
        """Write the key pool's usage counters to the store."""
        self.credential_repo.save_provider_credentials(self.key_pool.snapshot())
