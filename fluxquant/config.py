"""FluxQuant — application configuration.

Loads .env variables into a typed config object.
Validates values on startup; every variable has a usable default so the
free providers work without any keys.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REFRESH_POLICIES = ("leave", "refresh")

_DEFAULT_CRYPTO_UNIVERSE = (
    "bitcoin,ethereum,cardano,solana,polkadot,chainlink,avalanche-2"
)
_DEFAULT_STOCK_UNIVERSE = "AAPL,GOOGL,MSFT,TSLA,NVDA,META,AMZN,NFLX"


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    db_path: str
    log_level: str
    api_port: int
    alpha_vantage_keys: tuple[str, ...]
    alpha_vantage_daily_limit: int
    twelve_data_keys: tuple[str, ...]
    twelve_data_daily_limit: int
    request_timeout_seconds: float
    request_delay_ms: int
    quote_cache_seconds: float
    history_cache_seconds: float
    scan_cooldown_seconds: float
    scan_interval_minutes: float
    scan_history_days: int
    alert_min_confidence: float
    alert_refresh_policy: str  # "leave" or "refresh"
    alert_retention_days: int
    sharpe_periods_per_year: int
    initial_capital: float
    position_fraction: float
    commission: float
    commission_percent: float
    demo_mode: bool
    crypto_universe: tuple[str, ...]
    stock_universe: tuple[str, ...]

    @property
    def universes(self) -> dict[str, list[str]]:
        """Asset-class → symbol list used by the alert scanner."""
        return {
            "crypto": list(self.crypto_universe),
            "stocks": list(self.stock_universe),
        }


def _csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when
    a value is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    config = Config(
        db_path=os.environ.get("DB_PATH", "data/fluxquant.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
        alpha_vantage_keys=_csv(os.environ.get("ALPHA_VANTAGE_KEYS", "")),
        alpha_vantage_daily_limit=int(os.environ.get("ALPHA_VANTAGE_DAILY_LIMIT", "500")),
        twelve_data_keys=_csv(os.environ.get("TWELVE_DATA_KEYS", "")),
        twelve_data_daily_limit=int(os.environ.get("TWELVE_DATA_DAILY_LIMIT", "800")),
        request_timeout_seconds=float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "15")),
        request_delay_ms=int(os.environ.get("REQUEST_DELAY_MS", "100")),
        quote_cache_seconds=float(os.environ.get("QUOTE_CACHE_SECONDS", "120")),
        history_cache_seconds=float(os.environ.get("HISTORY_CACHE_SECONDS", "900")),
        scan_cooldown_seconds=float(os.environ.get("SCAN_COOLDOWN_SECONDS", "300")),
        scan_interval_minutes=float(os.environ.get("SCAN_INTERVAL_MINUTES", "15")),
        scan_history_days=int(os.environ.get("SCAN_HISTORY_DAYS", "60")),
        alert_min_confidence=float(os.environ.get("ALERT_MIN_CONFIDENCE", "0.6")),
        alert_refresh_policy=os.environ.get("ALERT_REFRESH_POLICY", "leave").lower(),
        alert_retention_days=int(os.environ.get("ALERT_RETENTION_DAYS", "7")),
        sharpe_periods_per_year=int(os.environ.get("SHARPE_PERIODS_PER_YEAR", "252")),
        initial_capital=float(os.environ.get("INITIAL_CAPITAL", "10000")),
        position_fraction=float(os.environ.get("POSITION_FRACTION", "1.0")),
        commission=float(os.environ.get("COMMISSION", "0")),
        commission_percent=float(os.environ.get("COMMISSION_PERCENT", "0")),
        demo_mode=_flag(os.environ.get("DEMO_MODE", "false")),
        crypto_universe=_csv(os.environ.get("CRYPTO_UNIVERSE", _DEFAULT_CRYPTO_UNIVERSE)),
        stock_universe=_csv(os.environ.get("STOCK_UNIVERSE", _DEFAULT_STOCK_UNIVERSE)),
    )
    validate_config(config)
    return config


def validate_config(config: Config) -> None:
    """Raise ``ValueError`` if *config* holds an out-of-range value."""
    _positive("ALPHA_VANTAGE_DAILY_LIMIT", config.alpha_vantage_daily_limit)
    _positive("TWELVE_DATA_DAILY_LIMIT", config.twelve_data_daily_limit)
    _positive("REQUEST_TIMEOUT_SECONDS", config.request_timeout_seconds)
    _positive("SCAN_INTERVAL_MINUTES", config.scan_interval_minutes)
    _positive("SHARPE_PERIODS_PER_YEAR", config.sharpe_periods_per_year)
    _positive("INITIAL_CAPITAL", config.initial_capital)
    _positive("SCAN_HISTORY_DAYS", config.scan_history_days)
    _positive("ALERT_RETENTION_DAYS", config.alert_retention_days)
    if config.scan_cooldown_seconds < 0:
        raise ValueError(
            f"SCAN_COOLDOWN_SECONDS must be >= 0, got {config.scan_cooldown_seconds}"
        )
    if config.request_delay_ms < 0:
        raise ValueError(f"REQUEST_DELAY_MS must be >= 0, got {config.request_delay_ms}")
    if not 0 <= config.alert_min_confidence <= 1:
        raise ValueError(
            f"ALERT_MIN_CONFIDENCE must be within [0, 1], got {config.alert_min_confidence}"
        )
    if config.alert_refresh_policy not in _REFRESH_POLICIES:
        raise ValueError(
            f"ALERT_REFRESH_POLICY must be one of {', '.join(_REFRESH_POLICIES)}, "
            f"got '{config.alert_refresh_policy}'"
        )
    if config.commission < 0:
        raise ValueError(f"COMMISSION must be >= 0, got {config.commission}")
    if not 0 <= config.commission_percent < 100:
        raise ValueError(
            f"COMMISSION_PERCENT must be within [0, 100), got {config.commission_percent}"
        )
    if not 0 < config.position_fraction <= 1:
        raise ValueError(
            f"POSITION_FRACTION must be within (0, 1], got {config.position_fraction}"
        )
