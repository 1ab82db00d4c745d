"""Tests for fluxquant.config — environment variable loading and validation."""

import pytest

from fluxquant.config import load_config

_VARS = [
    "DB_PATH", "LOG_LEVEL", "API_PORT",
    "ALPHA_VANTAGE_KEYS", "ALPHA_VANTAGE_DAILY_LIMIT",
    "TWELVE_DATA_KEYS", "TWELVE_DATA_DAILY_LIMIT",
    "REQUEST_TIMEOUT_SECONDS", "REQUEST_DELAY_MS",
    "QUOTE_CACHE_SECONDS", "HISTORY_CACHE_SECONDS",
    "SCAN_COOLDOWN_SECONDS", "SCAN_INTERVAL_MINUTES", "SCAN_HISTORY_DAYS",
    "ALERT_MIN_CONFIDENCE", "ALERT_REFRESH_POLICY", "ALERT_RETENTION_DAYS",
    "SHARPE_PERIODS_PER_YEAR", "INITIAL_CAPITAL", "POSITION_FRACTION",
    "COMMISSION", "COMMISSION_PERCENT",
    "DEMO_MODE", "CRYPTO_UNIVERSE", "STOCK_UNIVERSE",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure FluxQuant env vars are cleared between tests."""
    for var in _VARS:
        monkeypatch.delenv(var, raising=False)


class TestLoadConfig:
    def test_defaults_need_no_keys(self):
        cfg = load_config()
        assert cfg.alpha_vantage_keys == ()
        assert cfg.twelve_data_keys == ()
        assert cfg.alpha_vantage_daily_limit == 500
        assert cfg.scan_cooldown_seconds == 300
        assert cfg.scan_interval_minutes == 15
        assert cfg.alert_refresh_policy == "leave"
        assert cfg.sharpe_periods_per_year == 252
        assert cfg.position_fraction == 1.0
        assert cfg.commission == 0.0
        assert cfg.commission_percent == 0.0
        assert cfg.demo_mode is False

    def test_default_universes(self):
        cfg = load_config()
        assert cfg.universes["crypto"][0] == "bitcoin"
        assert "AAPL" in cfg.universes["stocks"]

    def test_csv_keys_are_trimmed(self, monkeypatch):
        monkeypatch.setenv("ALPHA_VANTAGE_KEYS", " k1, k2 ,,k3 ")
        cfg = load_config()
        assert cfg.alpha_vantage_keys == ("k1", "k2", "k3")

    def test_demo_flag(self, monkeypatch):
        monkeypatch.setenv("DEMO_MODE", "true")
        assert load_config().demo_mode is True

    def test_refresh_policy_is_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("ALERT_REFRESH_POLICY", "Refresh")
        assert load_config().alert_refresh_policy == "refresh"


class TestValidation:
    def test_non_positive_daily_limit_rejected(self, monkeypatch):
        monkeypatch.setenv("TWELVE_DATA_DAILY_LIMIT", "0")
        with pytest.raises(ValueError, match="TWELVE_DATA_DAILY_LIMIT"):
            load_config()

    def test_unknown_refresh_policy_rejected(self, monkeypatch):
        monkeypatch.setenv("ALERT_REFRESH_POLICY", "replace")
        with pytest.raises(ValueError, match="ALERT_REFRESH_POLICY"):
            load_config()

    def test_position_fraction_out_of_range(self, monkeypatch):
        monkeypatch.setenv("POSITION_FRACTION", "1.5")
        with pytest.raises(ValueError, match="POSITION_FRACTION"):
            load_config()

    def test_confidence_out_of_range(self, monkeypatch):
        monkeypatch.setenv("ALERT_MIN_CONFIDENCE", "2")
        with pytest.raises(ValueError, match="ALERT_MIN_CONFIDENCE"):
            load_config()

    def test_negative_cooldown_rejected(self, monkeypatch):
        monkeypatch.setenv("SCAN_COOLDOWN_SECONDS", "-1")
        with pytest.raises(ValueError, match="SCAN_COOLDOWN_SECONDS"):
            load_config()

    @pytest.mark.parametrize("var,value", [
        ("COMMISSION", "-0.5"),
        ("COMMISSION_PERCENT", "100"),
    ])
    def test_commission_out_of_range(self, monkeypatch, var, value):
        monkeypatch.setenv(var, value)
        with pytest.raises(ValueError, match=var):
            load_config()
