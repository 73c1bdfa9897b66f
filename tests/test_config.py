"""
Unit tests for configuration
"""
import pytest

from config import config as app_config
from config.trading_config import TradingConfig, get_trading_config


def test_config_defaults():
    assert app_config.REDIS_URL.startswith("redis://")
    assert app_config.SCAN_INTERVAL
    assert all(symbol == symbol.upper() for symbol in app_config.SCAN_SYMBOLS)
    assert app_config.AI_TIMEOUT_SEC > 0


def test_validate_config_development(monkeypatch):
    monkeypatch.setattr(app_config, "ENVIRONMENT", "development")
    monkeypatch.setattr(app_config, "TV_WEBHOOK_SECRET", "")
    monkeypatch.setattr(app_config, "AI_MODELS", ["model-a"])

    assert app_config.validate_config() is True


def test_validate_config_production_requires_secrets(monkeypatch):
    monkeypatch.setattr(app_config, "ENVIRONMENT", "production")
    monkeypatch.setattr(app_config, "TV_WEBHOOK_SECRET", "")
    monkeypatch.setattr(app_config, "CRON_SECRET", "")

    with pytest.raises(ValueError) as exc:
        app_config.validate_config()

    assert "TV_WEBHOOK_SECRET" in str(exc.value)
    assert "CRON_SECRET" in str(exc.value)


def test_validate_config_requires_models(monkeypatch):
    monkeypatch.setattr(app_config, "ENVIRONMENT", "development")
    monkeypatch.setattr(app_config, "AI_MODELS", [])

    with pytest.raises(ValueError, match="AI_MODELS"):
        app_config.validate_config()


def test_trading_config_defaults():
    config = TradingConfig()

    assert config.silver.leverage == 5
    assert config.gold.leverage == 7
    assert sum(fraction for _, fraction in config.partial_take_profits) == pytest.approx(1.0)
    assert config.tier("GOLD") is config.gold
    assert config.tier("silver") is config.silver


def test_correlation_group_fallback():
    config = get_trading_config()

    assert config.correlation_group("BTCUSDT") == config.correlation_group("ETHUSDT")
    assert config.correlation_group("NEWUSDT") == "NEWUSDT"
