"""
Tests for environment-driven configuration.
"""

import pytest

from synthmarket.config.config import Config
from synthmarket.utils.timeframes import (
    floor_to_interval,
    next_boundary,
    resolution_to_ms,
    seconds_remaining,
    validate_resolution,
)


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """Build a Config from whatever the test put in the environment."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(Config, "_instance", None)

    def _build() -> Config:
        Config._instance = None
        return Config()

    return _build


class TestDefaults:
    def test_defaults_are_valid(self, config):
        is_valid, messages = config.validate()
        assert is_valid, messages
        assert config.market.symbol == "ZPHUSD"
        assert config.engine.ticks_per_candle == 60

    def test_singleton(self, config):
        assert Config() is config


class TestEnvironment:
    def test_env_overrides(self, fresh_config, monkeypatch):
        monkeypatch.setenv("MARKET_SYMBOL", "abcusd")
        monkeypatch.setenv("MARKET_BASE_PRICE", "25.5")
        monkeypatch.setenv("MARKET_SEED", "7")
        monkeypatch.setenv("ENGINE_AUTO_START", "false")
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")

        config = fresh_config()
        assert config.market.symbol == "ABCUSD"
        assert config.market.base_price == 25.5
        assert config.market.seed == 7
        assert config.engine.auto_start is False
        assert config.server.cors_origins == ["http://a.test", "http://b.test"]

    def test_dotenv_file_loaded(self, fresh_config, monkeypatch, tmp_path):
        # Registered with monkeypatch so the value .env writes is undone afterwards
        monkeypatch.setenv("MARKET_VOLATILITY", "0.001")
        (tmp_path / ".env").write_text("MARKET_VOLATILITY=0.007\n")
        config = fresh_config()
        assert config.market.volatility == 0.007


class TestValidation:
    def test_tick_must_divide_candle(self, config):
        config.engine.tick_interval_ms = 7_000
        is_valid, messages = config.validate()
        assert not is_valid
        assert any("multiple" in m for m in messages)

    def test_tick_shorter_than_candle(self, config):
        config.engine.tick_interval_ms = 60_000
        assert not config.validate()[0]

    def test_resolution_matches_interval(self, config):
        config.engine.resolution = "5"
        is_valid, messages = config.validate()
        assert not is_valid
        assert any("ENGINE_RESOLUTION" in m for m in messages)

    def test_bad_generator_values(self, config):
        config.market.base_price = 0
        config.market.volatility = 0.9
        is_valid, messages = config.validate()
        assert not is_valid
        assert len(messages) == 2


class TestOverrides:
    def test_apply_overrides(self, config):
        applied = config.apply_overrides({"base_price": "12.5", "volatility": "bad", "symbol": "X"})
        assert applied == ["base_price"]
        assert config.market.base_price == 12.5
        assert config.market.symbol == "ZPHUSD"


class TestTimeframes:
    def test_validate_resolution(self):
        assert validate_resolution("D") == "1D"
        assert validate_resolution(" 15 ") == "15"
        with pytest.raises(ValueError, match="Invalid resolution"):
            validate_resolution("2")

    def test_interval_math(self):
        assert resolution_to_ms("60") == 3_600_000
        assert floor_to_interval(125_000, 60_000) == 120_000
        assert next_boundary(120_000, 60_000) == 180_000
        assert seconds_remaining(121_500, 60_000) == 58
