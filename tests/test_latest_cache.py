"""
Tests for the latest-value TTL cache.
"""

from unittest.mock import patch

from synthmarket.data.latest_cache import MarketDataCache
from synthmarket.engine.types import Candle


class TestMarketDataCache:
    """TTL cache semantics."""

    def test_get_missing(self):
        assert MarketDataCache().get("nope") is None

    def test_set_get(self):
        cache = MarketDataCache()
        cache.set("k", {"a": 1})
        assert cache.get("k") == {"a": 1}

    def test_expiry(self):
        cache = MarketDataCache(ttl_seconds=10)
        with patch("synthmarket.data.latest_cache.time.time", return_value=1_000.0):
            cache.set("k", 1)
        with patch("synthmarket.data.latest_cache.time.time", return_value=1_005.0):
            assert cache.get("k") == 1
        with patch("synthmarket.data.latest_cache.time.time", return_value=1_011.0):
            assert cache.get("k") is None

    def test_clear_one_and_all(self):
        cache = MarketDataCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear("a")
        assert cache.get("a") is None
        assert cache.get("b") == 2
        cache.clear()
        assert cache.get("b") is None


class TestLatestValues:
    """Typed accessors used by the engine and the API."""

    def test_cache_latest(self):
        cache = MarketDataCache()
        candle = Candle("ZPHUSD", 60_000, 10.0, 10.2, 9.9, 10.1, 50.0)
        cache.cache_latest(10.1, candle, {"isRunning": True})

        assert cache.get_current_price() == 10.1
        assert cache.get_last_candle()["close"] == 10.1
        assert cache.get_system_status() == {"isRunning": True}

    def test_price_only_keeps_previous_candle(self):
        cache = MarketDataCache()
        candle = Candle("ZPHUSD", 60_000, 10.0, 10.2, 9.9, 10.1, 50.0)
        cache.cache_latest(10.1, candle, None)
        cache.cache_latest(10.3, None, None)
        assert cache.get_current_price() == 10.3
        assert cache.get_last_candle()["timestamp"] == 60_000

    def test_manual_control(self):
        cache = MarketDataCache()
        cache.cache_manual_control({"id": 1, "direction": "up"})
        assert cache.get_manual_control()["id"] == 1
        cache.cache_manual_control(None)
        assert cache.get_manual_control() is None
