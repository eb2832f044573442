"""
In-process cache for the latest market snapshot.

Holds the last price, last finalized candle, last system status and the
active manual control with a short TTL, so HTTP reads never touch the
engine or the database.
"""

import time
from threading import Lock
from typing import Any, Dict, Optional

from ..config.constants import CACHE_KEYS
from ..engine.types import Candle
from .backend_protocol import LatestCache


class CacheEntry:
    """A cached value and the wall-clock second it stops being valid."""

    def __init__(self, data: Any, ttl_seconds: float):
        self.data = data
        self.expires_at = time.time() + ttl_seconds

    @property
    def is_expired(self) -> bool:
        return time.time() > self.expires_at


class MarketDataCache(LatestCache):
    """Thread-safe TTL cache keyed by CACHE_KEYS."""

    def __init__(self, ttl_seconds: float = 60):
        self.ttl_seconds = ttl_seconds
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        """Value under `key`, or None if absent or past its TTL."""
        with self._lock:
            entry = self._cache.get(key)
            if entry and not entry.is_expired:
                return entry.data
            return None

    def set(self, key: str, data: Any, ttl_seconds: Optional[float] = None):
        """Store `data` for `ttl_seconds` (the cache default if None)."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._cache[key] = CacheEntry(data, ttl)

    def clear(self, key: str = None):
        """Drop one key, or everything when `key` is None."""
        with self._lock:
            if key:
                self._cache.pop(key, None)
            else:
                self._cache.clear()

    # ==========================================================================
    # LatestCache
    # ==========================================================================

    def cache_latest(self, price: float, candle: Optional[Candle], status: Optional[dict]) -> None:
        self.set(CACHE_KEYS["current_price"], float(price))
        if candle is not None:
            self.set(CACHE_KEYS["last_candle"], candle.to_dict())
        if status is not None:
            self.set(CACHE_KEYS["system_status"], dict(status))

    def cache_manual_control(self, control: Optional[dict]) -> None:
        if control is None:
            self.clear(CACHE_KEYS["manual_control"])
        else:
            self.set(CACHE_KEYS["manual_control"], dict(control))

    def get_current_price(self) -> Optional[float]:
        return self.get(CACHE_KEYS["current_price"])

    def get_last_candle(self) -> Optional[dict]:
        return self.get(CACHE_KEYS["last_candle"])

    def get_system_status(self) -> Optional[dict]:
        return self.get(CACHE_KEYS["system_status"])

    def get_manual_control(self) -> Optional[dict]:
        return self.get(CACHE_KEYS["manual_control"])
