"""
Collaborator protocols for the market engine.

The engine and the publication boundary depend only on these interfaces,
never on DuckDB or the cache implementation directly.

Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                 MarketEngine                         │
    │   (get_last_candle, get_active_manual_control, ...)  │
    └──────────────────────────────────────────────────────┘
                 │                          │
       ┌─────────▼─────────┐      ┌─────────▼─────────┐
       │   CandleBackend   │      │    LatestCache    │
       │  (DuckDB store)   │      │  (in-memory TTL)  │
       └───────────────────┘      └───────────────────┘

All write methods are best-effort from the engine's point of view: they may
raise, and the caller logs and swallows the failure.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..engine.types import Candle, ManualControl


class CandleBackend(ABC):
    """
    Durable storage for candles, manual controls and config overrides.

    Backends are responsible for:
    - Candle persistence and range queries at the base resolution
    - Manual control history
    - Persisted generator overrides

    Backends are NOT responsible for:
    - Rolling candles up to coarser resolutions (done by data.history)
    - Caching (done by LatestCache)
    """

    # ==========================================================================
    # Connection Management
    # ==========================================================================

    @abstractmethod
    def close(self):
        """Close the underlying connection."""
        pass

    # ==========================================================================
    # Candles
    # ==========================================================================

    @abstractmethod
    def persist_candle(self, candle: Candle) -> None:
        """
        Store a finalized candle, replacing any row with the same
        (symbol, resolution, timestamp).
        """
        pass

    @abstractmethod
    def get_last_candle(self, symbol: str, resolution: str) -> Optional[Candle]:
        """Most recent candle for a symbol at `resolution`, used to seed a restarted session."""
        pass

    @abstractmethod
    def get_historical_candles(
        self,
        symbol: str,
        resolution: str,
        from_ms: int,
        to_ms: int,
        limit: int,
    ) -> List[Candle]:
        """
        Candles with from_ms <= timestamp <= to_ms.

        Returns:
            At most `limit` candles, the most recent ones in range,
            ordered by timestamp ascending
        """
        pass

    # ==========================================================================
    # Manual Controls
    # ==========================================================================

    @abstractmethod
    def save_manual_control(self, control: ManualControl) -> None:
        """Store a new control and mark every earlier one inactive."""
        pass

    @abstractmethod
    def get_active_manual_control(self, now_ms: int) -> Optional[ManualControl]:
        """Newest control whose window contains now_ms, if still active."""
        pass

    # ==========================================================================
    # Config Overrides
    # ==========================================================================

    @abstractmethod
    def get_config_overrides(self) -> dict:
        """Persisted generator overrides as key -> string value."""
        pass


class LatestCache(ABC):
    """Short-TTL write-through store for the latest price, candle and status."""

    @abstractmethod
    def cache_latest(self, price: float, candle: Optional[Candle], status: Optional[dict]) -> None:
        pass

    @abstractmethod
    def get_current_price(self) -> Optional[float]:
        pass

    @abstractmethod
    def get_last_candle(self) -> Optional[dict]:
        pass

    @abstractmethod
    def get_system_status(self) -> Optional[dict]:
        pass
