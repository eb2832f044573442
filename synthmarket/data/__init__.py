"""
Data layer: persistence, latest-value cache and history helpers.
"""

from .backend_protocol import CandleBackend, LatestCache
from .candle_store import CandleStore
from .history import rollup_candles, to_history_response
from .latest_cache import MarketDataCache

__all__ = [
    "CandleBackend",
    "LatestCache",
    "CandleStore",
    "MarketDataCache",
    "rollup_candles",
    "to_history_response",
]
