"""
synthmarket - Synthetic Market Feed

Fabricates a continuous, realistic-looking OHLCV price series for a single
synthetic instrument: regime-driven drift, support/resistance, random
events, a stability governor, operator manual overrides, live sub-candle
ticks and a charting-library compatible HTTP/WebSocket datafeed.
"""

__version__ = "1.0.0"
__author__ = "synthmarket"

from .config import get_config
from .engine import Candle, CandleMode, MarketEngine, MarketRegime, SimulatedScheduler

__all__ = [
    "__version__",
    "get_config",
    "Candle",
    "CandleMode",
    "MarketEngine",
    "MarketRegime",
    "SimulatedScheduler",
]
