"""
Centralized constants for the synthetic market feed.

The feed fabricates a single instrument. The symbol below is the default
used by the engine, the datafeed endpoints and the DuckDB store; it can be
overridden through MARKET_SYMBOL.
"""

from typing import Dict, List


# ==================== Instrument ====================

DEFAULT_SYMBOL = "ZPHUSD"
INSTRUMENT_NAME = "Zypher"
EXCHANGE_CODE = "ZPH"

# Price scale: 100 => prices are rounded to 2 decimals
DEFAULT_PRICE_SCALE = 100
MIN_MOVEMENT = 1
VOLUME_PRECISION = 2

# Hard floor for any generated price
MIN_PRICE = 0.01


# ==================== Resolutions ====================

# Charting-library resolution strings
SUPPORTED_RESOLUTIONS: List[str] = ["1", "5", "15", "60", "1D"]

# Resolution the engine generates and stores natively
BASE_RESOLUTION = "1"


# ==================== Generator Defaults ====================

DEFAULT_BASE_PRICE = 10.00
DEFAULT_VOLATILITY = 0.003        # per step (one live tick)
DEFAULT_TREND_STRENGTH = 0.1
DEFAULT_VOLUME_BASE = 100.0       # per candle
DEFAULT_EVENT_PROBABILITY = 0.0005

DEFAULT_CANDLE_INTERVAL_MS = 60_000
DEFAULT_TICK_INTERVAL_MS = 1_000

# Psychological price levels registered as strong S/R when price is near
ROUND_PRICE_LEVELS: List[float] = [10, 25, 50, 100, 150, 200, 250, 300, 400, 500]


# ==================== Manual Control ====================

MANUAL_DIRECTIONS = ("up", "down", "neutral")
DEFAULT_MANUAL_SPEED = 0.01
DEFAULT_MANUAL_INTENSITY = 1.0
DEFAULT_MANUAL_DURATION = 300


# ==================== Cache Keys ====================

CACHE_KEYS: Dict[str, str] = {
    "current_price": "zph:current_price",
    "last_candle": "zph:last_candle",
    "system_status": "zph:system_status",
    "manual_control": "zph:manual_control",
}


# ==================== Config Overrides ====================

# trading_config keys that may override generator parameters at start-up
OVERRIDABLE_KEYS = ("base_price", "volatility", "trend_strength", "volume_base")
