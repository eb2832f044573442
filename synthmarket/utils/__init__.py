"""
Utility modules.
"""

from .logger import get_logger, setup_logger, MarketLogger
from .timeframes import (
    RESOLUTION_MS,
    floor_to_interval,
    next_boundary,
    resolution_to_ms,
    seconds_remaining,
    validate_resolution,
)

__all__ = [
    # Logger
    "get_logger",
    "setup_logger",
    "MarketLogger",
    # Resolutions
    "RESOLUTION_MS",
    "floor_to_interval",
    "next_boundary",
    "resolution_to_ms",
    "seconds_remaining",
    "validate_resolution",
]
