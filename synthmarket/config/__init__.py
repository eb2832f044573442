"""
Configuration module.
"""

from .config import (
    Config,
    DataConfig,
    EngineConfig,
    LogConfig,
    ManualControlConfig,
    MarketConfig,
    ServerConfig,
    get_config,
)

__all__ = [
    "Config",
    "DataConfig",
    "EngineConfig",
    "LogConfig",
    "ManualControlConfig",
    "MarketConfig",
    "ServerConfig",
    "get_config",
]
