"""
Configuration management for the synthetic market feed.
Loads settings from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from pathlib import Path
from dotenv import load_dotenv

from .constants import (
    BASE_RESOLUTION,
    DEFAULT_BASE_PRICE,
    DEFAULT_CANDLE_INTERVAL_MS,
    DEFAULT_EVENT_PROBABILITY,
    DEFAULT_MANUAL_DURATION,
    DEFAULT_PRICE_SCALE,
    DEFAULT_SYMBOL,
    DEFAULT_TICK_INTERVAL_MS,
    DEFAULT_TREND_STRENGTH,
    DEFAULT_VOLATILITY,
    DEFAULT_VOLUME_BASE,
    OVERRIDABLE_KEYS,
)


@dataclass
class MarketConfig:
    """
    Generator parameters for the synthetic instrument.

    volatility and event_probability are per generation step, and a step
    happens on every live tick (not once per candle).
    """
    symbol: str = DEFAULT_SYMBOL
    base_price: float = DEFAULT_BASE_PRICE
    volatility: float = DEFAULT_VOLATILITY
    trend_strength: float = DEFAULT_TREND_STRENGTH
    volume_base: float = DEFAULT_VOLUME_BASE
    price_scale: int = DEFAULT_PRICE_SCALE
    event_probability: float = DEFAULT_EVENT_PROBABILITY
    seed: Optional[int] = None


@dataclass
class EngineConfig:
    """Cadences of the two engine timers."""
    candle_interval_ms: int = DEFAULT_CANDLE_INTERVAL_MS
    tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS
    resolution: str = BASE_RESOLUTION
    auto_start: bool = True

    @property
    def ticks_per_candle(self) -> int:
        return max(1, self.candle_interval_ms // self.tick_interval_ms)


@dataclass
class ManualControlConfig:
    """Bounds enforced on operator manual controls."""
    max_speed: float = 1.0
    max_intensity: float = 10.0
    default_duration: int = DEFAULT_MANUAL_DURATION
    max_duration: int = 86_400


@dataclass
class DataConfig:
    """Persistence and cache configuration."""
    # DuckDB storage path
    db_path: str = "data/synthmarket.duckdb"

    # Latest price/candle/status TTL
    cache_ttl_seconds: int = 60

    # Upper bound on candles returned by one history query
    history_max_limit: int = 1000


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: str = "logs"


@dataclass
class ServerConfig:
    """HTTP / WebSocket server configuration."""
    host: str = "127.0.0.1"
    port: int = 8765
    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ])


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """
    Central configuration manager.

    Loads configuration from environment variables and provides
    typed access to all settings.
    """

    _instance: Optional['Config'] = None

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, env_file: str = ".env"):
        if self._initialized:
            return

        for env_name in [".env", env_file]:
            env_path = Path(env_name)
            if env_path.exists():
                load_dotenv(env_path, override=True)

        self.market = self._load_market_config()
        self.engine = self._load_engine_config()
        self.manual = self._load_manual_config()
        self.data = self._load_data_config()
        self.log = self._load_log_config()
        self.server = self._load_server_config()

        self._initialized = True

    def _load_market_config(self) -> MarketConfig:
        """Load generator parameters from environment."""
        seed = os.getenv("MARKET_SEED", "")
        return MarketConfig(
            symbol=os.getenv("MARKET_SYMBOL", DEFAULT_SYMBOL).strip().upper(),
            base_price=float(os.getenv("MARKET_BASE_PRICE", str(DEFAULT_BASE_PRICE))),
            volatility=float(os.getenv("MARKET_VOLATILITY", str(DEFAULT_VOLATILITY))),
            trend_strength=float(os.getenv("MARKET_TREND_STRENGTH", str(DEFAULT_TREND_STRENGTH))),
            volume_base=float(os.getenv("MARKET_VOLUME_BASE", str(DEFAULT_VOLUME_BASE))),
            price_scale=int(os.getenv("MARKET_PRICE_SCALE", str(DEFAULT_PRICE_SCALE))),
            event_probability=float(os.getenv("MARKET_EVENT_PROBABILITY", str(DEFAULT_EVENT_PROBABILITY))),
            seed=int(seed) if seed.strip() else None,
        )

    def _load_engine_config(self) -> EngineConfig:
        """Load timer cadences from environment."""
        return EngineConfig(
            candle_interval_ms=int(os.getenv("ENGINE_CANDLE_INTERVAL_MS", str(DEFAULT_CANDLE_INTERVAL_MS))),
            tick_interval_ms=int(os.getenv("ENGINE_TICK_INTERVAL_MS", str(DEFAULT_TICK_INTERVAL_MS))),
            resolution=os.getenv("ENGINE_RESOLUTION", BASE_RESOLUTION),
            auto_start=_env_bool("ENGINE_AUTO_START", "true"),
        )

    def _load_manual_config(self) -> ManualControlConfig:
        """Load manual control bounds from environment."""
        return ManualControlConfig(
            max_speed=float(os.getenv("MANUAL_MAX_SPEED", "1.0")),
            max_intensity=float(os.getenv("MANUAL_MAX_INTENSITY", "10.0")),
            default_duration=int(os.getenv("MANUAL_DEFAULT_DURATION", str(DEFAULT_MANUAL_DURATION))),
            max_duration=int(os.getenv("MANUAL_MAX_DURATION", "86400")),
        )

    def _load_data_config(self) -> DataConfig:
        """Load data configuration from environment."""
        return DataConfig(
            db_path=os.getenv("DATA_DB_PATH", "data/synthmarket.duckdb"),
            cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", "60")),
            history_max_limit=int(os.getenv("HISTORY_MAX_LIMIT", "1000")),
        )

    def _load_log_config(self) -> LogConfig:
        """Load logging configuration from environment."""
        return LogConfig(
            level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=os.getenv("LOG_DIR", "logs"),
        )

    def _load_server_config(self) -> ServerConfig:
        """Load server configuration from environment."""
        config = ServerConfig(
            host=os.getenv("SERVER_HOST", "127.0.0.1"),
            port=int(os.getenv("SERVER_PORT", "8765")),
        )
        origins = os.getenv("CORS_ORIGINS", "")
        if origins:
            config.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]
        return config

    def apply_overrides(self, overrides: dict) -> List[str]:
        """
        Apply persisted generator overrides (trading_config table) on top of
        the environment configuration.

        Args:
            overrides: Mapping of key -> string value

        Returns:
            List of keys that were applied
        """
        applied = []
        for key in OVERRIDABLE_KEYS:
            raw = overrides.get(key)
            if raw is None:
                continue
            try:
                setattr(self.market, key, float(raw))
            except (TypeError, ValueError):
                continue
            applied.append(key)
        return applied

    def reload(self, env_file: str = ".env"):
        """Reload configuration from environment."""
        self._initialized = False
        Config._instance = None
        return Config(env_file)

    def validate(self) -> tuple[bool, List[str]]:
        """
        Validate configuration.

        Returns:
            Tuple of (is_valid, list of messages)
        """
        messages = []

        if self.market.base_price <= 0:
            messages.append(f"MARKET_BASE_PRICE must be positive, got {self.market.base_price}")
        if not 0 < self.market.volatility <= 0.5:
            messages.append(f"MARKET_VOLATILITY must be in (0, 0.5], got {self.market.volatility}")
        if self.market.volume_base <= 0:
            messages.append(f"MARKET_VOLUME_BASE must be positive, got {self.market.volume_base}")
        if not 0 <= self.market.event_probability < 1:
            messages.append(
                f"MARKET_EVENT_PROBABILITY must be in [0, 1), got {self.market.event_probability}"
            )

        engine = self.engine
        if engine.tick_interval_ms <= 0 or engine.candle_interval_ms <= 0:
            messages.append("Engine intervals must be positive")
        elif engine.tick_interval_ms >= engine.candle_interval_ms:
            messages.append(
                f"ENGINE_TICK_INTERVAL_MS ({engine.tick_interval_ms}) must be shorter than "
                f"ENGINE_CANDLE_INTERVAL_MS ({engine.candle_interval_ms})"
            )
        elif engine.candle_interval_ms % engine.tick_interval_ms != 0:
            messages.append("ENGINE_CANDLE_INTERVAL_MS must be a multiple of ENGINE_TICK_INTERVAL_MS")

        # Imported here to keep config free of utils at import time
        from ..utils.timeframes import resolution_to_ms
        try:
            if resolution_to_ms(engine.resolution) != engine.candle_interval_ms:
                messages.append(
                    f"ENGINE_RESOLUTION '{engine.resolution}' does not match "
                    f"ENGINE_CANDLE_INTERVAL_MS ({engine.candle_interval_ms})"
                )
        except ValueError as e:
            messages.append(str(e))

        if self.manual.default_duration > self.manual.max_duration:
            messages.append("MANUAL_DEFAULT_DURATION exceeds MANUAL_MAX_DURATION")

        return len(messages) == 0, messages

    def summary_short(self) -> str:
        """Generate a short one-line configuration summary."""
        return (
            f"{self.market.symbol} | base={self.market.base_price:.2f} | "
            f"vol={self.market.volatility:.4f} | candle={self.engine.candle_interval_ms}ms | "
            f"tick={self.engine.tick_interval_ms}ms"
        )


def get_config(env_file: str = ".env") -> Config:
    """Get or create the global config instance."""
    return Config(env_file)
