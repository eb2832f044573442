"""
Engine data model.

Contains the closed enums and state containers shared by the price process,
the aggregator and the publication boundary:
- Enums: MarketRegime, CandleMode, Direction, AggregatorState, EngineEventType
- Records: Candle (immutable), LiveOHLCSnapshot, EngineEvent, SystemStatus
- Mutable state: LiveCandleState, PriceProcessState, RegimeState,
  SupportResistanceLevel, ManualControl, MarketState

All mutable state is owned by one MarketEngine; collaborators only ever see
the immutable records or their to_dict() copies.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, List, Optional


# ==============================================================================
# Enums
# ==============================================================================

class MarketRegime(Enum):
    """Coarse market phase biasing drift direction."""
    ACCUMULATION = "accumulation"
    MARKUP = "markup"
    DISTRIBUTION = "distribution"
    MARKDOWN = "markdown"


class CandleMode(Enum):
    """Whether a candle was shaped by an operator override."""
    AUTO = "auto"
    MANUAL = "manual"


class Direction(Enum):
    """Manual control direction."""
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"

    @property
    def sign(self) -> int:
        if self is Direction.UP:
            return 1
        if self is Direction.DOWN:
            return -1
        return 0


class AggregatorState(Enum):
    """Tick/candle aggregator states."""
    NO_CANDLE = "no_candle"
    ACCUMULATING = "accumulating"
    CLOSED = "closed"


class EngineEventType(Enum):
    """State-change events published by the engine."""
    REGIME_CHANGE = "regime_change"
    MODE_CHANGE = "mode_change"
    MANUAL_CONTROL = "manual_control"
    SYSTEM_STATUS = "system_status"
    MARKET_EVENT = "market_event"


# ==============================================================================
# Immutable Records
# ==============================================================================

@dataclass(frozen=True)
class Candle:
    """One finalized OHLCV record. Timestamp is interval-aligned epoch ms."""
    symbol: str
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    mode: CandleMode = CandleMode.AUTO
    resolution: str = "1"

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "mode": self.mode.value,
            "resolution": self.resolution,
        }

    def to_wire(self) -> dict:
        """Compact shape used for candle_update broadcasts."""
        return {
            "symbol": self.symbol,
            "t": self.timestamp,
            "o": self.open,
            "h": self.high,
            "l": self.low,
            "c": self.close,
            "v": self.volume,
            "mode": self.mode.value,
            "resolution": self.resolution,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Candle':
        return cls(
            symbol=str(data["symbol"]),
            timestamp=int(data["timestamp"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data["volume"]),
            mode=CandleMode(data.get("mode", "auto")),
            resolution=str(data.get("resolution", "1")),
        )


@dataclass(frozen=True)
class LiveOHLCSnapshot:
    """State of the in-progress candle after a live tick."""
    symbol: str
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    resolution: str
    time_remaining_seconds: int
    change: float = 0.0

    @property
    def change_percent(self) -> float:
        previous = self.close - self.change
        return (self.change / previous * 100) if previous else 0.0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "resolution": self.resolution,
            "timeRemaining": self.time_remaining_seconds,
        }

    def to_price_update(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": self.close,
            "timestamp": self.timestamp,
            "change": self.change,
            "changePercent": self.change_percent,
        }


@dataclass(frozen=True)
class EngineEvent:
    """A regime/mode/control change handed to subscribers."""
    event_type: EngineEventType
    timestamp: int
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            **self.data,
        }


# ==============================================================================
# Mutable State
# ==============================================================================

@dataclass
class ManualControl:
    """Time-boxed operator override of the auto-mode drift."""
    direction: Direction
    speed: float
    intensity: float
    start_time: int
    duration_seconds: int
    id: Optional[int] = None
    is_active: bool = True

    @property
    def expires_at(self) -> int:
        return self.start_time + self.duration_seconds * 1000

    def is_active_at(self, now_ms: int) -> bool:
        return self.is_active and self.start_time <= now_ms < self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "direction": self.direction.value,
            "speed": self.speed,
            "intensity": self.intensity,
            "duration_seconds": self.duration_seconds,
            "is_active": self.is_active,
            "start_time": self.start_time,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ManualControl':
        return cls(
            direction=Direction(data["direction"]),
            speed=float(data["speed"]),
            intensity=float(data["intensity"]),
            start_time=int(data["start_time"]),
            duration_seconds=int(data["duration_seconds"]),
            id=data.get("id"),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class LiveCandleState:
    """Running OHLCV of the currently open candle."""
    start_time: int
    open: float
    running_high: float
    running_low: float
    last_price: float
    accumulated_volume: float = 0.0
    manual_seen: bool = False

    @classmethod
    def opened_at(cls, start_time: int, price: float) -> 'LiveCandleState':
        return cls(
            start_time=start_time,
            open=price,
            running_high=price,
            running_low=price,
            last_price=price,
        )

    def fold(self, price: float, volume: float) -> None:
        self.running_high = max(self.running_high, price)
        self.running_low = min(self.running_low, price)
        self.last_price = price
        self.accumulated_volume += volume


@dataclass
class SupportResistanceLevel:
    """A sticky price level."""
    price: float
    strength: float
    touches: int = 1
    last_touch_time: int = 0

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "strength": self.strength,
            "touches": self.touches,
            "last_touch_time": self.last_touch_time,
        }


PRICE_HISTORY_SIZE = 100
VOLATILITY_HISTORY_SIZE = 20
CLOSE_HISTORY_SIZE = 30


@dataclass
class PriceProcessState:
    """Long-lived state of the price process."""
    base_price: float
    volatility: float
    trend_strength: float
    volume_base: float
    current_price: float
    current_trend: float = 0.0
    recent_prices: Deque[float] = field(default_factory=lambda: deque(maxlen=PRICE_HISTORY_SIZE))
    volatility_history: Deque[float] = field(default_factory=lambda: deque(maxlen=VOLATILITY_HISTORY_SIZE))
    consolidation_counter: int = 0
    event_cooldown: int = 0

    def record(self, price: float, step_volatility: float) -> None:
        self.recent_prices.append(price)
        self.volatility_history.append(step_volatility)

    @property
    def average_volatility(self) -> float:
        if not self.volatility_history:
            return self.volatility
        return sum(self.volatility_history) / len(self.volatility_history)

    def moving_average(self, window: int = 50) -> float:
        if not self.recent_prices:
            return 0.0
        prices = list(self.recent_prices)[-window:]
        return sum(prices) / len(prices)


@dataclass
class RegimeState:
    """Current market phase."""
    regime: MarketRegime = MarketRegime.ACCUMULATION
    regime_start_time: int = 0
    candles_in_regime: int = 0
    # One entry per finalized candle
    recent_closes: Deque[float] = field(default_factory=lambda: deque(maxlen=CLOSE_HISTORY_SIZE))


@dataclass
class MarketState:
    """Everything a generation step reads and mutates, owned by one engine."""
    process: PriceProcessState
    regime: RegimeState = field(default_factory=RegimeState)
    levels: List[SupportResistanceLevel] = field(default_factory=list)

    @classmethod
    def initial(
        cls,
        base_price: float,
        volatility: float,
        trend_strength: float,
        volume_base: float,
        start_price: Optional[float] = None,
        now_ms: int = 0,
    ) -> 'MarketState':
        price = start_price if start_price is not None else base_price
        process = PriceProcessState(
            base_price=base_price,
            volatility=volatility,
            trend_strength=trend_strength,
            volume_base=volume_base,
            current_price=price,
        )
        state = cls(process=process, regime=RegimeState(regime_start_time=now_ms))
        # Base price is the first (and strongest) level
        state.levels.append(SupportResistanceLevel(price=base_price, strength=1.0, last_touch_time=now_ms))
        return state


@dataclass
class SystemStatus:
    """Snapshot returned by MarketEngine.get_system_status()."""
    mode: CandleMode
    is_running: bool
    last_candle_time: int
    current_price: float
    total_candles_this_session: int
    uptime: int
    regime: MarketRegime
    active_manual_control: Optional[ManualControl] = None

    def to_dict(self) -> dict:
        result: dict[str, Any] = {
            "mode": self.mode.value,
            "isRunning": self.is_running,
            "lastCandleTime": self.last_candle_time,
            "currentPrice": self.current_price,
            "totalCandles": self.total_candles_this_session,
            "uptime": self.uptime,
            "regime": self.regime.value,
        }
        if self.active_manual_control is not None:
            result["activeManualControl"] = self.active_manual_control.to_dict()
        return result
