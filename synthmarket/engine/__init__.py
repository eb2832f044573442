"""
Synthetic market engine: price process, regime, S/R, governor, manual
override, tick/candle aggregation and the publication boundary.
"""

from .aggregator import CloseResult, TickCandleAggregator, TickResult
from .manual_control import (
    ManualControlValidationError,
    ManualOverrideController,
    validate_manual_control,
)
from .publisher import PublicationBoundary
from .scheduler import AsyncioScheduler, Scheduler, SimulatedScheduler
from .service import MarketEngine
from .types import (
    AggregatorState,
    Candle,
    CandleMode,
    Direction,
    EngineEvent,
    EngineEventType,
    LiveOHLCSnapshot,
    ManualControl,
    MarketRegime,
    MarketState,
    SystemStatus,
)

__all__ = [
    "AggregatorState",
    "AsyncioScheduler",
    "Candle",
    "CandleMode",
    "CloseResult",
    "Direction",
    "EngineEvent",
    "EngineEventType",
    "LiveOHLCSnapshot",
    "ManualControl",
    "ManualControlValidationError",
    "ManualOverrideController",
    "MarketEngine",
    "MarketRegime",
    "MarketState",
    "PublicationBoundary",
    "Scheduler",
    "SimulatedScheduler",
    "SystemStatus",
    "TickCandleAggregator",
    "TickResult",
    "validate_manual_control",
]
