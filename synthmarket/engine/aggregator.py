"""
Tick/Candle Aggregator.

State machine:
    NO_CANDLE -> ACCUMULATING -> (close) -> CLOSED -> ACCUMULATING (next interval)

- on_tick(): runs one generation step, folds it into the live candle and
  returns a live snapshot
- on_close(): finalizes the live candle into an immutable Candle and opens
  the next one at the previous close

Candle timestamps are floored to the interval boundary, never taken from
"now". Closing is idempotent per interval: whichever of the two timers sees
a boundary first rolls the candle, the other one finds nothing to do.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..config.constants import VOLUME_PRECISION
from ..utils.timeframes import floor_to_interval, seconds_remaining
from . import price_process, regime
from .manual_control import ManualOverrideController
from .price_process import StepResult
from .regime import RegimeTransition
from .types import (
    AggregatorState,
    Candle,
    CandleMode,
    LiveCandleState,
    LiveOHLCSnapshot,
    MarketState,
)


@dataclass(frozen=True)
class CloseResult:
    """A finalized candle and the regime edge it triggered, if any."""
    candle: Candle
    transition: Optional[RegimeTransition] = None


@dataclass(frozen=True)
class TickResult:
    """Everything one live tick produced."""
    snapshot: LiveOHLCSnapshot
    step: StepResult
    closed: Optional[CloseResult] = None
    mode_change: Optional[CandleMode] = None


class TickCandleAggregator:
    """
    Folds generation steps into candles for one symbol.

    Usage:
        aggregator = TickCandleAggregator(state, rng, controller, symbol="ZPHUSD")
        result = aggregator.on_tick(now_ms)
        closed = aggregator.on_close(now_ms)
    """

    def __init__(
        self,
        state: MarketState,
        rng: np.random.Generator,
        controller: ManualOverrideController,
        symbol: str,
        resolution: str = "1",
        candle_interval_ms: int = 60_000,
        tick_interval_ms: int = 1_000,
        price_scale: int = 100,
        event_probability: float = 0.0,
    ):
        self.market_state = state
        self.rng = rng
        self.controller = controller
        self.symbol = symbol
        self.resolution = resolution
        self.candle_interval_ms = candle_interval_ms
        self.tick_interval_ms = tick_interval_ms
        self.price_scale = price_scale
        self.event_probability = event_probability

        self.state = AggregatorState.NO_CANDLE
        self.live: Optional[LiveCandleState] = None
        self.last_candle: Optional[Candle] = None
        self.observed_mode = CandleMode.AUTO

    @property
    def volume_per_step(self) -> float:
        ticks = max(1, self.candle_interval_ms // self.tick_interval_ms)
        return self.market_state.process.volume_base / ticks

    # ==========================================================================
    # Timers
    # ==========================================================================

    def on_tick(self, now_ms: int) -> TickResult:
        """
        Run one live tick.

        Rolls the live candle first if now_ms is already past its interval.
        """
        boundary = floor_to_interval(now_ms, self.candle_interval_ms)
        closed = None
        if self.live is None:
            self.open_candle(boundary)
        elif self.live.start_time < boundary:
            closed = self._finalize(boundary)

        control = self.controller.get_active_control(now_ms)
        step = price_process.step(
            self.market_state,
            control,
            self.rng,
            now_ms,
            self.event_probability,
            self.volume_per_step,
        )

        live = self.live
        live.fold(step.price, step.volume)
        if control is not None:
            live.manual_seen = True

        mode = CandleMode.MANUAL if control is not None else CandleMode.AUTO
        mode_change = None
        if mode is not self.observed_mode:
            self.observed_mode = mode
            mode_change = mode

        snapshot = LiveOHLCSnapshot(
            symbol=self.symbol,
            timestamp=live.start_time,
            open=self._round_price(live.open),
            high=self._round_price(live.running_high),
            low=self._round_price(live.running_low),
            close=self._round_price(live.last_price),
            volume=round(live.accumulated_volume, VOLUME_PRECISION),
            resolution=self.resolution,
            time_remaining_seconds=seconds_remaining(now_ms, self.candle_interval_ms),
            change=step.delta,
        )
        return TickResult(snapshot=snapshot, step=step, closed=closed, mode_change=mode_change)

    def on_close(self, now_ms: int) -> Optional[CloseResult]:
        """
        Finalize the live candle if its interval has ended.

        Returns:
            CloseResult, or None if there was nothing to close
        """
        boundary = floor_to_interval(now_ms, self.candle_interval_ms)
        if self.live is None:
            self.open_candle(boundary)
            return None
        if self.live.start_time >= boundary:
            return None
        return self._finalize(boundary)

    # ==========================================================================
    # Candle lifecycle
    # ==========================================================================

    def open_candle(self, start_time: int) -> LiveCandleState:
        """Start accumulating a new interval at the current price."""
        self.live = LiveCandleState.opened_at(start_time, self.market_state.process.current_price)
        if self.controller.get_active_control(start_time) is not None:
            self.live.manual_seen = True
        self.state = AggregatorState.ACCUMULATING
        return self.live

    def resume(self, start_time: int) -> LiveCandleState:
        """Keep the live candle if it already covers `start_time`, else open a new one."""
        if self.live is not None and self.live.start_time == start_time:
            self.state = AggregatorState.ACCUMULATING
            return self.live
        return self.open_candle(start_time)

    def mark_manual(self) -> None:
        """Flag the live interval as manual (a control started inside it)."""
        if self.live is not None:
            self.live.manual_seen = True

    def _finalize(self, boundary: int) -> CloseResult:
        live = self.live
        volume = live.accumulated_volume
        if volume <= 0:
            volume = price_process.step_volume(
                self.market_state, 0.0, live.last_price, self.volume_per_step, self.rng
            )

        candle = Candle(
            symbol=self.symbol,
            timestamp=live.start_time,
            open=self._round_price(live.open),
            high=self._round_price(live.running_high),
            low=self._round_price(live.running_low),
            close=self._round_price(live.last_price),
            volume=round(volume, VOLUME_PRECISION),
            mode=CandleMode.MANUAL if live.manual_seen else CandleMode.AUTO,
            resolution=self.resolution,
        )
        self.state = AggregatorState.CLOSED
        self.last_candle = candle

        transition = regime.on_candle_close(self.market_state, self.rng, boundary, candle.close)
        self.open_candle(boundary)
        return CloseResult(candle=candle, transition=transition)

    def _round_price(self, price: float) -> float:
        scaled = round(price * self.price_scale) / self.price_scale
        return max(scaled, 1 / self.price_scale)
