"""
Market Engine.

Owns all mutable engine state and drives it from two interval-aligned
timers on one scheduler:
- live tick (short cadence): one generation step, live snapshot
- candle close (candle interval): finalize, persist, regime bookkeeping

Usage:
    scheduler = SimulatedScheduler(start_ms=0)
    engine = MarketEngine(config, scheduler=scheduler)
    engine.on_candle_close(lambda candle: print(candle.close))
    engine.start()
    scheduler.advance(5 * 60_000)
    engine.stop()
"""

from collections import deque
from typing import Callable, Deque, List, Optional

import numpy as np

from ..config.config import Config, get_config
from ..utils.logger import get_logger
from ..utils.timeframes import RESOLUTION_MS, floor_to_interval, validate_resolution
from . import governor
from .aggregator import CloseResult, TickCandleAggregator
from .manual_control import ManualOverrideController, validate_manual_control
from .publisher import PublicationBoundary
from .scheduler import AsyncioScheduler, Scheduler, SimulatedScheduler, TimerHandle
from .types import (
    Candle,
    CandleMode,
    EngineEvent,
    EngineEventType,
    LiveOHLCSnapshot,
    ManualControl,
    MarketState,
    SystemStatus,
)


# Close runs before a tick due at the same instant
CLOSE_PRIORITY = 0
TICK_PRIORITY = 1


class MarketEngine:
    """
    Synthetic market for one symbol.

    Collaborators (all optional):
        backend: CandleBackend for seeding, persistence and history
        cache: LatestCache for write-through of the latest values
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        scheduler: Optional[Scheduler] = None,
        backend=None,
        cache=None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config or get_config()
        self.logger = get_logger()
        self.scheduler = scheduler or AsyncioScheduler()
        self.backend = backend
        self.cache = cache
        self.rng = rng if rng is not None else np.random.default_rng(self.config.market.seed)

        market = self.config.market
        engine = self.config.engine
        self.symbol = market.symbol
        self.resolution = validate_resolution(engine.resolution)
        self.candle_interval_ms = engine.candle_interval_ms
        self.tick_interval_ms = engine.tick_interval_ms

        self.state = MarketState.initial(
            base_price=market.base_price,
            volatility=market.volatility,
            trend_strength=market.trend_strength,
            volume_base=market.volume_base,
            now_ms=self.scheduler.now_ms(),
        )
        self.controller = ManualOverrideController()
        self.publisher = PublicationBoundary(self.scheduler, backend=backend, cache=cache)
        self.aggregator = self._build_aggregator(self.rng)

        self.is_running = False
        self._timers: List[TimerHandle] = []
        self._started_at_ms = 0
        self._seeded = False
        self.total_candles_this_session = 0
        self._recent_candles: Deque[Candle] = deque(maxlen=self.config.data.history_max_limit)

    def _build_aggregator(self, rng: np.random.Generator) -> TickCandleAggregator:
        return TickCandleAggregator(
            self.state,
            rng,
            self.controller,
            symbol=self.symbol,
            resolution=self.resolution,
            candle_interval_ms=self.candle_interval_ms,
            tick_interval_ms=self.tick_interval_ms,
            price_scale=self.config.market.price_scale,
            event_probability=self.config.market.event_probability,
        )

    # ==========================================================================
    # Subscription
    # ==========================================================================

    def on_live_tick(self, callback: Callable[[LiveOHLCSnapshot], None]):
        self.publisher.on_live_tick(callback)

    def on_price_update(self, callback: Callable[[dict], None]):
        self.publisher.on_price_update(callback)

    def on_candle_close(self, callback: Callable[[Candle], None]):
        self.publisher.on_candle_close(callback)

    def on_regime_or_mode_change(self, callback: Callable[[EngineEvent], None]):
        self.publisher.on_regime_or_mode_change(callback)

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def start(self) -> None:
        """Start both timers. Idempotent."""
        if self.is_running:
            self.logger.debug("MarketEngine.start() called while running")
            return

        now = self.scheduler.now_ms()
        if not self._seeded:
            self._seed_from_backend(now)

        self.publisher.open()
        # A restart inside the interval that was live at stop() continues that candle
        self.aggregator.resume(floor_to_interval(now, self.candle_interval_ms))
        self._timers = [
            self.scheduler.schedule_every("candle_close", self.candle_interval_ms, self._on_close, CLOSE_PRIORITY),
            self.scheduler.schedule_every("live_tick", self.tick_interval_ms, self._on_tick, TICK_PRIORITY),
        ]
        self._started_at_ms = now
        self.total_candles_this_session = 0
        self.is_running = True

        self.logger.info(
            f"MarketEngine started: symbol={self.symbol}, price={self.state.process.current_price:.4f}, "
            f"candle={self.candle_interval_ms}ms, tick={self.tick_interval_ms}ms"
        )
        self._publish_status(now)

    def stop(self) -> None:
        """Stop both timers; nothing is published after this returns. Idempotent."""
        if not self.is_running:
            self.logger.debug("MarketEngine.stop() called while stopped")
            return
        self.scheduler.cancel_all(self._timers)
        self._timers = []
        self.publisher.close()
        self.is_running = False
        self.logger.info(f"MarketEngine stopped after {self.total_candles_this_session} candles")

    def _seed_from_backend(self, now_ms: int) -> None:
        """Continue from the last stored candle and restore the active control."""
        self._seeded = True
        if self.backend is None:
            return

        try:
            last = self.backend.get_last_candle(self.symbol, self.resolution)
        except Exception as e:
            self.logger.error(f"Failed to load last candle: {e}")
            last = None
        if last is not None:
            self.state.process.current_price = last.close
            self.aggregator.last_candle = last
            self.logger.info(f"Seeded from last candle: t={last.timestamp}, close={last.close:.4f}")

        try:
            control = self.backend.get_active_manual_control(now_ms)
        except Exception as e:
            self.logger.error(f"Failed to load active manual control: {e}")
            control = None
        if hasattr(self.backend, "get_manual_control_history"):
            try:
                newest = self.backend.get_manual_control_history(limit=1)
            except Exception as e:
                self.logger.error(f"Failed to load manual control history: {e}")
                newest = []
            if newest and newest[0].id is not None:
                self.controller.reserve_ids_through(newest[0].id)
        if control is not None:
            self.controller.adopt(control)
            self.logger.info(f"Restored manual control #{control.id}: {control.direction.value}")

    # ==========================================================================
    # Timer callbacks
    # ==========================================================================

    def _on_tick(self, now_ms: int) -> None:
        if not self.is_running:
            return
        result = self.aggregator.on_tick(now_ms)
        if result.closed is not None:
            self._handle_close(result.closed, now_ms)

        self.publisher.publish_tick(result.snapshot)

        if result.step.event is not None:
            self.publisher.publish_event(EngineEvent(
                EngineEventType.MARKET_EVENT,
                now_ms,
                {"event": result.step.event.value, "price": result.step.price, "delta": result.step.delta},
            ))

        if result.mode_change is not None:
            self.logger.market("MODE", f"Mode changed to {result.mode_change.value}")
            self.publisher.publish_event(EngineEvent(
                EngineEventType.MODE_CHANGE,
                now_ms,
                {"mode": result.mode_change.value},
            ))

    def _on_close(self, now_ms: int) -> None:
        if not self.is_running:
            return
        closed = self.aggregator.on_close(now_ms)
        if closed is not None:
            self._handle_close(closed, now_ms)

    def _handle_close(self, closed: CloseResult, now_ms: int) -> None:
        candle = closed.candle
        self.total_candles_this_session += 1
        self._recent_candles.append(candle)

        if closed.transition is not None:
            transition = closed.transition
            self.logger.market(
                "REGIME",
                f"{transition.previous.value} -> {transition.current.value}",
                candles=transition.candles_in_previous,
                drift=f"{transition.drift * 100:.2f}%",
            )
            self.publisher.publish_event(EngineEvent(
                EngineEventType.REGIME_CHANGE, now_ms, transition.to_dict()
            ))

        status = self.get_system_status(now_ms).to_dict()
        self.publisher.publish_candle(candle, status)
        self.publisher.publish_event(EngineEvent(EngineEventType.SYSTEM_STATUS, now_ms, status))

    def _publish_status(self, now_ms: int) -> None:
        self.publisher.publish_event(EngineEvent(
            EngineEventType.SYSTEM_STATUS, now_ms, self.get_system_status(now_ms).to_dict()
        ))

    # ==========================================================================
    # Manual control
    # ==========================================================================

    def create_manual_control(
        self,
        direction: str,
        speed: float,
        intensity: float,
        duration_seconds: Optional[int] = None,
    ) -> ManualControl:
        """
        Validate and install a new manual control, superseding earlier ones.

        Raises:
            ManualControlValidationError: If any field is out of bounds
        """
        limits = self.config.manual
        if duration_seconds is None:
            duration_seconds = limits.default_duration
        parsed = validate_manual_control(direction, speed, intensity, duration_seconds, limits)

        now = self.scheduler.now_ms()
        control = self.controller.create(parsed, speed, intensity, duration_seconds, now)
        self.aggregator.mark_manual()

        self.logger.market(
            "MANUAL",
            f"Manual control #{control.id} created",
            direction=parsed.value,
            speed=speed,
            intensity=intensity,
            duration=f"{duration_seconds}s",
        )

        if self.backend is not None:
            self.publisher.submit("save_manual_control", self.backend.save_manual_control, control)
        if self.cache is not None and hasattr(self.cache, "cache_manual_control"):
            self.publisher.submit("cache_manual_control", self.cache.cache_manual_control, control.to_dict())
        self.publisher.publish_event(EngineEvent(EngineEventType.MANUAL_CONTROL, now, control.to_dict()))
        return control

    def cancel_manual_control(self) -> Optional[ManualControl]:
        """Deactivate the authoritative control immediately."""
        now = self.scheduler.now_ms()
        control = self.controller.cancel_active(now)
        if control is None:
            return None

        self.logger.market("MANUAL", f"Manual control #{control.id} cancelled")
        if self.backend is not None and hasattr(self.backend, "deactivate_manual_control"):
            self.publisher.submit("deactivate_manual_control", self.backend.deactivate_manual_control, control.id)
        if self.cache is not None and hasattr(self.cache, "cache_manual_control"):
            self.publisher.submit("cache_manual_control", self.cache.cache_manual_control, None)
        self.publisher.publish_event(EngineEvent(
            EngineEventType.MANUAL_CONTROL, now, {**control.to_dict(), "cancelled": True}
        ))
        return control

    def get_active_manual_control(self) -> Optional[ManualControl]:
        return self.controller.get_active_control(self.scheduler.now_ms())

    # ==========================================================================
    # Queries
    # ==========================================================================

    def get_current_price(self) -> float:
        return self.state.process.current_price

    def get_mode(self) -> CandleMode:
        return CandleMode.MANUAL if self.get_active_manual_control() is not None else CandleMode.AUTO

    def get_system_status(self, now_ms: Optional[int] = None) -> SystemStatus:
        now = self.scheduler.now_ms() if now_ms is None else now_ms
        control = self.controller.get_active_control(now)
        last = self.aggregator.last_candle
        return SystemStatus(
            mode=CandleMode.MANUAL if control is not None else CandleMode.AUTO,
            is_running=self.is_running,
            last_candle_time=last.timestamp if last is not None else 0,
            current_price=self.state.process.current_price,
            total_candles_this_session=self.total_candles_this_session,
            uptime=max(0, (now - self._started_at_ms) // 1000) if self.is_running else 0,
            regime=self.state.regime.regime,
            active_manual_control=control,
        )

    def get_live_candle(self) -> Optional[dict]:
        """Current in-progress candle, or None before the first interval opens."""
        live = self.aggregator.live
        if live is None:
            return None
        return {
            "symbol": self.symbol,
            "timestamp": live.start_time,
            "open": live.open,
            "high": live.running_high,
            "low": live.running_low,
            "close": live.last_price,
            "volume": live.accumulated_volume,
            "resolution": self.resolution,
        }

    def get_generator_state(self) -> dict:
        process = self.state.process
        return {
            "base_price": process.base_price,
            "volatility": process.volatility,
            "trend_strength": process.trend_strength,
            "volume_base": process.volume_base,
            "current_trend": process.current_trend,
            "current_price": process.current_price,
            "regime": self.state.regime.regime.value,
            "candles_in_regime": self.state.regime.candles_in_regime,
            "support_resistance_levels": len(self.state.levels),
            "consolidation_counter": process.consolidation_counter,
            "event_cooldown": process.event_cooldown,
            "average_volatility": process.average_volatility,
            "moving_average": process.moving_average(governor.MA_WINDOW),
        }

    def get_historical_candles(
        self,
        symbol: str,
        resolution: str,
        from_ms: int,
        to_ms: int,
        limit: int,
    ) -> List[Candle]:
        """
        Candles in [from_ms, to_ms], ascending, at most `limit` (most recent).

        Resolutions coarser than the engine's are rolled up from stored
        base candles.

        Raises:
            ValueError: For unknown or finer-than-base resolutions
        """
        resolution = validate_resolution(resolution)
        limit = max(0, min(int(limit), self.config.data.history_max_limit))
        if limit == 0 or to_ms < from_ms:
            return []

        if resolution == self.resolution:
            return self._query_base(symbol, from_ms, to_ms, limit)

        # Imported lazily: pandas is only needed for rollups
        from ..data.history import base_candles_per_bucket, rollup_candles

        bucket_ms = RESOLUTION_MS[resolution]
        if bucket_ms < RESOLUTION_MS[self.resolution]:
            raise ValueError(
                f"Resolution '{resolution}' is finer than the generated resolution '{self.resolution}'"
            )
        start = floor_to_interval(from_ms, bucket_ms)
        per_bucket = base_candles_per_bucket(resolution, self.resolution)
        base = self._query_base(symbol, start, to_ms, limit * per_bucket)
        rolled = rollup_candles(base, resolution)
        return rolled[-limit:]

    def _query_base(self, symbol: str, from_ms: int, to_ms: int, limit: int) -> List[Candle]:
        symbol = symbol.upper()
        if self.backend is not None:
            try:
                return self.backend.get_historical_candles(symbol, self.resolution, from_ms, to_ms, limit)
            except Exception as e:
                self.logger.error(f"History query failed, serving from memory: {e}")
        in_range = [
            c for c in self._recent_candles
            if c.symbol == symbol and from_ms <= c.timestamp <= to_ms
        ]
        return in_range[-limit:]

    # ==========================================================================
    # Generator parameters
    # ==========================================================================

    def update_parameters(
        self,
        base_price: Optional[float] = None,
        volatility: Optional[float] = None,
        trend_strength: Optional[float] = None,
        volume_base: Optional[float] = None,
        persist: bool = False,
    ) -> dict:
        """
        Change generator parameters in place.

        Raises:
            ValueError: If a value is out of range
        """
        updates = {
            "base_price": base_price,
            "volatility": volatility,
            "trend_strength": trend_strength,
            "volume_base": volume_base,
        }
        updates = {key: float(value) for key, value in updates.items() if value is not None}

        for key, value in updates.items():
            if key == "trend_strength":
                if value < 0:
                    raise ValueError(f"trend_strength must be non-negative, got {value}")
            elif key == "volatility":
                if not 0 < value <= 0.5:
                    raise ValueError(f"volatility must be in (0, 0.5], got {value}")
            elif value <= 0:
                raise ValueError(f"{key} must be positive, got {value}")

        process = self.state.process
        for key, value in updates.items():
            setattr(process, key, value)
            if persist and self.backend is not None and hasattr(self.backend, "set_config_value"):
                self.publisher.submit("set_config_value", self.backend.set_config_value, key, value)

        if updates:
            self.logger.info(f"Generator parameters updated: {updates}")
        return self.get_generator_state()

    def reset_trend(self) -> None:
        """Reset momentum to neutral."""
        self.state.process.current_trend = 0.0
        self.logger.info("Generator trend reset")

    # ==========================================================================
    # Back-fill
    # ==========================================================================

    def backfill(self, count: int, persist: bool = True) -> List[Candle]:
        """
        Generate up to `count` consecutive candles ending just before the
        current interval, on a simulated clock, through the same aggregator
        path as live ticks. Fewer (or none) are generated when the last
        known candle already covers part of that range.

        Raises:
            RuntimeError: If the engine is running
        """
        if self.is_running:
            raise RuntimeError("Stop the engine before back-filling")
        if count <= 0:
            return []

        now = self.scheduler.now_ms()
        if not self._seeded:
            self._seed_from_backend(now)

        # The interval containing `now` is live, so back-filled candles end before it
        end = floor_to_interval(now, self.candle_interval_ms)
        start = end - count * self.candle_interval_ms
        last = self.aggregator.last_candle
        if last is not None and last.timestamp + self.candle_interval_ms > start:
            start = last.timestamp + self.candle_interval_ms
        if start >= end:
            self.logger.info(f"Back-fill skipped: history already reaches t={end - self.candle_interval_ms}")
            return []
        count = (end - start) // self.candle_interval_ms

        clock = SimulatedScheduler(start_ms=start)
        candles: List[Candle] = []
        timers: List[TimerHandle] = []

        def on_close(ts: int) -> None:
            closed = self.aggregator.on_close(ts)
            if closed is None:
                return
            candles.append(closed.candle)
            if closed.transition is not None:
                self.logger.market(
                    "REGIME",
                    f"{closed.transition.previous.value} -> {closed.transition.current.value}",
                    level="DEBUG",
                )
            if len(candles) >= count:
                clock.cancel_all(timers)

        timers.append(clock.schedule_every("backfill_close", self.candle_interval_ms, on_close, CLOSE_PRIORITY))
        timers.append(clock.schedule_every(
            "backfill_tick", self.tick_interval_ms, self.aggregator.on_tick, TICK_PRIORITY
        ))

        self.aggregator.open_candle(start)
        clock.run_until(end)

        self._recent_candles.extend(candles)
        if persist and self.backend is not None:
            try:
                if hasattr(self.backend, "persist_candles"):
                    self.backend.persist_candles(candles)
                else:
                    for candle in candles:
                        self.backend.persist_candle(candle)
            except Exception as e:
                self.logger.error(f"Failed to persist back-filled candles: {e}")

        self.logger.info(f"Back-filled {len(candles)} candles from t={start}")
        return candles
