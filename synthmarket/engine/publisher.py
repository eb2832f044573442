"""
Publication Boundary.

Everything the engine produces leaves through here:
- subscriber callbacks: live ticks, price prints, closed candles, events
- collaborator sinks: candle persistence, latest-value cache

Subscriber callbacks run inline on the scheduler; each one is isolated so a
failing subscriber cannot starve the others. Collaborator writes go through
Scheduler.submit_io and never block or fail a timer callback.

Once closed, nothing is published, so a stopped engine is silent even if a
timer callback is still unwinding.
"""

from typing import Any, Callable, List, Optional

from ..utils.logger import get_logger
from .scheduler import Scheduler
from .types import Candle, EngineEvent, LiveOHLCSnapshot


class PublicationBoundary:
    """
    Fan-out point between the engine and the outside world.

    Usage:
        boundary = PublicationBoundary(scheduler, backend=store, cache=cache)
        boundary.on_candle_close(lambda c: print(c.close))
    """

    def __init__(self, scheduler: Scheduler, backend=None, cache=None):
        self.scheduler = scheduler
        self.backend = backend
        self.cache = cache
        self.logger = get_logger()
        self.is_open = False

        self._live_tick_callbacks: List[Callable[[LiveOHLCSnapshot], None]] = []
        self._price_callbacks: List[Callable[[dict], None]] = []
        self._candle_callbacks: List[Callable[[Candle], None]] = []
        self._event_callbacks: List[Callable[[EngineEvent], None]] = []

    def open(self):
        self.is_open = True

    def close(self):
        self.is_open = False

    # ==========================================================================
    # Subscription
    # ==========================================================================

    def on_live_tick(self, callback: Callable[[LiveOHLCSnapshot], None]):
        """Register callback for live candle snapshots."""
        self._live_tick_callbacks.append(callback)

    def on_price_update(self, callback: Callable[[dict], None]):
        """Register callback for price prints."""
        self._price_callbacks.append(callback)

    def on_candle_close(self, callback: Callable[[Candle], None]):
        """Register callback for finalized candles."""
        self._candle_callbacks.append(callback)

    def on_regime_or_mode_change(self, callback: Callable[[EngineEvent], None]):
        """Register callback for regime, mode, manual control and status events."""
        self._event_callbacks.append(callback)

    # ==========================================================================
    # Publication
    # ==========================================================================

    def publish_tick(self, snapshot: LiveOHLCSnapshot) -> None:
        if not self.is_open:
            return
        self._invoke_callbacks(self._live_tick_callbacks, snapshot)
        self._invoke_callbacks(self._price_callbacks, snapshot.to_price_update())
        if self.cache is not None:
            self.scheduler.submit_io("cache_latest", self.cache.cache_latest, snapshot.close, None, None)

    def publish_candle(self, candle: Candle, status: Optional[dict] = None) -> None:
        if not self.is_open:
            return
        self.logger.candle(candle)
        if self.backend is not None:
            self.scheduler.submit_io("persist_candle", self.backend.persist_candle, candle)
        if self.cache is not None:
            self.scheduler.submit_io("cache_latest", self.cache.cache_latest, candle.close, candle, status)
        self._invoke_callbacks(self._candle_callbacks, candle)

    def publish_event(self, event: EngineEvent) -> None:
        if not self.is_open:
            return
        self._invoke_callbacks(self._event_callbacks, event)

    def submit(self, name: str, fn: Callable[..., Any], *args) -> None:
        """Run an arbitrary collaborator write off the timer path."""
        self.scheduler.submit_io(name, fn, *args)

    def _invoke_callbacks(self, callbacks: List[Callable], data: Any):
        """Invoke all registered callbacks."""
        for callback in callbacks:
            try:
                callback(data)
            except Exception as e:
                self.logger.error(f"Callback error: {e}")
