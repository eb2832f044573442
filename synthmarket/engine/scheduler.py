"""
Timer scheduling for the engine.

The engine runs two logical timers (live tick, candle close) on one
cooperative, single-threaded scheduler. Every callback runs to completion
before the next one starts, so engine state needs no locking.

Two implementations:
- SimulatedScheduler: deterministic virtual clock advanced by tests and by
  batch back-fill. Timers due at the same instant fire in priority order.
- AsyncioScheduler: real wall-clock timers on the running asyncio loop.
  Blocking collaborator I/O is pushed to a single worker thread.

Timers are interval-aligned: a timer with interval I fires at exact
multiples of I (epoch ms), never at "start time + k*I".
"""

import asyncio
import heapq
import itertools
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..utils.logger import get_logger
from ..utils.timeframes import next_boundary


TimerCallback = Callable[[int], None]


@dataclass
class TimerHandle:
    """Registered periodic timer."""
    name: str
    interval_ms: int
    callback: TimerCallback
    priority: int = 0
    cancelled: bool = False
    fired: int = 0


class Scheduler(ABC):
    """Clock + periodic timers + fire-and-forget I/O."""

    @abstractmethod
    def now_ms(self) -> int:
        """Current time in epoch milliseconds."""

    @abstractmethod
    def schedule_every(
        self,
        name: str,
        interval_ms: int,
        callback: TimerCallback,
        priority: int = 0,
    ) -> TimerHandle:
        """
        Register an interval-aligned periodic timer.

        Args:
            name: Timer name for logs
            interval_ms: Period; firings land on multiples of it
            callback: Called with the scheduled fire time (epoch ms)
            priority: Lower fires first when two timers are due together
        """

    @abstractmethod
    def cancel(self, handle: TimerHandle) -> None:
        """Stop a timer; it never fires again after this returns."""

    @abstractmethod
    def submit_io(self, name: str, fn: Callable[..., Any], *args) -> None:
        """Run fn(*args) without blocking the timers; failures are logged."""

    def cancel_all(self, handles: List[TimerHandle]) -> None:
        for handle in handles:
            self.cancel(handle)


# ==============================================================================
# Simulated clock
# ==============================================================================

@dataclass(order=True)
class _Due:
    due_ms: int
    priority: int
    seq: int
    handle: TimerHandle = field(compare=False)


class SimulatedScheduler(Scheduler):
    """
    Deterministic virtual-time scheduler.

    Usage:
        scheduler = SimulatedScheduler(start_ms=1_700_000_000_000)
        engine = MarketEngine(..., scheduler=scheduler)
        engine.start()
        scheduler.advance(60_000)   # runs 60 ticks and one candle close
    """

    def __init__(self, start_ms: int = 0):
        self._now = int(start_ms)
        self._queue: List[_Due] = []
        self._seq = itertools.count()
        self.logger = get_logger()

    def now_ms(self) -> int:
        return self._now

    def schedule_every(self, name, interval_ms, callback, priority=0) -> TimerHandle:
        handle = TimerHandle(name=name, interval_ms=interval_ms, callback=callback, priority=priority)
        self._push(handle, next_boundary(self._now, interval_ms))
        return handle

    def _push(self, handle: TimerHandle, due_ms: int) -> None:
        heapq.heappush(self._queue, _Due(due_ms, handle.priority, next(self._seq), handle))

    def cancel(self, handle: TimerHandle) -> None:
        handle.cancelled = True

    def submit_io(self, name, fn, *args) -> None:
        # Inline, but isolated exactly like the threaded variant
        try:
            fn(*args)
        except Exception as e:
            self.logger.error(f"I/O task '{name}' failed: {e}")

    def run_until(self, target_ms: int) -> int:
        """
        Fire every timer due at or before target_ms, in time/priority order.

        Returns:
            Number of callbacks fired
        """
        fired = 0
        while self._queue and self._queue[0].due_ms <= target_ms:
            due = heapq.heappop(self._queue)
            handle = due.handle
            if handle.cancelled:
                continue
            self._now = due.due_ms
            handle.fired += 1
            handle.callback(due.due_ms)
            fired += 1
            if not handle.cancelled:
                self._push(handle, due.due_ms + handle.interval_ms)
        self._now = max(self._now, int(target_ms))
        return fired

    def advance(self, delta_ms: int) -> int:
        """Move the clock forward by delta_ms, firing due timers."""
        return self.run_until(self._now + int(delta_ms))


# ==============================================================================
# Real time
# ==============================================================================

class AsyncioScheduler(Scheduler):
    """
    Wall-clock scheduler on the running asyncio loop.

    Each timer is one task that sleeps to the next aligned boundary and then
    calls its callback synchronously. A late wake-up still passes the
    aligned boundary time, not the actual wake-up time.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Dict[int, asyncio.Task] = {}
        self._io_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="synthmarket-io")
        self.logger = get_logger()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def schedule_every(self, name, interval_ms, callback, priority=0) -> TimerHandle:
        handle = TimerHandle(name=name, interval_ms=interval_ms, callback=callback, priority=priority)
        task = self.loop.create_task(self._run_timer(handle), name=f"timer:{name}")
        self._tasks[id(handle)] = task
        return handle

    async def _run_timer(self, handle: TimerHandle) -> None:
        due = next_boundary(self.now_ms(), handle.interval_ms)
        while not handle.cancelled:
            delay = (due - self.now_ms()) / 1000
            if delay > 0:
                await asyncio.sleep(delay)
            # Lower-priority timers due at the same boundary yield once
            if handle.priority:
                await asyncio.sleep(0)
            if handle.cancelled:
                break
            try:
                handle.callback(due)
            except Exception as e:
                self.logger.error(f"Timer '{handle.name}' callback failed: {e}")
            handle.fired += 1
            due = next_boundary(max(due, self.now_ms()), handle.interval_ms)

    def cancel(self, handle: TimerHandle) -> None:
        handle.cancelled = True
        task = self._tasks.pop(id(handle), None)
        if task is not None:
            task.cancel()

    def submit_io(self, name, fn, *args) -> None:
        future = self._io_executor.submit(fn, *args)
        future.add_done_callback(lambda f: self._log_io_failure(name, f))

    def _log_io_failure(self, name: str, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.logger.error(f"I/O task '{name}' failed: {exc}")

    def shutdown(self, wait: bool = True) -> None:
        """Cancel all timers and drain the I/O worker."""
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
        self._io_executor.shutdown(wait=wait)
