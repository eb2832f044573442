"""
Price Process Model.

Produces one signed price delta per generation step and runs the full step
pipeline that turns it into the next price.

Architecture Principle: explicit state
- Input: MarketState, active ManualControl (or None), numpy Generator, time
- Output: StepResult
- All randomness comes from the Generator passed in; nothing reads the
  wall clock or a global RNG, so a seeded run is fully reproducible.

Auto mode, per step:
    forced consolidation (post-event / post-breaker cool-down)
    | random event (pump, dump, flash crash; only when cooldown is 0)
    | consolidation (~70%)
    | trending move (regime bias + momentum + crash asymmetry
                     + volatility clustering + mean reversion)

Manual mode (direction up/down): delta = price * sign * speed * intensity,
no randomness. A neutral control falls through to auto mode.

Both modes add a tiny noise term (<= 0.1% of price).

Step pipeline:
    model delta -> noise -> price floor -> S/R (auto only)
    -> governor -> price floor -> history / S/R bookkeeping
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from ..config.constants import MIN_PRICE
from ..utils.logger import get_logger
from . import governor, levels
from .regime import REGIME_BIAS, REGIME_VOLUME_MULTIPLIER
from .types import Direction, ManualControl, MarketState


CONSOLIDATION_PROBABILITY = 0.70
CONSOLIDATION_RANGE = 0.002
MAX_CONSOLIDATION_RANGE = 0.01
CRASH_SPEED_MULTIPLIER = 3.0
CLUSTERING_THRESHOLD = 1.5
CLUSTERING_AMPLIFIER = 1.3
MEAN_REVERSION_FACTOR = 0.05
NOISE_RANGE = 0.001

TREND_DECAY = 0.92
TREND_RANDOM_WEIGHT = 0.3
TREND_BIAS_WEIGHT = 0.7
DIRECTION_RANDOM_WEIGHT = 0.4
DIRECTION_TREND_WEIGHT = 0.6

# Calibrated so the default trend_strength (0.1) gives a 0.15 increment scale
TREND_INCREMENT_SCALE = 1.5


class MoveKind(Enum):
    """What produced the model delta for a step."""
    MANUAL = "manual"
    CONSOLIDATION = "consolidation"
    TRENDING = "trending"
    EVENT = "event"


class MarketEventKind(Enum):
    """One-off large moves."""
    PUMP = "pump"
    DUMP = "dump"
    FLASH_CRASH = "flash_crash"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one generation step."""
    previous_price: float
    price: float
    delta: float
    volume: float
    kind: MoveKind
    cap: float
    event: Optional[MarketEventKind] = None

    @property
    def change_fraction(self) -> float:
        return self.delta / self.previous_price if self.previous_price else 0.0


# ==============================================================================
# Manual mode
# ==============================================================================

def manual_delta(current_price: float, direction: Direction, speed: float, intensity: float) -> float:
    """Deterministic operator-driven delta."""
    return current_price * direction.sign * speed * intensity


# ==============================================================================
# Auto mode
# ==============================================================================

def consolidation_delta(current_price: float, rng: np.random.Generator, amplitude: float = CONSOLIDATION_RANGE) -> float:
    """Small sideways move, triangular around zero."""
    max_move = current_price * min(amplitude, MAX_CONSOLIDATION_RANGE)
    return max_move * rng.triangular(-1.0, 0.0, 1.0)


def update_trend(state: MarketState, random_factor: float, regime_bias: float) -> float:
    """Decay momentum, add a regime-weighted increment, clamp to [-1, 1]."""
    process = state.process
    process.current_trend *= TREND_DECAY
    increment = (random_factor * TREND_RANDOM_WEIGHT + regime_bias * TREND_BIAS_WEIGHT)
    process.current_trend += increment * process.trend_strength * TREND_INCREMENT_SCALE
    process.current_trend = max(-1.0, min(1.0, process.current_trend))
    return process.current_trend


def mean_reversion(state: MarketState, current_price: float) -> float:
    """Pull toward base price, growing quadratically with deviation."""
    base = state.process.base_price
    deviation = (current_price - base) / base
    strength = abs(deviation) * MEAN_REVERSION_FACTOR
    return -deviation * strength * current_price


def trending_delta(state: MarketState, current_price: float, rng: np.random.Generator) -> float:
    """Regime-biased trending move."""
    process = state.process
    random_factor = rng.uniform(-1.0, 1.0)
    regime_bias = REGIME_BIAS[state.regime.regime]

    trend = update_trend(state, random_factor, regime_bias)
    direction_factor = random_factor * DIRECTION_RANDOM_WEIGHT + trend * DIRECTION_TREND_WEIGHT

    move_size = current_price * process.volatility
    if direction_factor < 0:
        move_size *= CRASH_SPEED_MULTIPLIER

    change = move_size * direction_factor

    if process.average_volatility > process.volatility * CLUSTERING_THRESHOLD:
        change *= CLUSTERING_AMPLIFIER

    return change + mean_reversion(state, current_price)


def trigger_event(state: MarketState, current_price: float, rng: np.random.Generator) -> tuple[float, MarketEventKind]:
    """
    Fire a one-off large move and arm the cooldowns.

    Returns:
        (delta, event kind)
    """
    process = state.process
    process.event_cooldown = int(rng.integers(30, 61))
    roll = rng.random()

    if roll < 0.4:
        kind = MarketEventKind.PUMP
        delta = current_price * rng.uniform(0.05, 0.10)
        process.consolidation_counter = 5
    elif roll < 0.7:
        kind = MarketEventKind.DUMP
        delta = -current_price * rng.uniform(0.08, 0.15)
        process.consolidation_counter = 8
    else:
        kind = MarketEventKind.FLASH_CRASH
        delta = -current_price * rng.uniform(0.05, 0.08)
        process.consolidation_counter = 3

    get_logger().market("EVENT", f"Random event: {kind.value}", pct=f"{delta / current_price * 100:.2f}%")
    return delta, kind


def auto_delta(
    state: MarketState,
    current_price: float,
    rng: np.random.Generator,
    event_probability: float,
) -> tuple[float, MoveKind, Optional[MarketEventKind]]:
    """Pick and compute the auto-mode move for this step."""
    process = state.process

    if process.consolidation_counter > 0:
        return consolidation_delta(current_price, rng), MoveKind.CONSOLIDATION, None

    if process.event_cooldown == 0 and rng.random() < event_probability:
        delta, kind = trigger_event(state, current_price, rng)
        return delta, MoveKind.EVENT, kind

    if rng.random() < CONSOLIDATION_PROBABILITY:
        return consolidation_delta(current_price, rng), MoveKind.CONSOLIDATION, None

    return trending_delta(state, current_price, rng), MoveKind.TRENDING, None


def noise(current_price: float, rng: np.random.Generator) -> float:
    """Independent jitter so sequences are never perfectly flat."""
    return current_price * NOISE_RANGE * rng.uniform(-1.0, 1.0)


# ==============================================================================
# Volume
# ==============================================================================

def step_volume(state: MarketState, delta: float, current_price: float, base_volume: float, rng: np.random.Generator) -> float:
    """
    Volume for one step: grows with move size, scaled by regime, +/-30% jitter.

    Always strictly positive for a positive base volume.
    """
    change = abs(delta / current_price) if current_price else 0.0
    volume = base_volume * (1 + change * 20)
    volume *= REGIME_VOLUME_MULTIPLIER[state.regime.regime]
    volume *= rng.uniform(0.7, 1.3)
    if state.process.average_volatility > governor.HIGH_VOLATILITY_THRESHOLD:
        volume *= 1.2
    return volume


# ==============================================================================
# Full step
# ==============================================================================

def step(
    state: MarketState,
    control: Optional[ManualControl],
    rng: np.random.Generator,
    now_ms: int,
    event_probability: float,
    volume_per_step: float,
) -> StepResult:
    """
    Run one generation step and advance the market state.

    Args:
        state: Engine-owned market state (mutated)
        control: Active manual control, or None
        rng: Random generator
        now_ms: Step time (epoch ms)
        event_probability: Per-step probability of a random event
        volume_per_step: Base volume of one step

    Returns:
        StepResult
    """
    process = state.process
    previous = process.current_price

    if process.consolidation_counter > 0:
        process.consolidation_counter -= 1
    if process.event_cooldown > 0:
        process.event_cooldown -= 1

    event = None
    if control is not None and control.direction is not Direction.NEUTRAL:
        raw = manual_delta(previous, control.direction, control.speed, control.intensity)
        kind = MoveKind.MANUAL
    else:
        raw, kind, event = auto_delta(state, previous, rng, event_probability)

    proposed = max(MIN_PRICE, previous + raw + noise(previous, rng))

    if kind is not MoveKind.MANUAL:
        proposed = levels.apply(state, proposed, previous, rng, now_ms)

    clamped = governor.clamp(state, previous, proposed - previous)
    price = max(MIN_PRICE, previous + clamped.delta)
    delta = price - previous

    process.current_price = price
    process.record(price, abs(delta / previous) if previous else 0.0)
    levels.update(state, price, price, price, now_ms)

    volume = step_volume(state, delta, previous, volume_per_step, rng)

    return StepResult(
        previous_price=previous,
        price=price,
        delta=delta,
        volume=volume,
        kind=kind,
        cap=clamped.cap,
        event=event,
    )
