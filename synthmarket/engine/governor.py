"""
Stability Governor.

Bounds every proposed price change with two independent limits:
1. Per-step cap (2.5% normal, 5% in high volatility, 10% right after a
   random event). Hitting it forces a consolidation period.
2. Deviation from the trailing moving average (30%). Hitting it lands the
   price on the band edge, halves momentum and forces a long consolidation.

The per-step cap is re-applied last, so the result never moves further than
the currently applicable cap.
"""

from dataclasses import dataclass

from ..utils.logger import get_logger
from .types import MarketState


MAX_NORMAL_CHANGE = 0.025
MAX_VOLATILE_CHANGE = 0.05
MAX_EXTREME_CHANGE = 0.10
HIGH_VOLATILITY_THRESHOLD = 0.03

MAX_DEVIATION_FROM_MA = 0.30
MA_WINDOW = 50

# Event cooldown above this means an event fired within the last few steps
EXTREME_COOLDOWN_THRESHOLD = 25

BREAKER_CONSOLIDATION = 10
EMERGENCY_CONSOLIDATION = 20
EMERGENCY_TREND_DAMPING = 0.5


@dataclass(frozen=True)
class ClampResult:
    """Outcome of one governor pass."""
    delta: float
    cap: float
    step_capped: bool
    ma_capped: bool


def current_cap(state: MarketState) -> float:
    """Per-step cap currently in force, as a fraction of price."""
    process = state.process
    if process.event_cooldown > EXTREME_COOLDOWN_THRESHOLD:
        return MAX_EXTREME_CHANGE
    if process.average_volatility > HIGH_VOLATILITY_THRESHOLD:
        return MAX_VOLATILE_CHANGE
    return MAX_NORMAL_CHANGE


def _cap_delta(current_price: float, delta: float, cap: float) -> float:
    limit = current_price * cap
    if abs(delta) <= limit:
        return delta
    return limit if delta > 0 else -limit


def clamp(state: MarketState, current_price: float, proposed_delta: float) -> ClampResult:
    """
    Bound a proposed delta.

    Args:
        state: Market state (consolidation counter and trend may be mutated)
        current_price: Price before the step
        proposed_delta: Signed change requested by the model

    Returns:
        ClampResult with the bounded delta
    """
    logger = get_logger()
    process = state.process
    cap = current_cap(state)

    delta = _cap_delta(current_price, proposed_delta, cap)
    step_capped = delta != proposed_delta
    if step_capped:
        process.consolidation_counter = max(process.consolidation_counter, BREAKER_CONSOLIDATION)
        logger.market("BREAKER", "Circuit breaker capped move", level="DEBUG", cap=f"{cap * 100:.1f}%")

    ma_capped = False
    moving_average = process.moving_average(MA_WINDOW)
    if moving_average > 0:
        new_price = current_price + delta
        deviation = abs(new_price - moving_average) / moving_average
        if deviation > MAX_DEVIATION_FROM_MA:
            upper = moving_average * (1 + MAX_DEVIATION_FROM_MA)
            lower = moving_average * (1 - MAX_DEVIATION_FROM_MA)
            target = max(lower, min(upper, new_price))
            delta = _cap_delta(current_price, target - current_price, cap)
            process.consolidation_counter = EMERGENCY_CONSOLIDATION
            process.current_trend *= EMERGENCY_TREND_DAMPING
            ma_capped = True
            logger.market(
                "BREAKER",
                "Emergency stop, price too far from moving average",
                level="DEBUG",
                deviation=f"{deviation * 100:.1f}%",
            )

    return ClampResult(delta=delta, cap=cap, step_capped=step_capped, ma_capped=ma_capped)
