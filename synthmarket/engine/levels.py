"""
Support/Resistance Tracker.

Maintains a bounded set of sticky price levels:
- apply(): magnet / rejection / breakout handling for a proposed price
- update(): registers new levels from rolling extremes and round numbers,
  then prunes weak and stale levels

Strength always stays within [0, 1].
"""

from typing import List

import numpy as np

from ..config.constants import ROUND_PRICE_LEVELS
from ..utils.logger import get_logger
from .types import MarketState, SupportResistanceLevel


MAGNET_DISTANCE = 0.01
MAGNET_MIN_STRENGTH = 0.5
MAGNET_FACTOR = 0.5
REJECTION_FACTOR = 0.6
BREAKOUT_DECAY = 0.7
REJECTION_OFFSET = 0.002

EXTREME_WINDOW = 20
EXTREME_STRENGTH = 0.6
ROUND_PROXIMITY = 0.05
ROUND_STRENGTH = 0.8
MERGE_DISTANCE = 0.02
MERGE_BOOST = 0.2

STRENGTH_FLOOR = 0.2
MAX_LEVELS = 15


def add_level(
    levels: List[SupportResistanceLevel],
    price: float,
    strength: float,
    now_ms: int,
) -> SupportResistanceLevel:
    """
    Add a level, or strengthen an existing one within MERGE_DISTANCE.

    Returns:
        The created or strengthened level
    """
    for level in levels:
        if abs(level.price - price) / price < MERGE_DISTANCE:
            level.strength = min(1.0, level.strength + strength * MERGE_BOOST)
            level.touches += 1
            level.last_touch_time = now_ms
            return level

    level = SupportResistanceLevel(
        price=price,
        strength=min(1.0, max(0.0, strength)),
        touches=1,
        last_touch_time=now_ms,
    )
    levels.append(level)
    return level


def apply(
    state: MarketState,
    proposed_price: float,
    previous_price: float,
    rng: np.random.Generator,
    now_ms: int,
) -> float:
    """
    Adjust a proposed price for nearby support/resistance.

    Args:
        state: Market state owning the level set (mutated)
        proposed_price: Price the model wants to move to
        previous_price: Current price
        rng: Random generator
        now_ms: Step time, recorded on touches

    Returns:
        Adjusted price
    """
    logger = get_logger()
    moving_up = proposed_price > previous_price

    for level in state.levels:
        distance = abs(proposed_price - level.price) / level.price

        if distance < MAGNET_DISTANCE and level.strength > MAGNET_MIN_STRENGTH:
            if rng.random() < level.strength * MAGNET_FACTOR:
                level.touches += 1
                level.last_touch_time = now_ms
                logger.market("LEVEL", "Price magneted to level", level="DEBUG", price=f"{level.price:.4f}")
                return level.price

        crossing_up = moving_up and proposed_price > level.price >= previous_price
        crossing_down = not moving_up and proposed_price < level.price <= previous_price
        if not (crossing_up or crossing_down):
            continue

        if rng.random() < level.strength * REJECTION_FACTOR:
            if crossing_up:
                logger.market("LEVEL", "Rejected at resistance", level="DEBUG", price=f"{level.price:.4f}")
                return level.price * (1 - REJECTION_OFFSET)
            logger.market("LEVEL", "Bounced off support", level="DEBUG", price=f"{level.price:.4f}")
            return level.price * (1 + REJECTION_OFFSET)

        level.strength *= BREAKOUT_DECAY
        logger.market(
            "LEVEL",
            "Breakout above resistance" if crossing_up else "Breakdown below support",
            level="DEBUG",
            price=f"{level.price:.4f}",
        )

    return proposed_price


def update(
    state: MarketState,
    high: float,
    low: float,
    close: float,
    now_ms: int,
) -> None:
    """
    Maintain the level set after a finalized price.

    Expects the price history to already contain this step's price.
    """
    levels = state.levels
    window = list(state.process.recent_prices)[-EXTREME_WINDOW:]

    if window:
        if high >= max(window):
            add_level(levels, high, EXTREME_STRENGTH, now_ms)
        if low <= min(window):
            add_level(levels, low, EXTREME_STRENGTH, now_ms)

    for round_price in ROUND_PRICE_LEVELS:
        if abs(close - round_price) / round_price < ROUND_PROXIMITY:
            add_level(levels, float(round_price), ROUND_STRENGTH, now_ms)

    state.levels = prune(levels)


def prune(levels: List[SupportResistanceLevel]) -> List[SupportResistanceLevel]:
    """Drop weak levels, then keep the MAX_LEVELS most recently relevant."""
    kept = [level for level in levels if level.strength >= STRENGTH_FLOOR]
    if len(kept) <= MAX_LEVELS:
        return kept

    ranked = sorted(kept, key=lambda lv: (lv.last_touch_time, lv.strength), reverse=True)
    survivors = {id(level) for level in ranked[:MAX_LEVELS]}
    return [level for level in kept if id(level) in survivors]

