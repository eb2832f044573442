"""
Regime State Machine.

Cycles the market through four phases, one edge at a time:

    accumulation -> markup -> distribution -> markdown -> accumulation

Evaluated once per closed candle. A transition needs all three of:
1. enough candles spent in the current regime,
2. a probabilistic gate,
3. a per-state confirmation from the recent price drift (with a
   coin-flip fallback so the cycle never stalls).

On transition, momentum and the per-regime candle counter reset.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

import numpy as np

from .types import MarketRegime, MarketState


# The only permitted edges
NEXT_REGIME: Dict[MarketRegime, MarketRegime] = {
    MarketRegime.ACCUMULATION: MarketRegime.MARKUP,
    MarketRegime.MARKUP: MarketRegime.DISTRIBUTION,
    MarketRegime.DISTRIBUTION: MarketRegime.MARKDOWN,
    MarketRegime.MARKDOWN: MarketRegime.ACCUMULATION,
}

# Drift bias applied to trending moves
REGIME_BIAS: Dict[MarketRegime, float] = {
    MarketRegime.ACCUMULATION: 0.0,
    MarketRegime.MARKUP: 0.6,
    MarketRegime.DISTRIBUTION: 0.0,
    MarketRegime.MARKDOWN: -0.6,
}

# Volume multiplier per regime (panic selling is loudest)
REGIME_VOLUME_MULTIPLIER: Dict[MarketRegime, float] = {
    MarketRegime.ACCUMULATION: 0.7,
    MarketRegime.MARKUP: 1.3,
    MarketRegime.DISTRIBUTION: 1.1,
    MarketRegime.MARKDOWN: 1.8,
}

MIN_CANDLES_IN_REGIME = 30
TRANSITION_PROBABILITY = 0.3
DRIFT_LOOKBACK = 30
MIN_DRIFT_SAMPLES = 10

# (drift confirmation, fallback probability) per current regime
_CONFIRMATIONS: Dict[MarketRegime, tuple[Callable[[float], bool], float]] = {
    MarketRegime.ACCUMULATION: (lambda drift: drift > 0.05, 0.4),
    MarketRegime.MARKUP: (lambda drift: drift < 0.02, 0.3),
    MarketRegime.DISTRIBUTION: (lambda drift: drift < -0.05, 0.4),
    MarketRegime.MARKDOWN: (lambda drift: drift > -0.02, 0.3),
}


@dataclass(frozen=True)
class RegimeTransition:
    """One regime edge that was taken."""
    previous: MarketRegime
    current: MarketRegime
    timestamp: int
    candles_in_previous: int
    drift: float

    def to_dict(self) -> dict:
        return {
            "previous": self.previous.value,
            "regime": self.current.value,
            "candles_in_previous": self.candles_in_previous,
            "drift": self.drift,
        }


def recent_drift(state: MarketState) -> Optional[float]:
    """Relative change across the last DRIFT_LOOKBACK candle closes."""
    prices = list(state.regime.recent_closes)[-DRIFT_LOOKBACK:]
    if len(prices) < MIN_DRIFT_SAMPLES or prices[0] <= 0:
        return None
    return (prices[-1] - prices[0]) / prices[0]


def on_candle_close(
    state: MarketState,
    rng: np.random.Generator,
    now_ms: int,
    close: Optional[float] = None,
) -> Optional[RegimeTransition]:
    """
    Advance the regime state machine by one closed candle.

    Args:
        state: Engine-owned market state (mutated)
        rng: Random generator
        now_ms: Candle close time
        close: Close of the finalized candle, appended to the drift window

    Returns:
        The transition taken, or None
    """
    regime_state = state.regime
    if close is not None:
        regime_state.recent_closes.append(close)
    regime_state.candles_in_regime += 1

    if regime_state.candles_in_regime < MIN_CANDLES_IN_REGIME:
        return None

    drift = recent_drift(state)
    if drift is None:
        return None

    if rng.random() >= TRANSITION_PROBABILITY:
        return None

    confirm, fallback = _CONFIRMATIONS[regime_state.regime]
    if not (confirm(drift) or rng.random() < fallback):
        return None

    transition = RegimeTransition(
        previous=regime_state.regime,
        current=NEXT_REGIME[regime_state.regime],
        timestamp=now_ms,
        candles_in_previous=regime_state.candles_in_regime,
        drift=drift,
    )
    regime_state.regime = transition.current
    regime_state.regime_start_time = now_ms
    regime_state.candles_in_regime = 0
    state.process.current_trend = 0.0
    return transition
