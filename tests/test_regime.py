"""
Tests for the regime state machine.
"""

from unittest.mock import MagicMock

import numpy as np
import pytest

from synthmarket.engine import regime
from synthmarket.engine.types import MarketRegime


def _fill_closes(state, start: float, end: float, count: int = 30):
    for price in np.linspace(start, end, count):
        state.regime.recent_closes.append(float(price))


def _always(draw: float):
    rng = MagicMock()
    rng.random.return_value = draw
    return rng


class TestTransitionGate:
    """Conditions that must hold before an edge is taken."""

    def test_no_transition_before_minimum_candles(self, state):
        _fill_closes(state, 10.0, 11.0)
        for i in range(regime.MIN_CANDLES_IN_REGIME - 1):
            assert regime.on_candle_close(state, _always(0.0), i) is None
        assert state.regime.candles_in_regime == regime.MIN_CANDLES_IN_REGIME - 1

    def test_needs_price_history(self, state):
        state.regime.candles_in_regime = 100
        assert regime.on_candle_close(state, _always(0.0), 0) is None

    def test_probabilistic_gate(self, state):
        _fill_closes(state, 10.0, 11.0)
        state.regime.candles_in_regime = 100
        assert regime.on_candle_close(state, _always(0.99), 0) is None
        assert state.regime.regime is MarketRegime.ACCUMULATION

    def test_confirmed_transition(self, state):
        """Accumulation with >5% upward drift moves to markup."""
        _fill_closes(state, 10.0, 11.0)
        state.regime.candles_in_regime = 40
        state.process.current_trend = 0.7

        rng = MagicMock()
        rng.random.side_effect = [0.1]
        transition = regime.on_candle_close(state, rng, 123_000)

        assert transition is not None
        assert transition.previous is MarketRegime.ACCUMULATION
        assert transition.current is MarketRegime.MARKUP
        assert transition.candles_in_previous == 41
        assert state.regime.candles_in_regime == 0
        assert state.regime.regime_start_time == 123_000
        assert state.process.current_trend == 0.0

    def test_fallback_coin_flip(self, state):
        """Unconfirmed drift can still transition on the fallback draw."""
        _fill_closes(state, 10.0, 10.0)
        state.regime.candles_in_regime = 40
        rng = MagicMock()
        rng.random.side_effect = [0.1, 0.2]
        assert regime.on_candle_close(state, rng, 0) is not None

        state.regime.regime = MarketRegime.ACCUMULATION
        state.regime.candles_in_regime = 40
        rng.random.side_effect = [0.1, 0.5]
        assert regime.on_candle_close(state, rng, 0) is None


class TestDriftWindow:
    """Drift is measured over candle closes, not live ticks."""

    def test_rising_closes_confirm_markup(self, state):
        """A >5% rise over 30 candles transitions without the fallback draw."""
        rng = MagicMock()
        # Only the gate draw is available; a fallback draw would raise
        rng.random.side_effect = [0.1]
        state.regime.candles_in_regime = regime.MIN_CANDLES_IN_REGIME - 1
        for close in np.linspace(10.0, 10.8, 29):
            state.regime.recent_closes.append(float(close))

        transition = regime.on_candle_close(state, rng, 60_000, close=10.9)

        assert transition is not None
        assert transition.current is MarketRegime.MARKUP
        assert transition.drift == pytest.approx(0.09)

    def test_close_appended_to_window(self, state):
        regime.on_candle_close(state, _always(0.99), 0, close=10.5)
        assert list(state.regime.recent_closes) == [10.5]

    def test_window_is_bounded(self, state):
        for i in range(regime.DRIFT_LOOKBACK + 10):
            regime.on_candle_close(state, _always(0.99), i, close=10.0 + i)
        assert len(state.regime.recent_closes) == regime.DRIFT_LOOKBACK
        assert state.regime.recent_closes[0] == 20.0

    def test_tick_prices_ignored(self, state):
        """Per-tick price history alone never yields a drift."""
        for price in np.linspace(10.0, 12.0, 100):
            state.process.recent_prices.append(float(price))
        assert regime.recent_drift(state) is None


class TestCycle:
    """Only the four permitted edges are ever taken."""

    def test_edges_follow_cycle(self, state, rng):
        seen = []
        for i in range(5_000):
            price = 10.0 + float(np.sin(i / 40.0))
            transition = regime.on_candle_close(state, rng, i, close=price)
            if transition is not None:
                assert regime.NEXT_REGIME[transition.previous] is transition.current
                assert transition.candles_in_previous >= regime.MIN_CANDLES_IN_REGIME
                seen.append(transition.current)
        assert set(seen) == set(MarketRegime)

    def test_transition_to_dict(self, state):
        transition = regime.RegimeTransition(
            previous=MarketRegime.MARKUP,
            current=MarketRegime.DISTRIBUTION,
            timestamp=0,
            candles_in_previous=31,
            drift=0.01,
        )
        assert transition.to_dict()["regime"] == "distribution"
        assert transition.to_dict()["previous"] == "markup"
