"""
Tests for the stability governor.
"""

import pytest

from synthmarket.engine import governor


class TestCurrentCap:
    """Cap tiers."""

    def test_normal_cap(self, state):
        assert governor.current_cap(state) == governor.MAX_NORMAL_CHANGE

    def test_volatile_cap(self, state):
        for _ in range(20):
            state.process.volatility_history.append(0.05)
        assert governor.current_cap(state) == governor.MAX_VOLATILE_CHANGE

    def test_extreme_cap_right_after_event(self, state):
        """Cooldown above 25 means an event just fired."""
        state.process.event_cooldown = 26
        assert governor.current_cap(state) == governor.MAX_EXTREME_CHANGE

    def test_extreme_cap_expires(self, state):
        state.process.event_cooldown = 25
        assert governor.current_cap(state) == governor.MAX_NORMAL_CHANGE


class TestStepCap:
    """Per-step circuit breaker."""

    def test_small_move_passes_through(self, state):
        result = governor.clamp(state, 10.0, 0.1)
        assert result.delta == pytest.approx(0.1)
        assert not result.step_capped
        assert state.process.consolidation_counter == 0

    def test_large_move_is_capped(self, state):
        """A 5% move is cut to 2.5% and forces consolidation."""
        result = governor.clamp(state, 10.0, 0.5)
        assert result.delta == pytest.approx(0.25)
        assert result.step_capped
        assert state.process.consolidation_counter == governor.BREAKER_CONSOLIDATION

    def test_negative_move_keeps_sign(self, state):
        result = governor.clamp(state, 10.0, -1.0)
        assert result.delta == pytest.approx(-0.25)

    def test_breaker_does_not_shorten_longer_consolidation(self, state):
        state.process.consolidation_counter = 15
        governor.clamp(state, 10.0, 0.5)
        assert state.process.consolidation_counter == 15


class TestMovingAverageClamp:
    """Deviation from the trailing moving average."""

    def _fill(self, state, price=10.0, count=50):
        for _ in range(count):
            state.process.recent_prices.append(price)

    def test_within_band_untouched(self, state):
        self._fill(state)
        result = governor.clamp(state, 12.5, 0.2)
        assert result.delta == pytest.approx(0.2)
        assert not result.ma_capped

    def test_lands_on_upper_band(self, state):
        """Price beyond MA * 1.3 is pulled back to the band edge."""
        self._fill(state)
        state.process.current_trend = 0.8
        result = governor.clamp(state, 12.9, 0.2)

        assert result.ma_capped
        assert 12.9 + result.delta == pytest.approx(13.0)
        assert state.process.current_trend == pytest.approx(0.4)
        assert state.process.consolidation_counter == governor.EMERGENCY_CONSOLIDATION

    def test_lands_on_lower_band(self, state):
        self._fill(state)
        result = governor.clamp(state, 7.1, -0.2)
        assert result.ma_capped
        assert 7.1 + result.delta == pytest.approx(7.0)

    def test_band_pullback_respects_step_cap(self, state):
        """Reaching the band would need more than the cap: stop at the cap."""
        self._fill(state)
        result = governor.clamp(state, 20.0, 0.0)
        assert result.ma_capped
        assert result.delta == pytest.approx(-20.0 * governor.MAX_NORMAL_CHANGE)

    def test_no_history_no_ma_clamp(self, state):
        result = governor.clamp(state, 50.0, 0.1)
        assert not result.ma_capped
