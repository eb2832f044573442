"""
Tests for the support/resistance tracker.
"""

from unittest.mock import MagicMock

import pytest

from synthmarket.engine import levels
from synthmarket.engine.types import SupportResistanceLevel


def _rng(*draws):
    """Generator stand-in returning fixed random() draws."""
    rng = MagicMock()
    rng.random.side_effect = list(draws)
    return rng


class TestAddLevel:
    """Creation and merging."""

    def test_new_level_created(self):
        found = []
        level = levels.add_level(found, 20.0, 0.6, 1_000)
        assert found == [level]
        assert level.touches == 1

    def test_nearby_level_merged(self):
        """Within 2% the existing level is strengthened instead."""
        found = [SupportResistanceLevel(price=20.0, strength=0.5)]
        level = levels.add_level(found, 20.2, 0.6, 5_000)
        assert len(found) == 1
        assert level.touches == 2
        assert level.strength == pytest.approx(0.62)
        assert level.last_touch_time == 5_000

    def test_strength_never_exceeds_one(self):
        found = [SupportResistanceLevel(price=20.0, strength=0.95)]
        for _ in range(5):
            levels.add_level(found, 20.0, 0.8, 0)
        assert found[0].strength == 1.0

    def test_new_level_strength_clamped(self):
        level = levels.add_level([], 20.0, 3.0, 0)
        assert level.strength == 1.0


class TestPrune:
    """Bounding the level set."""

    def test_weak_levels_dropped(self):
        kept = levels.prune([
            SupportResistanceLevel(price=10.0, strength=0.19),
            SupportResistanceLevel(price=20.0, strength=0.2),
        ])
        assert [lv.price for lv in kept] == [20.0]

    def test_at_most_fifteen_most_recent(self):
        many = [
            SupportResistanceLevel(price=float(i + 1), strength=0.5, last_touch_time=i)
            for i in range(20)
        ]
        kept = levels.prune(many)
        assert len(kept) == levels.MAX_LEVELS
        assert min(lv.last_touch_time for lv in kept) == 5


class TestApply:
    """Magnet, rejection and breakout."""

    def test_magnet_snaps_to_level(self, state):
        """Close to a strong level and the draw is low: snap onto it."""
        result = levels.apply(state, 10.05, 10.0, _rng(0.0), 1_000)
        assert result == 10.0
        assert state.levels[0].touches == 2

    def test_weak_level_has_no_magnet(self, state):
        state.levels[0].strength = 0.4
        state.levels[0].price = 10.08
        result = levels.apply(state, 10.05, 10.0, _rng(0.99), 1_000)
        # Not crossing the level, so no rejection roll either
        assert result == 10.05

    def test_rejection_at_resistance(self, state):
        """Crossing up through a level that holds lands just under it."""
        state.levels = [SupportResistanceLevel(price=11.0, strength=0.9)]
        result = levels.apply(state, 11.5, 10.9, _rng(0.0), 1_000)
        assert result == pytest.approx(11.0 * (1 - levels.REJECTION_OFFSET))

    def test_bounce_at_support(self, state):
        state.levels = [SupportResistanceLevel(price=9.0, strength=0.9)]
        result = levels.apply(state, 8.5, 9.1, _rng(0.0), 1_000)
        assert result == pytest.approx(9.0 * (1 + levels.REJECTION_OFFSET))

    def test_breakout_weakens_level(self, state):
        state.levels = [SupportResistanceLevel(price=11.0, strength=0.5)]
        result = levels.apply(state, 11.5, 10.9, _rng(0.99), 1_000)
        assert result == 11.5
        assert state.levels[0].strength == pytest.approx(0.35)


class TestUpdate:
    """Level maintenance after a price."""

    def test_new_extreme_registers_level(self, state):
        state.levels = []
        for price in (30.0, 31.0, 33.0):
            state.process.recent_prices.append(price)
        levels.update(state, 33.0, 33.0, 33.0, 1_000)
        assert any(lv.price == 33.0 for lv in state.levels)

    def test_round_number_registers_strong_level(self, state):
        state.levels = []
        state.process.recent_prices.extend([49.0, 49.5, 49.2])
        levels.update(state, 49.2, 49.2, 49.2, 1_000)
        assert any(lv.price == 50.0 and lv.strength == levels.ROUND_STRENGTH for lv in state.levels)

    def test_strengths_stay_in_unit_range(self, state, rng):
        for i in range(300):
            price = 10.0 + float(rng.uniform(-2.0, 2.0))
            state.process.recent_prices.append(price)
            levels.update(state, price, price, price, i)
            assert len(state.levels) <= levels.MAX_LEVELS
            assert all(0.0 <= lv.strength <= 1.0 for lv in state.levels)

