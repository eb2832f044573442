"""
Tests for history rollup and the datafeed history shape.
"""

import pytest

from synthmarket.data.history import (
    base_candles_per_bucket,
    candles_to_frame,
    rollup,
    rollup_candles,
    to_history_response,
)
from synthmarket.engine.types import Candle, CandleMode

# 5-minute aligned
BUCKET_START = 1_700_000_100_000
MINUTE_MS = 60_000


def _minutes(count, start=BUCKET_START, manual_at=()):
    return [
        Candle(
            symbol="ZPHUSD",
            timestamp=start + i * MINUTE_MS,
            open=10.0 + i,
            high=10.5 + i,
            low=9.5 + i,
            close=10.2 + i,
            volume=10.0,
            mode=CandleMode.MANUAL if i in manual_at else CandleMode.AUTO,
        )
        for i in range(count)
    ]


class TestRollup:
    """Base candles -> coarser buckets."""

    def test_five_minute_bucket(self):
        rolled = rollup_candles(_minutes(5), "5")
        assert len(rolled) == 1
        bucket = rolled[0]
        assert bucket.timestamp == BUCKET_START
        assert bucket.open == 10.0
        assert bucket.high == 14.5
        assert bucket.low == 9.5
        assert bucket.close == 14.2
        assert bucket.volume == pytest.approx(50.0)
        assert bucket.resolution == "5"
        assert bucket.mode is CandleMode.AUTO

    def test_partial_buckets_aligned(self):
        """Buckets are floored to the resolution, not to the first candle."""
        rolled = rollup_candles(_minutes(7, start=BUCKET_START + 3 * MINUTE_MS), "5")
        assert [c.timestamp for c in rolled] == [BUCKET_START, BUCKET_START + 5 * MINUTE_MS]
        assert [c.volume for c in rolled] == [20.0, 50.0]

    def test_any_manual_makes_bucket_manual(self):
        rolled = rollup_candles(_minutes(10, manual_at=(7,)), "5")
        assert [c.mode for c in rolled] == [CandleMode.AUTO, CandleMode.MANUAL]

    def test_gaps_are_skipped(self):
        candles = _minutes(5) + _minutes(5, start=BUCKET_START + 15 * MINUTE_MS)
        rolled = rollup_candles(candles, "5")
        assert [c.timestamp for c in rolled] == [BUCKET_START, BUCKET_START + 15 * MINUTE_MS]

    def test_hourly(self):
        rolled = rollup_candles(_minutes(120, start=1_699_999_200_000), "60")
        assert len(rolled) == 2
        assert all(c.timestamp % 3_600_000 == 0 for c in rolled)

    def test_empty(self):
        assert rollup_candles([], "5") == []
        assert rollup(candles_to_frame([]), "15").empty

    def test_invalid_resolution(self):
        with pytest.raises(ValueError):
            rollup_candles(_minutes(5), "3")

    def test_bucket_sizes(self):
        assert base_candles_per_bucket("1") == 1
        assert base_candles_per_bucket("15") == 15
        assert base_candles_per_bucket("D") == 1_440


class TestHistoryResponse:
    """Charting-library history payload."""

    def test_ok(self):
        response = to_history_response(_minutes(2))
        assert response["s"] == "ok"
        assert response["t"] == [BUCKET_START // 1000, BUCKET_START // 1000 + 60]
        assert response["o"] == [10.0, 11.0]
        assert response["v"] == [10.0, 10.0]

    def test_no_data(self):
        response = to_history_response([])
        assert response["s"] == "no_data"
        assert response["t"] == []
        assert set(response) == {"s", "t", "o", "h", "l", "c", "v"}
