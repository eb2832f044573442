"""
History helpers for the datafeed.

Candles are generated and stored at the base resolution only. Coarser
resolutions are rolled up on read:

    open = first, high = max, low = min, close = last, volume = sum,
    mode = manual if any constituent candle was manual

Bucket timestamps are floored to the requested resolution.
"""

from typing import Iterable, List

import pandas as pd

from ..config.constants import VOLUME_PRECISION
from ..engine.types import Candle, CandleMode
from ..utils.timeframes import RESOLUTION_MS, validate_resolution


# Resolution -> pandas offset alias
RESAMPLE_RULES = {
    "1": "1min",
    "5": "5min",
    "15": "15min",
    "60": "60min",
    "1D": "1D",
}


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """Candles -> DataFrame with [timestamp, open, high, low, close, volume, mode]."""
    rows = [
        {
            "timestamp": c.timestamp,
            "open": c.open,
            "high": c.high,
            "low": c.low,
            "close": c.close,
            "volume": c.volume,
            "mode": c.mode.value,
        }
        for c in candles
    ]
    return pd.DataFrame(rows, columns=["timestamp", "open", "high", "low", "close", "volume", "mode"])


def rollup(df: pd.DataFrame, resolution: str) -> pd.DataFrame:
    """
    Resample base-resolution OHLCV to a coarser resolution.

    Args:
        df: DataFrame with columns [timestamp (epoch ms), open, high, low, close, volume, mode]
        resolution: Target resolution (e.g., "5", "60", "1D")

    Returns:
        Resampled DataFrame with the same columns, timestamp in epoch ms
    """
    resolution = validate_resolution(resolution)
    if df.empty:
        return df.copy()

    df = df.copy()
    df["manual"] = (df["mode"] == CandleMode.MANUAL.value).astype(int)
    df["timestamp"] = pd.to_datetime(df["timestamp"], unit="ms")
    df.set_index("timestamp", inplace=True)

    resampled = df.resample(RESAMPLE_RULES[resolution], origin="epoch").agg({
        "open": "first",
        "high": "max",
        "low": "min",
        "close": "last",
        "volume": "sum",
        "manual": "max",
    }).dropna(subset=["open", "close"])

    resampled.reset_index(inplace=True)
    resampled["timestamp"] = (resampled["timestamp"] - pd.Timestamp(0)) // pd.Timedelta(milliseconds=1)
    resampled["mode"] = resampled["manual"].map(
        lambda flag: CandleMode.MANUAL.value if flag > 0 else CandleMode.AUTO.value
    )
    resampled["volume"] = resampled["volume"].round(VOLUME_PRECISION)
    return resampled[["timestamp", "open", "high", "low", "close", "volume", "mode"]]


def frame_to_candles(df: pd.DataFrame, symbol: str, resolution: str) -> List[Candle]:
    return [
        Candle(
            symbol=symbol,
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
            mode=CandleMode(row.mode),
            resolution=resolution,
        )
        for row in df.itertuples(index=False)
    ]


def rollup_candles(candles: List[Candle], resolution: str) -> List[Candle]:
    """Roll base-resolution candles up to `resolution`."""
    resolution = validate_resolution(resolution)
    if not candles:
        return []
    symbol = candles[0].symbol
    return frame_to_candles(rollup(candles_to_frame(candles), resolution), symbol, resolution)


def base_candles_per_bucket(resolution: str, base_resolution: str = "1") -> int:
    """How many base candles make up one candle at `resolution`."""
    return max(1, RESOLUTION_MS[validate_resolution(resolution)] // RESOLUTION_MS[validate_resolution(base_resolution)])


def to_history_response(candles: List[Candle]) -> dict:
    """
    Charting-library history shape.

    Returns:
        {"s": "ok", "t": [seconds...], "o": [...], "h": [...], "l": [...],
         "c": [...], "v": [...]} or the same keys with empty arrays and
        "s": "no_data"
    """
    if not candles:
        return {"s": "no_data", "t": [], "o": [], "h": [], "l": [], "c": [], "v": []}
    return {
        "s": "ok",
        "t": [c.timestamp // 1000 for c in candles],
        "o": [c.open for c in candles],
        "h": [c.high for c in candles],
        "l": [c.low for c in candles],
        "c": [c.close for c in candles],
        "v": [c.volume for c in candles],
    }
