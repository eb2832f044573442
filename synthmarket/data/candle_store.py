"""
DuckDB-backed candle store.

Tables:
- candles: finalized candles, one row per (symbol, resolution, timestamp)
- manual_control: history of operator controls
- trading_config: persisted generator overrides (key/value)

Timestamps are stored as epoch milliseconds (BIGINT) so they round-trip
exactly with the engine's interval-aligned values.

One connection is shared between the engine's I/O worker and HTTP handlers,
so every statement runs under a lock.
"""

from pathlib import Path
from threading import Lock
from typing import List, Optional

import duckdb
import pandas as pd

from ..config.constants import BASE_RESOLUTION, OVERRIDABLE_KEYS
from ..engine.types import Candle, CandleMode, Direction, ManualControl
from ..utils.logger import get_logger
from .backend_protocol import CandleBackend


CANDLE_COLUMNS = ["symbol", "resolution", "timestamp", "open", "high", "low", "close", "volume", "mode"]


class CandleStore(CandleBackend):
    """
    Persistent storage for the synthetic feed.

    Usage:
        store = CandleStore("data/synthmarket.duckdb")
        store.persist_candle(candle)
        last = store.get_last_candle("ZPHUSD")
    """

    def __init__(self, db_path: str = "data/synthmarket.duckdb"):
        if db_path != ":memory:":
            self.db_path = Path(db_path)
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = duckdb.connect(str(self.db_path))
        else:
            self.db_path = None
            self.conn = duckdb.connect(":memory:")
        self._lock = Lock()
        self.logger = get_logger()
        self._init_schema()
        self.logger.info(f"CandleStore initialized: db={db_path}")

    def _init_schema(self):
        """Create tables if missing."""
        with self._lock:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS candles (
                    symbol VARCHAR NOT NULL,
                    resolution VARCHAR NOT NULL,
                    timestamp BIGINT NOT NULL,
                    open DOUBLE,
                    high DOUBLE,
                    low DOUBLE,
                    close DOUBLE,
                    volume DOUBLE,
                    mode VARCHAR DEFAULT 'auto',
                    PRIMARY KEY (symbol, resolution, timestamp)
                )
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS manual_control (
                    id INTEGER PRIMARY KEY,
                    direction VARCHAR NOT NULL,
                    speed DOUBLE NOT NULL,
                    intensity DOUBLE NOT NULL,
                    duration_seconds INTEGER NOT NULL,
                    start_time BIGINT NOT NULL,
                    is_active BOOLEAN DEFAULT TRUE
                )
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS trading_config (
                    key VARCHAR PRIMARY KEY,
                    value VARCHAR NOT NULL,
                    updated_at TIMESTAMP DEFAULT current_timestamp
                )
            """)

    def close(self):
        """Close the database connection."""
        with self._lock:
            self.conn.close()

    # ==================== CANDLES ====================

    def persist_candle(self, candle: Candle) -> None:
        self.persist_candles([candle])

    def persist_candles(self, candles: List[Candle]) -> int:
        """
        Upsert a batch of candles.

        Returns:
            Number of rows written
        """
        if not candles:
            return 0
        rows = [
            [c.symbol, c.resolution, c.timestamp, c.open, c.high, c.low, c.close, c.volume, c.mode.value]
            for c in candles
        ]
        with self._lock:
            self.conn.executemany("""
                INSERT OR REPLACE INTO candles
                (symbol, resolution, timestamp, open, high, low, close, volume, mode)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, rows)
        return len(rows)

    def get_last_candle(self, symbol: str, resolution: str = BASE_RESOLUTION) -> Optional[Candle]:
        with self._lock:
            row = self.conn.execute("""
                SELECT symbol, resolution, timestamp, open, high, low, close, volume, mode
                FROM candles
                WHERE symbol = ? AND resolution = ?
                ORDER BY timestamp DESC
                LIMIT 1
            """, [symbol.upper(), resolution]).fetchone()
        if row is None:
            return None
        return _row_to_candle(row)

    def get_candles_df(
        self,
        symbol: str,
        resolution: str,
        from_ms: int,
        to_ms: int,
        limit: Optional[int] = None,
    ) -> pd.DataFrame:
        """
        Candles in [from_ms, to_ms] as a DataFrame sorted ascending.

        With a limit, the most recent `limit` rows in range are returned.
        """
        query = """
            SELECT symbol, resolution, timestamp, open, high, low, close, volume, mode
            FROM candles
            WHERE symbol = ? AND resolution = ? AND timestamp >= ? AND timestamp <= ?
            ORDER BY timestamp DESC
        """
        params = [symbol.upper(), resolution, int(from_ms), int(to_ms)]
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))

        with self._lock:
            df = self.conn.execute(query, params).df()
        if df.empty:
            return pd.DataFrame(columns=CANDLE_COLUMNS)
        return df.sort_values("timestamp").reset_index(drop=True)

    def get_historical_candles(
        self,
        symbol: str,
        resolution: str,
        from_ms: int,
        to_ms: int,
        limit: int,
    ) -> List[Candle]:
        df = self.get_candles_df(symbol, resolution, from_ms, to_ms, limit)
        return [_row_to_candle(row) for row in df[CANDLE_COLUMNS].itertuples(index=False)]

    def get_candle_range(self, symbol: str, resolution: str = BASE_RESOLUTION) -> dict:
        """First/last timestamp and count of stored candles."""
        with self._lock:
            row = self.conn.execute("""
                SELECT MIN(timestamp), MAX(timestamp), COUNT(*)
                FROM candles
                WHERE symbol = ? AND resolution = ?
            """, [symbol.upper(), resolution]).fetchone()
        return {
            "first_timestamp": row[0],
            "last_timestamp": row[1],
            "count": int(row[2]),
        }

    # ==================== MANUAL CONTROL ====================

    def save_manual_control(self, control: ManualControl) -> None:
        with self._lock:
            self.conn.execute("UPDATE manual_control SET is_active = FALSE WHERE is_active")
            self.conn.execute("""
                INSERT OR REPLACE INTO manual_control
                (id, direction, speed, intensity, duration_seconds, start_time, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                control.id,
                control.direction.value,
                control.speed,
                control.intensity,
                control.duration_seconds,
                control.start_time,
                control.is_active,
            ])

    def deactivate_manual_control(self, control_id: int) -> None:
        with self._lock:
            self.conn.execute("UPDATE manual_control SET is_active = FALSE WHERE id = ?", [control_id])

    def get_active_manual_control(self, now_ms: int) -> Optional[ManualControl]:
        with self._lock:
            row = self.conn.execute("""
                SELECT id, direction, speed, intensity, duration_seconds, start_time, is_active
                FROM manual_control
                WHERE is_active
                  AND start_time <= ?
                  AND start_time + duration_seconds * 1000 > ?
                ORDER BY id DESC
                LIMIT 1
            """, [int(now_ms), int(now_ms)]).fetchone()
        if row is None:
            return None
        return _row_to_control(row)

    def get_manual_control_history(self, limit: int = 50) -> List[ManualControl]:
        """Most recent controls first."""
        with self._lock:
            rows = self.conn.execute("""
                SELECT id, direction, speed, intensity, duration_seconds, start_time, is_active
                FROM manual_control
                ORDER BY id DESC
                LIMIT ?
            """, [int(limit)]).fetchall()
        return [_row_to_control(row) for row in rows]

    # ==================== CONFIG OVERRIDES ====================

    def get_config_overrides(self) -> dict:
        with self._lock:
            rows = self.conn.execute("SELECT key, value FROM trading_config").fetchall()
        return {key: value for key, value in rows if key in OVERRIDABLE_KEYS}

    def set_config_value(self, key: str, value) -> None:
        if key not in OVERRIDABLE_KEYS:
            raise ValueError(f"Unknown config key '{key}'. Must be one of: {list(OVERRIDABLE_KEYS)}")
        with self._lock:
            self.conn.execute("""
                INSERT OR REPLACE INTO trading_config (key, value, updated_at)
                VALUES (?, ?, current_timestamp)
            """, [key, str(value)])


def _row_to_candle(row) -> Candle:
    symbol, resolution, timestamp, open_, high, low, close, volume, mode = row
    return Candle(
        symbol=str(symbol),
        timestamp=int(timestamp),
        open=float(open_),
        high=float(high),
        low=float(low),
        close=float(close),
        volume=float(volume),
        mode=CandleMode(mode or "auto"),
        resolution=str(resolution),
    )


def _row_to_control(row) -> ManualControl:
    control_id, direction, speed, intensity, duration_seconds, start_time, is_active = row
    return ManualControl(
        direction=Direction(direction),
        speed=float(speed),
        intensity=float(intensity),
        start_time=int(start_time),
        duration_seconds=int(duration_seconds),
        id=int(control_id),
        is_active=bool(is_active),
    )
