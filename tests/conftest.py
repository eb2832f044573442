"""
Shared fixtures.

Every engine test runs on a SimulatedScheduler with a seeded numpy
Generator; nothing here reads the wall clock or sleeps.
"""

import numpy as np
import pytest

from synthmarket.config.config import Config
from synthmarket.engine.scheduler import SimulatedScheduler
from synthmarket.engine.service import MarketEngine
from synthmarket.engine.types import MarketState
from synthmarket.utils.logger import setup_logger


# Aligned to a minute boundary
START_MS = 1_700_000_040_000
MINUTE_MS = 60_000


@pytest.fixture(scope="session", autouse=True)
def quiet_logger(tmp_path_factory):
    """Route log files into a temp dir for the whole session."""
    setup_logger(str(tmp_path_factory.mktemp("logs")), "WARNING")


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def state():
    return MarketState.initial(
        base_price=10.0,
        volatility=0.003,
        trend_strength=0.1,
        volume_base=100.0,
        now_ms=START_MS,
    )


@pytest.fixture
def config(monkeypatch, tmp_path):
    """A fresh Config built from defaults, isolated from the global one."""
    for name in (
        "MARKET_SYMBOL", "MARKET_BASE_PRICE", "MARKET_VOLATILITY", "MARKET_SEED",
        "ENGINE_CANDLE_INTERVAL_MS", "ENGINE_TICK_INTERVAL_MS", "ENGINE_RESOLUTION",
        "ENGINE_AUTO_START", "DATA_DB_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(Config, "_instance", None)

    cfg = Config()
    cfg.market.seed = 42
    cfg.data.db_path = str(tmp_path / "market.duckdb")
    yield cfg


@pytest.fixture
def scheduler():
    return SimulatedScheduler(start_ms=START_MS)


@pytest.fixture
def make_engine(config, scheduler):
    """Factory for engines on the shared simulated clock."""
    engines = []

    def _make(backend=None, cache=None, seed=42) -> MarketEngine:
        engine = MarketEngine(
            config,
            scheduler=scheduler,
            backend=backend,
            cache=cache,
            rng=np.random.default_rng(seed),
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.stop()
