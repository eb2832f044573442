"""
Feed process wiring.

Opens the DuckDB candle store, applies stored generator overrides, builds
the latest-value cache and the market engine, and closes everything again
on shutdown.

Usage:
    from synthmarket.core.application import Application

    with Application() as feed:
        feed.engine.create_manual_control("up", 0.01, 1.0, 60)

    feed = Application(use_store=False)
    if feed.initialize() and feed.start():
        ...
    feed.stop()
"""

import atexit
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional

from ..config.config import Config, get_config


@dataclass
class ApplicationStatus:
    """Point-in-time view of the feed process."""
    initialized: bool = False
    running: bool = False
    store_connected: bool = False
    symbol: str = ""
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class Application:
    """
    Owns the engine and its collaborators for one feed process.

    The store is optional: if DuckDB cannot be opened (missing directory
    permissions, another process holding the file lock) the engine keeps
    its history in memory and the failure is only logged.
    """

    def __init__(self, config: Config = None, scheduler=None, use_store: bool = True):
        """
        Args:
            config: Feed configuration (global config if None)
            scheduler: Engine clock (asyncio wall clock if None)
            use_store: Open the DuckDB candle store
        """
        # Imported here so callers can run setup_logger() before first use
        from ..utils.logger import get_logger

        self.config = config or get_config()
        self.logger = get_logger()
        self._scheduler = scheduler
        self._use_store = use_store

        self._store = None
        self._cache = None
        self._engine = None

        self._initialized = False
        self._running = False
        self._stopping = False
        self._error: Optional[str] = None
        self._on_stop: List[Callable[[], None]] = []
        self._exit_hook = False

    def __enter__(self) -> "Application":
        if self.initialize():
            self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # ==================== Lifecycle ====================

    def initialize(self) -> bool:
        """
        Validate config and build store, overrides, cache and engine in
        that order. Returns False (with get_status().error set) on failure.
        """
        if self._initialized:
            return True

        ok, problems = self.config.validate()
        if not ok:
            for problem in problems:
                self.logger.error(f"Config: {problem}")
            self._error = "Configuration validation failed"
            return False

        try:
            if self._use_store:
                self._open_store()
            self._load_stored_overrides()
            self._build_engine()
        except Exception as e:
            self._error = str(e)
            self.logger.error(f"Feed setup failed: {e}")
            return False

        if not self._exit_hook:
            atexit.register(self._stop_at_exit)
            self._exit_hook = True

        self._initialized = True
        self.logger.info(f"Feed ready: {self.config.summary_short()}")
        return True

    def start(self) -> bool:
        """Start generating. Requires initialize()."""
        if not self._initialized:
            self.logger.error("start() before initialize()")
            return False
        if self._running:
            return True

        try:
            self._engine.start()
        except Exception as e:
            self._error = str(e)
            self.logger.error(f"Engine failed to start: {e}")
            return False

        self._running = True
        return True

    def stop(self) -> None:
        """Stop the engine, drain pending writes and close the store. Idempotent."""
        if self._stopping:
            return
        self._stopping = True
        try:
            for hook in self._on_stop:
                try:
                    hook()
                except Exception as e:
                    self.logger.warning(f"Stop hook failed: {e}")

            if self._engine is not None:
                self._engine.stop()
                drain = getattr(self._engine.scheduler, "shutdown", None)
                if drain is not None:
                    drain(wait=True)

            if self._store is not None:
                self._store.close()
                self._store = None

            if self._initialized:
                self.logger.info("Feed stopped")
            self._running = False
            self._initialized = False
        except Exception as e:
            self.logger.error(f"Feed shutdown error: {e}")
        finally:
            self._stopping = False

    def on_shutdown(self, callback: Callable[[], None]):
        """Run `callback` at the start of stop()."""
        self._on_stop.append(callback)

    def _stop_at_exit(self):
        if self._running:
            self.stop()

    # ==================== Components ====================

    def _open_store(self):
        from ..data.candle_store import CandleStore
        try:
            self._store = CandleStore(self.config.data.db_path)
        except Exception as e:
            self._store = None
            self.logger.error(f"CandleStore unavailable at {self.config.data.db_path}, history stays in memory: {e}")

    def _load_stored_overrides(self):
        """trading_config rows win over environment values."""
        if self._store is None:
            return
        try:
            overrides = self._store.get_config_overrides()
        except Exception as e:
            self.logger.error(f"Failed to read trading_config: {e}")
            return
        applied = self.config.apply_overrides(overrides)
        if applied:
            self.logger.info(f"Stored overrides applied: {', '.join(applied)}")

    def _build_engine(self):
        from ..data.latest_cache import MarketDataCache
        from ..engine.service import MarketEngine

        self._cache = MarketDataCache(ttl_seconds=self.config.data.cache_ttl_seconds)
        self._engine = MarketEngine(
            self.config,
            scheduler=self._scheduler,
            backend=self._store,
            cache=self._cache,
        )

    # ==================== Accessors ====================

    def get_status(self) -> ApplicationStatus:
        return ApplicationStatus(
            initialized=self._initialized,
            running=self._running,
            store_connected=self._store is not None,
            symbol=self.config.market.symbol,
            error=self._error,
        )

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def engine(self):
        return self._engine

    @property
    def store(self):
        """CandleStore, or None when history is in memory."""
        return self._store

    @property
    def cache(self):
        return self._cache
