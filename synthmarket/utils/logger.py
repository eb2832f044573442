"""
Logging for the synthetic market feed.

Three named loggers share one log directory:
    synthmarket          console (colored) + market_YYYYMMDD.log
    synthmarket.candles  candles_YYYYMMDD.log, one line per finalized candle
    synthmarket.errors   errors_YYYYMMDD.log, ERROR and above
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional


CONSOLE_FORMAT = "%(asctime)s %(levelname)-8s %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_RESET = "\033[0m"
_LEVEL_STYLES = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}


class LevelColorFormatter(logging.Formatter):
    """Console formatter that tints the level name and message by severity."""

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy; the same record also reaches the plain file handler
        tinted = logging.makeLogRecord(record.__dict__)
        style = _LEVEL_STYLES.get(record.levelno, "")
        if style:
            tinted.levelname = f"{style}{record.levelname}{_RESET}"
            tinted.msg = f"{style}{record.getMessage()}{_RESET}"
            tinted.args = None
        return super().format(tinted)


def _daily_file(log_dir: Path, prefix: str) -> logging.Handler:
    stamp = datetime.now().strftime("%Y%m%d")
    handler = logging.FileHandler(log_dir / f"{prefix}_{stamp}.log", encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _build(name: str, level: str, handlers) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level.upper())
    logger.propagate = False
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    for handler in handlers:
        logger.addHandler(handler)
    return logger


class MarketLogger:
    """
    Process-wide logger for the feed (singleton).

    The plain level methods go to the main logger; error and critical
    are duplicated into the error file. `candle()` and `market()` write
    structured single-line records.
    """

    _instance: Optional["MarketLogger"] = None
    _initialized = False

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, log_dir: str = "logs", log_level: str = "INFO"):
        if MarketLogger._initialized:
            return

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        console = logging.StreamHandler()
        console.setFormatter(LevelColorFormatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))

        self.main_logger = _build("synthmarket", log_level, [console, _daily_file(self.log_dir, "market")])
        self.candle_logger = _build("synthmarket.candles", log_level, [_daily_file(self.log_dir, "candles")])
        self.error_logger = _build("synthmarket.errors", "ERROR", [_daily_file(self.log_dir, "errors")])

        MarketLogger._initialized = True

    def debug(self, msg: str, *args, **kwargs):
        self.main_logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self.main_logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self.main_logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        for logger in (self.main_logger, self.error_logger):
            logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        for logger in (self.main_logger, self.error_logger):
            logger.critical(msg, *args, **kwargs)

    def candle(self, candle) -> None:
        """
        Record a finalized candle.

        Format:
            [CANDLE] symbol=ZPHUSD | t=... | o=... | h=... | l=... | c=... | v=... | mode=auto
        """
        fields = (
            f"symbol={candle.symbol}",
            f"t={candle.timestamp}",
            f"o={candle.open:.4f}",
            f"h={candle.high:.4f}",
            f"l={candle.low:.4f}",
            f"c={candle.close:.4f}",
            f"v={candle.volume:.2f}",
            f"mode={candle.mode.value}",
        )
        line = "[CANDLE] " + " | ".join(fields)
        self.candle_logger.info(line)
        self.main_logger.debug(line)

    def market(self, action: str, reason: str, level: str = "INFO", **context):
        """
        Record an engine event.

        Args:
            action: EVENT, BREAKER, REGIME, LEVEL, MANUAL, MODE
            reason: Short description
            level: Log level name
            **context: Extra key=value pairs appended to the line
        """
        line = f"[MARKET:{action}] {reason}"
        if context:
            line += " | " + " | ".join(f"{key}={value}" for key, value in context.items())
        self.main_logger.log(logging.getLevelName(level.upper()), line)


_logger: Optional[MarketLogger] = None


def get_logger(log_dir: str = "logs", log_level: str = "INFO") -> MarketLogger:
    """Return the process logger, creating it on first use."""
    global _logger
    if _logger is None:
        _logger = MarketLogger(log_dir, log_level)
        _quiet_third_party()
    return _logger


def setup_logger(log_dir: str = "logs", log_level: str = "INFO") -> MarketLogger:
    """Rebuild the process logger with a new directory and level."""
    global _logger
    MarketLogger._instance = None
    MarketLogger._initialized = False
    _logger = MarketLogger(log_dir, log_level)
    _quiet_third_party()
    return _logger


def _quiet_third_party():
    """Turn per-request and keepalive chatter down to WARNING."""
    for name in ("uvicorn.access", "websockets", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)
