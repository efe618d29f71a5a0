"""Logger module for computer-loadsim

Structured loggers backed by structlog.

Usage:
    from loadsim.logger import Logger, ConsoleLogger

    # Use the shared logger
    from loadsim.logger import session_logger
    session_logger.info("sim.start", phases=3)

    # Or implement your own
    class MyCustomLogger(Logger):
        def info(self, message: str, **kwargs):
            # Your custom implementation
            pass
"""

import logging
import os

from .base import Logger
from .console_logger import ConsoleLogger, JsonLogger


def level_from_env(default: int = logging.INFO) -> int:
    raw = os.environ.get("LOADSIM_LOG_LEVEL", "").strip().upper()
    if not raw:
        return default
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


# Shared logger instance for modules that just need basic console logging
session_logger: Logger = ConsoleLogger(level=level_from_env())

__all__ = [
    "Logger",
    "ConsoleLogger",
    "JsonLogger",
    "session_logger",
    "level_from_env",
]
