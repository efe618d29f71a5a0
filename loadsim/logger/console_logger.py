from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog

from .base import Logger


class _StructlogLogger(Logger):
    def __init__(
        self,
        *,
        renderer: Any,
        level: int = logging.INFO,
        stream: TextIO | None = None,
        name: str = "loadsim",
    ) -> None:
        self._logger = structlog.wrap_logger(
            structlog.PrintLogger(file=stream or sys.stderr),
            wrapper_class=structlog.make_filtering_bound_logger(level),
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                renderer,
            ],
        ).bind(logger=name)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(message, **kwargs)


class ConsoleLogger(_StructlogLogger):
    """Human-readable key/value lines on stderr."""

    def __init__(
        self,
        *,
        level: int = logging.INFO,
        stream: TextIO | None = None,
        name: str = "loadsim",
    ) -> None:
        super().__init__(
            renderer=structlog.dev.ConsoleRenderer(colors=False),
            level=level,
            stream=stream,
            name=name,
        )


class JsonLogger(_StructlogLogger):
    """One JSON object per line, for log shippers."""

    def __init__(
        self,
        *,
        level: int = logging.INFO,
        stream: TextIO | None = None,
        name: str = "loadsim",
    ) -> None:
        super().__init__(
            renderer=structlog.processors.JSONRenderer(sort_keys=True),
            level=level,
            stream=stream,
            name=name,
        )
