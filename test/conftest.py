"""Pytest configuration and fixtures

Provides shared fixtures for all tests: a logger that records events, an
in-memory computer API reachable through httpx.MockTransport, and a threaded
fixture server for tests that need a real socket.
"""

import sys
from pathlib import Path
from typing import Any

import httpx
import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from loadsim.core.client import ComputerApiClient  # noqa: E402
from loadsim.core.state import IterationContext  # noqa: E402
from loadsim.fixtures import ComputerApiFixtureServer, ComputerStore, mock_transport  # noqa: E402
from loadsim.logger import Logger  # noqa: E402

TEST_BASE_URL = "http://computer-api.test"


class CapturingLogger(Logger):
    """Logger that keeps every event in memory for assertions."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def debug(self, message: str, **kwargs: Any) -> None:
        self.records.append(("debug", message, kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.records.append(("info", message, kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.records.append(("warning", message, kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self.records.append(("error", message, kwargs))

    def events(self, level: str | None = None) -> list[str]:
        return [msg for lvl, msg, _ in self.records if level is None or lvl == level]

    def find(self, message: str) -> list[dict[str, Any]]:
        return [fields for _, msg, fields in self.records if msg == message]


@pytest.fixture
def capturing_logger():
    return CapturingLogger()


@pytest.fixture
def computer_store():
    return ComputerStore()


@pytest.fixture
def make_client(capturing_logger):
    """Build a ComputerApiClient over an in-memory store or a custom handler."""

    def _make(store=None, *, metrics=None, handler=None, logger=None):
        if handler is not None:
            transport = httpx.MockTransport(handler)
        else:
            transport = mock_transport(store if store is not None else ComputerStore())
        return ComputerApiClient(
            TEST_BASE_URL,
            metrics=metrics,
            transport=transport,
            logger=logger or capturing_logger,
        )

    return _make


@pytest.fixture
def make_ctx():
    def _make(*, worker_id=0, phase="test", iteration=0, elapsed=0.0, tags=None):
        return IterationContext(
            worker_id=worker_id,
            phase_name=phase,
            iteration=iteration,
            elapsed_seconds=elapsed,
            tags=tags if tags is not None else {"phase": phase},
        )

    return _make


@pytest.fixture
def computer_api_server(capturing_logger):
    """Threaded fake computer API on an ephemeral port."""
    with ComputerApiFixtureServer(logger=capturing_logger) as server:
        yield server
