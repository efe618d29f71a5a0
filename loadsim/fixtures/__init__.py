"""In-process fake of the computer API for CI-safe simulation runs."""

from __future__ import annotations

__all__ = ["ComputerApiFixtureServer", "ComputerStore", "handle_request", "mock_transport"]

from loadsim.fixtures.computer_api_server import (
    ComputerApiFixtureServer,
    ComputerStore,
    handle_request,
    mock_transport,
)
