from __future__ import annotations

import httpx

from loadsim.core.engine import Simulator
from loadsim.core.models import ScenarioConfig, SimulationConfig, SimulationResult
from loadsim.logger import Logger

DEFAULT_BASE_URL = "http://localhost:8080"


def build_simulation_config(
    scenario: ScenarioConfig,
    *,
    base_url: str = DEFAULT_BASE_URL,
    time_scale: float = 1.0,
    max_duration_seconds: float | None = None,
    tick_seconds: float = 0.1,
) -> SimulationConfig:
    """Wrap a scenario into a run config; ``time_scale`` < 1 shrinks every duration."""
    if time_scale != 1.0:
        scenario = scenario.scaled(time_scale)
    return SimulationConfig(
        base_url=base_url,
        scenario=scenario,
        tick_seconds=tick_seconds,
        max_duration_seconds=max_duration_seconds,
    )


async def run_simulation(
    config: SimulationConfig,
    *,
    logger: Logger | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    handle_signals: bool = True,
) -> SimulationResult:
    sim = Simulator(config, logger=logger, transport=transport, handle_signals=handle_signals)
    return await sim.run()
