"""Load scenario: steady production-like mix of reads, writes and searches.

Reads dominate (they go to the replica), writes start 15s later so the
primary is not hit at boot, and a flat group of searchers runs JSONB
queries against the replica.

Usage as library::

    from loadsim.scenarios.load import run_load_scenario

    result = await run_load_scenario(base_url="http://localhost:8080", time_scale=0.1)
"""

from __future__ import annotations

from loadsim.core.models import ExecutorKind, ExecutorOptions, Phase, ScenarioConfig, SimulationResult, Stage
from loadsim.scenarios.base import DEFAULT_BASE_URL, build_simulation_config, run_simulation

NAME = "load"


def build_load_scenario() -> ScenarioConfig:
    return ScenarioConfig(
        name=NAME,
        phases=(
            Phase(
                name="read_heavy",
                executor=ExecutorKind.PAGINATED_READ,
                stages=(
                    Stage(30, 20),  # warm up
                    Stage(60, 50),  # sustained
                    Stage(30, 100),  # peak
                    Stage(30, 50),
                    Stage(30, 0),  # cool down
                ),
                grace_period_seconds=10,
                think_time_seconds=(1, 3),
            ),
            Phase(
                name="moderate_write",
                executor=ExecutorKind.WRITE,
                stages=(Stage(30, 5), Stage(60, 15), Stage(30, 5), Stage(30, 0)),
                start_offset_seconds=15,
                grace_period_seconds=10,
                think_time_seconds=(1, 2),
            ),
            Phase.constant(
                "advanced_search",
                ExecutorKind.SEARCH,
                workers=10,
                duration_seconds=120,
                start_offset_seconds=30,
                think_time_seconds=(1, 2),
                options=ExecutorOptions(search_target="any"),
            ),
        ),
        thresholds={
            "read_latency_ms{phase:read_heavy}": ("p(95)<500",),
            "write_latency_ms{phase:moderate_write}": ("p(95)<1000",),
            "search_latency_ms{phase:advanced_search}": ("p(95)<800",),
            "success_rate": ("rate>0.99",),
            "write_errors": ("count<10",),
        },
    )


async def run_load_scenario(
    *,
    base_url: str = DEFAULT_BASE_URL,
    time_scale: float = 1.0,
    max_duration_seconds: float | None = None,
) -> SimulationResult:
    config = build_simulation_config(
        build_load_scenario(),
        base_url=base_url,
        time_scale=time_scale,
        max_duration_seconds=max_duration_seconds,
    )
    return await run_simulation(config)
