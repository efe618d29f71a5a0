"""Heavy scenario: push the primary/replica pair to its limits.

Aggressive write warm-up, then parallel writes, reads, JSONB searches and
deletes, finishing with a 500-worker mixed read/search spike.
"""

from __future__ import annotations

from loadsim.core.models import ExecutorKind, ExecutorOptions, Phase, ScenarioConfig, SimulationResult, Stage
from loadsim.scenarios.base import DEFAULT_BASE_URL, build_simulation_config, run_simulation

NAME = "heavy"

_HEAVY_NAMES = ExecutorOptions(name_prefix="PC-HEAVY")


def build_heavy_scenario() -> ScenarioConfig:
    return ScenarioConfig(
        name=NAME,
        phases=(
            Phase(
                name="aggressive_warmup",
                executor=ExecutorKind.WRITE,
                stages=(Stage(5, 100), Stage(25, 100)),
                grace_period_seconds=3,
                tags={"group": "warmup"},
                options=_HEAVY_NAMES,
            ),
            Phase(
                name="sustained_write",
                executor=ExecutorKind.WRITE,
                stages=(Stage(10, 50), Stage(50, 50), Stage(20, 30), Stage(10, 0)),
                start_offset_seconds=30,
                grace_period_seconds=3,
                tags={"group": "parallel"},
                options=_HEAVY_NAMES,
            ),
            Phase(
                name="heavy_read",
                executor=ExecutorKind.PAGINATED_READ,
                stages=(Stage(10, 100), Stage(30, 200), Stage(30, 200), Stage(20, 0)),
                start_offset_seconds=30,
                grace_period_seconds=5,
                tags={"group": "parallel"},
            ),
            Phase(
                name="jsonb_search",
                executor=ExecutorKind.SEARCH,
                stages=(Stage(10, 50), Stage(40, 100), Stage(20, 100), Stage(20, 0)),
                start_offset_seconds=30,
                grace_period_seconds=5,
                tags={"group": "parallel"},
            ),
            Phase(
                name="concurrent_delete",
                executor=ExecutorKind.DELETE,
                stages=(Stage(10, 10), Stage(30, 20), Stage(20, 0)),
                start_offset_seconds=40,
                grace_period_seconds=3,
                tags={"group": "parallel"},
                options=_HEAVY_NAMES,
            ),
            Phase(
                name="stress_max",
                executor=ExecutorKind.MIXED_READ,
                stages=(Stage(10, 300), Stage(20, 500), Stage(20, 500), Stage(10, 0)),
                start_offset_seconds=120,
                grace_period_seconds=10,
                tags={"group": "stress"},
                options=ExecutorOptions(mix_weights=(40, 35, 25)),
            ),
        ),
        thresholds={
            "read_latency_ms": ("p(95)<300",),
            "read_latency_ms{group:stress}": ("p(95)<500",),
            "read_latency_ms{group:parallel}": ("p(95)<200",),
            "write_latency_ms": ("p(95)<800",),
            "write_latency_ms{group:warmup}": ("p(95)<500",),
            "search_latency_ms": ("p(95)<600",),
            "search_latency_ms{group:stress}": ("p(95)<1000",),
            "delete_latency_ms": ("p(95)<800",),
            "success_rate": ("rate>0.97",),
            "write_errors": ("count<30",),
            "http_req_failed": ("rate<0.03",),
            "http_req_duration": ("p(99)<1500",),
        },
    )


async def run_heavy_scenario(
    *,
    base_url: str = DEFAULT_BASE_URL,
    time_scale: float = 1.0,
    max_duration_seconds: float | None = None,
) -> SimulationResult:
    config = build_simulation_config(
        build_heavy_scenario(),
        base_url=base_url,
        time_scale=time_scale,
        max_duration_seconds=max_duration_seconds,
    )
    return await run_simulation(config)
