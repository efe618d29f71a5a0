"""Exploratory scenario: correctness probes running under background load.

Timeline (unscaled):

* 0s-20s    warm-up writers populate the database
* 20s-80s   read-your-writes probe against the replica
* 20s-60s   duplicate-name contention (5 iterations per worker)
* 20s-150s  soak reads and writes, latency split early/mid/late
* 30s-120s  large-page reads (limit 100, body over 10KB)
* 90s-150s  0 -> 400 worker spike, then recovery at 30 workers
"""

from __future__ import annotations

from loadsim.core.models import ExecutorKind, ExecutorOptions, Phase, ScenarioConfig, SimulationResult, Stage
from loadsim.scenarios.base import DEFAULT_BASE_URL, build_simulation_config, run_simulation

NAME = "exploratory"


def build_exploratory_scenario() -> ScenarioConfig:
    return ScenarioConfig(
        name=NAME,
        phases=(
            Phase(
                name="warmup",
                executor=ExecutorKind.WRITE,
                stages=(Stage(5, 80), Stage(15, 80)),
                grace_period_seconds=3,
                tags={"group": "warmup"},
                options=ExecutorOptions(name_prefix="PC-EXP"),
            ),
            Phase.constant(
                "replication_lag",
                ExecutorKind.REPLICATION_PROBE,
                workers=30,
                duration_seconds=60,
                start_offset_seconds=20,
                grace_period_seconds=5,
                tags={"group": "replication"},
            ),
            Phase.constant(
                "duplicate_contention",
                ExecutorKind.DUPLICATE_PROBE,
                workers=20,
                duration_seconds=40,
                start_offset_seconds=20,
                grace_period_seconds=5,
                iterations_per_worker=5,
                tags={"group": "contention"},
            ),
            Phase.constant(
                "soak_read",
                ExecutorKind.SOAK_READ,
                workers=60,
                duration_seconds=130,
                start_offset_seconds=20,
                grace_period_seconds=5,
                tags={"group": "soak"},
                options=ExecutorOptions(soak_boundaries_seconds=(30, 90)),
            ),
            Phase.constant(
                "soak_write",
                ExecutorKind.WRITE,
                workers=15,
                duration_seconds=130,
                start_offset_seconds=20,
                grace_period_seconds=3,
                tags={"group": "soak"},
                options=ExecutorOptions(name_prefix="PC-EXP"),
            ),
            Phase(
                name="burst_recovery",
                executor=ExecutorKind.BURST_READ,
                stages=(
                    Stage(5, 400),  # spike
                    Stage(15, 400),
                    Stage(5, 30),
                    Stage(35, 30),  # recovery window
                ),
                start_offset_seconds=90,
                grace_period_seconds=5,
                request_timeout_seconds=15,
                tags={"group": "burst"},
                options=ExecutorOptions(page_size=30, burst_seconds=20),
            ),
            Phase.constant(
                "large_page",
                ExecutorKind.PAGINATED_READ,
                workers=40,
                duration_seconds=90,
                start_offset_seconds=30,
                grace_period_seconds=5,
                request_timeout_seconds=15,
                tags={"group": "large_payload"},
                options=ExecutorOptions(page_size=100, min_payload_bytes=10000),
            ),
        ),
        thresholds={
            "read_latency_ms": ("p(95)<300",),
            "read_latency_ms{group:soak}": ("p(95)<250",),
            "write_latency_ms": ("p(95)<800",),
            "replication_lag_rate": ("rate<0.10",),
            "soak_latency_late_ms": ("p(95)<500",),
            "recovery_phase_latency_ms": ("p(95)<400",),
            "success_rate": ("rate>0.95",),
            "write_errors": ("count<50",),
            "http_req_failed": ("rate<0.05",),
            "http_req_duration": ("p(99)<2000",),
        },
    )


async def run_exploratory_scenario(
    *,
    base_url: str = DEFAULT_BASE_URL,
    time_scale: float = 1.0,
    max_duration_seconds: float | None = None,
) -> SimulationResult:
    config = build_simulation_config(
        build_exploratory_scenario(),
        base_url=base_url,
        time_scale=time_scale,
        max_duration_seconds=max_duration_seconds,
    )
    return await run_simulation(config)
