from __future__ import annotations

import asyncio

import pytest

from loadsim.core import metric_names as m
from loadsim.core.engine import Simulator
from loadsim.core.models import ExecutorKind, Phase, ScenarioConfig, SimulationConfig
from loadsim.exceptions import ThresholdSyntaxError
from loadsim.fixtures import ComputerStore, mock_transport

BASE_URL = "http://computer-api.test"


def _config(thresholds, *, duration=0.3, max_duration=None) -> SimulationConfig:
    scenario = ScenarioConfig(
        name="engine-test",
        phases=(
            Phase.constant("writes", ExecutorKind.WRITE, workers=2, duration_seconds=duration, grace_period_seconds=1),
            Phase.constant(
                "reads",
                ExecutorKind.PAGINATED_READ,
                workers=2,
                duration_seconds=duration,
                grace_period_seconds=1,
                tags={"group": "read"},
            ),
        ),
        thresholds=thresholds,
    )
    return SimulationConfig(base_url=BASE_URL, scenario=scenario, tick_seconds=0.02, max_duration_seconds=max_duration)


@pytest.mark.asyncio
async def test_run_against_in_memory_api(capturing_logger):
    store = ComputerStore()
    config = _config({
        "success_rate": ["rate>0.99"],
        "read_latency_ms{group:read}": ["p(95)<5000"],
        "soak_latency_late_ms": ["p(95)<500"],
    })
    simulator = Simulator(config, logger=capturing_logger, transport=mock_transport(store), handle_signals=False)

    result = await asyncio.wait_for(simulator.run(), timeout=10)

    assert result.passed
    assert result.iteration_count > 0
    assert result.iteration_error_count == 0
    assert result.peak_workers == 4
    assert len(store) > 0

    metrics = result.metrics_report
    assert metrics[m.INSERTED_TOTAL]["total"]["value"] == len(store)
    assert metrics[m.HTTP_REQ_DURATION]["kind"] == "trend"

    report = result.threshold_report
    statuses = {rule["metric"]: rule["status"] for rule in report["rules"]}
    assert statuses == {
        "success_rate": "pass",
        "read_latency_ms{group:read}": "pass",
        "soak_latency_late_ms": "no_data",
    }
    assert report["no_data"] == ["soak_latency_late_ms"]
    assert capturing_logger.find("sim.start")[0]["phases"] == ["writes", "reads"]
    assert capturing_logger.find("sim.end")[0]["passed"] is True


@pytest.mark.asyncio
async def test_failing_threshold_fails_the_run(capturing_logger):
    config = _config({"inserted_total": ["count<1"], "success_rate": ["rate>0.5"]})
    simulator = Simulator(
        config,
        logger=capturing_logger,
        transport=mock_transport(ComputerStore()),
        handle_signals=False,
    )

    result = await asyncio.wait_for(simulator.run(), timeout=10)

    assert not result.passed
    violations = result.threshold_report["violations"]
    assert [v["metric"] for v in violations] == ["inserted_total"]
    assert violations[0]["actual"] >= 1
    warned = capturing_logger.find("sim.threshold_failed")
    assert warned[0]["expression"] == "count<1"


@pytest.mark.asyncio
async def test_stop_ends_the_run(capturing_logger):
    config = _config({}, duration=60)
    simulator = Simulator(
        config,
        logger=capturing_logger,
        transport=mock_transport(ComputerStore()),
        handle_signals=False,
    )
    asyncio.get_running_loop().call_later(0.1, simulator.stop)

    result = await asyncio.wait_for(simulator.run(), timeout=10)

    assert result.duration_seconds < 10
    assert result.passed
    assert capturing_logger.find("sim.stop_requested")


@pytest.mark.asyncio
async def test_max_duration_bounds_the_run(capturing_logger):
    config = _config({}, duration=60, max_duration=0.1)
    simulator = Simulator(
        config,
        logger=capturing_logger,
        transport=mock_transport(ComputerStore()),
        handle_signals=False,
    )

    result = await asyncio.wait_for(simulator.run(), timeout=10)

    assert result.duration_seconds < 10
    assert capturing_logger.find("sim.max_duration_reached")


def test_bad_threshold_rejected_before_traffic():
    config = _config({"success_rate": ["rate >> 0.9"]})
    with pytest.raises(ThresholdSyntaxError):
        Simulator(config, transport=mock_transport(ComputerStore()), handle_signals=False)
