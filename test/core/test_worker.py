from __future__ import annotations

import asyncio

import pytest

from loadsim.core import metric_names as m
from loadsim.core.metrics import MetricsCollector
from loadsim.core.models import ExecutorKind, Phase
from loadsim.core.worker import Worker


class RecordingExecutor:
    """Executor stand-in that records contexts and can block or fail on demand."""

    kind = ExecutorKind.WRITE

    def __init__(self, *, delay: float = 0.0, fail_on: set[int] | None = None) -> None:
        self.contexts = []
        self.in_flight = 0
        self.completed = 0
        self._delay = delay
        self._fail_on = fail_on or set()

    async def execute(self, ctx, state):
        self.contexts.append(ctx)
        self.in_flight += 1
        try:
            await asyncio.sleep(self._delay)
            if ctx.iteration in self._fail_on:
                raise RuntimeError("executor bug")
            self.completed += 1
            return True
        finally:
            self.in_flight -= 1


def _phase(**kwargs) -> Phase:
    kwargs.setdefault("tags", {"group": "g"})
    return Phase.constant("writers", ExecutorKind.WRITE, workers=1, duration_seconds=10, **kwargs)


def _worker(executor, phase=None, metrics=None, logger=None) -> Worker:
    return Worker(
        0,
        phase or _phase(),
        executor,
        metrics=metrics or MetricsCollector(),
        phase_started_at=0.0,
        logger=logger,
        clock=lambda: 12.5,
        seed=1,
    )


@pytest.mark.asyncio
async def test_iteration_cap_exhausts_worker():
    metrics = MetricsCollector()
    executor = RecordingExecutor()
    worker = _worker(executor, _phase(iterations_per_worker=5), metrics)

    await asyncio.wait_for(worker.run(), timeout=2)

    assert worker.exhausted
    assert worker.iterations == 5
    assert [ctx.iteration for ctx in executor.contexts] == [0, 1, 2, 3, 4]
    assert (await metrics.snapshot()).value(m.ITERATIONS, {"phase": "writers", "group": "g"}) == 5


@pytest.mark.asyncio
async def test_context_carries_phase_tags_and_elapsed_time():
    executor = RecordingExecutor()
    worker = _worker(executor, _phase(iterations_per_worker=1))

    await worker.run()

    ctx = executor.contexts[0]
    assert ctx.phase_name == "writers"
    assert ctx.tags == {"group": "g", "phase": "writers"}
    assert ctx.elapsed_seconds == 12.5


@pytest.mark.asyncio
async def test_retire_lets_in_flight_iteration_finish():
    executor = RecordingExecutor(delay=0.1)
    worker = _worker(executor)
    task = asyncio.create_task(worker.run())

    while executor.in_flight == 0:
        await asyncio.sleep(0.005)
    worker.retire()
    await asyncio.wait_for(task, timeout=2)

    assert worker.retiring
    assert not worker.exhausted
    assert executor.completed == len(executor.contexts) == 1


@pytest.mark.asyncio
async def test_executor_exception_is_contained(capturing_logger):
    metrics = MetricsCollector()
    executor = RecordingExecutor(fail_on={1, 3})
    worker = _worker(executor, _phase(iterations_per_worker=4), metrics, capturing_logger)

    await worker.run()

    assert worker.iterations == 4
    assert worker.error_count == 2
    snapshot = await metrics.snapshot()
    assert snapshot.value(m.ITERATION_ERRORS, {"error_type": "RuntimeError"}) == 2
    assert len(capturing_logger.find("sim.iteration_exception")) == 2


@pytest.mark.asyncio
async def test_retire_interrupts_think_time():
    executor = RecordingExecutor()
    worker = _worker(executor, _phase(think_time_seconds=(30.0, 30.0)))
    task = asyncio.create_task(worker.run())

    while not executor.contexts:
        await asyncio.sleep(0.005)
    worker.retire()

    await asyncio.wait_for(task, timeout=1)
    assert worker.iterations == 1


@pytest.mark.asyncio
async def test_cancellation_propagates():
    executor = RecordingExecutor(delay=10)
    worker = _worker(executor)
    task = asyncio.create_task(worker.run())

    while executor.in_flight == 0:
        await asyncio.sleep(0.005)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert worker.error_count == 0
