from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from loadsim.core import metric_names as m
from loadsim.core.executors import OperationExecutor
from loadsim.core.metrics import MetricsCollector
from loadsim.core.models import Phase, ScenarioConfig
from loadsim.core.ramp import phase_target
from loadsim.core.worker import Worker
from loadsim.logger import Logger, session_logger

ExecutorFactory = Callable[[Phase], OperationExecutor]


class PhaseRunner:
    """Tracks one phase's live worker population against its ramp target.

    Spawning and retirement decisions happen in ``reconcile``; workers that
    are retired get ``grace_period_seconds`` to finish their in-flight
    iteration before their task is cancelled.
    """

    def __init__(
        self,
        phase: Phase,
        executor: OperationExecutor,
        *,
        metrics: MetricsCollector,
        scenario_started_at: float,
        logger: Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
        seed: int | str | None = None,
    ) -> None:
        self.phase = phase
        self._executor = executor
        self._metrics = metrics
        self._scenario_started_at = scenario_started_at
        self._logger = logger or session_logger
        self._clock = clock
        self._seed = seed

        self._workers: list[Worker] = []
        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._grace_tasks: set[asyncio.Task[None]] = set()
        self._next_id = 0
        self._exhausted = 0
        self._last_target: int | None = None

        self.started = False
        self.ended = False
        self.spawned = 0
        self.abandoned = 0
        self.iterations = 0
        self.iteration_errors = 0

    @property
    def active_workers(self) -> list[Worker]:
        """Running workers that have not been asked to retire, oldest first."""
        return [w for w in self._workers if not w.retiring]

    @property
    def active_count(self) -> int:
        return len(self.active_workers)

    @property
    def population(self) -> int:
        """Every worker whose task is still running, retiring ones included."""
        return len(self._tasks)

    @property
    def finished(self) -> bool:
        return self.ended and not self._tasks and not self._grace_tasks

    def reconcile(self, elapsed: float) -> int:
        """Move the population toward the ramp target at ``elapsed`` scenario seconds."""
        phase = self.phase
        if elapsed < phase.start_offset_seconds:
            return 0

        if not self.started:
            self.started = True
            self._logger.info(
                "sim.phase_start",
                phase=phase.name,
                executor=phase.executor.value,
                duration_seconds=phase.duration_seconds,
                peak_target=phase.peak_target,
            )

        if self.ended:
            return 0

        if elapsed >= phase.end_offset_seconds:
            self.ended = True
            self._retire(list(self._workers))
            self._logger.info(
                "sim.phase_end",
                phase=phase.name,
                spawned=self.spawned,
                retiring=len(self._tasks),
            )
            return 0

        target = phase_target(phase, elapsed)
        if target != self._last_target:
            self._logger.debug("sim.phase_ramp", phase=phase.name, target=target, elapsed_seconds=round(elapsed, 3))
            self._last_target = target

        active = self.active_workers
        occupied = len(active) + self._exhausted
        if occupied < target:
            for _ in range(target - occupied):
                self._spawn()
        elif occupied > target and active:
            excess = min(occupied - target, len(active))
            # Newest workers leave first.
            self._retire(active[-excess:])
        return target

    async def shutdown(self) -> None:
        """Retire everything and wait until each worker exits or is abandoned."""
        self.ended = True
        self._retire(list(self._workers))
        while self._grace_tasks:
            await asyncio.gather(*list(self._grace_tasks))

    def _spawn(self) -> None:
        worker_id = self._next_id
        self._next_id += 1
        seed = None if self._seed is None else f"{self._seed}:{self.phase.name}:{worker_id}"
        worker = Worker(
            worker_id,
            self.phase,
            self._executor,
            metrics=self._metrics,
            phase_started_at=self._scenario_started_at + self.phase.start_offset_seconds,
            logger=self._logger,
            clock=self._clock,
            seed=seed,
        )
        task = asyncio.create_task(worker.run(), name=f"{self.phase.name}-worker-{worker_id}")
        task.add_done_callback(lambda t, w=worker: self._on_worker_done(w, t))
        self._workers.append(worker)
        self._tasks[worker_id] = task
        self.spawned += 1

    def _retire(self, workers: list[Worker]) -> None:
        for worker in workers:
            if worker.retiring:
                continue
            worker.retire()
            task = self._tasks.get(worker.worker_id)
            if task is None:
                continue
            grace = asyncio.create_task(self._enforce_grace(worker, task))
            self._grace_tasks.add(grace)
            grace.add_done_callback(self._grace_tasks.discard)

    async def _enforce_grace(self, worker: Worker, task: asyncio.Task[None]) -> None:
        done, _ = await asyncio.wait({task}, timeout=self.phase.grace_period_seconds)
        if task in done:
            return

        task.cancel()
        await asyncio.wait({task})
        self.abandoned += 1
        await self._metrics.add_counter(m.WORKERS_ABANDONED, 1, self.phase.metric_tags())
        self._logger.warning(
            "sim.worker_abandoned",
            phase=self.phase.name,
            worker_id=worker.worker_id,
            grace_period_seconds=self.phase.grace_period_seconds,
            iteration=worker.iterations,
        )

    def _on_worker_done(self, worker: Worker, task: asyncio.Task[None]) -> None:
        self._tasks.pop(worker.worker_id, None)
        if worker in self._workers:
            self._workers.remove(worker)
        self.iterations += worker.iterations
        self.iteration_errors += worker.error_count
        if worker.exhausted:
            self._exhausted += 1

        if not task.cancelled() and task.exception() is not None:
            exc = task.exception()
            self._logger.error(
                "sim.worker_crashed",
                phase=self.phase.name,
                worker_id=worker.worker_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )


@dataclass
class ScheduleSummary:
    started_at_monotonic: float
    ended_at_monotonic: float
    iterations: int
    iteration_errors: int
    peak_workers: int
    spawned_workers: int
    abandoned_workers: int


class ScenarioScheduler:
    """Runs every phase of a scenario concurrently on one event loop.

    Each tick recomputes every phase's target from its own ramp; phases never
    wait on one another.
    """

    def __init__(
        self,
        scenario: ScenarioConfig,
        executor_factory: ExecutorFactory,
        *,
        metrics: MetricsCollector,
        logger: Logger | None = None,
        tick_seconds: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        seed: int | str | None = None,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be > 0")
        self._scenario = scenario
        self._executor_factory = executor_factory
        self._metrics = metrics
        self._logger = logger or session_logger
        self._tick = tick_seconds
        self._clock = clock
        self._seed = seed
        self.runners: list[PhaseRunner] = []

    def population(self) -> int:
        return sum(runner.population for runner in self.runners)

    async def run(
        self,
        *,
        stop_event: asyncio.Event | None = None,
        max_duration_seconds: float | None = None,
    ) -> ScheduleSummary:
        stop_event = stop_event or asyncio.Event()
        started = self._clock()
        self.runners = [
            PhaseRunner(
                phase,
                self._executor_factory(phase),
                metrics=self._metrics,
                scenario_started_at=started,
                logger=self._logger,
                clock=self._clock,
                seed=self._seed,
            )
            for phase in self._scenario.phases
        ]

        peak = 0
        try:
            while True:
                elapsed = self._clock() - started
                for runner in self.runners:
                    runner.reconcile(elapsed)
                peak = max(peak, self.population())

                if all(runner.finished for runner in self.runners):
                    break
                if stop_event.is_set():
                    self._logger.warning("sim.stop_requested", elapsed_seconds=round(elapsed, 3))
                    break
                if max_duration_seconds is not None and elapsed >= max_duration_seconds:
                    self._logger.info("sim.max_duration_reached", elapsed_seconds=round(elapsed, 3))
                    break

                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._tick)
                except asyncio.TimeoutError:
                    pass
        finally:
            await asyncio.gather(*(runner.shutdown() for runner in self.runners))

        return ScheduleSummary(
            started_at_monotonic=started,
            ended_at_monotonic=self._clock(),
            iterations=sum(r.iterations for r in self.runners),
            iteration_errors=sum(r.iteration_errors for r in self.runners),
            peak_workers=peak,
            spawned_workers=sum(r.spawned for r in self.runners),
            abandoned_workers=sum(r.abandoned for r in self.runners),
        )
