from __future__ import annotations

import asyncio
import time
from random import Random
from typing import Callable

from loadsim.core import metric_names as m
from loadsim.core.executors import OperationExecutor
from loadsim.core.metrics import MetricsCollector
from loadsim.core.models import Phase
from loadsim.core.state import IterationContext, WorkerState
from loadsim.logger import Logger, session_logger


class Worker:
    """One simulated client: a strictly sequential iteration loop.

    The worker owns its WorkerState (cursor, iteration count, written names)
    and is the only code that ever touches it. Retirement is cooperative: the
    in-flight iteration always completes before the loop exits. The scheduler
    enforces the phase grace period by cancelling the task from outside.
    """

    def __init__(
        self,
        worker_id: int,
        phase: Phase,
        executor: OperationExecutor,
        *,
        metrics: MetricsCollector,
        phase_started_at: float,
        logger: Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
        seed: int | str | None = None,
    ) -> None:
        self.worker_id = worker_id
        self.phase = phase
        self._executor = executor
        self._metrics = metrics
        self._phase_started_at = phase_started_at
        self._logger = logger or session_logger
        self._clock = clock
        self._retire = asyncio.Event()
        self._tags = phase.metric_tags()
        self.state = WorkerState(rng=Random(seed))
        self.exhausted = False
        self.error_count = 0

    @property
    def retiring(self) -> bool:
        return self._retire.is_set()

    @property
    def iterations(self) -> int:
        return self.state.iteration

    def retire(self) -> None:
        self._retire.set()

    async def run(self) -> None:
        limit = self.phase.iterations_per_worker
        while not self._retire.is_set():
            if limit is not None and self.state.iteration >= limit:
                self.exhausted = True
                break

            ctx = IterationContext(
                worker_id=self.worker_id,
                phase_name=self.phase.name,
                iteration=self.state.iteration,
                elapsed_seconds=max(0.0, self._clock() - self._phase_started_at),
                tags=self._tags,
            )
            try:
                await self._executor.execute(ctx, self.state)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # An executor bug ends this iteration only.
                self.error_count += 1
                await self._metrics.add_counter(
                    m.ITERATION_ERRORS,
                    1,
                    {**self._tags, "error_type": type(exc).__name__},
                )
                self._logger.error(
                    "sim.iteration_exception",
                    phase=self.phase.name,
                    worker_id=self.worker_id,
                    iteration=self.state.iteration,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )

            self.state.iteration += 1
            await self._metrics.add_counter(m.ITERATIONS, 1, self._tags)
            await self._think()

        self._logger.debug(
            "sim.worker_exit",
            phase=self.phase.name,
            worker_id=self.worker_id,
            iterations=self.state.iteration,
            exhausted=self.exhausted,
        )

    async def _think(self) -> None:
        think = self.phase.think_time_seconds
        if think is None:
            # Yield so a tight loop against an instant transport cannot starve the scheduler.
            await asyncio.sleep(0)
            return
        delay = self.state.rng.uniform(*think)
        try:
            await asyncio.wait_for(self._retire.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
