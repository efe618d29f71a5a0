from __future__ import annotations

import asyncio
import signal

import httpx

from loadsim.core.client import ComputerApiClient
from loadsim.core.executors import build_executor
from loadsim.core.metrics import MetricsCollector
from loadsim.core.models import SimulationConfig, SimulationResult
from loadsim.core.scheduler import ScenarioScheduler
from loadsim.core.thresholds import evaluate, parse_thresholds
from loadsim.logger import Logger, session_logger


class Simulator:
    """Wires one run together: HTTP client, aggregator, scheduler, thresholds.

    Threshold expressions are parsed here so a broken rule fails before any
    traffic is sent.
    """

    def __init__(
        self,
        config: SimulationConfig,
        *,
        logger: Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: MetricsCollector | None = None,
        handle_signals: bool = True,
        seed: int | str | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or session_logger
        self._transport = transport
        self._handle_signals = handle_signals
        self._seed = seed
        self._rules = parse_thresholds(config.scenario.thresholds)
        self.metrics = metrics or MetricsCollector(logger=self._logger)
        self.stop_event: asyncio.Event | None = None

    def stop(self) -> None:
        if self.stop_event is not None:
            self.stop_event.set()

    async def run(self) -> SimulationResult:
        scenario = self._config.scenario
        self.stop_event = asyncio.Event()
        stop_event = self.stop_event

        self._logger.info(
            "sim.start",
            scenario=scenario.name,
            base_url=self._config.base_url,
            phases=[phase.name for phase in scenario.phases],
            planned_duration_seconds=scenario.duration_seconds,
            max_duration_seconds=self._config.max_duration_seconds,
            threshold_rules=len(self._rules),
        )

        def _handle_signal(signum: int, _frame) -> None:  # pragma: no cover
            self._logger.warning("sim.signal", signum=signum)
            stop_event.set()

        client = ComputerApiClient(
            self._config.base_url,
            metrics=self.metrics,
            logger=self._logger,
            transport=self._transport,
            max_connections=self._config.max_connections,
        )
        scheduler = ScenarioScheduler(
            scenario,
            lambda phase: build_executor(phase, client, self.metrics, logger=self._logger),
            metrics=self.metrics,
            logger=self._logger,
            tick_seconds=self._config.tick_seconds,
            seed=self._seed,
        )

        try:
            with _SignalHandlers(_handle_signal if self._handle_signals else None):
                summary = await scheduler.run(
                    stop_event=stop_event,
                    max_duration_seconds=self._config.max_duration_seconds,
                )
        finally:
            await client.aclose()

        snapshot = await self.metrics.snapshot()
        thresholds = evaluate(snapshot, self._rules)

        result = SimulationResult(
            started_at_monotonic=summary.started_at_monotonic,
            ended_at_monotonic=summary.ended_at_monotonic,
            iteration_count=summary.iterations,
            iteration_error_count=summary.iteration_errors,
            peak_workers=summary.peak_workers,
            metrics_report=snapshot.to_report(),
            threshold_report=thresholds.to_report(),
        )

        self._logger.info(
            "sim.end",
            scenario=scenario.name,
            iteration_count=result.iteration_count,
            iteration_error_count=result.iteration_error_count,
            peak_workers=result.peak_workers,
            workers_abandoned=summary.abandoned_workers,
            duration_seconds=round(result.duration_seconds, 3),
            iterations_per_second=round(result.iterations_per_second, 3),
            passed=result.passed,
        )
        for violation in thresholds.violations:
            self._logger.warning(
                "sim.threshold_failed",
                metric=violation.rule.key,
                expression=violation.rule.expression,
                actual=violation.actual,
                status=violation.status,
            )

        return result


class _SignalHandlers:
    def __init__(self, handler) -> None:
        self._handler = handler
        self._previous: dict[int, object] = {}

    def __enter__(self):
        if self._handler is None:
            return self
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous[signum] = signal.signal(signum, self._handler)
            except (ValueError, OSError):
                # Not on the main thread, or the platform forbids it.
                pass
        return self

    def __exit__(self, exc_type, exc, tb):
        for signum, previous in self._previous.items():
            try:
                signal.signal(signum, previous)  # type: ignore[arg-type]
            except (ValueError, OSError):
                pass
        return False
