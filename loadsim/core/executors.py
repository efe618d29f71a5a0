"""Operation executors: one request/response protocol per traffic type.

An executor is stateless apart from its configuration; everything that
changes between iterations lives in the WorkerState passed in by the
owning worker. Executors never raise for HTTP-level failures: they classify
the outcome, emit metrics and return whether the iteration succeeded.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from loadsim.core import metric_names as m
from loadsim.core.client import CallResult, ComputerApiClient
from loadsim.core.cursor import Cursor, extract_cursor
from loadsim.core.metrics import MetricsCollector
from loadsim.core.models import ExecutorKind, ExecutorOptions, Phase
from loadsim.core.payload import ComputerFactory
from loadsim.core.state import IterationContext, WorkerState
from loadsim.core.validation import (
    Outcome,
    StatusClass,
    expect_created_with_id,
    expect_json_list,
    expect_non_empty_list,
    expect_status,
)
from loadsim.logger import Logger, session_logger

DELETE_ACCEPTED = frozenset({200, 204, 404})
DUPLICATE_REJECTION_STATUSES = frozenset({409, 422, 500})
DUPLICATE_EXPECTED_STATUSES = frozenset({201}) | DUPLICATE_REJECTION_STATUSES


def _with(tags: dict[str, str], **extra: Any) -> dict[str, str]:
    merged = dict(tags)
    merged.update({k: str(v) for k, v in extra.items() if v is not None})
    return merged


class OperationExecutor(ABC):
    kind: ExecutorKind

    def __init__(
        self,
        client: ComputerApiClient,
        metrics: MetricsCollector,
        *,
        options: ExecutorOptions | None = None,
        timeout_seconds: float | None = None,
        factory: ComputerFactory | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._client = client
        self._metrics = metrics
        self._options = options or ExecutorOptions()
        self._timeout = timeout_seconds
        self._factory = factory or ComputerFactory(name_prefix=self._options.name_prefix)
        self._logger = logger or session_logger

    @abstractmethod
    async def execute(self, ctx: IterationContext, state: WorkerState) -> bool:
        """Run one iteration; return True when it counts as a success."""

    async def _record_outcome(
        self,
        ctx: IterationContext,
        outcome: Outcome,
        *,
        error_metric: str,
    ) -> None:
        await self._metrics.add_rate(m.SUCCESS_RATE, outcome.ok, ctx.tags)
        if not outcome.ok:
            await self._metrics.add_counter(error_metric, 1, _with(ctx.tags, error_type=outcome.error_type))
            self._logger.debug(
                "sim.iteration_failed",
                executor=self.kind.value,
                phase=ctx.phase_name,
                worker_id=ctx.worker_id,
                status_code=outcome.status_code,
                error_type=outcome.error_type,
            )


class WriteExecutor(OperationExecutor):
    kind = ExecutorKind.WRITE

    async def execute(self, ctx: IterationContext, state: WorkerState) -> bool:
        payload = self._factory.build()
        result = await self._client.create_computer(payload, tags=ctx.tags, timeout=self._timeout)
        await self._metrics.add_trend(m.WRITE_LATENCY, result.duration_ms, ctx.tags)

        outcome = expect_created_with_id(result)
        await self._record_outcome(ctx, outcome, error_metric=m.WRITE_ERRORS)
        if outcome.ok:
            await self._metrics.add_counter(m.INSERTED_TOTAL, 1, ctx.tags)
            state.remember_written(payload["name"])
        return outcome.ok


class PaginatedReadExecutor(OperationExecutor):
    """Keyset pagination over the replica, cycling back to the first page."""

    kind = ExecutorKind.PAGINATED_READ
    operation = "pagination"

    async def execute(self, ctx: IterationContext, state: WorkerState) -> bool:
        outcome, result = await self._read_page(ctx, state)
        await self._after_page(ctx, result)
        return outcome.ok

    async def _after_page(self, ctx: IterationContext, result: CallResult) -> None:
        """Hook for subclasses that bucket latency further."""

    async def _read_page(self, ctx: IterationContext, state: WorkerState) -> tuple[Outcome, CallResult]:
        result = await self._client.paginate(
            state.cursor,
            self._options.page_size,
            tags=ctx.tags,
            timeout=self._timeout,
            operation=self.operation,
        )
        await self._metrics.add_trend(m.READ_LATENCY, result.duration_ms, ctx.tags)

        outcome = expect_json_list(result, min_payload_bytes=self._options.min_payload_bytes)
        if outcome.payload_valid:
            outcome = await self._advance_cursor(ctx, state, outcome)
        else:
            state.cursor = None

        await self._record_outcome(ctx, outcome, error_metric=m.READ_ERRORS)
        return outcome, result

    async def _advance_cursor(self, ctx: IterationContext, state: WorkerState, outcome: Outcome) -> Outcome:
        items = outcome.payload
        if not items:
            state.cursor = None
            await self._metrics.add_counter(m.EMPTY_PAGE_TOTAL, 1, ctx.tags)
            return outcome

        try:
            new_cursor = extract_cursor(items)
            regressed = state.cursor is not None and new_cursor is not None and not new_cursor > state.cursor
        except ValueError:
            state.cursor = None
            return Outcome(
                outcome.status_class,
                outcome.status_code,
                False,
                False,
                items,
                error_type="malformed_page_item",
            )

        if regressed:
            # The server returned a page that does not move past the cursor;
            # restart the traversal rather than revisiting keys.
            await self._metrics.add_counter(m.CURSOR_REGRESSIONS, 1, ctx.tags)
            self._logger.warning(
                "sim.cursor_regression",
                phase=ctx.phase_name,
                worker_id=ctx.worker_id,
                previous=_cursor_repr(state.cursor),
                received=_cursor_repr(new_cursor),
            )
            state.cursor = None
            return outcome

        state.cursor = new_cursor
        return outcome


def _cursor_repr(cursor: Cursor | None) -> str | None:
    if cursor is None:
        return None
    return f"{cursor.created_at}#{cursor.id}"


class BurstReadExecutor(PaginatedReadExecutor):
    """Paginated read that also files latency under burst or recovery.

    Classification uses wall-clock time since phase start, not iteration
    count: iteration throughput drops exactly when latency spikes.
    """

    kind = ExecutorKind.BURST_READ
    operation = "burst_pagination"

    async def _after_page(self, ctx: IterationContext, result: CallResult) -> None:
        name = m.BURST_LATENCY if ctx.elapsed_seconds < self._options.burst_seconds else m.RECOVERY_LATENCY
        await self._metrics.add_trend(name, result.duration_ms, ctx.tags)


class SoakReadExecutor(PaginatedReadExecutor):
    """Paginated read with early/mid/late latency buckets to expose drift."""

    kind = ExecutorKind.SOAK_READ
    operation = "soak_pagination"

    async def _after_page(self, ctx: IterationContext, result: CallResult) -> None:
        early, late = self._options.soak_boundaries_seconds
        if ctx.elapsed_seconds < early:
            name = m.SOAK_LATENCY_EARLY
        elif ctx.elapsed_seconds < late:
            name = m.SOAK_LATENCY_MID
        else:
            name = m.SOAK_LATENCY_LATE
        await self._metrics.add_trend(name, result.duration_ms, ctx.tags)


class SearchExecutor(OperationExecutor):
    kind = ExecutorKind.SEARCH

    async def execute(self, ctx: IterationContext, state: WorkerState) -> bool:
        target = self._options.search_target
        if target == "any":
            target = state.rng.choice(("gpu", "ram"))
        if target == "gpu":
            return await self.search_gpu(ctx, state)
        return await self.search_ram(ctx, state)

    async def search_gpu(self, ctx: IterationContext, state: WorkerState) -> bool:
        term = state.rng.choice(self._options.gpu_terms)
        result = await self._client.search_gpu(term, tags=ctx.tags, timeout=self._timeout)
        return await self._finish(ctx, result, m.SEARCH_GPU_TOTAL)

    async def search_ram(self, ctx: IterationContext, state: WorkerState) -> bool:
        capacity = state.rng.choice(self._options.ram_capacities)
        result = await self._client.search_ram(capacity, tags=ctx.tags, timeout=self._timeout)
        return await self._finish(ctx, result, m.SEARCH_RAM_TOTAL)

    async def _finish(self, ctx: IterationContext, result: CallResult, counter: str) -> bool:
        await self._metrics.add_trend(m.SEARCH_LATENCY, result.duration_ms, ctx.tags)
        outcome = expect_json_list(result)
        await self._record_outcome(ctx, outcome, error_metric=m.SEARCH_ERRORS)
        if outcome.ok:
            await self._metrics.add_counter(counter, 1, ctx.tags)
        return outcome.ok


class MixedReadExecutor(OperationExecutor):
    """Stress mix: pagination, GPU search and RAM search by configured weights."""

    kind = ExecutorKind.MIXED_READ

    def __init__(self, client: ComputerApiClient, metrics: MetricsCollector, **kwargs: Any) -> None:
        super().__init__(client, metrics, **kwargs)
        self._reader = PaginatedReadExecutor(client, metrics, **kwargs)
        self._searcher = SearchExecutor(client, metrics, **kwargs)

    async def execute(self, ctx: IterationContext, state: WorkerState) -> bool:
        read_w, gpu_w, ram_w = self._options.mix_weights
        roll = state.rng.uniform(0, read_w + gpu_w + ram_w)
        if roll < read_w:
            return await self._reader.execute(ctx, state)
        if roll < read_w + gpu_w:
            return await self._searcher.search_gpu(ctx, state)
        return await self._searcher.search_ram(ctx, state)


class DeleteExecutor(OperationExecutor):
    """Deletes names this worker wrote earlier; a missing name yields a valid 404."""

    kind = ExecutorKind.DELETE

    async def execute(self, ctx: IterationContext, state: WorkerState) -> bool:
        name = state.pop_written() or f"{self._options.name_prefix}-missing-{self._factory.random_suffix(6)}"
        result = await self._client.delete_computer(name, tags=ctx.tags, timeout=self._timeout)
        await self._metrics.add_trend(m.DELETE_LATENCY, result.duration_ms, ctx.tags)

        outcome = expect_status(result, DELETE_ACCEPTED)
        await self._record_outcome(ctx, outcome, error_metric=m.DELETE_ERRORS)
        if outcome.ok and result.status_code != 404:
            await self._metrics.add_counter(m.DELETED_TOTAL, 1, ctx.tags)
        return outcome.ok


class ReplicationLagProbe(OperationExecutor):
    """Read-your-writes probe against the primary/replica split.

    1. Write a record whose GPU model is a unique marker.
    2. Search the replica for the marker immediately. The verdict (lag or no
       lag) is fixed by this first read and recorded exactly once.
    3. On a miss: wait ``lag_first_retry_seconds`` and read again; if still
       missing wait ``lag_final_retry_seconds`` for one last diagnostic read.
    """

    kind = ExecutorKind.REPLICATION_PROBE

    async def execute(self, ctx: IterationContext, state: WorkerState) -> bool:
        marker = f"LAGTEST-{self._factory.random_suffix(8)}"
        payload = self._factory.build(gpu_model=marker)

        write = await self._client.create_computer(
            payload,
            tags=ctx.tags,
            timeout=self._timeout,
            operation="repl_write",
        )
        await self._metrics.add_trend(m.WRITE_LATENCY, write.duration_ms, ctx.tags)
        written = expect_created_with_id(write)
        if not written.ok:
            await self._record_outcome(ctx, written, error_metric=m.WRITE_ERRORS)
            return False
        await self._metrics.add_counter(m.INSERTED_TOTAL, 1, ctx.tags)

        await self._metrics.add_counter(m.REPLICATION_CHECK_TOTAL, 1, ctx.tags)
        found = await self._check(ctx, marker, "repl_read_immediate")
        await self._metrics.add_rate(m.REPLICATION_LAG_RATE, not found, ctx.tags)

        if not found:
            await self._metrics.add_counter(m.REPLICATION_LAG_DETECTED, 1, ctx.tags)
            await self._diagnose(ctx, marker)

        await self._metrics.add_rate(m.SUCCESS_RATE, True, ctx.tags)
        return True

    async def _diagnose(self, ctx: IterationContext, marker: str) -> None:
        await asyncio.sleep(self._options.lag_first_retry_seconds)
        await self._metrics.add_counter(m.REPLICATION_DIAGNOSTIC_CHECKS, 1, ctx.tags)
        if await self._check(ctx, marker, "repl_read_retry"):
            await self._metrics.add_counter(m.REPLICATION_RETRY_RECOVERED, 1, _with(ctx.tags, attempt="first"))
            return

        await self._metrics.add_counter(m.REPLICATION_LAG_PERSISTENT, 1, ctx.tags)
        self._logger.warning(
            "sim.replication_lag_persistent",
            phase=ctx.phase_name,
            worker_id=ctx.worker_id,
            marker=marker,
            retry_after_seconds=self._options.lag_first_retry_seconds,
        )

        await asyncio.sleep(self._options.lag_final_retry_seconds)
        await self._metrics.add_counter(m.REPLICATION_DIAGNOSTIC_CHECKS, 1, ctx.tags)
        if await self._check(ctx, marker, "repl_read_retry_final"):
            await self._metrics.add_counter(m.REPLICATION_RETRY_RECOVERED, 1, _with(ctx.tags, attempt="final"))

    async def _check(self, ctx: IterationContext, marker: str, operation: str) -> bool:
        result = await self._client.search_gpu(marker, tags=ctx.tags, timeout=self._timeout, operation=operation)
        await self._metrics.add_trend(m.SEARCH_LATENCY, result.duration_ms, ctx.tags)
        outcome = expect_non_empty_list(result)
        if not outcome.payload_valid:
            # The read itself failed; still a miss for the verdict.
            await self._metrics.add_counter(m.READ_ERRORS, 1, _with(ctx.tags, error_type=outcome.error_type))
        return outcome.ok


class DuplicateInsertProbe(OperationExecutor):
    """Concurrent inserts drawn from a small pool of names under a unique constraint.

    201 is a first-writer win, 409/422/500 a correctly rejected duplicate and
    any other status an incorrectly handled duplicate. A request that got no
    response gives no verdict either way. Wins are counted per exact
    name in the shared aggregator; a second win for the same name is a
    correctness violation of its own.
    """

    kind = ExecutorKind.DUPLICATE_PROBE

    def key_pool(self) -> list[str]:
        prefix = self._options.duplicate_key_prefix
        return [f"{prefix}-{i}" for i in range(self._options.duplicate_pool_size)]

    async def execute(self, ctx: IterationContext, state: WorkerState) -> bool:
        key = state.rng.choice(self.key_pool())
        await self._metrics.add_counter(m.DUPLICATE_ATTEMPTS, 1, ctx.tags)

        result = await self._client.create_computer(
            self._factory.build(name=key),
            tags=ctx.tags,
            timeout=self._timeout,
            operation="duplicate_insert",
            expected=DUPLICATE_EXPECTED_STATUSES,
        )
        await self._metrics.add_trend(m.WRITE_LATENCY, result.duration_ms, ctx.tags)

        outcome = expect_status(result, DUPLICATE_EXPECTED_STATUSES)
        if outcome.status_class == StatusClass.TRANSPORT_ERROR:
            # No verdict on the constraint; the client already counted transport_errors.
            await self._metrics.add_rate(m.SUCCESS_RATE, False, ctx.tags)
            self._logger.debug(
                "sim.duplicate_insert_unanswered",
                phase=ctx.phase_name,
                worker_id=ctx.worker_id,
                key=key,
                error_type=outcome.error_type,
            )
            return False

        if expect_status(result, (201,)).ok:
            await self._metrics.add_counter(m.INSERTED_TOTAL, 1, ctx.tags)
            wins = await self._metrics.add_counter(m.DUPLICATE_KEY_WINS, 1, {"key": key})
            if wins > 1:
                await self._metrics.add_counter(m.DUPLICATE_DOUBLE_WINNER, 1, _with(ctx.tags, key=key))
                self._logger.warning(
                    "sim.duplicate_double_winner",
                    phase=ctx.phase_name,
                    worker_id=ctx.worker_id,
                    key=key,
                    wins=int(wins),
                )
            await self._metrics.add_rate(m.SUCCESS_RATE, True, ctx.tags)
            return True

        if outcome.ok:
            await self._metrics.add_counter(m.DUPLICATE_REJECTED, 1, ctx.tags)
            await self._metrics.add_rate(m.SUCCESS_RATE, True, ctx.tags)
            return True

        await self._metrics.add_counter(
            m.DUPLICATE_NOT_REJECTED,
            1,
            _with(ctx.tags, status=outcome.status_code, error_type=outcome.error_type),
        )
        await self._metrics.add_rate(m.SUCCESS_RATE, False, ctx.tags)
        self._logger.warning(
            "sim.duplicate_not_rejected",
            phase=ctx.phase_name,
            worker_id=ctx.worker_id,
            key=key,
            status_code=outcome.status_code,
            error_type=outcome.error_type,
        )
        return False


_EXECUTORS: dict[ExecutorKind, type[OperationExecutor]] = {
    ExecutorKind.WRITE: WriteExecutor,
    ExecutorKind.PAGINATED_READ: PaginatedReadExecutor,
    ExecutorKind.SEARCH: SearchExecutor,
    ExecutorKind.DELETE: DeleteExecutor,
    ExecutorKind.REPLICATION_PROBE: ReplicationLagProbe,
    ExecutorKind.DUPLICATE_PROBE: DuplicateInsertProbe,
    ExecutorKind.BURST_READ: BurstReadExecutor,
    ExecutorKind.SOAK_READ: SoakReadExecutor,
    ExecutorKind.MIXED_READ: MixedReadExecutor,
}


def build_executor(
    phase: Phase,
    client: ComputerApiClient,
    metrics: MetricsCollector,
    *,
    logger: Logger | None = None,
) -> OperationExecutor:
    """Instantiate the executor a phase is configured with."""
    executor_cls = _EXECUTORS[phase.executor]
    return executor_cls(
        client,
        metrics,
        options=phase.options,
        timeout_seconds=phase.request_timeout_seconds,
        logger=logger,
    )
