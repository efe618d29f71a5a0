from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from loadsim.exceptions import ConfigurationError


class ExecutorKind(str, Enum):
    """Traffic type a phase drives.

    write: POST new records to the primary
    paginated-read: keyset pagination over the replica
    search: GPU substring / RAM capacity search on the replica
    delete: remove records previously written by the same worker
    replication-probe: write-then-read consistency probe
    duplicate-probe: concurrent inserts colliding on a unique name
    burst-read: paginated read with burst/recovery latency buckets
    soak-read: paginated read with early/mid/late latency buckets
    mixed-read: weighted mix of pagination and both searches
    """

    WRITE = "write"
    PAGINATED_READ = "paginated-read"
    SEARCH = "search"
    DELETE = "delete"
    REPLICATION_PROBE = "replication-probe"
    DUPLICATE_PROBE = "duplicate-probe"
    BURST_READ = "burst-read"
    SOAK_READ = "soak-read"
    MIXED_READ = "mixed-read"


class MetricKind(str, Enum):
    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


TagSet = tuple[tuple[str, str], ...]


def normalize_tags(tags: Mapping[str, Any] | None) -> TagSet:
    """Turn a tag mapping into a sorted, hashable tuple of string pairs."""
    if not tags:
        return ()
    return tuple(sorted((str(k), str(v)) for k, v in tags.items()))


@dataclass(frozen=True)
class MetricSample:
    """A single observation emitted by an executor. Never mutated."""

    name: str
    kind: MetricKind
    value: float
    tags: TagSet = ()

    @classmethod
    def create(
        cls,
        name: str,
        kind: MetricKind,
        value: float | bool,
        tags: Mapping[str, Any] | None = None,
    ) -> "MetricSample":
        return cls(name=name, kind=kind, value=float(value), tags=normalize_tags(tags))


@dataclass(frozen=True)
class Stage:
    """One ramp segment: reach ``target`` workers over ``duration_seconds``."""

    duration_seconds: float
    target: int

    def __post_init__(self) -> None:
        if self.duration_seconds < 0:
            raise ConfigurationError(
                "INVALID_STAGE",
                "stage duration must be non-negative",
                {"duration_seconds": self.duration_seconds},
            )
        if self.target < 0:
            raise ConfigurationError("INVALID_STAGE", "stage target must be non-negative", {"target": self.target})


_DEFAULT_GPU_TERMS = ("RTX", "RX", "GTX", "4070", "3060", "7900")
_DEFAULT_RAM_CAPACITIES = (16, 32, 64)


@dataclass(frozen=True)
class ExecutorOptions:
    """Per-executor knobs. Only the fields relevant to a phase's executor are read."""

    page_size: int = 20
    min_payload_bytes: int | None = None
    search_target: str = "any"  # gpu | ram | any
    gpu_terms: tuple[str, ...] = _DEFAULT_GPU_TERMS
    ram_capacities: tuple[int, ...] = _DEFAULT_RAM_CAPACITIES
    name_prefix: str = "PC-SIM"
    duplicate_key_prefix: str = "PC-DUP-TEST"
    duplicate_pool_size: int = 10
    lag_first_retry_seconds: float = 0.05
    lag_final_retry_seconds: float = 0.2
    burst_seconds: float = 20.0
    soak_boundaries_seconds: tuple[float, float] = (30.0, 90.0)
    mix_weights: tuple[int, int, int] = (40, 35, 25)

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ConfigurationError("INVALID_OPTION", "page_size must be >= 1", {"page_size": self.page_size})
        if self.search_target not in ("gpu", "ram", "any"):
            raise ConfigurationError(
                "INVALID_OPTION",
                "search_target must be gpu, ram or any",
                {"search_target": self.search_target},
            )
        if self.duplicate_pool_size < 1:
            raise ConfigurationError(
                "INVALID_OPTION",
                "duplicate_pool_size must be >= 1",
                {"duplicate_pool_size": self.duplicate_pool_size},
            )
        early, late = self.soak_boundaries_seconds
        if early < 0 or late < early:
            raise ConfigurationError(
                "INVALID_OPTION",
                "soak boundaries must be ordered and non-negative",
                {"soak_boundaries_seconds": self.soak_boundaries_seconds},
            )
        if len(self.mix_weights) != 3 or sum(self.mix_weights) <= 0 or min(self.mix_weights) < 0:
            raise ConfigurationError("INVALID_OPTION", "mix_weights must be three non-negative ints", {
                "mix_weights": self.mix_weights,
            })


@dataclass(frozen=True)
class Phase:
    """A time-scoped traffic profile with its own ramp curve and executor.

    Immutable once the run starts. ``tags`` are attached to every metric the
    phase's workers emit, alongside ``phase=<name>``.
    """

    name: str
    executor: ExecutorKind
    stages: tuple[Stage, ...]
    start_offset_seconds: float = 0.0
    grace_period_seconds: float = 30.0
    tags: Mapping[str, str] = field(default_factory=dict)
    request_timeout_seconds: float = 10.0
    think_time_seconds: tuple[float, float] | None = None
    iterations_per_worker: int | None = None
    options: ExecutorOptions = field(default_factory=ExecutorOptions)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("INVALID_PHASE", "phase name must be non-empty")
        if not self.stages:
            raise ConfigurationError("INVALID_PHASE", "phase must declare at least one stage", {"phase": self.name})
        if self.start_offset_seconds < 0:
            raise ConfigurationError("INVALID_PHASE", "start offset must be non-negative", {"phase": self.name})
        if self.grace_period_seconds < 0:
            raise ConfigurationError("INVALID_PHASE", "grace period must be non-negative", {"phase": self.name})
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError("INVALID_PHASE", "request timeout must be > 0", {"phase": self.name})
        if self.iterations_per_worker is not None and self.iterations_per_worker < 1:
            raise ConfigurationError("INVALID_PHASE", "iterations_per_worker must be >= 1", {"phase": self.name})
        if self.think_time_seconds is not None:
            low, high = self.think_time_seconds
            if low < 0 or high < low:
                raise ConfigurationError(
                    "INVALID_PHASE",
                    "think time must be an ordered non-negative range",
                    {"phase": self.name, "think_time_seconds": self.think_time_seconds},
                )
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "tags", MappingProxyType({str(k): str(v) for k, v in dict(self.tags).items()}))

    @classmethod
    def constant(
        cls,
        name: str,
        executor: ExecutorKind,
        *,
        workers: int,
        duration_seconds: float,
        **kwargs: Any,
    ) -> "Phase":
        """Flat population: jump to ``workers`` at start and hold for the duration."""
        stages = (Stage(0.0, workers), Stage(duration_seconds, workers))
        return cls(name=name, executor=executor, stages=stages, **kwargs)

    @property
    def duration_seconds(self) -> float:
        return sum(stage.duration_seconds for stage in self.stages)

    @property
    def end_offset_seconds(self) -> float:
        return self.start_offset_seconds + self.duration_seconds

    @property
    def peak_target(self) -> int:
        return max(stage.target for stage in self.stages)

    def metric_tags(self) -> dict[str, str]:
        tags = dict(self.tags)
        tags["phase"] = self.name
        return tags

    def scaled(self, time_factor: float) -> "Phase":
        """Copy with every duration-like value multiplied by ``time_factor``."""
        opts = self.options
        early, late = opts.soak_boundaries_seconds
        return replace(
            self,
            stages=tuple(Stage(s.duration_seconds * time_factor, s.target) for s in self.stages),
            start_offset_seconds=self.start_offset_seconds * time_factor,
            grace_period_seconds=self.grace_period_seconds * time_factor,
            think_time_seconds=(
                None
                if self.think_time_seconds is None
                else (self.think_time_seconds[0] * time_factor, self.think_time_seconds[1] * time_factor)
            ),
            options=replace(
                opts,
                burst_seconds=opts.burst_seconds * time_factor,
                soak_boundaries_seconds=(early * time_factor, late * time_factor),
            ),
        )


@dataclass(frozen=True)
class ScenarioConfig:
    """A named set of concurrently-running phases plus their thresholds.

    ``thresholds`` maps a metric key (``name`` or ``name{tag:value}``) to the
    list of predicate expressions that must hold at the end of the run.
    """

    name: str
    phases: tuple[Phase, ...]
    thresholds: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.phases:
            raise ConfigurationError("INVALID_SCENARIO", "scenario must contain at least one phase", {
                "scenario": self.name,
            })
        seen: set[str] = set()
        for phase in self.phases:
            if phase.name in seen:
                raise ConfigurationError("DUPLICATE_PHASE", "phase names must be unique", {"phase": phase.name})
            seen.add(phase.name)
        object.__setattr__(self, "phases", tuple(self.phases))
        object.__setattr__(
            self,
            "thresholds",
            MappingProxyType({str(k): tuple(v) for k, v in dict(self.thresholds).items()}),
        )

    @property
    def duration_seconds(self) -> float:
        return max(phase.end_offset_seconds for phase in self.phases)

    def scaled(self, time_factor: float) -> "ScenarioConfig":
        if time_factor <= 0:
            raise ConfigurationError("INVALID_SCALE", "time factor must be > 0", {"time_factor": time_factor})
        return replace(self, phases=tuple(phase.scaled(time_factor) for phase in self.phases))


@dataclass(frozen=True)
class SimulationConfig:
    base_url: str
    scenario: ScenarioConfig
    tick_seconds: float = 0.1
    max_duration_seconds: float | None = None
    max_connections: int = 1000


@dataclass
class SimulationResult:
    started_at_monotonic: float
    ended_at_monotonic: float
    iteration_count: int
    iteration_error_count: int
    peak_workers: int
    metrics_report: dict[str, Any] | None = None
    threshold_report: dict[str, Any] | None = None

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.ended_at_monotonic - self.started_at_monotonic)

    @property
    def iterations_per_second(self) -> float:
        duration = self.duration_seconds
        return (self.iteration_count / duration) if duration > 0 else 0.0

    @property
    def passed(self) -> bool:
        if self.threshold_report is None:
            return True
        return bool(self.threshold_report.get("passed", True))
