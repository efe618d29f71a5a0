from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from loadsim.core.models import MetricKind, MetricSample, TagSet, normalize_tags
from loadsim.exceptions import ValidationError
from loadsim.logger import Logger, session_logger

# Log-bucket growth factor for the trend histogram. Representative values sit
# at the geometric bucket midpoint, so relative error is below ~1%.
_GAMMA = 1.02
_LOG_GAMMA = math.log(_GAMMA)


def _percentile(sorted_values: list[float], p: float) -> float | None:
    """Compute percentile using linear interpolation.

    Expects sorted_values sorted ascending.
    """

    if not sorted_values:
        return None

    if p <= 0:
        return float(sorted_values[0])
    if p >= 1:
        return float(sorted_values[-1])

    k = (len(sorted_values) - 1) * p
    f = int(math.floor(k))
    c = int(math.ceil(k))
    if f == c:
        return float(sorted_values[f])
    d0 = sorted_values[f] * (c - k)
    d1 = sorted_values[c] * (k - f)
    return float(d0 + d1)


def _bucket_index(value: float) -> int | None:
    if value <= 0:
        return None
    return int(math.floor(math.log(value) / _LOG_GAMMA))


def _bucket_value(index: int) -> float:
    return _GAMMA ** (index + 0.5)


@dataclass
class CounterAgg:
    total: float = 0.0
    count: int = 0

    def add(self, value: float) -> None:
        self.total += value
        self.count += 1

    def merged(self, other: "CounterAgg") -> "CounterAgg":
        return CounterAgg(total=self.total + other.total, count=self.count + other.count)

    def stat(self, aggregation: str, param: float | None = None) -> float | None:
        if aggregation == "count":
            return self.total
        raise ValidationError("UNSUPPORTED_AGGREGATION", "counters support only count", {
            "aggregation": aggregation,
        })

    def to_report(self) -> dict[str, Any]:
        return {"value": self.total, "observations": self.count}


@dataclass
class RateAgg:
    trues: int = 0
    total: int = 0

    def add(self, value: float) -> None:
        self.total += 1
        if value:
            self.trues += 1

    def merged(self, other: "RateAgg") -> "RateAgg":
        return RateAgg(trues=self.trues + other.trues, total=self.total + other.total)

    @property
    def rate(self) -> float | None:
        return (self.trues / self.total) if self.total else None

    def stat(self, aggregation: str, param: float | None = None) -> float | None:
        if aggregation == "rate":
            return self.rate
        if aggregation == "count":
            return float(self.total)
        raise ValidationError("UNSUPPORTED_AGGREGATION", "rates support rate and count", {
            "aggregation": aggregation,
        })

    def to_report(self) -> dict[str, Any]:
        return {
            "rate": self.rate,
            "passes": self.trues,
            "fails": self.total - self.trues,
            "total": self.total,
        }


@dataclass
class TrendAgg:
    """Latency distribution.

    Keeps every value while ``count <= exact_limit`` and a log-bucket
    histogram always. Both representations are independent of arrival order,
    so merging per-worker or per-phase trends is associative and commutative.
    """

    exact_limit: int = 10000
    count: int = 0
    sum: float = 0.0
    min: float | None = None
    max: float | None = None
    values: list[float] | None = field(default_factory=list)
    zero_count: int = 0
    buckets: dict[int, int] = field(default_factory=dict)

    def add(self, value: float) -> None:
        if value < 0:
            value = 0.0
        self.count += 1
        self.sum += value
        if self.min is None or value < self.min:
            self.min = value
        if self.max is None or value > self.max:
            self.max = value

        if self.values is not None:
            if self.count <= self.exact_limit:
                self.values.append(value)
            else:
                self.values = None

        idx = _bucket_index(value)
        if idx is None:
            self.zero_count += 1
        else:
            self.buckets[idx] = self.buckets.get(idx, 0) + 1

    def merged(self, other: "TrendAgg") -> "TrendAgg":
        limit = min(self.exact_limit, other.exact_limit)
        count = self.count + other.count
        values: list[float] | None = None
        if self.values is not None and other.values is not None and count <= limit:
            values = self.values + other.values

        buckets = dict(self.buckets)
        for idx, n in other.buckets.items():
            buckets[idx] = buckets.get(idx, 0) + n

        mins = [v for v in (self.min, other.min) if v is not None]
        maxs = [v for v in (self.max, other.max) if v is not None]
        return TrendAgg(
            exact_limit=limit,
            count=count,
            sum=self.sum + other.sum,
            min=min(mins) if mins else None,
            max=max(maxs) if maxs else None,
            values=values,
            zero_count=self.zero_count + other.zero_count,
            buckets=buckets,
        )

    @property
    def exact(self) -> bool:
        return self.values is not None

    @property
    def avg(self) -> float | None:
        return (self.sum / self.count) if self.count else None

    def percentile(self, p: float) -> float | None:
        if not self.count:
            return None
        if self.values is not None:
            return _percentile(sorted(self.values), p)

        rank = max(1, int(math.ceil(p * self.count)))
        seen = self.zero_count
        if seen >= rank:
            return 0.0
        for idx in sorted(self.buckets):
            seen += self.buckets[idx]
            if seen >= rank:
                estimate = _bucket_value(idx)
                # Clamp to observed extremes.
                if self.min is not None:
                    estimate = max(estimate, self.min)
                if self.max is not None:
                    estimate = min(estimate, self.max)
                return estimate
        return self.max

    def stat(self, aggregation: str, param: float | None = None) -> float | None:
        if aggregation == "avg":
            return self.avg
        if aggregation == "min":
            return self.min
        if aggregation == "max":
            return self.max
        if aggregation == "med":
            return self.percentile(0.5)
        if aggregation == "count":
            return float(self.count)
        if aggregation == "p":
            if param is None:
                raise ValidationError("UNSUPPORTED_AGGREGATION", "percentile needs a parameter")
            return self.percentile(param / 100.0)
        raise ValidationError("UNSUPPORTED_AGGREGATION", "unknown trend aggregation", {"aggregation": aggregation})

    def to_report(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "med": self.percentile(0.50),
            "p90": self.percentile(0.90),
            "p95": self.percentile(0.95),
            "p99": self.percentile(0.99),
            "exact": self.exact,
        }


Aggregate = CounterAgg | RateAgg | TrendAgg


def _copy(agg: Aggregate) -> Aggregate:
    if isinstance(agg, TrendAgg):
        return TrendAgg(
            exact_limit=agg.exact_limit,
            count=agg.count,
            sum=agg.sum,
            min=agg.min,
            max=agg.max,
            values=list(agg.values) if agg.values is not None else None,
            zero_count=agg.zero_count,
            buckets=dict(agg.buckets),
        )
    if isinstance(agg, RateAgg):
        return RateAgg(trues=agg.trues, total=agg.total)
    return CounterAgg(total=agg.total, count=agg.count)


def render_series_key(name: str, tags: TagSet) -> str:
    if not tags:
        return name
    inner = ",".join(f"{k}:{v}" for k, v in tags)
    return f"{name}{{{inner}}}"


def _tags_match(series_tags: TagSet, tag_filter: TagSet) -> bool:
    if not tag_filter:
        return True
    present = dict(series_tags)
    return all(present.get(k) == v for k, v in tag_filter)


class MetricsSnapshot:
    """Immutable view of aggregated state at a point in time."""

    def __init__(self, kinds: Mapping[str, MetricKind], series: Mapping[tuple[str, TagSet], Aggregate]) -> None:
        self._kinds = dict(kinds)
        self._series = dict(series)

    def names(self) -> list[str]:
        return sorted(self._kinds)

    def kind(self, name: str) -> MetricKind | None:
        return self._kinds.get(name)

    def series(self, name: str) -> dict[TagSet, Aggregate]:
        return {tags: agg for (n, tags), agg in self._series.items() if n == name}

    def select(self, name: str, tag_filter: Mapping[str, Any] | TagSet | None = None) -> Aggregate | None:
        """Merge every series of ``name`` whose tags include ``tag_filter``.

        Returns None when nothing matches.
        """
        wanted = tag_filter if isinstance(tag_filter, tuple) else normalize_tags(tag_filter)
        merged: Aggregate | None = None
        for tags in sorted(self.series(name)):
            if not _tags_match(tags, wanted):
                continue
            agg = self._series[(name, tags)]
            merged = _copy(agg) if merged is None else merged.merged(agg)  # type: ignore[arg-type]
        return merged

    def value(self, name: str, tag_filter: Mapping[str, Any] | None = None) -> float:
        """Convenience: counter total / rate trues / trend count, 0 when absent."""
        agg = self.select(name, tag_filter)
        if agg is None:
            return 0.0
        if isinstance(agg, CounterAgg):
            return agg.total
        if isinstance(agg, RateAgg):
            return float(agg.trues)
        return float(agg.count)

    def to_report(self) -> dict[str, Any]:
        report: dict[str, Any] = {}
        for name in self.names():
            total = self.select(name)
            series = {
                render_series_key(name, tags): agg.to_report()
                for tags, agg in sorted(self.series(name).items())
            }
            report[name] = {
                "kind": self._kinds[name].value,
                "total": total.to_report() if total is not None else None,
                "series": series,
            }
        return report


class MetricsCollector:
    """Concurrency-safe sink for metric samples emitted by all workers.

    Every emission is an accumulate under one asyncio lock; nothing reads and
    writes back outside it, so concurrent workers never lose updates.
    """

    def __init__(
        self,
        *,
        exact_sample_limit: int = 10000,
        logger: Logger | None = None,
    ) -> None:
        if exact_sample_limit <= 0:
            raise ValueError("exact_sample_limit must be > 0")
        self._logger = logger or session_logger
        self._lock = asyncio.Lock()
        self._exact_limit = exact_sample_limit
        self._kinds: dict[str, MetricKind] = {}
        self._series: dict[tuple[str, TagSet], Aggregate] = {}

    async def emit(self, sample: MetricSample) -> float:
        """Accumulate one sample; returns the series' new headline value.

        (counter: running total, rate: observations, trend: count)
        """
        async with self._lock:
            return self._observe(sample)

    async def emit_many(self, samples: Iterable[MetricSample]) -> None:
        async with self._lock:
            for sample in samples:
                self._observe(sample)

    async def add_counter(self, name: str, value: float = 1.0, tags: Mapping[str, Any] | None = None) -> float:
        return await self.emit(MetricSample.create(name, MetricKind.COUNTER, value, tags))

    async def add_rate(self, name: str, ok: bool, tags: Mapping[str, Any] | None = None) -> float:
        return await self.emit(MetricSample.create(name, MetricKind.RATE, ok, tags))

    async def add_trend(self, name: str, value: float, tags: Mapping[str, Any] | None = None) -> float:
        return await self.emit(MetricSample.create(name, MetricKind.TREND, value, tags))

    async def snapshot(self) -> MetricsSnapshot:
        async with self._lock:
            return MetricsSnapshot(self._kinds, {key: _copy(agg) for key, agg in self._series.items()})

    async def build_report(self) -> dict[str, Any]:
        return (await self.snapshot()).to_report()

    def _observe(self, sample: MetricSample) -> float:
        known = self._kinds.get(sample.name)
        if known is None:
            self._kinds[sample.name] = sample.kind
        elif known != sample.kind:
            raise ValidationError(
                "METRIC_KIND_CONFLICT",
                "metric already registered with a different kind",
                {"metric": sample.name, "registered": known.value, "emitted": sample.kind.value},
            )

        key = (sample.name, sample.tags)
        agg = self._series.get(key)
        if agg is None:
            agg = self._new_agg(sample.kind)
            self._series[key] = agg
            self._logger.debug(
                "sim.metric_series_created",
                metric=render_series_key(sample.name, sample.tags),
                kind=sample.kind.value,
            )
        agg.add(sample.value)

        if isinstance(agg, CounterAgg):
            return agg.total
        if isinstance(agg, RateAgg):
            return float(agg.total)
        return float(agg.count)

    def _new_agg(self, kind: MetricKind) -> Aggregate:
        if kind == MetricKind.COUNTER:
            return CounterAgg()
        if kind == MetricKind.RATE:
            return RateAgg()
        return TrendAgg(exact_limit=self._exact_limit)
