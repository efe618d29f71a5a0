from __future__ import annotations

import asyncio
from random import Random

import pytest

from loadsim.core.metrics import MetricsCollector, TrendAgg, _percentile
from loadsim.core.models import MetricKind, MetricSample
from loadsim.exceptions import ValidationError


def _samples() -> list[MetricSample]:
    rng = Random(7)
    samples = []
    for i in range(400):
        phase = ("burst", "soak", "warmup")[i % 3]
        samples.append(MetricSample.create("read_latency_ms", MetricKind.TREND, rng.randint(5, 900), {"phase": phase}))
        samples.append(MetricSample.create("success_rate", MetricKind.RATE, rng.random() > 0.1, {"phase": phase}))
        samples.append(MetricSample.create("inserted_total", MetricKind.COUNTER, 1, {"phase": phase}))
    return samples


async def _emit_concurrently(samples: list[MetricSample], workers: int) -> dict:
    collector = MetricsCollector()

    async def _worker(chunk):
        for sample in chunk:
            await collector.emit(sample)
            await asyncio.sleep(0)

    await asyncio.gather(*(_worker(samples[i::workers]) for i in range(workers)))
    return await collector.build_report()


@pytest.mark.asyncio
async def test_aggregate_is_independent_of_emission_order():
    samples = _samples()
    baseline = await _emit_concurrently(samples, workers=1)

    for seed in (1, 2, 3):
        shuffled = list(samples)
        Random(seed).shuffle(shuffled)
        assert await _emit_concurrently(shuffled, workers=8) == baseline


@pytest.mark.asyncio
async def test_counters_rates_and_trends():
    collector = MetricsCollector()
    assert await collector.add_counter("write_errors", 1, {"phase": "a"}) == 1
    assert await collector.add_counter("write_errors", 2, {"phase": "a"}) == 3
    await collector.add_rate("success_rate", True)
    await collector.add_rate("success_rate", True)
    await collector.add_rate("success_rate", False)
    for value in (10, 20, 30, 40, 50, 60):
        await collector.add_trend("read_latency_ms", value)

    snapshot = await collector.snapshot()
    assert snapshot.select("write_errors").total == 3
    assert snapshot.select("success_rate").rate == pytest.approx(2 / 3)

    trend = snapshot.select("read_latency_ms")
    assert trend.count == 6
    assert trend.avg == 35
    assert trend.stat("med") == 35.0
    assert trend.min == 10 and trend.max == 60


@pytest.mark.asyncio
async def test_interpolated_p95_of_six_samples():
    collector = MetricsCollector()
    for value in (100, 120, 150, 290, 310, 140):
        await collector.add_trend("read_latency_ms", value)

    snapshot = await collector.snapshot()
    # sorted: 100 120 140 150 290 310, rank 0.95 * 5 = 4.75 -> 290 + 0.75 * 20
    assert snapshot.select("read_latency_ms").stat("p", 95) == pytest.approx(305.0)


@pytest.mark.asyncio
async def test_select_merges_matching_series():
    collector = MetricsCollector()
    await collector.add_trend("read_latency_ms", 100, {"phase": "a", "group": "soak"})
    await collector.add_trend("read_latency_ms", 200, {"phase": "b", "group": "soak"})
    await collector.add_trend("read_latency_ms", 900, {"phase": "c", "group": "burst"})

    snapshot = await collector.snapshot()
    assert snapshot.select("read_latency_ms").count == 3
    soak = snapshot.select("read_latency_ms", {"group": "soak"})
    assert soak.count == 2
    assert soak.max == 200
    assert snapshot.select("read_latency_ms", {"group": "missing"}) is None
    assert snapshot.select("never_emitted") is None
    assert snapshot.value("read_latency_ms", {"phase": "c"}) == 1


@pytest.mark.asyncio
async def test_kind_conflict_is_rejected():
    collector = MetricsCollector()
    await collector.add_counter("write_errors")
    with pytest.raises(ValidationError) as exc_info:
        await collector.add_rate("write_errors", True)
    assert exc_info.value.code == "METRIC_KIND_CONFLICT"


@pytest.mark.asyncio
async def test_report_shape():
    collector = MetricsCollector()
    await collector.add_trend("write_latency_ms", 12.5, {"phase": "w"})
    report = await collector.build_report()

    entry = report["write_latency_ms"]
    assert entry["kind"] == "trend"
    assert entry["total"]["count"] == 1
    assert "write_latency_ms{phase:w}" in entry["series"]
    assert entry["series"]["write_latency_ms{phase:w}"]["p95"] == 12.5


class TestTrendBeyondExactLimit:
    def test_switches_to_histogram(self):
        trend = TrendAgg(exact_limit=100)
        for value in range(1, 1001):
            trend.add(value)

        assert not trend.exact
        assert trend.count == 1000
        assert trend.percentile(0.5) == pytest.approx(500, rel=0.02)
        assert trend.percentile(0.99) == pytest.approx(990, rel=0.02)
        assert trend.percentile(1.0) <= 1000

    def test_zero_values_are_counted(self):
        trend = TrendAgg(exact_limit=1)
        for value in (0, 0, 0, 10):
            trend.add(value)
        assert trend.percentile(0.5) == 0.0

    def test_merge_is_commutative(self):
        a, b = TrendAgg(exact_limit=50), TrendAgg(exact_limit=50)
        for value in range(1, 80):
            a.add(value)
        for value in range(200, 260):
            b.add(value)

        ab, ba = a.merged(b), b.merged(a)
        assert ab.count == ba.count == 139
        assert ab.buckets == ba.buckets
        assert ab.percentile(0.9) == ba.percentile(0.9)


def test_percentile_helper_edges():
    assert _percentile([], 0.5) is None
    assert _percentile([1.0, 2.0, 3.0], 0) == 1.0
    assert _percentile([1.0, 2.0, 3.0], 1) == 3.0
    assert _percentile([1.0, 2.0, 3.0, 4.0], 0.5) == 2.5


@pytest.mark.asyncio
async def test_emit_many_matches_single_emits():
    samples = _samples()
    one_by_one = await _emit_concurrently(samples, workers=1)

    batched = MetricsCollector()
    await batched.emit_many(samples)

    assert await batched.build_report() == one_by_one
