"""Ramp function: piecewise-linear worker targets over scenario time."""

from __future__ import annotations

import pytest

from loadsim.core.models import ExecutorKind, Phase, Stage
from loadsim.core.ramp import phase_target, round_population, target_population, total_target_population


STAGES = (Stage(10, 20), Stage(20, 20), Stage(10, 0))


class TestTargetPopulation:
    def test_starts_at_zero(self):
        assert target_population(STAGES, 0.0) == 0.0

    def test_interpolates_within_stage(self):
        assert target_population(STAGES, 5.0) == pytest.approx(10.0)
        assert target_population(STAGES, 35.0) == pytest.approx(10.0)

    @pytest.mark.parametrize("boundary,target", [(10.0, 20), (30.0, 20), (40.0, 0)])
    def test_boundaries_hit_declared_targets(self, boundary, target):
        assert target_population(STAGES, boundary) == pytest.approx(target)

    def test_continuous_across_boundaries(self):
        stages = (Stage(10, 50), Stage(10, 10), Stage(5, 30))
        for boundary in (10.0, 20.0):
            before = target_population(stages, boundary - 1e-9)
            after = target_population(stages, boundary + 1e-9)
            assert before == pytest.approx(after, abs=1e-6)

    def test_holds_last_target_after_final_stage(self):
        stages = (Stage(10, 40),)
        assert target_population(stages, 100.0) == 40.0

    def test_zero_duration_stage_jumps(self):
        stages = (Stage(0, 30), Stage(10, 30))
        assert target_population(stages, 0.0) == 30.0
        assert target_population(stages, 5.0) == 30.0

    def test_start_offset(self):
        stages = (Stage(10, 10),)
        assert target_population(stages, 4.0, start_offset=5.0) == 0.0
        assert target_population(stages, 10.0, start_offset=5.0) == pytest.approx(5.0)

    def test_empty_stages(self):
        assert target_population((), 3.0) == 0.0


def test_round_population_is_half_up():
    assert round_population(2.5) == 3
    assert round_population(2.49) == 2
    assert round_population(0.0) == 0


class TestPhaseTarget:
    def test_zero_once_phase_ends(self):
        phase = Phase.constant("flat", ExecutorKind.WRITE, workers=10, duration_seconds=30)
        assert phase_target(phase, 29.9) == 10
        assert phase_target(phase, 30.0) == 0

    def test_zero_before_offset(self):
        phase = Phase.constant("late", ExecutorKind.WRITE, workers=10, duration_seconds=30, start_offset_seconds=10)
        assert phase_target(phase, 9.0) == 0
        assert phase_target(phase, 10.0) == 10


class TestConcurrentPhases:
    """Population of overlapping phases is the sum of their own ramps."""

    def _phase_b(self):
        return Phase.constant("b", ExecutorKind.PAGINATED_READ, workers=10, duration_seconds=30, start_offset_seconds=10)

    def test_ramping_phase_plus_flat_phase(self):
        phase_a = Phase("a", ExecutorKind.WRITE, stages=(Stage(10, 50), Stage(20, 50)))
        phases = [phase_a, self._phase_b()]

        assert total_target_population(phases, 5.0) == 25  # a half-way up, b not started
        assert total_target_population(phases, 15.0) == 60  # a holding at 50, b flat at 10

    def test_slow_ramp_interpolates_at_fifteen_seconds(self):
        phase_a = Phase("a", ExecutorKind.WRITE, stages=(Stage(30, 50),))
        phases = [phase_a, self._phase_b()]

        total = total_target_population(phases, 15.0)
        assert abs(total - 35) <= 1
