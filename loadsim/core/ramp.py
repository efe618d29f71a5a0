from __future__ import annotations

import math
from typing import Iterable, Sequence

from loadsim.core.models import Phase, Stage


def target_population(stages: Sequence[Stage], elapsed: float, start_offset: float = 0.0) -> float:
    """Instantaneous target worker population at ``elapsed`` seconds since scenario start.

    Piecewise-linear: stage ``i`` interpolates from the previous stage's target
    (0 for the first stage) to its own target over its duration. Before the
    start offset the target is 0; after the last stage it holds at the last
    target. A zero-duration stage jumps straight to its target.
    """
    if not stages:
        return 0.0

    local = elapsed - start_offset
    if local < 0:
        return 0.0

    previous = 0.0
    stage_start = 0.0
    for stage in stages:
        stage_end = stage_start + stage.duration_seconds
        if local < stage_end:
            fraction = (local - stage_start) / stage.duration_seconds
            return previous + (stage.target - previous) * fraction
        previous = float(stage.target)
        stage_start = stage_end

    return float(stages[-1].target)


def round_population(value: float) -> int:
    """Round half-up to a whole number of workers."""
    return max(0, int(math.floor(value + 0.5)))


def phase_target(phase: Phase, elapsed: float) -> int:
    """Whole-worker target for ``phase``; 0 once the phase's stages have all elapsed."""
    if elapsed >= phase.end_offset_seconds:
        return 0
    return round_population(target_population(phase.stages, elapsed, phase.start_offset_seconds))


def total_target_population(phases: Iterable[Phase], elapsed: float) -> int:
    return sum(phase_target(phase, elapsed) for phase in phases)
