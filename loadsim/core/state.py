from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from random import Random

from loadsim.core.cursor import Cursor

_MAX_REMEMBERED_NAMES = 1000


@dataclass
class WorkerState:
    """Private, per-worker mutable state. Never shared between workers."""

    cursor: Cursor | None = None
    iteration: int = 0
    written_names: deque[str] = field(default_factory=lambda: deque(maxlen=_MAX_REMEMBERED_NAMES))
    rng: Random = field(default_factory=Random)

    def remember_written(self, name: str) -> None:
        self.written_names.append(name)

    def pop_written(self) -> str | None:
        if not self.written_names:
            return None
        return self.written_names.popleft()


@dataclass(frozen=True)
class IterationContext:
    """What an executor knows about the iteration it is running.

    ``elapsed_seconds`` is wall-clock time since the owning phase started and
    drives time-bucketed latency classification.
    """

    worker_id: int
    phase_name: str
    iteration: int
    elapsed_seconds: float
    tags: dict[str, str]
