"""Per-request stage timing for the CRAG pipeline."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from uuid import uuid4


@dataclass
class StageSpan:
    stage: str
    started_ms: float
    finished_ms: float = 0.0

    @property
    def duration_ms(self) -> float:
        return self.finished_ms - self.started_ms


class TraceContext:
    """Collects one span per pipeline stage run, relative to request start.

    Stages that run twice (retrieve and grade after a rewrite) produce two
    spans; ``stage_timings`` folds them into one total per stage.
    """

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or str(uuid4())
        self.spans: list[StageSpan] = []
        self._t0 = time.monotonic()

    def _now_ms(self) -> float:
        return (time.monotonic() - self._t0) * 1000

    @contextmanager
    def span(self, stage: str):
        current = StageSpan(stage=stage, started_ms=self._now_ms())
        try:
            yield current
        finally:
            current.finished_ms = self._now_ms()
            self.spans.append(current)

    @property
    def elapsed_ms(self) -> float:
        return self._now_ms()

    def stage_timings(self) -> dict[str, float]:
        timings: dict[str, float] = {}
        for s in self.spans:
            timings[s.stage] = round(timings.get(s.stage, 0.0) + s.duration_ms, 2)
        return timings
