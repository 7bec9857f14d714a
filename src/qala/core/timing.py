"""Wall-clock stopwatch for logging pipeline phase durations."""

from __future__ import annotations

import time


class PerformanceTimer:
    """Stopwatch with labelled marks, in milliseconds since construction."""

    def __init__(self, clock=time.perf_counter) -> None:
        self._clock = clock
        self._start = clock()
        self._timings: dict[str, float] = {}

    def mark(self, label: str) -> None:
        """Record the elapsed time under *label*."""
        self._timings[label] = (self._clock() - self._start) * 1000

    def elapsed(self, from_mark: str | None = None) -> float:
        """Milliseconds since construction, or since *from_mark* when given."""
        offset = self._timings.get(from_mark, 0.0) if from_mark else 0.0
        return (self._clock() - self._start) * 1000 - offset

    def timings(self) -> dict[str, float]:
        return {**self._timings, "total": self.elapsed()}

    def reset(self) -> None:
        self._start = self._clock()
        self._timings = {}
