"""Tests for the labelled stopwatch."""

from __future__ import annotations

import pytest

from qala.core.timing import PerformanceTimer

pytestmark = pytest.mark.unit


def test_marks_and_elapsed(clock):
    timer = PerformanceTimer(clock=clock)
    clock.advance(0.010)
    timer.mark("connected")
    clock.advance(0.025)

    assert timer.elapsed() == pytest.approx(35)
    assert timer.elapsed("connected") == pytest.approx(25)
    assert timer.timings() == pytest.approx({"connected": 10, "total": 35})


def test_unknown_mark_counts_from_start(clock):
    timer = PerformanceTimer(clock=clock)
    clock.advance(0.5)
    assert timer.elapsed("never-set") == pytest.approx(500)


def test_reset(clock):
    timer = PerformanceTimer(clock=clock)
    clock.advance(1)
    timer.mark("a")
    timer.reset()
    assert timer.timings() == {"total": 0.0}
