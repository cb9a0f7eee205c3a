"""Project a timeline onto Plotly bar traces, one per test."""

import logging
import math
from collections.abc import Sequence
from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, Field

from gotest_timeline.config import format_duration, round_duration
from gotest_timeline.models.timeline import TestExecution, Timeline

log = logging.getLogger(__name__)

PAUSE_COLOR = "rgba(108,122,137,1)"
FAILED_COLOR = "rgba(255, 0, 0, 100)"
BAR_WIDTH = 0.9

_AXIS_RESOLUTION = timedelta(milliseconds=10)
_LABEL_RESOLUTION = timedelta(milliseconds=1)


class Marker(BaseModel):
    """Per-segment bar colors."""

    color: list[str] = Field(default_factory=list)


class PlotlyTrace(BaseModel):
    """A horizontal bar trace as understood by ``Plotly.newPlot``.

    Every list holds one entry per segment; a trace has an optional pause
    segment followed by the run segment.
    """

    type: Literal["bar"] = "bar"
    y: list[str] = Field(default_factory=list)
    x: list[float] = Field(default_factory=list)
    orientation: Literal["h"] = "h"
    base: list[float] = Field(default_factory=list)
    text: list[str] = Field(default_factory=list)
    textposition: str = "inside"
    width: list[float] = Field(default_factory=list)
    marker: Marker = Field(default_factory=Marker)
    hoverinfo: str = "text"

    def add(
        self,
        label: str,
        y: str,
        start: timedelta,
        duration: timedelta,
        color: str,
    ) -> None:
        """Append a segment starting ``start`` after the run began."""
        self.y.append(y)
        self.x.append(round_duration(duration, _AXIS_RESOLUTION).total_seconds())
        self.base.append(round_duration(start, _AXIS_RESOLUTION).total_seconds())
        self.text.append(label)
        self.width.append(BAR_WIDTH)
        self.marker.color.append(color)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def float_to_color(value: float) -> str:
    """Map ``[0, 1]`` onto a gradient from cool (fast) to warm (slow)."""
    value = max(0.0, min(1.0, value))

    r = _round_half_up(60 * value)
    g = _round_half_up(180 * (1 - value))
    b = _round_half_up(200 + 30 * value)

    return f"rgba({r}, {g}, {b}, 100)"


def duration_to_color(execution: TestExecution, max_duration: timedelta) -> str:
    """Red for failed runs, otherwise a gradient position by relative duration."""
    if not execution.passed:
        return FAILED_COLOR

    if max_duration <= timedelta(0):
        return float_to_color(0.0)

    return float_to_color(execution.duration / max_duration)


def _rounded_label(duration: timedelta) -> str:
    return format_duration(round_duration(duration, _LABEL_RESOLUTION))


def generate_traces(timeline: Timeline) -> Sequence[PlotlyTrace]:
    """Build one trace per executed test, earliest start first.

    Tests that only ever paused are left out.
    """
    traces: list[PlotlyTrace] = []

    for test_name in timeline.test_names_ordered_by_start():
        run = timeline.runs.get(test_name)
        if run is None:
            log.debug("Test %s was not executed", test_name)
            continue

        label = test_name.short_label
        y = label if run.passed else f"{label} (failed)"
        trace = PlotlyTrace()

        if (pause := timeline.pauses.get(test_name)) is not None:
            start_after = timeline.offset(pause.start)
            log.debug(
                "Test %s was paused %s after start for %s",
                test_name,
                start_after,
                pause.duration,
            )
            trace.add(
                f"{label} PAUSE ({_rounded_label(pause.duration)})",
                y,
                start_after,
                pause.duration,
                PAUSE_COLOR,
            )

        start_after = timeline.offset(run.start)
        log.debug(
            "Test %s was executed %s after start for %s",
            test_name,
            start_after,
            run.duration,
        )
        trace.add(
            f"{label} RUN ({_rounded_label(run.duration)})",
            y,
            start_after,
            run.duration,
            duration_to_color(run, timeline.max_duration),
        )

        traces.append(trace)

    return traces
