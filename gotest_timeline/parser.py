"""Fold test events into a timeline of runs and pauses."""

import json
import logging
from collections.abc import AsyncIterable, Iterable
from dataclasses import replace
from datetime import datetime, timedelta

from gotest_timeline.config import format_duration
from gotest_timeline.decoder import decode_line
from gotest_timeline.models.event import Action, TestEvent
from gotest_timeline.models.timeline import (
    TestExecution,
    TestExecutions,
    TestName,
    Timeline,
)

log = logging.getLogger(__name__)


class TimelineBuilder:
    """Mutable state accumulated while reading the event stream.

    Runs and pauses are tracked per test name. A test paused several times
    only keeps its last pause interval; a ``cont`` moves the run start so
    the run bar covers only the part after the last resume.
    """

    def __init__(self) -> None:
        self.runs = TestExecutions()
        self.pauses = TestExecutions()
        self.start: datetime | None = None
        self.end: datetime | None = None
        self.had_failures = False
        self._first_seen: dict[TestName, int] = {}

    def apply(self, event: TestEvent) -> None:
        """Apply a single event to the runs and pauses."""
        moment = event.time
        if moment is not None:
            if self.start is None or moment < self.start:
                self.start = moment
            if self.end is None or moment > self.end:
                self.end = moment

        test_name = TestName(package=event.package, test=event.test)
        self._first_seen.setdefault(test_name, len(self._first_seen))

        match event.action:
            case Action.RUN:
                self.runs.modify(test_name, lambda te: replace(te, start=moment))
            case Action.PAUSE:
                self.pauses.modify(test_name, lambda te: replace(te, start=moment))
            case Action.CONT:
                self.pauses.modify(test_name, lambda te: replace(te, end=moment))
                self.runs.modify(test_name, lambda te: replace(te, start=moment))
            case Action.PASS | Action.FAIL | Action.SKIP:
                passed = event.action == Action.PASS
                self.runs.modify(
                    test_name, lambda te: replace(te, end=moment, passed=passed)
                )
                # packages without test files report a package-level skip
                if event.action == Action.FAIL or (
                    event.action == Action.SKIP and event.test
                ):
                    self.had_failures = True

    def finalize(self, cutoff: timedelta) -> Timeline:
        """Drop executions that cannot be drawn and compute the slowest run."""
        pauses = _retain_visible(self.pauses, cutoff, "pause")
        runs = _retain_visible(self.runs, cutoff, "run")

        max_duration = max(
            (execution.duration for execution in runs.values()),
            default=timedelta(0),
        )

        for execution in pauses.values():
            log.debug(
                "Parsed test pause %s: paused from %s to %s for %s",
                execution.test,
                execution.start,
                execution.end,
                format_duration(execution.duration),
            )
        for execution in runs.values():
            log.debug(
                "Parsed test %s: ran from %s to %s for %s, passed=%s",
                execution.test,
                execution.start,
                execution.end,
                format_duration(execution.duration),
                execution.passed,
            )
        log.debug("Parsed stream from %s to %s", self.start, self.end)

        return Timeline(
            runs=runs,
            pauses=pauses,
            start=self.start,
            end=self.end,
            max_duration=max_duration,
            had_failures=self.had_failures,
            first_seen=dict(self._first_seen),
        )


def _retain_visible(
    executions: TestExecutions, cutoff: timedelta, kind: str
) -> TestExecutions:
    retained = TestExecutions()

    for test_name, execution in executions.items():
        duration = execution.duration
        if duration == timedelta(0):
            log.debug("Removed incomplete test %s %s", kind, test_name)
        elif duration <= cutoff:
            log.debug(
                "Removed test %s %s below threshold (%s)",
                kind,
                test_name,
                format_duration(duration),
            )
        elif not test_name.test:
            log.debug("Removed test %s without test name (%s)", kind, test_name)
        else:
            retained[test_name] = execution

    return retained


async def parse(events: AsyncIterable[TestEvent], cutoff: timedelta) -> Timeline:
    """Read every event from the stream and return the finalized timeline."""
    builder = TimelineBuilder()
    async for event in events:
        builder.apply(event)

    timeline = builder.finalize(cutoff)
    if log.isEnabledFor(logging.DEBUG):
        log.debug("Timeline: %s", json.dumps(timeline.to_dict(), indent=2))
    return timeline


def parse_lines(lines: Iterable[bytes | str], cutoff: timedelta) -> Timeline:
    """Parse already-read lines without echoing them."""
    builder = TimelineBuilder()
    for line_number, line in enumerate(lines, start=1):
        if (event := decode_line(line, line_number)) is not None:
            builder.apply(event)
    return builder.finalize(cutoff)
