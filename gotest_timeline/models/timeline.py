"""Models for test executions and the finalized timeline."""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from gotest_timeline.config import format_duration

_EARLIEST = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True, kw_only=True)
class TestName:
    """Identity of a test: its package path and its full (sub)test name."""

    __test__ = False

    package: str = ""
    test: str = ""

    def __str__(self) -> str:
        return f"{self.package}/{self.test}"

    @property
    def short_package(self) -> str:
        """Last ``/``-separated segment of the package path."""
        return self.package.rsplit("/", 1)[-1]

    @property
    def short_label(self) -> str:
        """Label shown in the chart, e.g. ``parser.TestParse/empty``."""
        return f"{self.short_package}.{self.test}"


@dataclass(frozen=True, kw_only=True)
class TestExecution:
    """Interval during which a test was running (or paused).

    Either end may be unset while the stream is still being read.
    """

    __test__ = False

    test: TestName
    start: datetime | None = None
    end: datetime | None = None
    passed: bool = False

    @property
    def duration(self) -> timedelta:
        """``end - start`` when both are set, otherwise zero."""
        if self.start is None or self.end is None:
            return timedelta(0)
        return self.end - self.start


class TestExecutions(dict[TestName, TestExecution]):
    """Executions keyed by test name, created lazily on first reference."""

    __test__ = False

    def modify(
        self,
        test_name: TestName,
        update_fn: Callable[[TestExecution], TestExecution],
    ) -> TestExecution:
        """Replace the execution for ``test_name`` with ``update_fn(current)``."""
        current = self.get(test_name) or TestExecution(test=test_name)
        self[test_name] = updated = update_fn(current)
        return updated

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """JSON-friendly view keyed by ``package/test``."""
        return {
            str(name): {
                "start": execution.start.isoformat() if execution.start else None,
                "end": execution.end.isoformat() if execution.end else None,
                "duration": format_duration(execution.duration),
                "passed": execution.passed,
            }
            for name, execution in self.items()
        }


@dataclass(frozen=True, kw_only=True)
class Timeline:
    """Finalized result of folding a test event stream.

    ``runs`` and ``pauses`` only hold executions that survived the duration
    cutoff; ``start``/``end`` are the observed bounds of every timestamp in
    the stream, including events that were filtered out.
    """

    runs: Mapping[TestName, TestExecution] = field(default_factory=TestExecutions)
    pauses: Mapping[TestName, TestExecution] = field(default_factory=TestExecutions)
    start: datetime | None = None
    end: datetime | None = None
    max_duration: timedelta = timedelta(0)
    had_failures: bool = False
    first_seen: Mapping[TestName, int] = field(default_factory=dict, repr=False)

    @property
    def passed(self) -> int:
        """Number of retained runs that passed."""
        return sum(1 for execution in self.runs.values() if execution.passed)

    @property
    def failed(self) -> int:
        """Number of retained runs that failed or were skipped."""
        return len(self.runs) - self.passed

    @property
    def duration(self) -> timedelta:
        """Wall-clock span of the whole stream."""
        if self.start is None or self.end is None:
            return timedelta(0)
        return self.end - self.start

    def offset(self, moment: datetime | None) -> timedelta:
        """Time elapsed between the start of the stream and ``moment``."""
        if moment is None or self.start is None:
            return timedelta(0)
        return moment - self.start

    def test_names_ordered_by_start(self) -> Sequence[TestName]:
        """Distinct test names ordered by their earliest start.

        Pauses and runs are both considered; names that started at the same
        instant keep the order in which the stream first mentioned them.
        """
        executions = [*self.pauses.values(), *self.runs.values()]
        executions.sort(
            key=lambda execution: (
                execution.start or _EARLIEST,
                self.first_seen.get(execution.test, len(self.first_seen)),
            )
        )
        return list(dict.fromkeys(execution.test for execution in executions))

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly summary, used for debug output."""
        return {
            "runs": TestExecutions(self.runs).to_dict(),
            "pauses": TestExecutions(self.pauses).to_dict(),
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "max_duration": format_duration(self.max_duration),
            "had_failures": self.had_failures,
        }
