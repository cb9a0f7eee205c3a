"""Models for the events `go test -json` writes, one per line."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import AfterValidator, BeforeValidator, Field

from gotest_timeline.models.base import Model


class Action(StrEnum):
    """Action verbs the timeline reacts to.

    `go test -json` emits more (``output``, ``start``, ``bench``...); those
    are kept as plain strings on the event and ignored downstream.
    """

    RUN = "run"
    PAUSE = "pause"
    CONT = "cont"
    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


def _parse_time(value: Any) -> Any:
    # fromisoformat truncates nanosecond fractions instead of rejecting them
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    if value is not None and not isinstance(value, datetime):
        raise ValueError(f"Time must be an RFC 3339 string, got {value!r}")
    return value


def _assume_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _none_as_empty(value: Any) -> Any:
    return "" if value is None else value


EventText = Annotated[str, BeforeValidator(_none_as_empty)]


class TestEvent(Model):
    """A single decoded line of test runner output."""

    __test__ = False

    time: Annotated[
        datetime | None,
        BeforeValidator(_parse_time),
        AfterValidator(_assume_utc),
    ] = Field(default=None, alias="Time")
    action: EventText = Field(default="", alias="Action")
    package: EventText = Field(default="", alias="Package")
    test: EventText = Field(default="", alias="Test")

    @property
    def is_empty(self) -> bool:
        """True when every field holds its zero value."""
        return self.time is None and not (self.action or self.package or self.test)
