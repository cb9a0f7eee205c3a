"""Runtime settings and Go-style duration handling."""

import argparse
import re
from collections.abc import Sequence
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any

from pydantic import BeforeValidator, Field

from gotest_timeline.models.base import Model

DEFAULT_DURATION_CUTOFF = "100µs"

_UNIT_NANOSECONDS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,  # U+00B5 micro sign
    "μs": 1_000,  # U+03BC greek mu
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}

_COMPONENT = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """Parse a duration written the way Go's ``time.ParseDuration`` accepts it.

    Examples: ``"100µs"``, ``"1.5s"``, ``"1m30s"``, ``"-2h"``, ``"0"``.
    Precision below one microsecond is truncated.

    Raises:
        ValueError: If the string is not a valid duration.

    """
    text = value.strip()
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total = Decimal(0)
    position = 0
    while position < len(text):
        match = _COMPONENT.match(text, position)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        number, unit = match.groups()
        total += Decimal(number) * _UNIT_NANOSECONDS[unit]
        position = match.end()

    return timedelta(microseconds=sign * int(total // 1_000))


def _total_microseconds(value: timedelta) -> int:
    return (value.days * 86_400 + value.seconds) * 1_000_000 + value.microseconds


def round_duration(value: timedelta, multiple: timedelta) -> timedelta:
    """Round to the nearest multiple, halfway values away from zero."""
    unit = _total_microseconds(multiple)
    if unit <= 0:
        return value

    micros = _total_microseconds(value)
    quotient, remainder = divmod(abs(micros), unit)
    if remainder * 2 >= unit:
        quotient += 1
    rounded = quotient * unit
    return timedelta(microseconds=rounded if micros >= 0 else -rounded)


def _with_fraction(value: int, unit: int) -> str:
    whole, fraction = divmod(value, unit)
    if not fraction:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{fraction:0{digits}d}".rstrip("0")


def format_duration(value: timedelta) -> str:
    """Format a duration the way Go's ``time.Duration.String`` does.

    ``timedelta(seconds=1)`` -> ``"1s"``, ``timedelta(milliseconds=150)`` ->
    ``"150ms"``, ``timedelta(seconds=62.5)`` -> ``"1m2.5s"``.
    """
    micros = _total_microseconds(value)
    if micros == 0:
        return "0s"

    sign = "-" if micros < 0 else ""
    micros = abs(micros)

    if micros < 1_000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        return f"{sign}{_with_fraction(micros, 1_000)}ms"

    hours, rest = divmod(micros, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    seconds = f"{_with_fraction(rest, 1_000_000)}s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes:
        return f"{sign}{minutes}m{seconds}"
    return f"{sign}{seconds}"


def _coerce_duration(value: Any) -> Any:
    if isinstance(value, str):
        return parse_duration(value)
    return value


GoDuration = Annotated[timedelta, BeforeValidator(_coerce_duration)]


class Settings(Model):
    """Options consulted across the pipeline, built once at startup."""

    debug: bool = False
    dont_pass_output: bool = Field(
        default=False, description="Don't echo consumed input lines to stderr"
    )
    keep_running: bool = Field(
        default=False, description="Keep serving after the browser loaded the page"
    )
    print_html: bool = Field(
        default=False, description="Write HTML to stdout instead of serving it"
    )
    from_file: Path | None = Field(
        default=None, description="Read the event stream from this file"
    )
    duration_cutoff: GoDuration = Field(
        default=parse_duration(DEFAULT_DURATION_CUTOFF),
        description="Executions at or below this duration are not shown",
    )
    go_test_args: Sequence[str] = Field(
        default=(), description="Arguments forwarded to `go test -json`"
    )

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Settings":
        """Build settings from parsed command line arguments."""
        return cls(
            debug=args.debug,
            dont_pass_output=args.dont_pass_output,
            keep_running=args.keep_running,
            print_html=args.print_html,
            from_file=args.from_file,
            duration_cutoff=args.duration_cutoff,
            go_test_args=tuple(args.go_test_args),
        )
