"""Decode lines of `go test -json` output into events."""

import logging
import sys
from collections.abc import AsyncIterable, AsyncIterator
from typing import TextIO

from pydantic import ValidationError

from gotest_timeline.models.event import TestEvent

log = logging.getLogger(__name__)


def decode_line(line: bytes | str, line_number: int) -> TestEvent | None:
    """Decode one line, returning None for anything that is not an event.

    Blank lines, malformed JSON and events without any field set are
    dropped. Build output interleaved with the JSON stream ends up here, so
    none of these cases is an error.
    """
    if not line.strip():
        return None

    try:
        event = TestEvent.model_validate_json(line)
    except ValidationError as exc:
        log.debug(
            "Failed to decode line %d: %s",
            line_number,
            exc.errors(include_url=False, include_input=False),
        )
        return None

    if event.is_empty:
        log.debug("Dropping empty event on line %d", line_number)
        return None

    return event


async def decode_events(
    lines: AsyncIterable[bytes],
    *,
    pass_output: bool = True,
    echo: TextIO | None = None,
) -> AsyncIterator[TestEvent]:
    """Decode a line stream, echoing each consumed line unless told not to.

    Args:
        lines: Raw lines, with or without trailing newlines
        pass_output: Write every consumed line to ``echo``
        echo: Stream to echo to (default: stderr)

    """
    sink = echo if echo is not None else sys.stderr
    line_number = 0

    async for line in lines:
        line_number += 1

        if pass_output:
            sink.write(line.decode(errors="replace").rstrip("\r\n") + "\n")
            sink.flush()

        if (event := decode_line(line, line_number)) is not None:
            yield event
