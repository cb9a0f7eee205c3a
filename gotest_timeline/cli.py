"""CLI entry point for the go test timeline viewer."""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Iterator
from datetime import timedelta
from typing import BinaryIO, TextIO

from gotest_timeline.chart import generate_traces
from gotest_timeline.config import DEFAULT_DURATION_CUTOFF, Settings, parse_duration
from gotest_timeline.decoder import decode_events
from gotest_timeline.errors import (
    BrowserError,
    InputSourceError,
    RenderError,
    SubprocessError,
)
from gotest_timeline.parser import parse
from gotest_timeline.render import render_html
from gotest_timeline.server import serve_html
from gotest_timeline.sources import select_source

USAGE_HINT = (
    "Process closed without input: you should pipe the output of your test "
    "command into this program.\n"
    "For example: go test -json ./... | gotest-timeline"
)


@contextlib.contextmanager
def shutdown_on_signals(shutdown: asyncio.Event) -> Iterator[None]:
    """Set ``shutdown`` on SIGINT/SIGTERM while the block runs."""
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except (NotImplementedError, RuntimeError):
            # not supported on this platform or outside the main thread
            continue
        installed.append(sig)

    try:
        yield
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def run(
    settings: Settings,
    *,
    shutdown: asyncio.Event | None = None,
    stdin: BinaryIO | None = None,
    stdout: TextIO | None = None,
) -> int:
    """Read the event stream, then print or serve the chart; return exit code."""
    log = logging.getLogger("gotest_timeline")
    shutdown = shutdown if shutdown is not None else asyncio.Event()
    output = stdout if stdout is not None else sys.stdout

    with shutdown_on_signals(shutdown):
        try:
            source = select_source(settings, shutdown, stdin=stdin)
        except InputSourceError as exc:
            log.error("%s", exc)
            return 1

        try:
            events = decode_events(
                source.lines(), pass_output=not settings.dont_pass_output
            )
            timeline = await parse(events, settings.duration_cutoff)
        except SubprocessError as exc:
            log.error("%s", exc)
            return 1
        finally:
            await source.close()

        if shutdown.is_set():
            print(USAGE_HINT, file=output)
            return 0

        traces = generate_traces(timeline)
        log.info(
            "Parsed %d passed and %d failed test(s)", timeline.passed, timeline.failed
        )

        if settings.print_html:
            try:
                html = render_html(timeline, traces, call_on_load=False)
            except RenderError as exc:
                log.error("%s", exc)
                return 1
            output.write(html)
            output.flush()
        else:
            try:
                await serve_html(
                    timeline,
                    traces,
                    keep_running=settings.keep_running,
                    shutdown=shutdown,
                    access_log=settings.debug,
                )
            except OSError as exc:
                log.error("Error serving chart: %s", exc)
                return 1
            except BrowserError as exc:
                log.error("%s", exc)
                return 1

    if source.exit_code != 0:
        return source.exit_code
    if timeline.had_failures:
        return 1
    return 0


def _duration_argument(value: str) -> timedelta:
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="gotest-timeline",
        description=(
            "Visualize `go test -json` output as a timeline. Reads from "
            "--from-file, else piped stdin, else runs `go test -json` with the "
            "remaining arguments."
        ),
    )
    parser.add_argument("--debug", action="store_true", help="enable debug mode")
    parser.add_argument(
        "--dont-pass-output",
        action="store_true",
        help="don't print input lines to stderr as they are consumed",
    )
    parser.add_argument(
        "--keep-running",
        action="store_true",
        help="keep serving after the browser opened the page",
    )
    parser.add_argument(
        "--print-html",
        action="store_true",
        help="print html to stdout instead of opening a browser",
    )
    parser.add_argument(
        "--from-file",
        default=None,
        help="read input from a file instead of stdin",
    )
    parser.add_argument(
        "--duration-cutoff",
        type=_duration_argument,
        default=DEFAULT_DURATION_CUTOFF,
        help=(
            "threshold for test duration cutoff, under which tests are not "
            "shown in the chart (default: %(default)s)"
        ),
    )
    parser.add_argument(
        "go_test_args",
        nargs=argparse.REMAINDER,
        help="arguments passed to `go test -json` when nothing is piped in",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    args = build_parser().parse_args(argv)
    if args.go_test_args[:1] == ["--"]:
        args.go_test_args = args.go_test_args[1:]
    return args


def main() -> None:
    """CLI entry point."""
    args = parse_args()
    settings = Settings.from_args(args)

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(run(settings))
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
