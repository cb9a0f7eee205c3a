"""Tests for CLI module."""

import asyncio
import io
import logging
import os
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from gotest_timeline.cli import USAGE_HINT, parse_args, run
from gotest_timeline.config import Settings
from gotest_timeline.errors import BrowserError
from gotest_timeline.sources import LineSource
from gotest_timeline.testing.payloads import run_lines, stream


@dataclass(kw_only=True)
class StaticSource(LineSource):
    """In-memory line source with a fixed exit code."""

    content: Sequence[bytes] = ()
    code: int = 0

    @property
    def exit_code(self) -> int:
        return self.code

    async def lines(self) -> AsyncIterator[bytes]:
        for line in self.content:
            yield line


def write_events(path: Path, lines: Sequence[bytes]) -> Path:
    """Write event lines to ``path``."""
    path.write_bytes(b"".join(lines))
    return path


class TestParseArgs:
    """Tests for parse_args."""

    def test_defaults(self) -> None:
        """Every flag has a default."""
        settings = Settings.from_args(parse_args([]))

        assert not settings.debug
        assert not settings.print_html
        assert settings.from_file is None
        assert list(settings.go_test_args) == []
        assert settings.duration_cutoff == timedelta(microseconds=100)

    def test_flags(self) -> None:
        """Flags map onto settings."""
        args = parse_args(
            [
                "--debug",
                "--dont-pass-output",
                "--keep-running",
                "--print-html",
                "--from-file",
                "events.json",
                "--duration-cutoff",
                "1.5ms",
            ]
        )
        settings = Settings.from_args(args)

        assert settings.debug
        assert settings.dont_pass_output
        assert settings.keep_running
        assert settings.print_html
        assert settings.from_file == Path("events.json")
        assert settings.duration_cutoff == timedelta(microseconds=1500)

    def test_remaining_arguments_go_to_go_test(self) -> None:
        """Positional arguments and anything after them are forwarded."""
        args = parse_args(["--print-html", "./...", "-run", "TestParse", "-v"])

        assert args.print_html
        assert args.go_test_args == ["./...", "-run", "TestParse", "-v"]

    def test_strips_separator(self) -> None:
        """A leading ``--`` separates our flags from go test flags."""
        args = parse_args(["--", "-count=1", "./..."])

        assert args.go_test_args == ["-count=1", "./..."]

    def test_invalid_duration_cutoff(self) -> None:
        """Malformed durations are rejected by the parser."""
        with pytest.raises(SystemExit) as exc_info:
            parse_args(["--duration-cutoff", "soon"])

        assert exc_info.value.code == 2


class TestRun:
    """Tests for run."""

    async def test_print_html(self, tmp_path: Path) -> None:
        """Writes the page to stdout and exits 0 when everything passed."""
        path = write_events(
            tmp_path / "events.json",
            stream(run_lines(test="TestA"), run_lines(test="TestB")),
        )
        stdout = io.StringIO()

        exit_code = await run(
            Settings(from_file=path, print_html=True, dont_pass_output=True),
            stdin=io.BytesIO(),
            stdout=stdout,
        )

        html = stdout.getvalue()
        assert exit_code == 0
        assert "<title>Test Results (1s 2 passed, 0 failed)</title>" in html
        assert "fetch('/loaded')" not in html

    async def test_failures_exit_non_zero(self, tmp_path: Path) -> None:
        """A failed test makes the run exit 1."""
        path = write_events(
            tmp_path / "events.json",
            stream(run_lines(test="TestA"), run_lines(test="TestB", result="fail")),
        )
        stdout = io.StringIO()

        exit_code = await run(
            Settings(from_file=path, print_html=True, dont_pass_output=True),
            stdin=io.BytesIO(),
            stdout=stdout,
        )

        assert exit_code == 1
        assert "1 passed, 1 failed" in stdout.getvalue()

    async def test_skips_exit_non_zero(self, tmp_path: Path) -> None:
        """A skipped test did not pass, so the run exits 1."""
        path = write_events(tmp_path / "events.json", run_lines(result="skip"))
        stdout = io.StringIO()

        exit_code = await run(
            Settings(from_file=path, print_html=True, dont_pass_output=True),
            stdin=io.BytesIO(),
            stdout=stdout,
        )

        assert exit_code == 1
        assert "0 passed, 1 failed" in stdout.getvalue()

    async def test_echoes_input_to_stderr(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Consumed lines are passed through to stderr."""
        path = write_events(tmp_path / "events.json", [b"building...\n"])

        await run(
            Settings(from_file=path, print_html=True),
            stdin=io.BytesIO(),
            stdout=io.StringIO(),
        )

        assert "building..." in capsys.readouterr().err

    async def test_missing_file(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An unreadable input file is a startup error."""
        with caplog.at_level(logging.ERROR):
            exit_code = await run(
                Settings(from_file=tmp_path / "missing.json", print_html=True),
                stdin=io.BytesIO(),
                stdout=io.StringIO(),
            )

        assert exit_code == 1
        assert "Error opening file" in caplog.text

    async def test_file_and_piped_stdin(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Reading a file while stdin is piped is refused."""
        path = write_events(tmp_path / "events.json", run_lines())
        read_fd, write_fd = os.pipe()

        with (
            os.fdopen(read_fd, "rb") as stdin,
            os.fdopen(write_fd, "wb"),
            caplog.at_level(logging.ERROR),
        ):
            exit_code = await run(
                Settings(from_file=path, print_html=True),
                stdin=stdin,
                stdout=io.StringIO(),
            )

        assert exit_code == 1
        assert "Can't read from file and stdin at the same time" in caplog.text

    async def test_shutdown_prints_usage_hint(self, tmp_path: Path) -> None:
        """Interrupting before the input ended prints a hint and exits 0."""
        path = write_events(tmp_path / "events.json", run_lines())
        shutdown = asyncio.Event()
        shutdown.set()
        stdout = io.StringIO()

        exit_code = await run(
            Settings(from_file=path, print_html=True),
            shutdown=shutdown,
            stdin=io.BytesIO(),
            stdout=stdout,
        )

        assert exit_code == 0
        assert stdout.getvalue() == USAGE_HINT + "\n"

    async def test_serves_chart(self, tmp_path: Path) -> None:
        """Without --print-html the chart is served."""
        path = write_events(tmp_path / "events.json", run_lines(test="TestA"))
        stdout = io.StringIO()

        with patch("gotest_timeline.cli.serve_html", new=AsyncMock()) as mock_serve:
            exit_code = await run(
                Settings(from_file=path, keep_running=True, dont_pass_output=True),
                stdin=io.BytesIO(),
                stdout=stdout,
            )

        assert exit_code == 0
        assert stdout.getvalue() == ""
        mock_serve.assert_awaited_once()
        timeline, traces = mock_serve.await_args.args
        assert timeline.passed == 1
        assert len(traces) == 1
        assert mock_serve.await_args.kwargs["keep_running"] is True

    async def test_browser_error(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Failing to launch a browser exits 1."""
        path = write_events(tmp_path / "events.json", run_lines())

        with (
            patch(
                "gotest_timeline.cli.serve_html",
                new=AsyncMock(side_effect=BrowserError("No browser available")),
            ),
            caplog.at_level(logging.ERROR),
        ):
            exit_code = await run(
                Settings(from_file=path, dont_pass_output=True),
                stdin=io.BytesIO(),
                stdout=io.StringIO(),
            )

        assert exit_code == 1
        assert "No browser available" in caplog.text

    async def test_propagates_go_test_exit_code(self) -> None:
        """The exit code of go test wins over the observed results."""
        source = StaticSource(
            shutdown=asyncio.Event(),
            content=run_lines(result="fail"),
            code=2,
        )

        with patch("gotest_timeline.cli.select_source", return_value=source):
            exit_code = await run(
                Settings(print_html=True, dont_pass_output=True),
                stdout=io.StringIO(),
            )

        assert exit_code == 2
