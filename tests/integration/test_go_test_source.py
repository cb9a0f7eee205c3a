"""Integration tests for the `go test -json` subprocess source."""

import asyncio
import io
from pathlib import Path
from unittest.mock import patch

import pytest

from gotest_timeline.cli import run
from gotest_timeline.config import Settings
from gotest_timeline.errors import SubprocessError
from gotest_timeline.sources import GoTestSource
from gotest_timeline.testing.payloads import run_lines, stream

from .conftest import FakeGoTestFn


class TestGoTestSource:
    """Tests for GoTestSource against a real subprocess."""

    async def test_yields_stdout_lines(self, fake_go_test: FakeGoTestFn) -> None:
        """Streams every stdout line and records the exit code."""
        lines = run_lines(test="TestA")
        source = fake_go_test(lines, exit_code=3)

        received = [line async for line in source.lines()]
        await source.close()

        assert received == lines
        assert source.exit_code == 3

    async def test_forwards_arguments(self, fake_go_test: FakeGoTestFn) -> None:
        """Arguments are appended to the command line."""
        source = fake_go_test([])
        source.args = ("./...", "-run", "TestA")

        assert source.command[-3:] == ["./...", "-run", "TestA"]

    async def test_missing_program(self, tmp_path: Path) -> None:
        """A program that cannot be started raises SubprocessError."""
        source = GoTestSource(
            program=(str(tmp_path / "no-such-go"), "test", "-json"),
            shutdown=asyncio.Event(),
        )

        with pytest.raises(SubprocessError, match="Error running go test"):
            async for _ in source.lines():
                pass

        await source.close()

    async def test_shutdown_kills_subprocess(self, fake_go_test: FakeGoTestFn) -> None:
        """Shutdown stops reading and kills a hanging subprocess."""
        shutdown = asyncio.Event()
        source = fake_go_test(run_lines(), hang=True, shutdown=shutdown)

        received = []
        async for line in source.lines():
            received.append(line)
            shutdown.set()
        await asyncio.wait_for(source.close(), 10)

        assert len(received) == 1
        assert source.exit_code == 0

    async def test_killed_by_signal(self, fake_go_test: FakeGoTestFn) -> None:
        """A subprocess killed from outside is reported as an error."""
        source = fake_go_test(run_lines(), crash=True)

        with pytest.raises(SubprocessError, match="killed by signal 9"):
            async for _ in source.lines():
                pass

        await source.close()


class TestRunWithGoTest:
    """End-to-end runs fed by a subprocess."""

    async def test_exit_code_of_go_test(self, fake_go_test: FakeGoTestFn) -> None:
        """The exit code of go test is propagated."""
        source = fake_go_test(
            stream(run_lines(test="TestA"), run_lines(test="TestB", result="fail")),
            exit_code=3,
        )
        stdout = io.StringIO()

        with patch("gotest_timeline.cli.select_source", return_value=source):
            exit_code = await run(
                Settings(print_html=True, dont_pass_output=True), stdout=stdout
            )

        assert exit_code == 3
        assert "1 passed, 1 failed" in stdout.getvalue()

    async def test_missing_go(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A missing go binary is reported and exits 1."""
        source = GoTestSource(
            program=(str(tmp_path / "no-such-go"),), shutdown=asyncio.Event()
        )

        with patch("gotest_timeline.cli.select_source", return_value=source):
            exit_code = await run(Settings(print_html=True), stdout=io.StringIO())

        assert exit_code == 1
        assert "Error running go test" in caplog.text

    async def test_killed_go_test(
        self, fake_go_test: FakeGoTestFn, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A go test killed by a signal exits 1 without rendering."""
        source = fake_go_test(run_lines(), crash=True)
        stdout = io.StringIO()

        with patch("gotest_timeline.cli.select_source", return_value=source):
            exit_code = await run(
                Settings(print_html=True, dont_pass_output=True), stdout=stdout
            )

        assert exit_code == 1
        assert stdout.getvalue() == ""
        assert "go test was killed by signal 9" in caplog.text
