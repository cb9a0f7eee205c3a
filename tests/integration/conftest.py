"""Fixtures for integration tests."""

import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import pytest

from gotest_timeline.sources import GoTestSource


class FakeGoTestFn(Protocol):
    """Protocol for fake `go test` creation function."""

    def __call__(
        self,
        lines: Sequence[bytes],
        *,
        exit_code: int = 0,
        hang: bool = False,
        crash: bool = False,
        shutdown: asyncio.Event | None = None,
    ) -> GoTestSource:
        """Create a source running a script that prints ``lines``."""


@pytest.fixture
def fake_go_test(tmp_path: Path) -> FakeGoTestFn:
    """Return a function creating sources that stand in for `go test -json`.

    The script hangs after printing when ``hang`` is set, and kills itself
    with SIGKILL when ``crash`` is set.
    """

    def _create(
        lines: Sequence[bytes],
        *,
        exit_code: int = 0,
        hang: bool = False,
        crash: bool = False,
        shutdown: asyncio.Event | None = None,
    ) -> GoTestSource:
        script = tmp_path / "go_test.py"
        script.write_text(
            "import os, signal, sys, time\n"
            f"for line in {list(lines)!r}:\n"
            "    sys.stdout.buffer.write(line)\n"
            "    sys.stdout.buffer.flush()\n"
            f"if {hang!r}:\n"
            "    time.sleep(60)\n"
            f"if {crash!r}:\n"
            "    os.kill(os.getpid(), signal.SIGKILL)\n"
            f"sys.exit({exit_code})\n"
        )
        return GoTestSource(
            program=(sys.executable, str(script)),
            shutdown=shutdown if shutdown is not None else asyncio.Event(),
        )

    return _create
