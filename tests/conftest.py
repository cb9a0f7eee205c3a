"""Shared fixtures."""

from pathlib import Path

import pytest

TESTDATA = Path(__file__).parent / "testdata"


@pytest.fixture(autouse=True)
def _small_plotly(monkeypatch: pytest.MonkeyPatch) -> None:
    """Inline a stub instead of the multi-megabyte plotly.js bundle."""
    monkeypatch.setattr(
        "gotest_timeline.render.plotly_source", lambda: "/* plotly.js */"
    )


@pytest.fixture
def sample_path() -> Path:
    """Recorded `go test -json` output with passes, failures and pauses."""
    return TESTDATA / "sample.jsonl"
