"""Shared fixtures for the sar-cli test suite."""

from __future__ import annotations

import io
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from rich.console import Console

from sar_cli.logging import LogSink


class ManualClock:
    """Deterministic clock advanced explicitly by tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> ManualClock:
    """Return a manual clock starting at 2026-01-01 12:00:00."""
    return ManualClock()


@pytest.fixture
def console_buffer() -> io.StringIO:
    """Capture Rich console output as plain text."""
    return io.StringIO()


@pytest.fixture
def console(console_buffer: io.StringIO) -> Console:
    """Console writing to :func:`console_buffer` without colours or wrapping."""
    return Console(file=console_buffer, width=200, color_system=None)


@pytest.fixture
def sink(tmp_path: Path, console: Console, clock: ManualClock) -> LogSink:
    """Log sink writing into ``tmp_path / 'logs'`` with a captured console."""
    return LogSink(tmp_path / "logs", console=console, clock=clock)
