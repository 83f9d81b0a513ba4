"""Tests for the leveled, rotating log sink."""
from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path

import pytest
from rich.console import Console

from sar_cli.logging import LogLevel, LogSink, format_record


def test_format_record_layout() -> None:
    """Records render as ``[timestamp] [LEVEL] message args``."""
    line = format_record(
        LogLevel.WARN,
        "disk nearly full",
        ("sda1", 93),
        datetime(2026, 3, 4, 5, 6, 7),
    )

    assert line == "[2026-03-04 05:06:07] [WARN] disk nearly full sda1 93"


def test_format_record_renders_mappings_as_json() -> None:
    """Structured arguments are rendered as indented JSON."""
    line = format_record(
        LogLevel.INFO,
        "payload:",
        ({"path": Path("/tmp/x")},),
        datetime(2026, 1, 1),
    )

    assert line.startswith("[2026-01-01 00:00:00] [INFO] payload: {")
    assert '"path": "/tmp/x"' in line


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("error", LogLevel.ERROR),
        ("WARN", LogLevel.WARN),
        ("warning", LogLevel.WARN),
        ("Trace", LogLevel.TRACE),
        ("bogus", LogLevel.INFO),
        (3, LogLevel.DEBUG),
        (99, LogLevel.TRACE),
        (LogLevel.ERROR, LogLevel.ERROR),
    ],
)
def test_level_parsing(value: object, expected: LogLevel) -> None:
    """Names and numbers map to levels; unknown names fall back to INFO."""
    assert LogLevel.parse(value) is expected  # type: ignore[arg-type]


def test_level_filtering(sink: LogSink) -> None:
    """Only records at or above the configured severity are written."""
    sink.set_level("warn")

    sink.info("hidden info")
    sink.debug("hidden debug")
    sink.warn("visible warning")

    content = sink.log_file.read_text(encoding="utf-8")
    assert "visible warning" in content
    assert "hidden" not in content


def test_trace_level_emits_everything(sink: LogSink) -> None:
    """TRACE is the most verbose level."""
    sink.set_level(LogLevel.TRACE)

    sink.trace("deep detail")
    sink.debug("detail")

    content = sink.log_file.read_text(encoding="utf-8")
    assert "[TRACE] deep detail" in content
    assert "[DEBUG] detail" in content


def test_errors_go_to_error_file_only(sink: LogSink) -> None:
    """ERROR records are appended to the error log, not the general log."""
    sink.info("routine")
    sink.error("exploded", "code", 7)

    general = sink.log_file.read_text(encoding="utf-8")
    errors = sink.error_log_file.read_text(encoding="utf-8")
    assert "routine" in general
    assert "exploded" not in general
    assert errors == "[2026-01-01 12:00:00] [ERROR] exploded code 7\n"


def test_console_output_and_silence(sink: LogSink, console_buffer: io.StringIO) -> None:
    """Console output is literal text and can be silenced independently."""
    sink.info("[bold]not markup[/bold]")
    sink.set_silent(True)
    sink.info("quiet message")

    output = console_buffer.getvalue()
    assert "[INFO] [bold]not markup[/bold]" in output
    assert "quiet message" not in output
    assert "quiet message" in sink.log_file.read_text(encoding="utf-8")


def test_success_is_logged_at_info(sink: LogSink, console_buffer: io.StringIO) -> None:
    """success() writes an INFO record to the general log."""
    sink.success("Configuration updated", {"key": "a"})

    assert "[INFO] Configuration updated" in sink.log_file.read_text(encoding="utf-8")
    assert "Configuration updated" in console_buffer.getvalue()


def test_file_logging_toggle(sink: LogSink) -> None:
    """Disabling file logging stops writes without affecting the console."""
    sink.set_file_logging(False)
    sink.info("console only")

    assert sink.file_logging_enabled is False
    assert not sink.log_file.exists()

    sink.set_file_logging(True)
    sink.info("back on disk")
    assert "back on disk" in sink.log_file.read_text(encoding="utf-8")


def test_sink_without_directory_is_console_only(console: Console) -> None:
    """A sink without a log directory never touches the filesystem."""
    sink = LogSink(None, console=console)

    sink.error("still fine")

    assert sink.file_logging_enabled is False
    assert sink.log_file is None


def test_sink_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    console: Console,
) -> None:
    """The sink gracefully disables file logging when the directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    sink = LogSink(log_dir, console=console)
    assert sink.file_logging_enabled is False

    sink.info("does not raise")
    sink.error("does not raise either")


def test_sink_disables_after_write_failure(
    sink: LogSink,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures disable file logging so subsequent writes are skipped."""
    log_path = sink.log_file

    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == log_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_open)

    sink.info("first")
    assert sink.file_logging_enabled is False

    sink.info("second")
    sink.error("third")
    assert not sink.error_log_file.exists()


def test_rotation_triggers_once_when_threshold_exceeded(
    tmp_path: Path,
    console: Console,
    clock: object,
) -> None:
    """Crossing the size threshold rotates exactly once and starts an empty file."""
    sink = LogSink(tmp_path / "logs", console=console, clock=clock, max_bytes=200, silent=True)

    writes = 0
    while not sink.archives(sink.log_file):
        sink.info(f"record {writes:03d}")
        writes += 1
        assert writes < 100

    archives = sink.archives(sink.log_file)
    assert len(archives) == 1
    assert archives[0].name == "sar-cli_2026-01-01_12-00-00.log"
    assert archives[0].stat().st_size > 200
    assert sink.log_file.exists()
    assert sink.log_file.stat().st_size == 0
    assert not sink.archives(sink.error_log_file)


def test_retention_keeps_newest_archives(
    tmp_path: Path,
    console: Console,
    clock: object,
) -> None:
    """After N+k rotations only the newest N archives remain."""
    sink = LogSink(
        tmp_path / "logs",
        console=console,
        clock=clock,
        max_bytes=1,
        retention=3,
        silent=True,
    )

    stamps = []
    for index in range(5):
        clock.advance(60)  # type: ignore[attr-defined]
        stamps.append(clock().strftime("%Y-%m-%d_%H-%M-%S"))  # type: ignore[operator]
        sink.info(f"record {index}")

    archives = sink.archives(sink.log_file)
    assert [path.name for path in archives] == [
        f"sar-cli_{stamp}.log" for stamp in reversed(stamps[-3:])
    ]
    assert len(list((tmp_path / "logs").glob("sar-cli_*.log"))) == 3


def test_error_log_rotates_independently(
    tmp_path: Path,
    console: Console,
    clock: object,
) -> None:
    """Each category keeps its own archives."""
    sink = LogSink(tmp_path / "logs", console=console, clock=clock, max_bytes=1, silent=True)

    sink.error("boom")

    assert [path.name for path in sink.archives(sink.error_log_file)] == [
        "error_2026-01-01_12-00-00.log"
    ]
    assert sink.archives(sink.log_file) == []


def test_rotation_within_same_second_uses_counter(sink: LogSink) -> None:
    """Rotations sharing a timestamp get ordered counter suffixes."""
    sink.info("one")
    first = sink.rotate(sink.log_file)
    sink.info("two")
    second = sink.rotate(sink.log_file)

    assert first.name == "sar-cli_2026-01-01_12-00-00.log"
    assert second.name == "sar-cli_2026-01-01_12-00-00_1.log"
    assert sink.archives(sink.log_file) == [second, first]


def test_archives_ignore_unrelated_files(sink: LogSink) -> None:
    """Only files matching the archive naming scheme are considered."""
    log_dir = sink.log_dir
    (log_dir / "sar-cli_notes.log").write_text("x", encoding="utf-8")
    (log_dir / "sar-cli_2026-01-01_00-00-00.txt").write_text("x", encoding="utf-8")
    (log_dir / "sar-cli_2025-12-31_23-59-59.log").write_text("x", encoding="utf-8")

    assert [path.name for path in sink.archives(sink.log_file)] == [
        "sar-cli_2025-12-31_23-59-59.log"
    ]


def test_clear_logs_keeps_archives(sink: LogSink) -> None:
    """clear_logs removes the active files but leaves archives alone."""
    sink.info("general")
    sink.error("error")
    archive = sink.rotate(sink.log_file)
    sink.info("after rotation")

    removed = sink.clear_logs()

    assert set(removed) == {sink.log_file, sink.error_log_file}
    assert not sink.log_file.exists()
    assert not sink.error_log_file.exists()
    assert archive.exists()


def test_invalid_limits_rejected(tmp_path: Path) -> None:
    """Rotation limits must be sensible."""
    with pytest.raises(ValueError):
        LogSink(tmp_path, max_bytes=0)
    with pytest.raises(ValueError):
        LogSink(tmp_path, retention=-1)
