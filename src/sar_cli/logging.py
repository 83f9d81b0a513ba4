"""Leveled console and file logging for sar-cli.

Every record is rendered once as::

    [2026-01-31 12:00:00] [INFO] message arg1 arg2

and written to up to two sinks:

* the console (Rich, coloured per level) unless the sink is silenced;
* a log file under the log directory. ``ERROR`` records go to ``error.log``;
  everything else goes to ``sar-cli.log``.

After each append the active file is checked against ``max_bytes``. An
oversized file is renamed to ``<stem>_<YYYY-MM-DD_HH-MM-SS><ext>``, a fresh
active file is started, and archives beyond ``retention`` are removed oldest
first. Any filesystem failure disables file logging for the rest of the
process; logging never raises into the caller.
"""
from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from enum import IntEnum
from pathlib import Path

from rich.console import Console

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_RETENTION = 10
DEFAULT_LOG_NAME = "sar-cli.log"
DEFAULT_ERROR_LOG_NAME = "error.log"

RECORD_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
ARCHIVE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


class LogLevel(IntEnum):
    """Numeric log levels; lower values are more severe."""

    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3
    TRACE = 4

    @classmethod
    def parse(cls, value: LogLevel | int | str) -> LogLevel:
        """Return the level for *value*; unknown names fall back to ``INFO``."""
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, int):
            return cls(max(cls.ERROR, min(cls.TRACE, value)))
        name = value.strip().upper()
        if name == "WARNING":
            name = "WARN"
        return cls.__members__.get(name, cls.INFO)


LEVEL_STYLES: dict[LogLevel, str] = {
    LogLevel.ERROR: "red",
    LogLevel.WARN: "yellow",
    LogLevel.INFO: "blue",
    LogLevel.DEBUG: "bright_black",
    LogLevel.TRACE: "bright_black",
}
SUCCESS_STYLE = "green"


def _render_arg(arg: object) -> str:
    if isinstance(arg, (Mapping, list, tuple)):
        return json.dumps(arg, indent=2, default=str)
    return str(arg)


def format_record(
    level: LogLevel,
    message: str,
    args: Sequence[object],
    timestamp: datetime,
) -> str:
    """Render a single log line."""
    rendered_args = " ".join(_render_arg(arg) for arg in args)
    suffix = f" {rendered_args}" if rendered_args else ""
    return f"[{timestamp.strftime(RECORD_TIMESTAMP_FORMAT)}] [{level.name}] {message}{suffix}"


class LogSink:
    """Dual-sink logger with size-based rotation and count-based retention."""

    def __init__(
        self,
        log_dir: Path | None,
        *,
        level: LogLevel | int | str = LogLevel.INFO,
        silent: bool = False,
        file_logging: bool = True,
        console: Console | None = None,
        max_bytes: int = DEFAULT_MAX_BYTES,
        retention: int = DEFAULT_RETENTION,
        clock: Callable[[], datetime] | None = None,
        log_name: str = DEFAULT_LOG_NAME,
        error_log_name: str = DEFAULT_ERROR_LOG_NAME,
    ) -> None:
        if max_bytes < 1:
            raise ValueError("max_bytes must be a positive integer.")
        if retention < 0:
            raise ValueError("retention must not be negative.")
        self.level = LogLevel.parse(level)
        self.silent = silent
        self.max_bytes = max_bytes
        self.retention = retention
        self._console = console or Console()
        self._clock = clock or datetime.now
        self._log_dir = log_dir.expanduser() if log_dir is not None else None
        self._log_file = self._log_dir / log_name if self._log_dir is not None else None
        self._error_log_file = (
            self._log_dir / error_log_name if self._log_dir is not None else None
        )
        self._file_enabled = file_logging and self._ensure_log_dir()

    def _ensure_log_dir(self) -> bool:
        if self._log_dir is None:
            return False
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return True

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    @property
    def log_dir(self) -> Path | None:
        """Directory holding the active and archived log files."""
        return self._log_dir

    @property
    def log_file(self) -> Path | None:
        """Active general log file."""
        return self._log_file

    @property
    def error_log_file(self) -> Path | None:
        """Active error-only log file."""
        return self._error_log_file

    @property
    def file_logging_enabled(self) -> bool:
        """Whether records are currently appended to disk."""
        return self._file_enabled

    def set_level(self, level: LogLevel | int | str) -> None:
        """Change the most verbose level that is still emitted."""
        self.level = LogLevel.parse(level)

    def set_silent(self, silent: bool) -> None:
        """Enable or disable console output."""
        self.silent = silent

    def set_file_logging(self, enabled: bool) -> None:
        """Enable or disable the file sink."""
        self._file_enabled = enabled and self._ensure_log_dir()

    def is_enabled_for(self, level: LogLevel) -> bool:
        """Return ``True`` when records at *level* would be emitted."""
        return level <= self.level

    # ------------------------------------------------------------------
    # Emitting
    # ------------------------------------------------------------------
    def log(self, level: LogLevel | int | str, message: str, *args: object) -> None:
        """Emit *message* at *level* to the enabled sinks."""
        resolved = LogLevel.parse(level)
        if not self.is_enabled_for(resolved):
            return
        line = format_record(resolved, message, args, self._clock())
        self._emit_console(line, LEVEL_STYLES[resolved])
        self._write_to_file(line, is_error=resolved is LogLevel.ERROR)

    def error(self, message: str, *args: object) -> None:
        self.log(LogLevel.ERROR, message, *args)

    def warn(self, message: str, *args: object) -> None:
        self.log(LogLevel.WARN, message, *args)

    def info(self, message: str, *args: object) -> None:
        self.log(LogLevel.INFO, message, *args)

    def debug(self, message: str, *args: object) -> None:
        self.log(LogLevel.DEBUG, message, *args)

    def trace(self, message: str, *args: object) -> None:
        self.log(LogLevel.TRACE, message, *args)

    def success(self, message: str, *args: object) -> None:
        """Emit an INFO record highlighted as a successful outcome."""
        if not self.is_enabled_for(LogLevel.INFO):
            return
        line = format_record(LogLevel.INFO, message, args, self._clock())
        self._emit_console(line, SUCCESS_STYLE)
        self._write_to_file(line, is_error=False)

    def _emit_console(self, line: str, style: str) -> None:
        if self.silent:
            return
        self._console.print(line, style=style, markup=False, highlight=False, soft_wrap=True)

    def _write_to_file(self, line: str, *, is_error: bool) -> None:
        if not self._file_enabled:
            return
        path = self._error_log_file if is_error else self._log_file
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
            if path.stat().st_size > self.max_bytes:
                self.rotate(path)
        except OSError:
            self._file_enabled = False

    # ------------------------------------------------------------------
    # Rotation and retention
    # ------------------------------------------------------------------
    def rotate(self, path: Path) -> Path:
        """Archive *path*, start a fresh active file and prune old archives.

        Returns the archive path. ``OSError`` propagates to the caller.
        """
        stamp = self._clock().strftime(ARCHIVE_TIMESTAMP_FORMAT)
        archive = path.with_name(f"{path.stem}_{stamp}{path.suffix}")
        counter = 0
        while archive.exists():
            counter += 1
            archive = path.with_name(f"{path.stem}_{stamp}_{counter}{path.suffix}")
        path.rename(archive)
        path.touch()
        for stale in self.archives(path)[self.retention :]:
            stale.unlink(missing_ok=True)
        return archive

    def archives(self, path: Path) -> list[Path]:
        """Return archives of the active file *path*, newest first."""
        pattern = re.compile(
            rf"^{re.escape(path.stem)}_"
            r"(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})"
            rf"(?:_(\d+))?{re.escape(path.suffix)}$"
        )
        found: list[tuple[str, int, Path]] = []
        if not path.parent.is_dir():
            return []
        for candidate in path.parent.iterdir():
            match = pattern.match(candidate.name)
            if match is None or not candidate.is_file():
                continue
            found.append((match.group(1), int(match.group(2) or 0), candidate))
        found.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [item[2] for item in found]

    def clear_logs(self) -> list[Path]:
        """Delete both active log files, leaving archives untouched."""
        removed: list[Path] = []
        for path in (self._log_file, self._error_log_file):
            if path is None or not path.exists():
                continue
            try:
                path.unlink()
            except OSError as exc:
                self.error("Failed to clear log file:", f"{path}: {exc}")
                continue
            removed.append(path)
        return removed


__all__ = [
    "DEFAULT_MAX_BYTES",
    "DEFAULT_RETENTION",
    "LEVEL_STYLES",
    "LogLevel",
    "LogSink",
    "format_record",
]
