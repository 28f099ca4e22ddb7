"""Console and daily file logging for the `gemini_cli_job` package."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import TextIO

PACKAGE_LOGGER = "gemini_cli_job"
JOB_EXECUTION = 25
LOG_FILE_SUFFIX = ".log"

logging.addLevelName(JOB_EXECUTION, "JOB_EXECUTION")

_LEVEL_TAGS = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "LOG",
    JOB_EXECUTION: "JOB_EXECUTION",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}
_CLI_PREFIXES = {
    logging.WARNING: "Warning: ",
    logging.ERROR: "Error: ",
    logging.CRITICAL: "Error: ",
}
_LOG_FILE_NAME = re.compile(r"^(\d{4}-\d{2}-\d{2})\.log$")

logger = logging.getLogger(__name__)


class TaggedFormatter(logging.Formatter):
    """`[2026-01-31T09:00:00.123] [LOG] message` lines."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds")
        tag = _LEVEL_TAGS.get(record.levelno, record.levelname)
        line = f"[{timestamp}] [{tag}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class CliFormatter(logging.Formatter):
    """Bare messages for interactive commands; problems keep a short prefix."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{_CLI_PREFIXES.get(record.levelno, '')}{record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class DailyFileHandler(logging.Handler):
    """Append records to `<log_dir>/YYYY-MM-DD.log`, switching files at midnight."""

    def __init__(self, log_dir: Path, *, encoding: str = "utf-8") -> None:
        super().__init__()
        self.log_dir = log_dir
        self.encoding = encoding
        self._current_path: Path | None = None
        self._stream: TextIO | None = None

    def path_for(self, day: date) -> Path:
        return self.log_dir / f"{day.isoformat()}{LOG_FILE_SUFFIX}"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stream = self._stream_for(datetime.fromtimestamp(record.created).date())
            stream.write(self.format(record) + "\n")
            stream.flush()
        except Exception:  # noqa: BLE001
            self.handleError(record)

    def close(self) -> None:
        self.acquire()
        try:
            if self._stream is not None:
                self._stream.close()
                self._stream = None
                self._current_path = None
        finally:
            self.release()
        super().close()

    def _stream_for(self, day: date) -> TextIO:
        path = self.path_for(day)
        if self._stream is None or path != self._current_path:
            if self._stream is not None:
                self._stream.close()
            path.parent.mkdir(parents=True, exist_ok=True)
            self._stream = path.open("a", encoding=self.encoding)
            self._current_path = path
        return self._stream


def configure_logging(
    log_dir: Path | None,
    *,
    debug: bool = False,
    cli_mode: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Install console and daily-file handlers on the package logger.

    Calling it again replaces the handlers installed by the previous call, so
    the CLI can reconfigure between commands in one interpreter.
    """

    reset_logging()
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    level = logging.DEBUG if debug else logging.INFO
    package_logger.setLevel(level)

    console = logging.StreamHandler(stream)
    console.setFormatter(CliFormatter() if cli_mode else TaggedFormatter())
    console.setLevel(level)
    _install(package_logger, console)

    if log_dir is not None:
        file_handler = DailyFileHandler(log_dir)
        file_handler.setFormatter(TaggedFormatter())
        file_handler.setLevel(level)
        _install(package_logger, file_handler)
    return package_logger


def log_job_execution(target: logging.Logger, message: str, *args: object) -> None:
    """Log a job lifecycle line at the JOB_EXECUTION level."""

    target.log(JOB_EXECUTION, message, *args)


def today_log_path(log_dir: Path, *, today: date | None = None) -> Path:
    return log_dir / f"{(today or date.today()).isoformat()}{LOG_FILE_SUFFIX}"


def cleanup_old_logs(
    log_dir: Path,
    days_to_keep: int = 30,
    *,
    today: date | None = None,
) -> list[Path]:
    """Delete dated log files older than `days_to_keep` days; return removed paths."""

    if not log_dir.is_dir():
        return []
    cutoff = (today or date.today()) - timedelta(days=days_to_keep)
    removed: list[Path] = []
    for path in sorted(log_dir.iterdir()):
        match = _LOG_FILE_NAME.match(path.name)
        if match is None or not path.is_file():
            continue
        try:
            file_day = date.fromisoformat(match.group(1))
        except ValueError:
            continue
        if file_day < cutoff:
            path.unlink()
            removed.append(path)
            logger.info("Cleaned up old log file: %s", path.name)
    return removed


def reset_logging() -> None:
    """Remove handlers installed by `configure_logging`."""

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        if getattr(handler, "_gemini_cli_job_handler", False):
            package_logger.removeHandler(handler)
            handler.close()
    package_logger.setLevel(logging.NOTSET)


def _install(target: logging.Logger, handler: logging.Handler) -> None:
    handler._gemini_cli_job_handler = True  # type: ignore[attr-defined]
    target.addHandler(handler)
