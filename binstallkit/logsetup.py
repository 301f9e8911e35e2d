"""Console logging: readable text or JSON lines on stdout."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import TextIO

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_PACKAGE = __name__.partition(".")[0]

_LEVELS: dict[str, int | None] = {
    "off": None,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_COLOURS = {"TRACE": 35, "DEBUG": 34, "INFO": 32, "WARN": 33, "ERROR": 31}


def _level_name(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "ERROR"
    if levelno >= logging.WARNING:
        return "WARN"
    if levelno >= logging.INFO:
        return "INFO"
    if levelno >= logging.DEBUG:
        return "DEBUG"
    return "TRACE"


def _parse_level(level: str | int) -> int | None:
    if isinstance(level, int):
        return level
    try:
        return _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"unknown log level: {level!r}") from None


class ErrorFreeStream:
    """Writes to stdout; failures are reported on stderr and otherwise ignored."""

    def __init__(self, stream: TextIO | None = None, error_stream: TextIO | None = None) -> None:
        self._stream = stream
        self._error_stream = error_stream

    def _report(self, err: OSError) -> None:
        try:
            (self._error_stream or sys.stderr).write(f"Failed to write to stdout: {err}\n")
        except OSError:
            pass

    def write(self, data: str) -> int:
        try:
            written = (self._stream or sys.stdout).write(data)
        except OSError as err:
            self._report(err)
            # Behave like a sink so logging keeps working.
            return len(data)
        return len(data) if written is None else written

    def flush(self) -> None:
        try:
            (self._stream or sys.stdout).flush()
        except OSError as err:
            self._report(err)


class JsonFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, fields and target."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc)
        fields = {"message": record.getMessage()}
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        payload = {
            "timestamp": timestamp.isoformat(timespec="microseconds").replace("+00:00", "Z"),
            "level": _level_name(record.levelno),
            "fields": fields,
            "target": record.name,
        }
        return json.dumps(payload)


class _TextFormatter(logging.Formatter):
    def __init__(self, use_colour: bool) -> None:
        super().__init__("%(message)s")
        self._use_colour = use_colour

    def format(self, record: logging.LogRecord) -> str:
        name = _level_name(record.levelno)
        label = f"{name:>5}"
        if self._use_colour:
            label = f"\x1b[{_COLOURS[name]}m{label}\x1b[0m"
        return f"{label} {super().format(record)}"


class _ConsoleHandler(logging.StreamHandler):
    pass


def _stdout_supports_colour() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError, OSError):
        return False


def _allowed_target(record: logging.LogRecord) -> bool:
    return record.name == _PACKAGE or record.name.startswith(_PACKAGE + ".")


def setup_logging(level: str | int = "info", json_output: bool = False) -> logging.Handler:
    """Install the console handler on the root logger and return it.

    Below trace level, only this package's loggers are shown. "off" silences all.
    """
    levelno = _parse_level(level)
    effective = logging.CRITICAL + 1 if levelno is None else levelno

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, _ConsoleHandler):
            root.removeHandler(existing)

    handler = _ConsoleHandler(ErrorFreeStream())
    handler.setLevel(effective)
    if levelno is None or levelno > TRACE:
        handler.addFilter(_allowed_target)
    handler.setFormatter(JsonFormatter() if json_output else _TextFormatter(_stdout_supports_colour()))

    root.setLevel(effective)
    root.addHandler(handler)
    return handler