"""Levelled logging to standard output and standard error."""

from __future__ import annotations

import sys
import threading
from datetime import datetime
from typing import Any, TextIO

LEVEL_DEBUG = "DEBUG"
LEVEL_INFO = "INFO"
LEVEL_WARN = "WARN"
LEVEL_ERROR = "ERROR"
LEVEL_FATAL = "FATAL"

_STAMP = "%Y/%m/%d %H:%M:%S"


def format_message(level: str, message: str) -> str:
    """Prefix a message with the local time and its level."""
    return f"{datetime.now().strftime(_STAMP)} [{level}] {message}"


class Log:
    """Writes debug, info and warn lines to stdout and error, fatal lines to stderr.

    Streams left as ``None`` resolve to the current ``sys.stdout`` and
    ``sys.stderr`` at write time. Messages with arguments are %-formatted.
    """

    def __init__(self, stdout: TextIO | None = None, stderr: TextIO | None = None) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self._lock = threading.Lock()

    def _write(self, to_stderr: bool, level: str, msg: str, args: tuple[Any, ...]) -> None:
        text = msg % args if args else msg
        if to_stderr:
            stream = sys.stderr if self._stderr is None else self._stderr
        else:
            stream = sys.stdout if self._stdout is None else self._stdout
        line = f"{datetime.now().strftime(_STAMP)} {format_message(level, text)}\n"
        with self._lock:
            stream.write(line)
            stream.flush()

    def debug(self, msg: str, *args: Any) -> None:
        self._write(False, LEVEL_DEBUG, msg, args)

    def info(self, msg: str, *args: Any) -> None:
        self._write(False, LEVEL_INFO, msg, args)

    def warn(self, msg: str, *args: Any) -> None:
        self._write(False, LEVEL_WARN, msg, args)

    def error(self, msg: str, *args: Any) -> None:
        self._write(True, LEVEL_ERROR, msg, args)

    def fatal(self, msg: str, *args: Any) -> None:
        """Log the message and end the process with status 1."""
        self._write(True, LEVEL_FATAL, msg, args)
        raise SystemExit(1)


_default = Log()


def debug(msg: str, *args: Any) -> None:
    _default.debug(msg, *args)


def info(msg: str, *args: Any) -> None:
    _default.info(msg, *args)


def warn(msg: str, *args: Any) -> None:
    _default.warn(msg, *args)


def error(msg: str, *args: Any) -> None:
    _default.error(msg, *args)


def fatal(msg: str, *args: Any) -> None:
    _default.fatal(msg, *args)