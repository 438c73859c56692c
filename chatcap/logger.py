"""Structured JSON logging with per-level event hooks."""

from __future__ import annotations

import json
import logging
import os
import platform
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from importlib import metadata
from typing import IO, Any, Callable, Iterable, Optional

_BADKEY = "!BADKEY"


class Level(IntEnum):
    """Logging levels, ordered by severity."""

    DEBUG = -4
    INFO = 0
    WARN = 4
    ERROR = 8


@dataclass
class Record:
    """The data handed to an event function for one log call."""

    time: datetime
    message: str
    level: Level
    attributes: dict[str, Any] = field(default_factory=dict)


EventFn = Callable[[Any, Record], None]
TraceIDFn = Callable[[Any], str]


@dataclass
class Events:
    """Functions to run when a record is logged at the matching level."""

    debug: Optional[EventFn] = None
    info: Optional[EventFn] = None
    warn: Optional[EventFn] = None
    error: Optional[EventFn] = None

    def for_level(self, level: int) -> Optional[EventFn]:
        return {
            Level.DEBUG: self.debug,
            Level.INFO: self.info,
            Level.WARN: self.warn,
            Level.ERROR: self.error,
        }.get(level)


def _level_name(level: int) -> str:
    if level < Level.INFO:
        base = Level.DEBUG
    elif level < Level.WARN:
        base = Level.INFO
    elif level < Level.ERROR:
        base = Level.WARN
    else:
        base = Level.ERROR
    delta = level - base
    return base.name if delta == 0 else f"{base.name}{delta:+d}"


def _format_time(moment: datetime) -> str:
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if moment.microsecond:
        text += f".{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    if not offset:
        return text + "Z"
    seconds = int(offset.total_seconds())
    sign = "+" if seconds >= 0 else "-"
    seconds = abs(seconds)
    return f"{text}{sign}{seconds // 3600:02d}:{seconds % 3600 // 60:02d}"


def _pairs(args: Iterable[Any]) -> list[tuple[str, Any]]:
    """Turn alternating key/value arguments into pairs."""
    pairs: list[tuple[str, Any]] = []
    items = iter(args)
    for item in items:
        if isinstance(item, str):
            try:
                value = next(items)
            except StopIteration:
                pairs.append((_BADKEY, item))
                break
            pairs.append((item, value))
        else:
            pairs.append((_BADKEY, item))
    return pairs


def _dump(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)


class Logger:
    """Writes one JSON object per line for every enabled log call."""

    def __init__(
        self,
        stream: IO[str],
        min_level: Level = Level.INFO,
        service_name: str = "",
        trace_id_fn: Optional[TraceIDFn] = None,
        events: Optional[Events] = None,
    ) -> None:
        self._stream = stream
        self._min_level = int(min_level)
        self._attrs: list[tuple[str, Any]] = [("service", service_name)]
        self._trace_id_fn = trace_id_fn
        self._events = events or Events()
        self._lock = threading.Lock()

    def enabled(self, level: int) -> bool:
        """Report whether records at ``level`` are written."""
        return int(level) >= self._min_level

    def debug(self, ctx: Any, msg: str, *args: Any) -> None:
        self._write(ctx, Level.DEBUG, 3, msg, args)

    def debugc(self, ctx: Any, caller: int, msg: str, *args: Any) -> None:
        self._write(ctx, Level.DEBUG, caller, msg, args)

    def info(self, ctx: Any, msg: str, *args: Any) -> None:
        self._write(ctx, Level.INFO, 3, msg, args)

    def infoc(self, ctx: Any, caller: int, msg: str, *args: Any) -> None:
        self._write(ctx, Level.INFO, caller, msg, args)

    def warn(self, ctx: Any, msg: str, *args: Any) -> None:
        self._write(ctx, Level.WARN, 3, msg, args)

    def warnc(self, ctx: Any, caller: int, msg: str, *args: Any) -> None:
        self._write(ctx, Level.WARN, caller, msg, args)

    def error(self, ctx: Any, msg: str, *args: Any) -> None:
        self._write(ctx, Level.ERROR, 3, msg, args)

    def errorc(self, ctx: Any, caller: int, msg: str, *args: Any) -> None:
        self._write(ctx, Level.ERROR, caller, msg, args)

    def build_info(self, ctx: Any) -> None:
        """Log details about the running interpreter and this package."""
        settings = [
            ("implementation", platform.python_implementation()),
            ("compiler", platform.python_compiler()),
            ("os", sys.platform),
            ("arch", platform.machine()),
        ]
        values: list[Any] = []
        for key, value in settings:
            if quote_key(key):
                key = json.dumps(key)
            if quote_value(value):
                value = json.dumps(value)
            values.extend((key, value))
        try:
            mod_version = metadata.version("chatcap")
        except metadata.PackageNotFoundError:
            mod_version = "(devel)"
        values.extend(("pyversion", platform.python_version()))
        values.extend(("modversion", mod_version))
        self.info(ctx, "build info", *values)

    def _write(self, ctx: Any, level: Level, caller: int, msg: str, args: tuple) -> None:
        if not self.enabled(level):
            return
        source: Optional[str] = None
        try:
            frame = sys._getframe(max(caller - 1, 0))
        except ValueError:
            frame = None
        if frame is not None:
            source = f"{os.path.basename(frame.f_code.co_filename)}:{frame.f_lineno}"
        extra = list(args)
        if self._trace_id_fn is not None:
            trace_id = self._trace_id_fn(ctx)
            if trace_id:
                extra.extend(("trace_id", trace_id))
        self._handle(ctx, int(level), msg, extra, source)

    def _handle(self, ctx: Any, level: int, msg: str, args: list, source: Optional[str]) -> None:
        now = datetime.now().astimezone()
        pairs = _pairs(args)
        event = self._events.for_level(level)
        if event is not None:
            event(ctx, Record(now, msg, Level(level), dict(pairs)))
        fields: list[tuple[str, Any]] = [("time", _format_time(now)), ("level", _level_name(level))]
        if source is not None:
            fields.append(("file", source))
        fields.append(("msg", msg))
        fields.extend(self._attrs)
        fields.extend(pairs)
        line = "{" + ",".join(f"{_dump(key)}:{_dump(value)}" for key, value in fields) + "}\n"
        with self._lock:
            self._stream.write(line)
            flush = getattr(self._stream, "flush", None)
            if flush is not None:
                flush()


class _ForwardHandler(logging.Handler):
    def __init__(self, target: Logger, level: Level) -> None:
        super().__init__()
        self._target = target
        self._fixed_level = int(level)

    def emit(self, record: logging.LogRecord) -> None:
        if not self._target.enabled(self._fixed_level):
            return
        source = f"{os.path.basename(record.pathname)}:{record.lineno}"
        self._target._handle(None, self._fixed_level, record.getMessage(), [], source)


def new_std_logger(logger: Logger, level: Level) -> logging.Logger:
    """Return a standard-library logger that writes through ``logger`` at ``level``."""
    std = logging.Logger(f"chatcap.std.{id(logger)}", logging.DEBUG)
    std.propagate = False
    std.addHandler(_ForwardHandler(logger, level))
    return std


def quote_key(key: str) -> bool:
    """Report whether ``key`` has to be quoted."""
    return len(key) == 0 or any(ch in key for ch in '= \t\r\n"`')


def quote_value(value: str) -> bool:
    """Report whether ``value`` has to be quoted."""
    return any(ch in value for ch in ' \t\r\n"`')