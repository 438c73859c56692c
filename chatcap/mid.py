"""Application middleware: request logging, error handling and panic recovery."""

from __future__ import annotations

import time
import traceback
from typing import Any, Optional

from chatcap.errs import AppError, ErrCode, newf
from chatcap.logger import Logger
from chatcap.web import Context, HandlerFunc, MidFunc, Request


def is_error(resp: Any) -> Optional[BaseException]:
    """Return ``resp`` when it is an error, otherwise None."""
    return resp if isinstance(resp, BaseException) else None


def _find_app_error(err: BaseException) -> Optional[AppError]:
    seen: set[int] = set()
    current: Optional[BaseException] = err
    while current is not None and id(current) not in seen:
        if isinstance(current, AppError):
            return current
        seen.add(id(current))
        current = current.__cause__
    return None


def _base(path: str) -> str:
    """Return the last element of a slash-separated path."""
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def _fraction(value: int, unit: int) -> str:
    whole, rest = divmod(value, unit)
    if not rest:
        return str(whole)
    width = len(str(unit)) - 1
    return f"{whole}.{rest:0{width}d}".rstrip("0")


def _duration(nanoseconds: int) -> str:
    """Render a duration in nanoseconds as e.g. ``1.5ms`` or ``2m3.1s``."""
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    ns = abs(nanoseconds)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_fraction(ns, 1_000)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_fraction(ns, 1_000_000)}ms"
    hours, rest = divmod(ns, 3_600_000_000_000)
    minutes, rest = divmod(rest, 60_000_000_000)
    seconds = f"{_fraction(rest, 1_000_000_000)}s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes:
        return f"{sign}{minutes}m{seconds}"
    return f"{sign}{seconds}"


def errors(log: Logger) -> MidFunc:
    """Turn errors coming out of the call chain into client responses."""

    def middleware(next_handler: HandlerFunc) -> HandlerFunc:
        def handler(ctx: Context, request: Request) -> Any:
            resp = next_handler(ctx, request)
            err = is_error(resp)
            if err is None:
                return resp

            app_err = _find_app_error(err)
            if app_err is None:
                app_err = newf(ErrCode.INTERNAL, "Internal Server Error")

            log.error(
                ctx,
                "handled error during request",
                "err", err,
                "source_err_file", _base(app_err.file_name),
                "source_err_func", _base(app_err.func_name),
            )

            if app_err.code is ErrCode.INTERNAL_ONLY_LOG:
                app_err = newf(ErrCode.INTERNAL, "Internal Server Error")
            return app_err

        return handler

    return middleware


def logger(log: Logger) -> MidFunc:
    """Log the start and completion of every request."""

    def middleware(next_handler: HandlerFunc) -> HandlerFunc:
        def handler(ctx: Context, request: Request) -> Any:
            started = time.perf_counter_ns()
            path = request.path
            if request.raw_query:
                path = f"{path}?{request.raw_query}"

            log.info(
                ctx, "request started",
                "method", request.method, "path", path, "remoteaddr", request.remote_addr,
            )

            resp = next_handler(ctx, request)
            err = is_error(resp)

            status_code = ErrCode.OK
            if err is not None:
                app_err = _find_app_error(err)
                status_code = app_err.code if app_err is not None else ErrCode.INTERNAL

            log.info(
                ctx, "request completed",
                "method", request.method, "path", path, "remoteaddr", request.remote_addr,
                "statuscode", status_code,
                "since", _duration(time.perf_counter_ns() - started),
            )
            return resp

        return handler

    return middleware


def panics() -> MidFunc:
    """Convert exceptions raised by handlers into internal errors."""

    def middleware(next_handler: HandlerFunc) -> HandlerFunc:
        def handler(ctx: Context, request: Request) -> Any:
            try:
                return next_handler(ctx, request)
            except Exception as exc:
                trace = traceback.format_exc()
                return newf(ErrCode.INTERNAL_ONLY_LOG, "PANIC [%s] TRACE[%s]", exc, trace)

        return handler

    return middleware