"""Application error codes and the error type sent back to web clients."""

from __future__ import annotations

import inspect
import json
import sys
from enum import Enum
from http import HTTPStatus
from typing import Any, Union

_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


class ErrCode(Enum):
    """An error code in the system."""

    OK = 0
    NO_CONTENT = 1
    CANCELED = 2
    UNKNOWN = 3
    INVALID_ARGUMENT = 4
    DEADLINE_EXCEEDED = 5
    NOT_FOUND = 6
    ALREADY_EXISTS = 7
    PERMISSION_DENIED = 8
    RESOURCE_EXHAUSTED = 9
    FAILED_PRECONDITION = 10
    ABORTED = 11
    OUT_OF_RANGE = 12
    UNIMPLEMENTED = 13
    INTERNAL = 14
    UNAVAILABLE = 15
    DATA_LOSS = 16
    UNAUTHENTICATED = 17
    TOO_MANY_REQUESTS = 18
    INTERNAL_ONLY_LOG = 19

    @classmethod
    def from_text(cls, text: Union[str, bytes]) -> ErrCode:
        """Return the code named ``text``; raise ValueError for unknown names."""
        if isinstance(text, bytes):
            text = text.decode("utf-8", "replace")
        try:
            return _NUMBERS[text]
        except KeyError:
            raise ValueError(
                f"err code {json.dumps(text, ensure_ascii=False)} does not exist"
            ) from None

    def __str__(self) -> str:
        return _NAMES[self]


_NUMBERS: dict[str, ErrCode] = {
    "ok": ErrCode.OK,
    "no_content": ErrCode.NO_CONTENT,
    "canceled": ErrCode.CANCELED,
    "unknown": ErrCode.UNKNOWN,
    "invalid_argument": ErrCode.INVALID_ARGUMENT,
    "deadline_exceeded": ErrCode.DEADLINE_EXCEEDED,
    "not_found": ErrCode.NOT_FOUND,
    "already_exists": ErrCode.ALREADY_EXISTS,
    "permission_denied": ErrCode.PERMISSION_DENIED,
    "resource_exhausted": ErrCode.RESOURCE_EXHAUSTED,
    "failed_precondition": ErrCode.FAILED_PRECONDITION,
    "aborted": ErrCode.ABORTED,
    "out_of_range": ErrCode.OUT_OF_RANGE,
    "unimplemented": ErrCode.UNIMPLEMENTED,
    "internal": ErrCode.INTERNAL,
    "unavailable": ErrCode.UNAVAILABLE,
    "data_loss": ErrCode.DATA_LOSS,
    "unauthenticated": ErrCode.UNAUTHENTICATED,
    "too_many_requests": ErrCode.TOO_MANY_REQUESTS,
    "internal_only_log": ErrCode.INTERNAL_ONLY_LOG,
}

_NAMES: dict[ErrCode, str] = {
    ErrCode.OK: "ok",
    ErrCode.NO_CONTENT: "ok_no_content",
    ErrCode.CANCELED: "canceled",
    ErrCode.UNKNOWN: "unknown",
    ErrCode.INVALID_ARGUMENT: "invalid_argument",
    ErrCode.DEADLINE_EXCEEDED: "deadline_exceeded",
    ErrCode.NOT_FOUND: "not_found",
    ErrCode.ALREADY_EXISTS: "already_exists",
    ErrCode.PERMISSION_DENIED: "permission_denied",
    ErrCode.RESOURCE_EXHAUSTED: "resource_exhausted",
    ErrCode.FAILED_PRECONDITION: "failed_precondition",
    ErrCode.ABORTED: "aborted",
    ErrCode.OUT_OF_RANGE: "out_of_range",
    ErrCode.UNIMPLEMENTED: "unimplemented",
    ErrCode.INTERNAL: "internal",
    ErrCode.UNAVAILABLE: "unavailable",
    ErrCode.DATA_LOSS: "data_loss",
    ErrCode.UNAUTHENTICATED: "unauthenticated",
    ErrCode.TOO_MANY_REQUESTS: "too_many_requests",
    ErrCode.INTERNAL_ONLY_LOG: "internal_only_log",
}

_HTTP_STATUS: dict[ErrCode, int] = {
    ErrCode.OK: HTTPStatus.OK,
    ErrCode.NO_CONTENT: HTTPStatus.NO_CONTENT,
    ErrCode.CANCELED: HTTPStatus.GATEWAY_TIMEOUT,
    ErrCode.UNKNOWN: HTTPStatus.INTERNAL_SERVER_ERROR,
    ErrCode.INVALID_ARGUMENT: HTTPStatus.BAD_REQUEST,
    ErrCode.DEADLINE_EXCEEDED: HTTPStatus.GATEWAY_TIMEOUT,
    ErrCode.NOT_FOUND: HTTPStatus.NOT_FOUND,
    ErrCode.ALREADY_EXISTS: HTTPStatus.CONFLICT,
    ErrCode.PERMISSION_DENIED: HTTPStatus.FORBIDDEN,
    ErrCode.RESOURCE_EXHAUSTED: HTTPStatus.TOO_MANY_REQUESTS,
    ErrCode.FAILED_PRECONDITION: HTTPStatus.BAD_REQUEST,
    ErrCode.ABORTED: HTTPStatus.CONFLICT,
    ErrCode.OUT_OF_RANGE: HTTPStatus.BAD_REQUEST,
    ErrCode.UNIMPLEMENTED: HTTPStatus.NOT_IMPLEMENTED,
    ErrCode.INTERNAL: HTTPStatus.INTERNAL_SERVER_ERROR,
    ErrCode.UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,
    ErrCode.DATA_LOSS: HTTPStatus.INTERNAL_SERVER_ERROR,
    ErrCode.UNAUTHENTICATED: HTTPStatus.UNAUTHORIZED,
    ErrCode.TOO_MANY_REQUESTS: HTTPStatus.TOO_MANY_REQUESTS,
    ErrCode.INTERNAL_ONLY_LOG: HTTPStatus.INTERNAL_SERVER_ERROR,
}


def _caller(depth: int) -> tuple[str, str]:
    """Return the function name and ``file:line`` of the frame ``depth`` levels up."""
    try:
        frame = sys._getframe(depth)
    except ValueError:
        return "", ""
    module = inspect.getmodule(frame)
    module_name = module.__name__ if module is not None else ""
    name = frame.f_code.co_name
    func_name = f"{module_name}.{name}" if module_name else name
    return func_name, f"{frame.f_code.co_filename}:{frame.f_lineno}"


class AppError(Exception):
    """An application error carrying a code and a client-facing message."""

    def __init__(self, code: ErrCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.func_name, self.file_name = _caller(2)

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"AppError({self.code!s}, {self.message!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AppError):
            return NotImplemented
        return self.code == other.code and self.message == other.message

    def __hash__(self) -> int:
        return hash((self.code, self.message))

    def encode(self) -> tuple[bytes, str]:
        """Return the JSON body and its content type."""
        text = json.dumps(
            {"code": str(self.code), "message": self.message},
            ensure_ascii=False,
            separators=(",", ":"),
        )
        for char, escaped in _JSON_ESCAPES:
            text = text.replace(char, escaped)
        return text.encode("utf-8"), "application/json"

    def http_status(self) -> int:
        """Return the HTTP status that matches the error code."""
        return int(_HTTP_STATUS[self.code])


def new(code: ErrCode, err: BaseException) -> AppError:
    """Build an AppError from another error."""
    app_err = AppError(code, str(err))
    app_err.func_name, app_err.file_name = _caller(2)
    return app_err


def newf(code: ErrCode, fmt: str, *args: Any) -> AppError:
    """Build an AppError from a printf-style message."""
    message = fmt % args if args else fmt
    app_err = AppError(code, message)
    app_err.func_name, app_err.file_name = _caller(2)
    return app_err


def new_error(err: BaseException) -> AppError:
    """Return the AppError in ``err``'s cause chain, or wrap ``err`` as internal."""
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        if isinstance(current, AppError):
            return current
        seen.add(id(current))
        current = current.__cause__
    app_err = AppError(ErrCode.INTERNAL, str(err))
    app_err.func_name, app_err.file_name = _caller(2)
    return app_err