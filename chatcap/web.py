"""A small web framework: routing, middleware, request context and responses."""

from __future__ import annotations

import html
import io
import mimetypes
import re
import threading
import uuid
from dataclasses import dataclass, field, replace
from email.utils import formatdate
from enum import Enum
from http import HTTPStatus
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, NamedTuple, Optional, Protocol, Union
from urllib.parse import quote
from wsgiref.headers import Headers


class _Encoder(Protocol):
    def encode(self) -> tuple[bytes, str]: ...


HandlerFunc = Callable[["Context", "Request"], Optional[_Encoder]]
MidFunc = Callable[[HandlerFunc], HandlerFunc]
RawHandler = Callable[["ResponseWriter", "Request"], None]
LogFn = Callable[..., None]

_ZERO_UUID = uuid.UUID(int=0)
_REACT_FILE = re.compile(r"\.[a-zA-Z]*$")
_HTML_TAGS = (
    b"<!doctype html", b"<html", b"<head", b"<script", b"<iframe", b"<h1", b"<div",
    b"<font", b"<table", b"<a", b"<style", b"<title", b"<b", b"<body", b"<br", b"<p",
)
_BINARY_BYTES = frozenset(list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20)))


class _CtxKey(Enum):
    WRITER = 1
    TRACE_ID = 2


@dataclass(frozen=True)
class Context:
    """Request-scoped values plus a cancellation event shared by derived contexts."""

    values: Mapping[Any, Any] = field(default_factory=dict)
    done: threading.Event = field(default_factory=threading.Event)


def _with_value(ctx: Context, key: Any, value: Any) -> Context:
    return replace(ctx, values={**ctx.values, key: value})


@dataclass
class Request:
    """An incoming HTTP request."""

    method: str = "GET"
    path: str = "/"
    raw_query: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    remote_addr: str = ""
    context: Context = field(default_factory=Context)
    path_values: dict[str, str] = field(default_factory=dict)


def _header(request: Request, name: str) -> str:
    wanted = name.lower()
    return next((value for key, value in request.headers.items() if key.lower() == wanted), "")


def _sniff(data: bytes) -> str:
    head = data[:512].lstrip(b"\t\n\x0c\r ")
    lowered = head.lower()
    for tag in _HTML_TAGS:
        if lowered.startswith(tag) and lowered[len(tag):len(tag) + 1] in (b" ", b">"):
            return "text/html; charset=utf-8"
    if lowered.startswith(b"<!--"):
        return "text/html; charset=utf-8"
    if any(byte in _BINARY_BYTES for byte in head):
        return "application/octet-stream"
    return "text/plain; charset=utf-8"


class ResponseWriter:
    """Collects the status, headers and body of a response."""

    def __init__(self) -> None:
        self.headers = Headers()
        self.status: Optional[int] = None
        self._body = io.BytesIO()
        self._body_started = False

    def write_header(self, status: int) -> None:
        """Set the status code; only the first call has an effect."""
        if self.status is None:
            self.status = int(status)

    def write(self, data: bytes) -> int:
        """Append ``data`` to the body, committing a 200 status if none was set."""
        if self.status is None:
            self.write_header(HTTPStatus.OK)
        if data and not self._body_started:
            if "Content-Type" not in self.headers:
                self.headers["Content-Type"] = _sniff(data)
            self._body_started = True
        return self._body.write(data)

    @property
    def status_code(self) -> int:
        return self.status if self.status is not None else int(HTTPStatus.OK)

    @property
    def body(self) -> bytes:
        return self._body.getvalue()


class NoResponse:
    """Tells ``respond`` that the handler has already written the response."""

    def encode(self) -> tuple[bytes, str]:
        return b"", ""


class RespondError(Exception):
    """Raised when a response cannot be sent."""


def set_trace_id(ctx: Context, trace_id: uuid.UUID) -> Context:
    """Return a context that carries ``trace_id``."""
    return _with_value(ctx, _CtxKey.TRACE_ID, trace_id)


def get_trace_id(ctx: Context) -> uuid.UUID:
    """Return the request's trace id, or the zero UUID when there is none."""
    value = ctx.values.get(_CtxKey.TRACE_ID)
    return value if isinstance(value, uuid.UUID) else _ZERO_UUID


def _set_writer(ctx: Context, writer: ResponseWriter) -> Context:
    return _with_value(ctx, _CtxKey.WRITER, writer)


def get_writer(ctx: Context) -> Optional[ResponseWriter]:
    """Return the response writer stored in the context, if any."""
    value = ctx.values.get(_CtxKey.WRITER)
    return value if isinstance(value, ResponseWriter) else None


def wrap_middleware(mw: Iterable[Optional[MidFunc]], handler: HandlerFunc) -> HandlerFunc:
    """Wrap ``handler`` so that the first middleware runs first."""
    for func in reversed(list(mw)):
        if func is not None:
            handler = func(handler)
    return handler


def param(request: Request, key: str) -> str:
    """Return the path value named ``key``, or an empty string."""
    return request.path_values.get(key, "")


def decode(request: Request, model: Any) -> None:
    """Decode the request body into ``model`` and validate it when it can be."""
    try:
        model.decode(request.body)
    except Exception as exc:
        raise ValueError(f"request: decode: {exc}") from exc
    validate = getattr(model, "validate", None)
    if callable(validate):
        validate()


def respond(ctx: Context, writer: ResponseWriter, data_model: Optional[_Encoder]) -> None:
    """Send ``data_model`` to the client through ``writer``."""
    if isinstance(data_model, NoResponse):
        return
    if ctx.done.is_set():
        raise RespondError("client disconnected, do not send response")

    status_fn = getattr(data_model, "http_status", None)
    if callable(status_fn):
        status = int(status_fn())
    elif isinstance(data_model, BaseException):
        status = int(HTTPStatus.INTERNAL_SERVER_ERROR)
    elif data_model is None:
        status = int(HTTPStatus.NO_CONTENT)
    else:
        status = int(HTTPStatus.OK)

    if status == HTTPStatus.NO_CONTENT or data_model is None:
        writer.write_header(status)
        return

    try:
        data, content_type = data_model.encode()
    except Exception as exc:
        writer.write_header(HTTPStatus.INTERNAL_SERVER_ERROR)
        raise RespondError(f"respond: encode: {exc}") from exc

    writer.headers["Content-Type"] = content_type
    writer.write_header(status)
    writer.write(data)


# -- routing -----------------------------------------------------------------


class _Segment(NamedTuple):
    kind: str
    text: str


def _parse_path(path: str) -> tuple[tuple[_Segment, ...], bool]:
    if not path.startswith("/"):
        raise ValueError(f"invalid pattern path {path!r}: must begin with '/'")
    rest = path[1:]
    if not rest:
        return (), True
    parts = rest.split("/")
    subtree = False
    if parts[-1] == "":
        subtree = True
        parts = parts[:-1]
    elif parts[-1] == "{$}":
        parts[-1] = ""
    segments = []
    last = len(parts) - 1
    for position, part in enumerate(parts):
        if part.startswith("{") and part.endswith("}"):
            name = part[1:-1]
            if name.endswith("..."):
                if position != last or subtree:
                    raise ValueError(f"invalid pattern path {path!r}: '...' wildcard not at end")
                segments.append(_Segment("multi", name[:-3]))
            else:
                segments.append(_Segment("wild", name))
        else:
            segments.append(_Segment("literal", part))
    return tuple(segments), subtree


@dataclass
class _Route:
    method: str
    pattern: str
    segments: tuple[_Segment, ...]
    subtree: bool
    handler: RawHandler

    def match(self, path: str) -> Optional[dict[str, str]]:
        if not path.startswith("/"):
            return None
        parts = path[1:].split("/")
        values: dict[str, str] = {}
        for position, segment in enumerate(self.segments):
            if position >= len(parts):
                return None
            if segment.kind == "multi":
                values[segment.text] = "/".join(parts[position:])
                return values
            part = parts[position]
            if segment.kind == "literal":
                if part != segment.text:
                    return None
            elif not part:
                return None
            else:
                values[segment.text] = part
        if self.subtree:
            return values if len(parts) > len(self.segments) else None
        return values if len(parts) == len(self.segments) else None

    def accepts(self, method: str) -> bool:
        return not self.method or self.method == method or (self.method == "GET" and method == "HEAD")

    def allowed_methods(self) -> list[str]:
        return [self.method, "HEAD"] if self.method == "GET" else [self.method]

    @property
    def specificity(self) -> tuple[int, int, bool, bool]:
        literals = sum(1 for segment in self.segments if segment.kind == "literal")
        return literals, len(self.segments), not self.subtree, bool(self.method)


def _http_error(writer: ResponseWriter, message: str, status: int) -> None:
    writer.headers["Content-Type"] = "text/plain; charset=utf-8"
    writer.headers["X-Content-Type-Options"] = "nosniff"
    writer.write_header(status)
    writer.write((message + "\n").encode())


def _not_found(writer: ResponseWriter) -> None:
    _http_error(writer, "404 page not found", HTTPStatus.NOT_FOUND)


def _local_redirect(writer: ResponseWriter, request: Request, target: str) -> None:
    if request.raw_query:
        target = f"{target}?{request.raw_query}"
    writer.headers["Location"] = target
    writer.write_header(HTTPStatus.MOVED_PERMANENTLY)


# -- static files --------------------------------------------------------------


def _static_base(root: Union[str, Path], directory: str) -> Path:
    parts = directory.split("/")
    if directory != "." and (directory.startswith("/") or any(p in ("", ".", "..") for p in parts)):
        raise ValueError(f"switching to static folder: sub {directory}: invalid name")
    base = Path(root)
    return base if directory == "." else base.joinpath(*parts)


def _clean_parts(url: str) -> list[str]:
    parts: list[str] = []
    for part in url.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if parts:
                parts.pop()
            continue
        parts.append(part)
    return parts


def _content_type(path: Path, data: bytes) -> str:
    guessed = mimetypes.guess_type(path.name)[0]
    if guessed is None:
        return _sniff(data)
    if guessed.startswith("text/") or guessed == "application/javascript":
        return f"{guessed}; charset=utf-8"
    return guessed


def _send_file(writer: ResponseWriter, path: Path) -> None:
    try:
        data = path.read_bytes()
        modified = path.stat().st_mtime
    except PermissionError:
        _http_error(writer, "403 Forbidden", HTTPStatus.FORBIDDEN)
        return
    except OSError:
        _http_error(writer, "500 Internal Server Error", HTTPStatus.INTERNAL_SERVER_ERROR)
        return
    writer.headers["Content-Type"] = _content_type(path, data)
    writer.headers["Last-Modified"] = formatdate(modified, usegmt=True)
    writer.headers["Content-Length"] = str(len(data))
    writer.write_header(HTTPStatus.OK)
    writer.write(data)


def _list_dir(writer: ResponseWriter, directory: Path) -> None:
    try:
        entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
    except OSError:
        _http_error(writer, "Error reading directory", HTTPStatus.INTERNAL_SERVER_ERROR)
        return
    lines = ['<!doctype html>\n<meta name="viewport" content="width=device-width">\n<pre>\n']
    for entry in entries:
        name = entry.name + ("/" if entry.is_dir() else "")
        lines.append(f'<a href="{quote(name)}">{html.escape(name)}</a>\n')
    lines.append("</pre>\n")
    writer.headers["Content-Type"] = "text/html; charset=utf-8"
    writer.write("".join(lines).encode())


def _serve_path(writer: ResponseWriter, request: Request, base: Path, url: str) -> None:
    if url.endswith("/index.html"):
        _local_redirect(writer, request, "./")
        return
    target = base.joinpath(*_clean_parts(url))
    if not target.exists():
        _not_found(writer)
        return
    if target.is_dir():
        if not url.endswith("/"):
            _local_redirect(writer, request, url.rsplit("/", 1)[-1] + "/")
            return
        index = target / "index.html"
        if index.is_file():
            _send_file(writer, index)
        else:
            _list_dir(writer, target)
        return
    if url.endswith("/"):
        _local_redirect(writer, request, "../" + target.name)
        return
    _send_file(writer, target)


def _static_handler(base: Path, prefix: str) -> RawHandler:
    def serve(writer: ResponseWriter, request: Request) -> None:
        if not request.path.startswith(prefix):
            _not_found(writer)
            return
        url = request.path[len(prefix):]
        if not url.startswith("/"):
            url = "/" + url
        _serve_path(writer, request, base, url)

    return serve


def _route_path(group: str, path: str) -> str:
    return f"/{group}{path}" if group else path


# -- application -----------------------------------------------------------------


class App:
    """Routes requests to handlers wrapped in the application's middleware."""

    def __init__(self, log: LogFn, *args: MidFunc) -> None:
        self._log = log
        self._mw: list[MidFunc] = list(args)
        self._origins: Optional[list[str]] = None
        self._routes: list[_Route] = []

    def _register(self, method: str, path: str, handler: RawHandler) -> None:
        segments, subtree = _parse_path(path)
        pattern = f"{method} {path}" if method else path
        for route in self._routes:
            if route.method == method and route.segments == segments and route.subtree == subtree:
                raise ValueError(f"pattern {pattern!r} conflicts with {route.pattern!r}")
        self._routes.append(_Route(method, pattern, segments, subtree, handler))

    def _responder(self, handler: HandlerFunc) -> RawHandler:
        def serve(writer: ResponseWriter, request: Request) -> None:
            ctx = set_trace_id(_set_writer(request.context, writer), uuid.uuid4())
            resp = handler(ctx, request)
            try:
                respond(ctx, writer, resp)
            except RespondError as err:
                self._log(ctx, "web-respond", "ERROR", err)

        return serve

    def _cors_handler(self, web_handler: HandlerFunc) -> HandlerFunc:
        def handler(ctx: Context, request: Request) -> Optional[_Encoder]:
            writer = get_writer(ctx)
            if writer is not None:
                req_origin = _header(request, "Origin")
                for origin in self._origins or ():
                    if origin == "*" or origin == req_origin:
                        writer.headers["Access-Control-Allow-Origin"] = origin
                        break
                writer.headers["Access-Control-Allow-Methods"] = "POST, PATCH, GET, OPTIONS, PUT, DELETE"
                writer.headers["Access-Control-Allow-Headers"] = (
                    "Accept, Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, Authorization"
                )
                writer.headers["Access-Control-Max-Age"] = "86400"
            return web_handler(ctx, request)

        return handler

    def _full_chain(self, handler: HandlerFunc, mw: Iterable[MidFunc]) -> HandlerFunc:
        handler = wrap_middleware(mw, handler)
        handler = wrap_middleware(self._mw, handler)
        if self._origins is not None:
            handler = wrap_middleware([self._cors_handler], handler)
        return handler

    def enable_cors(self, origins: list[str]) -> None:
        """Allow the given origins and answer preflight requests on every path."""
        self._origins = list(origins)
        handler = wrap_middleware([self._cors_handler], lambda ctx, request: None)
        self.handler_func_no_mid("OPTIONS", "", "/", handler)

    def handler_func_no_mid(self, method: str, group: str, path: str, handler: HandlerFunc) -> None:
        """Register a handler without the application middleware."""
        self._register(method, _route_path(group, path), self._responder(handler))

    def handler_func(self, method: str, group: str, path: str, handler: HandlerFunc, *args: MidFunc) -> None:
        """Register a handler wrapped in route and application middleware."""
        chain = self._full_chain(handler, args)
        self._register(method, _route_path(group, path), self._responder(chain))

    def raw_handler_func(self, method: str, group: str, path: str, raw_handler: RawHandler, *args: MidFunc) -> None:
        """Register a handler that writes its own response."""

        def handler(ctx: Context, request: Request) -> None:
            raw_handler(get_writer(ctx), replace(request, context=ctx))
            return None

        chain = self._full_chain(handler, args)

        def serve(writer: ResponseWriter, request: Request) -> None:
            ctx = set_trace_id(_set_writer(request.context, writer), uuid.uuid4())
            chain(ctx, request)

        self._register(method, _route_path(group, path), serve)

    def file_server(self, root: Union[str, Path], directory: str, path: str) -> None:
        """Serve the files under ``root/directory`` at ``path``."""
        base = _static_base(root, directory)
        self._register("GET", path, _static_handler(base, path))

    def file_server_react(self, root: Union[str, Path], directory: str, path: str) -> None:
        """Serve a single-page app: files by name, everything else as index.html."""
        base = _static_base(root, directory)
        files = _static_handler(base, path)

        def serve(writer: ResponseWriter, request: Request) -> None:
            if _REACT_FILE.search(request.path) is None:
                try:
                    page = (base / "index.html").read_bytes()
                except OSError as err:
                    self._log(Context(), "FileServerReact", "ERROR", err)
                    return
                writer.write(page)
                return
            files(writer, request)

        self._register("GET", path, serve)

    def serve(self, request: Request) -> ResponseWriter:
        """Dispatch ``request`` and return the written response."""
        writer = ResponseWriter()
        matches = [
            (route, values)
            for route in self._routes
            if (values := route.match(request.path)) is not None
        ]
        if not matches:
            _not_found(writer)
            return writer
        allowed = [(route, values) for route, values in matches if route.accepts(request.method)]
        if not allowed:
            methods = sorted({m for route, _ in matches for m in route.allowed_methods()})
            writer.headers["Allow"] = ", ".join(methods)
            _http_error(writer, "Method Not Allowed", HTTPStatus.METHOD_NOT_ALLOWED)
            return writer
        route, values = max(allowed, key=lambda item: item[0].specificity)
        route.handler(writer, replace(request, path_values=values))
        return writer

    def __call__(self, environ: dict, start_response: Callable) -> list[bytes]:
        headers: dict[str, str] = {}
        for key, value in environ.items():
            if key.startswith("HTTP_"):
                headers[key[5:].replace("_", "-").title()] = value
        for key in ("CONTENT_TYPE", "CONTENT_LENGTH"):
            if environ.get(key):
                headers[key.replace("_", "-").title()] = environ[key]
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        body = environ["wsgi.input"].read(length) if length > 0 else b""
        path = environ.get("PATH_INFO", "").encode("latin-1").decode("utf-8", "replace") or "/"
        remote = environ.get("REMOTE_ADDR", "")
        if environ.get("REMOTE_PORT"):
            remote = f"{remote}:{environ['REMOTE_PORT']}"
        method = environ.get("REQUEST_METHOD", "GET").upper()
        request = Request(
            method=method,
            path=path,
            raw_query=environ.get("QUERY_STRING", ""),
            headers=headers,
            body=body,
            remote_addr=remote,
        )
        writer = self.serve(request)
        status = writer.status_code
        try:
            reason = HTTPStatus(status).phrase
        except ValueError:
            reason = ""
        start_response(f"{status} {reason}".rstrip(), list(writer.headers.items()))
        return [] if method == "HEAD" else [writer.body]