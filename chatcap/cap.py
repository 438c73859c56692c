"""The chat API service: configuration, start-up and graceful shutdown."""

from __future__ import annotations

import os
import re
import signal
import sys
import threading
import time
from dataclasses import dataclass, fields
from socketserver import ThreadingMixIn
from typing import Any, Mapping, Optional, Sequence
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from chatcap.logger import Level, Logger, new_std_logger
from chatcap.mid import _duration
from chatcap.mux import Config, web_api
from chatcap.web import Context, get_trace_id

BUILD = "develop"
_PREFIX = "SALES"
_DESCRIPTION = "CAP"

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "\u00b5s": 1e-6,
    "\u03bcs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d*\.?\d*)(ns|us|\u00b5s|\u03bcs|ms|s|m|h)")


@dataclass
class WebConfig:
    """Web server settings; timeouts are in seconds."""

    read_timeout: float = 5.0
    write_timeout: float = 10.0
    idle_timeout: float = 120.0
    shutdown_timeout: float = 20.0
    api_host: str = "0.0.0.0:3000"


class _HelpWanted(Exception):
    def __init__(self, text: str) -> None:
        super().__init__("help wanted")
        self.text = text


def _flag_name(attr: str) -> str:
    return "web-" + attr.replace("_", "-")


def _env_name(attr: str) -> str:
    return f"{_PREFIX}_WEB_{attr.upper()}"


def _is_duration(attr: str) -> bool:
    return attr.endswith("_timeout")


def _parse_duration(text: str) -> float:
    """Parse a duration such as ``5s`` or ``1m30s`` into seconds."""
    original = text
    sign = 1.0
    if text and text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {original!r}")
    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None or match.group(1) in ("", "."):
            raise ValueError(f"invalid duration {original!r}")
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def _format_duration(seconds: float) -> str:
    return _duration(round(seconds * 1_000_000_000))


def _format_value(attr: str, value: Any) -> str:
    return _format_duration(value) if _is_duration(attr) else str(value)


def _usage() -> str:
    defaults = WebConfig()
    lines = [f"Usage: cap [options...] [arguments...]", "", "OPTIONS"]
    for item in fields(WebConfig):
        kind = "<duration>" if _is_duration(item.name) else "<string>"
        default = _format_value(item.name, getattr(defaults, item.name))
        lines.append(
            f"      --{_flag_name(item.name)}/${_env_name(item.name)}  {kind}  (default: {default})"
        )
    lines.append("      --help/-h")
    lines.append("      display this help message")
    lines.append("      --version/-v")
    lines.append("      display version information")
    return "\n".join(lines)


def _config_string(cfg: WebConfig) -> str:
    lines = [f"--version={BUILD}", f"--desc={_DESCRIPTION}"]
    lines.extend(
        f"--{_flag_name(item.name)}={_format_value(item.name, getattr(cfg, item.name))}"
        for item in fields(WebConfig)
    )
    return "\n".join(lines)


def parse_config(
    argv: Optional[Sequence[str]] = None, environ: Optional[Mapping[str, str]] = None
) -> WebConfig:
    """Build the configuration from defaults, ``SALES_*`` variables and flags."""
    args = list(sys.argv[1:] if argv is None else argv)
    env = os.environ if environ is None else environ
    flags = {f"--{_flag_name(item.name)}": item.name for item in fields(WebConfig)}

    raw: dict[str, str] = {}
    for item in fields(WebConfig):
        name = _env_name(item.name)
        if name in env:
            raw[item.name] = env[name]

    items = iter(args)
    for arg in items:
        if arg in ("-h", "--help"):
            raise _HelpWanted(_usage())
        if arg in ("-v", "--version"):
            raise ValueError("version wanted")
        if not arg.startswith("--"):
            raise ValueError(f"unexpected argument {arg!r}")
        name, sep, value = arg.partition("=")
        attr = flags.get(name)
        if attr is None:
            raise ValueError(f"unknown flag {name!r}")
        if not sep:
            following = next(items, None)
            if following is None:
                raise ValueError(f"flag {name} requires a value")
            value = following
        raw[attr] = value

    cfg = WebConfig()
    for attr, value in raw.items():
        if _is_duration(attr):
            try:
                setattr(cfg, attr, _parse_duration(value))
            except ValueError as exc:
                raise ValueError(f"{_flag_name(attr)}: {exc}") from exc
        else:
            setattr(cfg, attr, value)
    return cfg


def _trace_id(ctx: Any) -> str:
    if isinstance(ctx, Context):
        return str(get_trace_id(ctx))
    return str(get_trace_id(Context()))


class _Server(ThreadingMixIn, WSGIServer):
    daemon_threads = False
    block_on_close = True


def _handler_class(error_log: Any, timeout: float) -> type:
    class _Handler(WSGIRequestHandler):
        def log_request(self, code: Any = "-", size: Any = "-") -> None:
            return None

        def log_message(self, format: str, *args: Any) -> None:
            error_log.error("%s", format % args)

    _Handler.timeout = timeout
    return _Handler


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


def _serve_forever(server: WSGIServer, failures: list) -> None:
    try:
        server.serve_forever(poll_interval=0.1)
    except Exception as exc:
        failures.append(exc)


def _shutdown(server: WSGIServer, timeout: float) -> None:
    def stop() -> None:
        server.shutdown()
        server.server_close()

    stopper = threading.Thread(target=stop, daemon=True)
    stopper.start()
    stopper.join(timeout)
    if stopper.is_alive():
        server.socket.close()
        raise RuntimeError("could not stop server gracefully: context deadline exceeded")


def _serve(ctx: Context, log: Logger, cfg: WebConfig) -> None:
    signals: list[int] = []
    failures: list[BaseException] = []

    def on_signal(signum: int, frame: Any) -> None:
        signals.append(signum)

    previous = {sig: signal.signal(sig, on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        app = web_api(Config(log=log))
        log.info(ctx, "startup", "status", "api router started", "host", cfg.api_host)
        try:
            host, port = _split_host_port(cfg.api_host)
            server = make_server(
                host,
                port,
                app,
                server_class=_Server,
                handler_class=_handler_class(new_std_logger(log, Level.ERROR), cfg.read_timeout),
            )
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"server error: {exc}") from exc

        thread = threading.Thread(target=_serve_forever, args=(server, failures), daemon=True)
        thread.start()

        while not signals and not failures:
            time.sleep(0.1)

        if failures and not signals:
            server.server_close()
            raise RuntimeError(f"server error: {failures[0]}") from failures[0]

        sig_name = signal.Signals(signals[0]).name
        log.info(ctx, "shutdown", "status", "shutdown started", "signal", sig_name)
        try:
            _shutdown(server, cfg.shutdown_timeout)
        finally:
            log.info(ctx, "shutdown", "status", "shutdown complete", "signal", sig_name)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def run(
    log: Logger,
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> None:
    """Configure and run the service until it receives SIGINT or SIGTERM."""
    ctx = Context()
    log.info(ctx, "startup", "cpus", os.cpu_count() or 1)

    try:
        cfg = parse_config(argv, environ)
    except _HelpWanted as wanted:
        print(wanted.text)
        return
    except ValueError as exc:
        raise ValueError(f"parsing config: {exc}") from exc

    log.info(ctx, "starting service", "version", BUILD)
    try:
        log.info(ctx, "startup", "config", _config_string(cfg))
        log.build_info(ctx)
        log.info(ctx, "startup", "status", "initializing V1 API support")
        _serve(ctx, log, cfg)
    finally:
        log.info(ctx, "shutdown complete")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Start the service, logging to standard output."""
    log = Logger(sys.stdout, Level.INFO, "CAP", _trace_id)
    ctx = Context()
    try:
        run(log, sys.argv[1:] if argv is None else argv)
    except Exception as err:
        log.error(ctx, "startup", "err", err)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())