"""Turn structured JSON log lines into readable text."""

from __future__ import annotations

import argparse
import json
import math
import signal
import sys
from decimal import Decimal
from typing import Any, Optional, Sequence

_HEADER_KEYS = ("service", "time", "file", "level", "trace_id", "msg")
_ZERO_TRACE_ID = "00000000-0000-0000-0000-000000000000"


def _parse_number(text: str) -> float:
    value = float(text)
    if math.isinf(value):
        raise ValueError(f"number {text} out of range")
    return value


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid literal {name}")


def _format_float(value: float) -> str:
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    number = Decimal(repr(value)).normalize()
    sign, digits, exponent = number.as_tuple()
    exp10 = len(digits) + exponent - 1
    if exp10 < -4 or exp10 >= 21:
        mantissa = str(digits[0])
        if len(digits) > 1:
            mantissa += "." + "".join(map(str, digits[1:]))
        exp_sign = "-" if exp10 < 0 else "+"
        return f"{'-' if sign else ''}{mantissa}e{exp_sign}{abs(exp10):02d}"
    return format(number, "f")


def _render(value: Any, verb: str) -> str:
    """Render a decoded JSON value the way the log viewer prints it."""
    if isinstance(value, str):
        return value
    if value is None:
        return "<nil>" if verb == "v" else "%!s(<nil>)"
    if isinstance(value, bool):
        text = "true" if value else "false"
        return text if verb == "v" else f"%!s(bool={text})"
    if isinstance(value, (int, float)):
        text = _format_float(float(value))
        return text if verb == "v" else f"%!s(float64={text})"
    if isinstance(value, dict):
        inner = " ".join(f"{key}:{_render(value[key], verb)}" for key in sorted(value))
        return f"map[{inner}]"
    if isinstance(value, list):
        return "[" + " ".join(_render(item, verb) for item in value) + "]"
    return str(value)


def format_line(line: str, service: str = "") -> Optional[str]:
    """Format one log line, or return None when it is filtered out."""
    service = service.lower()
    try:
        entry = json.loads(
            line,
            parse_int=_parse_number,
            parse_float=_parse_number,
            parse_constant=_reject_constant,
        )
    except ValueError:
        entry = None
    if not isinstance(entry, dict):
        return None if service else line

    if service:
        name = entry.get("service")
        if not isinstance(name, str) or name.lower() != service:
            return None

    trace_id = _render(entry["trace_id"], "v") if "trace_id" in entry else _ZERO_TRACE_ID
    head = [_render(entry.get(key), "s") for key in ("service", "time", "file", "level")]
    head.append(trace_id)
    head.append(_render(entry.get("msg"), "s"))
    rest = [
        f"{key}[{_render(value, 'v')}]"
        for key, value in entry.items()
        if key not in _HEADER_KEYS
    ]
    return ": ".join(head + rest)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Read log lines from stdin and print them in readable form."""
    parser = argparse.ArgumentParser(
        prog="logfmt", description="Convert structured log output into readable text."
    )
    parser.add_argument(
        "-service", "--service", dest="service", default="",
        help="filter which service to see",
    )
    args = parser.parse_args(argv)

    for raw in sys.stdin:
        line = raw.rstrip("\n")
        if line.endswith("\r"):
            line = line[:-1]
        out = format_line(line, args.service)
        if out is not None:
            print(out)
    return 0


if __name__ == "__main__":
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    sys.exit(main())