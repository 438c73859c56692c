"""The chat application's HTTP handlers and routes."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from chatcap.web import App, Context, Request

_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
)


@dataclass(frozen=True)
class Status:
    """A simple status reply."""

    status: str

    def encode(self) -> tuple[bytes, str]:
        """Return the JSON body and its content type."""
        text = json.dumps({"status": self.status}, ensure_ascii=False, separators=(",", ":"))
        for char, escaped in _JSON_ESCAPES:
            text = text.replace(char, escaped)
        return text.encode("utf-8"), "application/json"


def test(ctx: Context, request: Request) -> Any:
    """Report that the service is up."""
    return Status(status="ok")


def routes(app: App) -> None:
    """Bind the chat routes to ``app``."""
    app.handler_func("GET", "", "/test", test)