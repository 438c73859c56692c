"""Routing: binds every application route to one handler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chatcap import mid
from chatcap.chatapp import routes
from chatcap.logger import Logger
from chatcap.web import App


@dataclass
class Config:
    """The systems every handler needs."""

    log: Logger


def web_api(cfg: Config) -> App:
    """Build the application with all routes and middleware bound."""

    def log_fn(ctx: Any, msg: str, *args: Any) -> None:
        cfg.log.info(ctx, msg, *args)

    app = App(
        log_fn,
        mid.logger(cfg.log),
        mid.errors(cfg.log),
        mid.panics(),
    )
    routes(app)
    return app