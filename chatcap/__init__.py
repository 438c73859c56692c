"""A small JSON HTTP service with structured logging, middleware and a log formatter."""

__version__ = "0.1.0"