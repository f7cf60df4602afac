"""Correlation ID middleware for request tracing.

Provides:
- ASGI middleware that stamps an X-Request-ID on every request/response
- Helper to read the current request's correlation ID (error handlers, logs)

The structlog processor in app.core.logging reads the same context var, so
every log line emitted while serving a request carries the ID.
"""

import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

HEADER_NAME = "X-Request-ID"


def setup_correlation_middleware(app: FastAPI) -> None:
    """Add correlation ID middleware to the FastAPI app.

    A client-supplied X-Request-ID is echoed back unchanged; otherwise a new
    UUID4 is generated.
    """
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=HEADER_NAME,
        generator=lambda: str(uuid.uuid4()),
        validator=None,  # Accept any format
        transformer=lambda a: a,
    )


def get_correlation_id() -> str | None:
    """Current request's correlation ID, or None outside a request."""
    return correlation_id.get(None)


__all__ = ["HEADER_NAME", "setup_correlation_middleware", "get_correlation_id"]
