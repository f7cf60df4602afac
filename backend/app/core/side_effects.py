"""Fire-and-forget wrapper for side effects that must never fail a build.

Project-record mirroring, notifications and email all go through
``best_effort``: the awaitable runs inline, any exception is logged as a
warning and swallowed, and the caller continues.
"""

from collections.abc import Awaitable
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def best_effort(event: str, awaitable: Awaitable[T], **log_fields) -> T | None:
    """Await ``awaitable`` and return its result, or None if it raised.

    Args:
        event: Log event name emitted on failure (e.g. "project_mirror_failed")
        awaitable: The side-effect coroutine to run
        **log_fields: Extra structured fields for the failure log line

    Returns:
        The awaitable's result, or None when it raised.
    """
    try:
        return await awaitable
    except Exception as exc:
        logger.warning(
            event,
            error=str(exc),
            error_type=type(exc).__name__,
            **log_fields,
        )
        return None
