"""Build lifecycle notifications (in-app and email).

All methods are called through ``best_effort``; an implementation may raise
freely without affecting the build.
"""

from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class Notifier(Protocol):
    async def build_started(self, user_id: str, build_id: str, project_name: str) -> None: ...

    async def build_completed(self, user_id: str, build_id: str, project_name: str, download_url: str) -> None: ...

    async def build_failed(self, user_id: str, build_id: str, project_name: str, error: str) -> None: ...


class LoggingNotifier:
    """Notifier that only emits structured log events."""

    async def build_started(self, user_id: str, build_id: str, project_name: str) -> None:
        logger.info("notify_build_started", user_id=user_id, build_id=build_id, project_name=project_name)

    async def build_completed(self, user_id: str, build_id: str, project_name: str, download_url: str) -> None:
        logger.info(
            "notify_build_completed",
            user_id=user_id,
            build_id=build_id,
            project_name=project_name,
            download_url=download_url,
        )

    async def build_failed(self, user_id: str, build_id: str, project_name: str, error: str) -> None:
        logger.info("notify_build_failed", user_id=user_id, build_id=build_id, project_name=project_name, error=error)
