"""Project records: the durable-side view of a founder's project.

The build backend only mirrors into this store; it never reads build state
back out of it. ``InMemoryProjectStore`` keeps the service runnable on its
own and is what tests use.
"""

import uuid
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class ProjectStore(Protocol):
    async def create_project(self, owner_user_id: str, name: str, description: str, metadata: dict) -> str:
        """Create a project record and return its id."""
        ...

    async def get_project(self, project_id: str) -> dict | None: ...

    async def update_progress(
        self, project_id: str, *, progress: int, phase: str, message: str, stats: dict
    ) -> None: ...

    async def mark_completed(self, project_id: str, *, build_id: str, zip_path: str, results: dict) -> None: ...

    async def mark_failed(self, project_id: str, *, build_id: str, error: str) -> None: ...

    async def record_download(self, project_id: str, *, build_id: str) -> None: ...


class InMemoryProjectStore:
    """Dict-backed ProjectStore."""

    def __init__(self) -> None:
        self.projects: dict[str, dict] = {}

    async def create_project(self, owner_user_id: str, name: str, description: str, metadata: dict) -> str:
        project_id = str(uuid.uuid4())
        self.projects[project_id] = {
            "id": project_id,
            "owner_user_id": owner_user_id,
            "name": name,
            "description": description,
            "metadata": dict(metadata),
            "status": "building",
            "progress": 0,
            "phase": "initializing",
            "message": "",
            "stats": {},
            "created_at": datetime.now(UTC),
            "last_build_id": None,
            "last_downloaded_at": None,
            "download_count": 0,
        }
        logger.info("project_created", project_id=project_id, owner_user_id=owner_user_id)
        return project_id

    async def get_project(self, project_id: str) -> dict | None:
        return self.projects.get(project_id)

    async def update_progress(
        self, project_id: str, *, progress: int, phase: str, message: str, stats: dict
    ) -> None:
        project = self._require(project_id)
        project.update(progress=progress, phase=phase, message=message, stats=dict(stats))

    async def mark_completed(self, project_id: str, *, build_id: str, zip_path: str, results: dict) -> None:
        project = self._require(project_id)
        project.update(
            status="completed",
            progress=100,
            last_build_id=build_id,
            zip_path=zip_path,
            results=dict(results),
            completed_at=datetime.now(UTC),
        )

    async def mark_failed(self, project_id: str, *, build_id: str, error: str) -> None:
        project = self._require(project_id)
        project.update(status="failed", last_build_id=build_id, error=error)

    async def record_download(self, project_id: str, *, build_id: str) -> None:
        project = self._require(project_id)
        project["last_downloaded_at"] = datetime.now(UTC)
        project["download_count"] += 1

    def _require(self, project_id: str) -> dict:
        project = self.projects.get(project_id)
        if project is None:
            raise KeyError(f"Unknown project: {project_id}")
        return project
