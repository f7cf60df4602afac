"""BuildRegistry: in-memory store of build jobs, file-cache views and tasks.

Single authority for job lookup by build_id. Owned by the BuildRuntime; one
instance per process, one fresh instance per test. Nothing here awaits, so
every method is atomic with respect to the event loop.
"""

import asyncio
from collections import Counter

import structlog

from app.builds.schemas import BuildJob, BuildStatus, FileCacheEntry

logger = structlog.get_logger(__name__)


class BuildRegistry:
    """Keyed store of BuildJob records plus their preview cache and task handle."""

    def __init__(self) -> None:
        self._jobs: dict[str, BuildJob] = {}
        self._file_cache: dict[str, FileCacheEntry] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create(
        self,
        build_id: str,
        owner_user_id: str,
        project_id: str | None = None,
        metadata: dict | None = None,
    ) -> BuildJob:
        """Insert a fresh job in status=building, phase=initializing, progress=0.

        A duplicate build_id replaces the previous record. Ids are unique in
        practice, so the overwrite is only logged.
        """
        if build_id in self._jobs:
            logger.warning("build_id_overwritten", build_id=build_id)

        job = BuildJob(
            build_id=build_id,
            owner_user_id=owner_user_id,
            project_id=project_id,
            metadata=dict(metadata or {}),
        )
        self._jobs[build_id] = job
        self._file_cache.pop(build_id, None)
        return job

    def get(self, build_id: str) -> BuildJob | None:
        return self._jobs.get(build_id)

    def delete(self, build_id: str) -> bool:
        """Remove job, file-cache view and task handle. Idempotent.

        Does not cancel the task; callers that need that use cancel_task first.

        Returns:
            True if a job record was removed
        """
        self._file_cache.pop(build_id, None)
        self._tasks.pop(build_id, None)
        removed = self._jobs.pop(build_id, None) is not None
        if removed:
            logger.debug("build_removed", build_id=build_id)
        return removed

    def list_all(self) -> list[BuildJob]:
        return list(self._jobs.values())

    def list_for_user(self, user_id: str) -> list[BuildJob]:
        return [job for job in self._jobs.values() if job.owner_user_id == user_id]

    def counts_by_status(self) -> dict[str, int]:
        counts = Counter(job.status.value for job in self._jobs.values())
        return {status.value: counts.get(status.value, 0) for status in BuildStatus}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, build_id: object) -> bool:
        return build_id in self._jobs

    # ------------------------------------------------------------------
    # File cache (live preview view)
    # ------------------------------------------------------------------

    def file_cache(self, build_id: str) -> FileCacheEntry | None:
        return self._file_cache.get(build_id)

    def refresh_file_cache(self, job: BuildJob) -> FileCacheEntry:
        """Rebuild the preview view for ``job`` from its current files and stats."""
        entry = FileCacheEntry(
            files=dict(job.files),
            stats=job.stats.model_copy(),
            last_updated=job.last_updated,
        )
        self._file_cache[job.build_id] = entry
        return entry

    def clear_file_cache(self, build_id: str) -> bool:
        """Drop only the preview view. The job record is untouched."""
        return self._file_cache.pop(build_id, None) is not None

    def file_cache_ids(self) -> list[str]:
        return list(self._file_cache.keys())

    # ------------------------------------------------------------------
    # Task ownership
    # ------------------------------------------------------------------

    def attach_task(self, build_id: str, task: asyncio.Task) -> None:
        """Record the task driving ``build_id``. The handle is released when it finishes."""
        self._tasks[build_id] = task

        def _release(done: asyncio.Task) -> None:
            if self._tasks.get(build_id) is done:
                self._tasks.pop(build_id, None)

        task.add_done_callback(_release)

    def task_for(self, build_id: str) -> asyncio.Task | None:
        return self._tasks.get(build_id)

    def cancel_task(self, build_id: str) -> bool:
        """Cancel the build's running task, if any.

        Returns:
            True if a live task was asked to cancel
        """
        task = self._tasks.pop(build_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("build_task_cancelled", build_id=build_id)
        return True
