"""ProgressReporter: the single write path into a BuildJob.

Every state change for a running build flows through ``apply``. The job is
read, mutated and its preview view refreshed without awaiting in between, so
two reporters interleaving on the same event loop can never lose an update.
Only after the record is consistent does the reporter mirror progress to the
project store, and that mirror is best-effort.
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from app.builds.registry import BuildRegistry
from app.builds.schemas import BuildJob, BuildPhase, BuildStatus, LogEntry, utcnow
from app.builds.updates import (
    BuildUpdate,
    Cancelled,
    Completed,
    Failed,
    FilesAdded,
    PhaseProgress,
    PhaseStarted,
    StatsUpdated,
)
from app.core.side_effects import best_effort
from app.services.projects import ProjectStore

logger = structlog.get_logger(__name__)


class ProgressReporter:
    """Applies tagged updates to jobs held in a BuildRegistry.

    Args:
        registry: Registry owning the jobs
        projects: Optional project store that mirrors progress for dashboards
        log_retention: Number of log entries kept per job (oldest dropped first)
        clock: Injectable "now" for tests
    """

    def __init__(
        self,
        registry: BuildRegistry,
        projects: ProjectStore | None = None,
        log_retention: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.projects = projects
        self.log_retention = log_retention
        self.clock = clock

    async def apply(self, build_id: str, update: BuildUpdate) -> bool:
        """Apply ``update`` to the job, then mirror it to the project store.

        Returns:
            False when the job is absent or already terminal (the update is
            dropped), True when it was applied.
        """
        job = self.registry.get(build_id)
        if job is None:
            logger.debug("update_for_absent_build", build_id=build_id, update=type(update).__name__)
            return False
        if job.is_terminal:
            logger.debug(
                "late_update_ignored",
                build_id=build_id,
                status=job.status.value,
                update=type(update).__name__,
            )
            return False

        now = self.clock()
        self._mutate(job, update, now)
        job.logs.append(LogEntry(timestamp=now, phase=job.phase.value, progress=job.progress, message=job.message))
        if len(job.logs) > self.log_retention:
            del job.logs[: len(job.logs) - self.log_retention]
        job.last_updated = now
        self.registry.refresh_file_cache(job)

        if self.projects is not None and job.project_id:
            await best_effort(
                "project_mirror_failed",
                self.projects.update_progress(
                    job.project_id,
                    progress=job.progress,
                    phase=job.phase.value,
                    message=job.message,
                    stats=job.stats.model_dump(exclude_none=True),
                ),
                build_id=build_id,
                project_id=job.project_id,
            )
        return True

    # ------------------------------------------------------------------
    # Per-kind merge rules
    # ------------------------------------------------------------------

    def _mutate(self, job: BuildJob, update: BuildUpdate, now: datetime) -> None:
        if isinstance(update, PhaseStarted):
            if update.phase != job.phase:
                job.phase_started_at = now
            job.phase = update.phase
            self._advance(job, update.progress)
            job.message = update.message
        elif isinstance(update, PhaseProgress):
            self._advance(job, update.progress)
            job.message = update.message
            job.stats = job.stats.merged(update.stats)
        elif isinstance(update, FilesAdded):
            job.files.update(update.files)
            if update.progress is not None:
                self._advance(job, update.progress)
            job.stats = job.stats.merged(update.stats)
            job.message = update.message
        elif isinstance(update, StatsUpdated):
            job.stats = job.stats.merged(update.stats)
            job.message = update.message
        elif isinstance(update, Completed):
            job.status = BuildStatus.COMPLETED
            job.phase = BuildPhase.DONE
            job.progress = 100
            job.message = update.message
            job.zip_path = update.zip_path
            job.results = dict(update.results)
            job.package = dict(update.package)
            job.completed_at = now
        elif isinstance(update, Failed):
            job.status = BuildStatus.FAILED
            job.phase = BuildPhase.ERROR
            job.message = f"Build failed: {update.error}"
            job.error = update.error
            job.error_trace = update.trace
            job.failed_at = now
        elif isinstance(update, Cancelled):
            job.status = BuildStatus.CANCELLED
            job.phase = BuildPhase.CANCELLED
            job.message = update.reason
            job.cancelled_at = now
        else:
            raise TypeError(f"Unknown build update: {type(update).__name__}")

    @staticmethod
    def _advance(job: BuildJob, progress: int) -> None:
        # Progress never moves backwards while building
        job.progress = max(job.progress, min(100, max(0, int(progress))))
