"""Retention sweeper for build records and archives.

Two independent passes:
- registry sweep (hourly): evicts jobs whose started_at is older than the TTL,
  deleting their archive and cancelling any task still running
- archive sweep (every 6h): deletes stale ``*.zip`` files straight from the
  archive directory, catching archives whose job was lost (restart, eviction)
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import structlog

from app.builds.registry import BuildRegistry
from app.builds.schemas import utcnow

logger = structlog.get_logger(__name__)


class RetentionSweeper:
    """Evicts expired builds and archives on fixed intervals.

    Args:
        registry: Registry to sweep
        archive_dir: Directory holding finished archives
        ttl_seconds: Age (from started_at / file mtime) after which things go
        registry_interval_seconds: Period of the registry sweep loop
        archive_interval_seconds: Period of the archive-directory sweep loop
        clock: Injectable "now" for tests
    """

    def __init__(
        self,
        registry: BuildRegistry,
        archive_dir: str | Path,
        ttl_seconds: int = 24 * 3600,
        registry_interval_seconds: float = 3600,
        archive_interval_seconds: float = 6 * 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.archive_dir = Path(archive_dir)
        self.ttl = timedelta(seconds=ttl_seconds)
        self.registry_interval_seconds = registry_interval_seconds
        self.archive_interval_seconds = archive_interval_seconds
        self.clock = clock
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def sweep_registry(self, now: datetime | None = None) -> int:
        """Evict every job started more than ``ttl`` ago.

        Returns:
            Number of jobs removed
        """
        now = now or self.clock()
        cutoff = now - self.ttl
        expired = [job for job in self.registry.list_all() if job.started_at < cutoff]

        for job in expired:
            if job.zip_path:
                try:
                    Path(job.zip_path).unlink(missing_ok=True)
                except OSError as e:
                    logger.warning(
                        "archive_delete_failed",
                        build_id=job.build_id,
                        zip_path=job.zip_path,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
            self.registry.cancel_task(job.build_id)
            self.registry.delete(job.build_id)
            logger.info(
                "expired_build_removed",
                build_id=job.build_id,
                status=job.status.value,
                age_hours=round((now - job.started_at).total_seconds() / 3600, 1),
            )

        if expired:
            logger.info("registry_sweep_complete", removed=len(expired), remaining=len(self.registry))
        return len(expired)

    def sweep_archive_dir(self, now: datetime | None = None) -> int:
        """Delete ``*.zip`` files in the archive directory older than ``ttl``.

        Returns:
            Number of files deleted
        """
        if not self.archive_dir.is_dir():
            return 0

        now = now or self.clock()
        cutoff = (now - self.ttl).timestamp()
        removed = 0

        for path in self.archive_dir.glob("*.zip"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
                    logger.info("stale_archive_removed", path=str(path))
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("stale_archive_delete_failed", path=str(path), error=str(e), error_type=type(e).__name__)

        if removed:
            logger.info("archive_sweep_complete", removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start both sweep loops on the running event loop. Idempotent."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._loop("registry", self.sweep_registry, self.registry_interval_seconds)),
            asyncio.create_task(self._loop("archive", self.sweep_archive_dir, self.archive_interval_seconds)),
        ]
        logger.info(
            "retention_sweeper_started",
            ttl_hours=self.ttl.total_seconds() / 3600,
            archive_dir=str(self.archive_dir),
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("retention_sweeper_stopped")

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def _loop(self, name: str, sweep: Callable[[], int], interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                sweep()
            except Exception as e:
                logger.error("sweep_failed", sweep=name, error=str(e), error_type=type(e).__name__, exc_info=True)
