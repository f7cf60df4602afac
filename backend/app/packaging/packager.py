"""Packager: turns accumulated phase results into one downloadable zip.

Archive layout:
    frontend/<path>                      frontend files
    backend/<path>                       backend files
    backend/prisma/schema.prisma         ORM schema, when generated
    database/migrations/NNN_<name>.sql   migrations, numbered from 001
    README.md, *.md, Dockerfiles, ...    generated docs and scaffolding

Every LLM-produced file goes through the sanitizer first; irredeemable
files are left out and reported in ``skipped_files``.
"""

import asyncio
import contextlib
import functools
import time
import zipfile
from dataclasses import asdict, dataclass, field
from pathlib import Path

import structlog

from app.agent.state import CodeArtifact, PipelineResults
from app.builds.schemas import ProjectBrief
from app.core.exceptions import PackagingError
from app.packaging.docs import DocumentationRenderer, migration_filename, slugify
from app.packaging.sanitizer import sanitize

logger = structlog.get_logger(__name__)

SCHEMA_PATH = "backend/prisma/schema.prisma"


def layout_files(kind: str, files: dict[str, str]) -> dict[str, str]:
    """Prefix generated frontend or backend paths with their archive directory."""
    return {f"{kind}/{path.lstrip('/')}": content for path, content in files.items()}


def layout_database(migrations: list[dict], schema: str | None, first_index: int = 1) -> dict[str, str]:
    layout = {
        f"database/migrations/{migration_filename(index, migration['name'])}": migration["sql"]
        for index, migration in enumerate(migrations, start=first_index)
    }
    if schema:
        layout[SCHEMA_PATH] = schema
    return layout


def archive_layout(artifact: CodeArtifact, first_migration: int = 1) -> dict[str, str]:
    """Archive path -> raw content for one code artifact.

    These are the paths the archive will use, so a live preview keyed by them
    matches the download. ``first_migration`` is the number the artifact's
    first migration gets, i.e. one more than the migrations already collected.
    """
    if artifact.kind == "database":
        return layout_database(artifact.migrations, artifact.schema, first_migration)
    return layout_files(artifact.kind, artifact.files)


def archive_entries(results: PipelineResults) -> dict[str, str]:
    """Archive path -> raw content for everything the code phase produced."""
    return {
        **layout_files("frontend", results.frontend_files),
        **layout_files("backend", results.backend_files),
        **layout_database(results.migrations, results.schema),
    }


@dataclass
class SkippedFile:
    path: str
    reason: str


@dataclass
class PackageResult:
    zip_path: str
    files_written: int
    total_bytes: int
    skipped_files: list[SkippedFile] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "files_written": self.files_written,
            "total_bytes": self.total_bytes,
            "skipped_files": [asdict(s) for s in self.skipped_files],
        }


def _discard_archive(build_id: str, zip_path: Path, write: asyncio.Future) -> None:
    if not write.cancelled() and write.exception() is not None:
        logger.warning("package_write_failed_after_cancel", build_id=build_id, error=str(write.exception()))
    with contextlib.suppress(OSError):
        zip_path.unlink(missing_ok=True)
    logger.info("package_cancelled", build_id=build_id, zip_path=str(zip_path))


class Packager:
    """Builds archives into ``archive_dir`` (shared by all builds).

    Args:
        archive_dir: Directory for finished archives, created on demand
        renderer: Documentation renderer (injectable for tests)
    """

    def __init__(self, archive_dir: str | Path, renderer: DocumentationRenderer | None = None) -> None:
        self.archive_dir = Path(archive_dir)
        self.renderer = renderer or DocumentationRenderer()

    async def package(
        self,
        build_id: str,
        project_name: str,
        brief: ProjectBrief,
        results: PipelineResults,
    ) -> PackageResult:
        """Sanitize, assemble and zip one build's output.

        Raises:
            PackagingError: On any I/O or compression failure. No partial
                archive is left behind.
            asyncio.CancelledError: Re-raised as is; an archive the worker
                thread finishes afterwards is deleted.
        """
        entries, skipped = self.collect_entries(project_name, brief, results)
        for item in skipped:
            logger.warning("package_file_skipped", build_id=build_id, path=item.path, reason=item.reason)

        slug = slugify(project_name, separator="_") or "app"
        zip_path = self.archive_dir / f"{slug}_{int(time.time() * 1000)}.zip"

        write = asyncio.ensure_future(asyncio.to_thread(self._write_zip, zip_path, entries))
        try:
            total_bytes = await asyncio.shield(write)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; drop its archive once it returns
            write.add_done_callback(functools.partial(_discard_archive, build_id, zip_path))
            raise
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as exc:
            with contextlib.suppress(OSError):
                zip_path.unlink(missing_ok=True)
            logger.error("package_write_failed", build_id=build_id, zip_path=str(zip_path), error=str(exc))
            raise PackagingError(f"Failed to write archive: {exc}") from exc

        result = PackageResult(
            zip_path=str(zip_path),
            files_written=len(entries),
            total_bytes=total_bytes,
            skipped_files=skipped,
        )
        logger.info(
            "package_complete",
            build_id=build_id,
            zip_path=result.zip_path,
            files_written=result.files_written,
            total_bytes=result.total_bytes,
            skipped=len(skipped),
        )
        return result

    def collect_entries(
        self,
        project_name: str,
        brief: ProjectBrief,
        results: PipelineResults,
    ) -> tuple[dict[str, str], list[SkippedFile]]:
        """Return (archive path -> content, skipped files) without touching disk."""
        entries: dict[str, str] = {}
        skipped: list[SkippedFile] = []

        def add(archive_path: str, content: str) -> None:
            outcome = sanitize(content)
            if outcome.skipped:
                skipped.append(SkippedFile(path=archive_path, reason=outcome.reason or "contaminated"))
                return
            entries[archive_path] = outcome.content

        for archive_path, content in archive_entries(results).items():
            add(archive_path, content)

        # Templated docs win over any same-named generated file
        entries.update(self.renderer.render_all(project_name, brief, results))
        return entries, skipped

    def _write_zip(self, zip_path: Path, entries: dict[str, str]) -> int:
        """Blocking zip write. Runs in a worker thread."""
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zipf:
            for arcname, content in sorted(entries.items()):
                zipf.writestr(arcname, content)
        return zip_path.stat().st_size
