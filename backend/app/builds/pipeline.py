"""BuildPipeline: drives one build through its phases.

Phases run strictly in order, each bound to a progress band:

    initializing [0,5) -> research [5,30) -> strategy [30,50)
    -> code [50,85) -> testing [85,95) -> packaging [95,100) -> done

Every write goes through the ProgressReporter. If a write is refused (job
cancelled or evicted) the pipeline stops quietly. Any agent or packaging
exception fails the build; nothing is retried.
"""

import asyncio
import traceback
import uuid
from pathlib import Path

import structlog

from app.agent.protocol import BuildAgents
from app.agent.state import CodeArtifact, PipelineResults
from app.builds.registry import BuildRegistry
from app.builds.reporter import ProgressReporter
from app.builds.schemas import BuildPhase, BuildStats, ProjectBrief
from app.builds.updates import BuildUpdate, Completed, Failed, FilesAdded, PhaseProgress, PhaseStarted
from app.core.exceptions import AgentExecutionError, LaunchError
from app.core.logging import bound_build_context
from app.core.side_effects import best_effort
from app.packaging.packager import Packager, PackageResult, archive_layout, layout_files
from app.services.notifications import Notifier
from app.services.projects import ProjectStore

logger = structlog.get_logger(__name__)

# Recorded progress after each code artifact, in arrival order
CODE_ARTIFACT_PROGRESS = (60, 70, 78)


class _BuildAbandoned(Exception):
    """The job left `building` (or vanished) while the pipeline was running."""


class BuildPipeline:
    """Orchestrates agents, reporter and packager for a single build.

    Constructor uses dependency injection so tests can supply AgentsFake and
    in-memory collaborators without touching any real APIs.
    """

    def __init__(
        self,
        registry: BuildRegistry,
        reporter: ProgressReporter,
        agents: BuildAgents,
        packager: Packager,
        projects: ProjectStore | None = None,
        notifier: Notifier | None = None,
        is_production: bool = False,
        download_url_template: str = "/api/download/{build_id}",
    ) -> None:
        self.registry = registry
        self.reporter = reporter
        self.agents = agents
        self.packager = packager
        self.projects = projects
        self.notifier = notifier
        self.is_production = is_production
        self.download_url_template = download_url_template

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, build_id: str, brief: ProjectBrief) -> None:
        """Run every phase for ``build_id``. Never raises except on task cancellation."""
        with bound_build_context(build_id, project_name=brief.project_name):
            logger.info("build_started")
            results = PipelineResults()
            try:
                package = await self._run_phases(build_id, brief, results)
            except asyncio.CancelledError:
                logger.info("build_task_cancelled")
                raise
            except _BuildAbandoned:
                logger.info("build_abandoned")
                return
            except Exception as exc:
                await self._fail(build_id, brief, exc)
                return

            await self._complete(build_id, brief, results, package)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run_phases(self, build_id: str, brief: ProjectBrief, results: PipelineResults) -> PackageResult:
        await self._report(build_id, PhaseStarted(BuildPhase.INITIALIZING, 0, "Initializing build..."))

        # Research [5, 30)
        await self._report(build_id, PhaseStarted(BuildPhase.RESEARCH, 5, "Researching market and competitors..."))
        research = await self._phase(BuildPhase.RESEARCH, self.agents.research(brief))
        results.research = research
        await self._report(
            build_id,
            PhaseProgress(
                25,
                f"Research complete: {len(research['competitors'])} competitors analyzed",
                stats=BuildStats(
                    competitors_analyzed=len(research["competitors"]),
                    reviews_scanned=research["reviews_scanned"],
                    research_score=research["score"],
                ),
            ),
        )
        logger.info("phase_completed", phase=BuildPhase.RESEARCH.value)

        # Strategy [30, 50)
        await self._report(build_id, PhaseStarted(BuildPhase.STRATEGY, 30, "Planning product strategy..."))
        strategy = await self._phase(BuildPhase.STRATEGY, self.agents.strategy(brief, research))
        results.strategy = strategy
        await self._report(
            build_id,
            PhaseProgress(45, f"Strategy ready: {len(strategy['core_features'])} core features planned"),
        )
        logger.info("phase_completed", phase=BuildPhase.STRATEGY.value)

        # Code [50, 85)
        await self._report(build_id, PhaseStarted(BuildPhase.CODE, 50, "Generating application code..."))
        await self._generate_code(build_id, brief, results)
        await self._report(build_id, PhaseProgress(82, "Code generation complete"))
        logger.info("phase_completed", phase=BuildPhase.CODE.value)

        # Testing [85, 95)
        await self._report(build_id, PhaseStarted(BuildPhase.TESTING, 85, "Running quality checks..."))
        all_files = {
            **layout_files("frontend", results.frontend_files),
            **layout_files("backend", results.backend_files),
        }
        quality = await self._phase(BuildPhase.TESTING, self.agents.quality(brief, all_files))
        results.quality = quality
        await self._report(
            build_id,
            PhaseProgress(
                92,
                f"Quality score: {quality['score']}/100",
                stats=BuildStats(qa_score=quality["score"], tests_written=quality["tests_written"]),
            ),
        )
        logger.info("phase_completed", phase=BuildPhase.TESTING.value)

        # Packaging [95, 100)
        await self._report(build_id, PhaseStarted(BuildPhase.PACKAGING, 95, "Packaging application..."))
        package = await self.packager.package(build_id, brief.project_name, brief, results)
        logger.info("phase_completed", phase=BuildPhase.PACKAGING.value, files_written=package.files_written)
        return package

    async def _generate_code(self, build_id: str, brief: ProjectBrief, results: PipelineResults) -> None:
        """Push each code artifact to the reporter as soon as the agent yields it."""
        totals = {"files": 0, "lines": 0, "components": 0, "apis": 0}
        try:
            index = 0
            async for artifact in self.agents.generate_code(brief, results.strategy):
                files = archive_layout(artifact, first_migration=len(results.migrations) + 1)
                results.add_artifact(artifact)
                self._tally(totals, artifact, files)
                progress = CODE_ARTIFACT_PROGRESS[min(index, len(CODE_ARTIFACT_PROGRESS) - 1)]
                index += 1
                await self._report(
                    build_id,
                    FilesAdded(
                        files=files,
                        message=f"Generated {artifact.kind} ({len(files)} files)",
                        progress=progress,
                        stats=BuildStats(
                            files_generated=totals["files"],
                            lines_of_code=totals["lines"],
                            components_created=totals["components"],
                            apis_generated=totals["apis"],
                        ),
                    ),
                )
        except (asyncio.CancelledError, _BuildAbandoned):
            raise
        except Exception as exc:
            raise AgentExecutionError(BuildPhase.CODE.value, str(exc)) from exc

    @staticmethod
    def _tally(totals: dict[str, int], artifact: CodeArtifact, files: dict[str, str]) -> None:
        totals["files"] += len(files)
        totals["lines"] += sum(content.count("\n") + 1 for content in files.values() if content)
        totals["components"] += artifact.components_created
        totals["apis"] += artifact.apis_generated

    async def _phase(self, phase: BuildPhase, awaitable):
        try:
            return await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise AgentExecutionError(phase.value, str(exc)) from exc

    async def _report(self, build_id: str, update: BuildUpdate) -> None:
        if not await self.reporter.apply(build_id, update):
            raise _BuildAbandoned(build_id)

    # ------------------------------------------------------------------
    # Terminal outcomes
    # ------------------------------------------------------------------

    async def _complete(
        self,
        build_id: str,
        brief: ProjectBrief,
        results: PipelineResults,
        package: PackageResult,
    ) -> None:
        summary = results.summary()
        applied = await self.reporter.apply(
            build_id,
            Completed(zip_path=package.zip_path, results=summary, package=package.as_dict()),
        )
        if not applied:
            # Cancelled or evicted while packaging; nobody can download this archive
            Path(package.zip_path).unlink(missing_ok=True)
            logger.info("build_abandoned_after_packaging", zip_path=package.zip_path)
            return

        logger.info("build_completed", zip_path=package.zip_path, files_written=package.files_written)
        job = self.registry.get(build_id)
        if job is None:
            return

        if self.projects is not None and job.project_id:
            await best_effort(
                "project_complete_mirror_failed",
                self.projects.mark_completed(
                    job.project_id, build_id=build_id, zip_path=package.zip_path, results=summary
                ),
            )
        if self.notifier is not None:
            await best_effort(
                "build_completed_notification_failed",
                self.notifier.build_completed(
                    job.owner_user_id,
                    build_id,
                    brief.project_name,
                    self.download_url_template.format(build_id=build_id),
                ),
            )

    async def _fail(self, build_id: str, brief: ProjectBrief, exc: Exception) -> None:
        debug_id = str(uuid.uuid4())
        phase = exc.phase if isinstance(exc, AgentExecutionError) else None
        logger.error(
            "build_failed",
            debug_id=debug_id,
            phase=phase,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=not isinstance(exc, LaunchError),
        )

        message = str(exc) or type(exc).__name__
        trace = None if self.is_production else "".join(traceback.format_exception(exc))
        if not await self.reporter.apply(build_id, Failed(error=message, trace=trace)):
            return

        job = self.registry.get(build_id)
        if job is None:
            return

        if self.projects is not None and job.project_id:
            await best_effort(
                "project_failure_mirror_failed",
                self.projects.mark_failed(job.project_id, build_id=build_id, error=message),
            )
        if self.notifier is not None:
            await best_effort(
                "build_failed_notification_failed",
                self.notifier.build_failed(job.owner_user_id, build_id, brief.project_name, message),
            )
