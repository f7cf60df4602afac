"""BuildRuntime: the single owner of all shared build state.

Constructed once in the FastAPI lifespan (``app.state.runtime``) and once per
test. Everything that touches the registry gets it from here; there are no
module-level registries.
"""

import asyncio
from dataclasses import dataclass

import structlog

from app.agent.agents_fake import AgentsFake
from app.agent.agents_real import AgentsReal
from app.agent.protocol import BuildAgents
from app.builds.pipeline import BuildPipeline
from app.builds.registry import BuildRegistry
from app.builds.reporter import ProgressReporter
from app.builds.schemas import ProjectBrief
from app.builds.sweeper import RetentionSweeper
from app.builds.updates import Cancelled
from app.core.config import Settings
from app.packaging.docs import DocumentationRenderer
from app.packaging.packager import Packager
from app.services.accounts import AccountService, InMemoryAccountService
from app.services.notifications import LoggingNotifier, Notifier
from app.services.projects import InMemoryProjectStore, ProjectStore

logger = structlog.get_logger(__name__)


@dataclass
class BuildRuntime:
    settings: Settings
    registry: BuildRegistry
    reporter: ProgressReporter
    pipeline: BuildPipeline
    sweeper: RetentionSweeper
    projects: ProjectStore
    accounts: AccountService
    notifier: Notifier

    def launch(self, build_id: str, brief: ProjectBrief) -> asyncio.Task:
        """Start the pipeline for an already-registered job as a background task."""
        task = asyncio.create_task(self.pipeline.run(build_id, brief), name=f"build:{build_id}")
        self.registry.attach_task(build_id, task)
        return task

    async def cancel(self, build_id: str, reason: str = "Cancelled by user") -> bool:
        """Mark the job cancelled, stop its task and drop it from the registry.

        Returns:
            False if the job was unknown
        """
        if self.registry.get(build_id) is None:
            return False
        await self.reporter.apply(build_id, Cancelled(reason=reason))
        self.registry.cancel_task(build_id)
        self.registry.delete(build_id)
        logger.info("build_cancelled", build_id=build_id, reason=reason)
        return True

    async def shutdown(self) -> None:
        await self.sweeper.stop()
        for job in self.registry.list_all():
            self.registry.cancel_task(job.build_id)


def select_agents(settings: Settings) -> BuildAgents:
    """AgentsReal when an Anthropic key is configured, otherwise the happy-path fake."""
    if settings.anthropic_api_key:
        return AgentsReal(settings)
    logger.warning("anthropic_key_missing_using_fake_agents")
    return AgentsFake(scenario="happy_path")


def create_runtime(
    settings: Settings,
    agents: BuildAgents | None = None,
    projects: ProjectStore | None = None,
    accounts: AccountService | None = None,
    notifier: Notifier | None = None,
) -> BuildRuntime:
    """Wire registry, reporter, packager, pipeline and sweeper together."""
    registry = BuildRegistry()
    projects = projects or InMemoryProjectStore()
    accounts = accounts or InMemoryAccountService(default_credits=settings.default_credits)
    notifier = notifier or LoggingNotifier()

    reporter = ProgressReporter(registry, projects=projects, log_retention=settings.log_retention)
    packager = Packager(settings.archive_dir, renderer=DocumentationRenderer(app_name=settings.app_name))
    pipeline = BuildPipeline(
        registry=registry,
        reporter=reporter,
        agents=agents or select_agents(settings),
        packager=packager,
        projects=projects,
        notifier=notifier,
        is_production=settings.is_production,
        download_url_template=f"{settings.backend_url}/api/download/{{build_id}}",
    )
    sweeper = RetentionSweeper(
        registry,
        archive_dir=settings.archive_dir,
        ttl_seconds=settings.build_ttl_seconds,
        registry_interval_seconds=settings.registry_sweep_interval_seconds,
        archive_interval_seconds=settings.archive_sweep_interval_seconds,
    )
    return BuildRuntime(
        settings=settings,
        registry=registry,
        reporter=reporter,
        pipeline=pipeline,
        sweeper=sweeper,
        projects=projects,
        accounts=accounts,
        notifier=notifier,
    )
