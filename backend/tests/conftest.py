"""Shared test fixtures for all test groups."""

import pytest
from fastapi.testclient import TestClient

from app.agent.agents_fake import AgentsFake
from app.builds.pipeline import BuildPipeline
from app.builds.registry import BuildRegistry
from app.builds.reporter import ProgressReporter
from app.builds.runtime import create_runtime
from app.builds.schemas import ProjectBrief
from app.core.auth import AuthUser, require_auth
from app.core.config import Settings
from app.packaging.packager import Packager
from app.services.accounts import InMemoryAccountService
from app.services.notifications import LoggingNotifier
from app.services.projects import InMemoryProjectStore


@pytest.fixture
def archive_dir(tmp_path):
    return tmp_path / "builds"


@pytest.fixture
def settings(archive_dir):
    """Settings isolated from any local .env, archives under tmp_path."""
    return Settings(
        _env_file=None,
        environment="development",
        anthropic_api_key="",
        archive_dir=str(archive_dir),
        sweeper_enabled=False,
        default_credits=3,
    )


@pytest.fixture
def registry():
    return BuildRegistry()


@pytest.fixture
def projects():
    return InMemoryProjectStore()


@pytest.fixture
def reporter(registry, projects):
    return ProgressReporter(registry, projects=projects)


@pytest.fixture
def brief():
    return ProjectBrief(
        project_name="Task Pilot",
        description="A task manager for small remote teams with weekly planning",
        features=["Shared boards", "Weekly planning", "Slack digest"],
    )


@pytest.fixture
def make_pipeline(registry, reporter, projects, archive_dir):
    """Factory for a BuildPipeline wired to AgentsFake with the given scenario."""

    def _make(scenario: str = "happy_path", is_production: bool = False, notifier=None):
        agents = AgentsFake(scenario=scenario)
        pipeline = BuildPipeline(
            registry=registry,
            reporter=reporter,
            agents=agents,
            packager=Packager(archive_dir),
            projects=projects,
            notifier=notifier or LoggingNotifier(),
            is_production=is_production,
        )
        return pipeline, agents

    return _make


@pytest.fixture
def user_a():
    return AuthUser(user_id="user_a", claims={"sub": "user_a"})


@pytest.fixture
def user_b():
    return AuthUser(user_id="user_b", claims={"sub": "user_b"})


def override_auth(user: AuthUser):
    """Create auth override for a specific user."""

    async def _override():
        return user

    return _override


@pytest.fixture
def make_client(settings):
    """Factory for a TestClient running the full app on a fresh runtime.

    Yields (client, runtime). The client is entered so the lifespan runs and
    background build tasks keep executing between requests.
    """
    from app.main import create_app

    clients = []

    def _make(scenario: str = "happy_path", user: AuthUser | None = None, accounts=None):
        runtime = create_runtime(
            settings,
            agents=AgentsFake(scenario=scenario),
            accounts=accounts or InMemoryAccountService(default_credits=settings.default_credits),
        )
        app = create_app(runtime=runtime)
        if user is not None:
            app.dependency_overrides[require_auth] = override_auth(user)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client, runtime

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
