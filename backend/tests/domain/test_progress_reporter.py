"""Tests for ProgressReporter merge rules and lifecycle guards."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from app.builds.registry import BuildRegistry
from app.builds.reporter import ProgressReporter
from app.builds.schemas import BuildPhase, BuildStats, BuildStatus
from app.builds.updates import (
    Cancelled,
    Completed,
    Failed,
    FilesAdded,
    PhaseProgress,
    PhaseStarted,
    StatsUpdated,
)
from app.services.projects import InMemoryProjectStore

pytestmark = pytest.mark.unit


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reporter_with_clock(registry, projects, clock):
    return ProgressReporter(registry, projects=projects, clock=clock)


class TestAbsentAndTerminal:
    async def test_absent_job_is_noop(self, reporter):
        applied = await reporter.apply("missing", PhaseProgress(10, "hello"))
        assert applied is False

    @pytest.mark.parametrize(
        "terminal",
        [
            Completed(zip_path="/tmp/x.zip"),
            Failed(error="boom"),
            Cancelled(),
        ],
    )
    async def test_terminal_job_absorbs_late_writes(self, registry, reporter, terminal):
        job = registry.create("b1", "user_a")
        await reporter.apply("b1", terminal)
        status, logs = job.status, len(job.logs)

        applied = await reporter.apply("b1", FilesAdded(files={"late.js": "x"}, message="late"))

        assert applied is False
        assert job.status == status
        assert "late.js" not in job.files
        assert len(job.logs) == logs


class TestProgress:
    async def test_progress_is_monotonic(self, registry, reporter):
        job = registry.create("b1", "user_a")
        observed = []

        for value in [5, 25, 20, 30, 10, 45, 44, 50]:
            await reporter.apply("b1", PhaseProgress(value, f"at {value}"))
            observed.append(job.progress)

        assert observed == sorted(observed)
        assert job.progress == 50

    async def test_progress_clamped_to_100(self, registry, reporter):
        job = registry.create("b1", "user_a")
        await reporter.apply("b1", PhaseProgress(250, "too far"))
        assert job.progress == 100

    async def test_completed_sets_100(self, registry, reporter):
        job = registry.create("b1", "user_a")
        await reporter.apply("b1", PhaseProgress(95, "packaging"))

        await reporter.apply("b1", Completed(zip_path="/tmp/a.zip", results={"k": 1}, package={"files_written": 3}))

        assert job.status == BuildStatus.COMPLETED
        assert job.phase == BuildPhase.DONE
        assert job.progress == 100
        assert job.zip_path == "/tmp/a.zip"
        assert job.results == {"k": 1}
        assert job.completed_at is not None

    async def test_failed_keeps_last_progress_and_partial_files(self, registry, reporter):
        job = registry.create("b1", "user_a")
        await reporter.apply("b1", FilesAdded(files={"a.js": "1"}, message="a", progress=60))

        await reporter.apply("b1", Failed(error="rate limited", trace="Traceback..."))

        assert job.status == BuildStatus.FAILED
        assert job.phase == BuildPhase.ERROR
        assert job.progress == 60
        assert job.error == "rate limited"
        assert job.error_trace == "Traceback..."
        assert job.files == {"a.js": "1"}
        assert job.zip_path is None
        assert job.results is None

    async def test_phase_started_resets_phase_clock(self, registry, reporter_with_clock, clock):
        job = registry.create("b1", "user_a")
        clock.advance(30)

        await reporter_with_clock.apply("b1", PhaseStarted(BuildPhase.RESEARCH, 5, "research"))

        assert job.phase == BuildPhase.RESEARCH
        assert job.phase_started_at == clock.now

        clock.advance(10)
        await reporter_with_clock.apply("b1", PhaseProgress(20, "still researching"))
        assert job.phase_started_at == clock.now - timedelta(seconds=10)


class TestMerging:
    async def test_file_merge_is_additive(self, registry, reporter):
        job = registry.create("b1", "user_a")

        await reporter.apply("b1", FilesAdded(files={"x.js": "1"}, message="phase A"))
        await reporter.apply("b1", FilesAdded(files={"x.js": "2", "y.js": "3"}, message="phase B"))

        assert job.files == {"x.js": "2", "y.js": "3"}

    async def test_stats_merge_overwrites_present_fields_only(self, registry, reporter):
        job = registry.create("b1", "user_a")

        await reporter.apply("b1", StatsUpdated(BuildStats(files_generated=4, lines_of_code=100)))
        await reporter.apply("b1", StatsUpdated(BuildStats(files_generated=9)))

        assert job.stats.files_generated == 9
        assert job.stats.lines_of_code == 100

    async def test_file_cache_tracks_job(self, registry, reporter):
        registry.create("b1", "user_a")

        await reporter.apply("b1", FilesAdded(files={"src/App.js": "x"}, message="frontend", stats=BuildStats(files_generated=1)))

        entry = registry.file_cache("b1")
        assert entry.files == {"src/App.js": "x"}
        assert entry.stats.files_generated == 1


class TestLogs:
    async def test_logs_bounded_to_last_50_in_order(self, registry, reporter):
        job = registry.create("b1", "user_a")

        for i in range(60):
            await reporter.apply("b1", PhaseProgress(i, f"update {i}"))

        assert len(job.logs) == 50
        assert [entry.message for entry in job.logs] == [f"update {i}" for i in range(10, 60)]

    async def test_log_entry_reflects_new_state(self, registry, reporter):
        job = registry.create("b1", "user_a")

        await reporter.apply("b1", PhaseStarted(BuildPhase.STRATEGY, 30, "planning"))

        entry = job.logs[-1]
        assert (entry.phase, entry.progress, entry.message) == ("strategy", 30, "planning")

    async def test_custom_retention(self, registry, projects):
        reporter = ProgressReporter(registry, projects=projects, log_retention=3)
        job = registry.create("b1", "user_a")

        for i in range(5):
            await reporter.apply("b1", PhaseProgress(i, str(i)))

        assert [e.message for e in job.logs] == ["2", "3", "4"]


class TestProjectMirror:
    async def test_mirrors_progress_to_project(self, registry, reporter, projects: InMemoryProjectStore):
        project_id = await projects.create_project("user_a", "X", "desc", {})
        registry.create("b1", "user_a", project_id=project_id)

        await reporter.apply("b1", PhaseProgress(25, "research done", stats=BuildStats(competitors_analyzed=3)))

        project = await projects.get_project(project_id)
        assert project["progress"] == 25
        assert project["message"] == "research done"
        assert project["stats"] == {"competitors_analyzed": 3}

    async def test_mirror_failure_is_swallowed(self):
        registry = BuildRegistry()
        store = AsyncMock()
        store.update_progress.side_effect = RuntimeError("db down")
        reporter = ProgressReporter(registry, projects=store)
        job = registry.create("b1", "user_a", project_id="p1")

        applied = await reporter.apply("b1", PhaseProgress(10, "ok"))

        assert applied is True
        assert job.progress == 10
        store.update_progress.assert_awaited_once()

    async def test_no_mirror_without_project(self):
        registry = BuildRegistry()
        store = AsyncMock()
        reporter = ProgressReporter(registry, projects=store)
        registry.create("b1", "user_a")

        await reporter.apply("b1", PhaseProgress(10, "ok"))

        store.update_progress.assert_not_called()
