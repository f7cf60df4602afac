"""Tests for poll-time progress smoothing."""

from datetime import UTC, datetime, timedelta

import pytest

from app.builds.progress import display_progress
from app.builds.schemas import PHASE_BANDS, BuildJob, BuildPhase, BuildStatus

pytestmark = pytest.mark.unit

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _job(phase: BuildPhase, progress: int, status: BuildStatus = BuildStatus.BUILDING) -> BuildJob:
    return BuildJob(
        build_id="b1",
        owner_user_id="user_a",
        status=status,
        phase=phase,
        progress=progress,
        started_at=T0,
        phase_started_at=T0,
    )


class TestDisplayProgress:
    def test_phase_start_shows_recorded_value(self):
        job = _job(BuildPhase.RESEARCH, 5)
        assert display_progress(job, T0) == 5

    def test_advances_with_elapsed_time(self):
        job = _job(BuildPhase.RESEARCH, 5)
        early = display_progress(job, T0 + timedelta(seconds=10))
        later = display_progress(job, T0 + timedelta(seconds=60))

        assert 5 <= early <= later

    def test_never_reaches_band_upper_bound(self):
        for phase, (low, high) in PHASE_BANDS.items():
            job = _job(phase, low)
            assert display_progress(job, T0 + timedelta(days=1)) <= high - 1

    def test_never_below_recorded_progress(self):
        job = _job(BuildPhase.CODE, 78)
        for seconds in (0, 1, 5, 30, 600):
            assert display_progress(job, T0 + timedelta(seconds=seconds)) >= 78

    def test_non_decreasing_over_time(self):
        job = _job(BuildPhase.STRATEGY, 30)
        values = [display_progress(job, T0 + timedelta(seconds=s)) for s in range(0, 300, 7)]
        assert values == sorted(values)

    @pytest.mark.parametrize(
        "status,phase,progress",
        [
            (BuildStatus.COMPLETED, BuildPhase.DONE, 100),
            (BuildStatus.FAILED, BuildPhase.ERROR, 27),
            (BuildStatus.CANCELLED, BuildPhase.CANCELLED, 40),
        ],
    )
    def test_terminal_jobs_show_recorded_value(self, status, phase, progress):
        job = _job(phase, progress, status=status)
        assert display_progress(job, T0 + timedelta(hours=1)) == progress

    def test_clock_skew_does_not_go_below_recorded(self):
        job = _job(BuildPhase.TESTING, 85)
        assert display_progress(job, T0 - timedelta(seconds=30)) == 85

    def test_custom_expected_seconds(self):
        job = _job(BuildPhase.RESEARCH, 5)
        fast = display_progress(job, T0 + timedelta(seconds=10), {BuildPhase.RESEARCH: 1.0})
        assert fast == 28
