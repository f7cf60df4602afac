"""Poll-time progress smoothing.

Pure functions with no external dependencies. The recorded progress only
moves at phase boundaries and artifact pushes; the value shown to a polling
client eases towards the top of the current phase band while the phase runs,
so the bar keeps moving without any background timer writing to the job.
"""

import math
from datetime import datetime

from app.builds.schemas import PHASE_BANDS, BuildJob, BuildPhase

# Seconds after which a phase is ~63% of the way through its band
EXPECTED_PHASE_SECONDS: dict[BuildPhase, float] = {
    BuildPhase.INITIALIZING: 5.0,
    BuildPhase.RESEARCH: 60.0,
    BuildPhase.STRATEGY: 45.0,
    BuildPhase.CODE: 120.0,
    BuildPhase.TESTING: 40.0,
    BuildPhase.PACKAGING: 15.0,
}


def display_progress(
    job: BuildJob,
    now: datetime,
    expected_phase_seconds: dict[BuildPhase, float] | None = None,
) -> int:
    """Compute the progress value to show for ``job`` at ``now``.

    Args:
        job: Build job snapshot
        now: Poll time
        expected_phase_seconds: Override for the per-phase easing constant

    Returns:
        Integer percentage. Equal to the recorded progress for terminal jobs
        and for phases without a band; otherwise never below the recorded
        progress and always strictly below the band's upper bound.

    Pure function -- deterministic, no side effects.
    """
    if job.is_terminal:
        return job.progress

    band = PHASE_BANDS.get(job.phase)
    if band is None:
        return job.progress

    low, high = band
    ceiling = high - 1
    if job.progress >= ceiling:
        return job.progress

    expected = (expected_phase_seconds or EXPECTED_PHASE_SECONDS).get(job.phase, 60.0)
    elapsed = max(0.0, (now - job.phase_started_at).total_seconds())

    base = max(job.progress, low)
    eased = base + (ceiling - base) * (1 - math.exp(-elapsed / expected))
    return max(job.progress, min(ceiling, int(eased)))
