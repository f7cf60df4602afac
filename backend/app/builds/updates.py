"""Tagged update types accepted by the ProgressReporter.

Each kind carries only the fields it may change, so the merge rules live
with the type rather than in "whatever keys are present" conventions.
"""

from dataclasses import dataclass, field

from app.builds.schemas import BuildPhase, BuildStats


@dataclass(frozen=True)
class PhaseStarted:
    """Job enters a new phase at the band's starting percentage."""

    phase: BuildPhase
    progress: int
    message: str


@dataclass(frozen=True)
class PhaseProgress:
    """Progress inside the current phase, optionally with new stats."""

    progress: int
    message: str
    stats: BuildStats | None = None


@dataclass(frozen=True)
class FilesAdded:
    """Partial file map produced mid-phase (live preview increments).

    Keyed by archive path (``frontend/src/App.js``) so the preview matches
    the download.
    """

    files: dict[str, str]
    message: str
    progress: int | None = None
    stats: BuildStats | None = None


@dataclass(frozen=True)
class StatsUpdated:
    stats: BuildStats
    message: str = "Stats updated"


@dataclass(frozen=True)
class Completed:
    """Terminal success. Requires a packaged archive."""

    zip_path: str
    results: dict = field(default_factory=dict)
    package: dict = field(default_factory=dict)
    message: str = "Build complete! App is ready to download."


@dataclass(frozen=True)
class Failed:
    """Terminal failure. Partial files and stats are kept."""

    error: str
    trace: str | None = None


@dataclass(frozen=True)
class Cancelled:
    reason: str = "Cancelled by user"


BuildUpdate = PhaseStarted | PhaseProgress | FilesAdded | StatsUpdated | Completed | Failed | Cancelled
