"""Build job types, phase bands and identifiers."""

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel


class BuildStatus(str, Enum):
    """Build lifecycle states. Only BUILDING may transition."""

    BUILDING = "building"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {BuildStatus.COMPLETED, BuildStatus.FAILED, BuildStatus.CANCELLED}


class BuildPhase(str, Enum):
    """Descriptive phase label. Drives percentage bands, never control flow."""

    INITIALIZING = "initializing"
    RESEARCH = "research"
    STRATEGY = "strategy"
    CODE = "code"
    TESTING = "testing"
    PACKAGING = "packaging"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


# Half-open [low, high) progress band per running phase
PHASE_BANDS: dict[BuildPhase, tuple[int, int]] = {
    BuildPhase.INITIALIZING: (0, 5),
    BuildPhase.RESEARCH: (5, 30),
    BuildPhase.STRATEGY: (30, 50),
    BuildPhase.CODE: (50, 85),
    BuildPhase.TESTING: (85, 95),
    BuildPhase.PACKAGING: (95, 100),
}

PHASE_LABELS: dict[str, str] = {
    BuildPhase.INITIALIZING.value: "Initializing...",
    BuildPhase.RESEARCH.value: "Researching the market...",
    BuildPhase.STRATEGY.value: "Planning strategy...",
    BuildPhase.CODE.value: "Writing code...",
    BuildPhase.TESTING.value: "Running quality checks...",
    BuildPhase.PACKAGING.value: "Packaging application...",
    BuildPhase.DONE.value: "Build complete!",
    BuildPhase.ERROR.value: "Build failed",
    BuildPhase.CANCELLED.value: "Build cancelled",
}

_BUILD_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_build_id() -> str:
    """Return a fresh ``build_<epoch-ms>_<9 base36 chars>`` identifier."""
    suffix = "".join(secrets.choice(_BUILD_ID_ALPHABET) for _ in range(9))
    return f"build_{int(time.time() * 1000)}_{suffix}"


def utcnow() -> datetime:
    return datetime.now(UTC)


class ProjectBrief(BaseModel):
    """What the founder asked for. Fed to every agent."""

    project_name: str
    description: str
    target_country: str = "Global"
    target_platform: str = "web"
    framework: str = "react"
    database: str = "postgresql"
    features: list[str] = []


class BuildStats(BaseModel):
    """Cumulative build counters. Callers always send running totals."""

    files_generated: int | None = None
    lines_of_code: int | None = None
    competitors_analyzed: int | None = None
    reviews_scanned: int | None = None
    components_created: int | None = None
    apis_generated: int | None = None
    tests_written: int | None = None
    qa_score: int | None = None
    research_score: int | None = None

    def merged(self, delta: "BuildStats | None") -> "BuildStats":
        """Return a copy with every field present in ``delta`` overwritten."""
        if delta is None:
            return self.model_copy()
        return self.model_copy(update=delta.model_dump(exclude_none=True))


class LogEntry(BaseModel):
    timestamp: datetime
    phase: str
    progress: int
    message: str


@dataclass
class BuildJob:
    """Mutable in-memory record for one build.

    Mutated only by the ProgressReporter; everything else reads.
    """

    build_id: str
    owner_user_id: str
    project_id: str | None = None
    metadata: dict = field(default_factory=dict)

    status: BuildStatus = BuildStatus.BUILDING
    phase: BuildPhase = BuildPhase.INITIALIZING
    progress: int = 0
    message: str = ""
    stats: BuildStats = field(default_factory=BuildStats)
    logs: list[LogEntry] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)

    started_at: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)
    phase_started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None

    # Set only on COMPLETED
    zip_path: str | None = None
    results: dict | None = None
    package: dict | None = None

    # Set only on FAILED
    error: str | None = None
    error_trace: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_building(self) -> bool:
        return self.status == BuildStatus.BUILDING

    def elapsed_seconds(self, now: datetime | None = None) -> int:
        end = self.completed_at or self.failed_at or self.cancelled_at or now or utcnow()
        return max(0, int((end - self.started_at).total_seconds()))


@dataclass
class FileCacheEntry:
    """Read view over a build's files, refreshed on every reporter write."""

    files: dict[str, str]
    stats: BuildStats
    last_updated: datetime
