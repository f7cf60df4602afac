"""Typed results passed between build phases.

Each content-generating agent returns one of these shapes. The pipeline
accumulates them into PipelineResults, which the packager and the poll
endpoint both read.
"""

from dataclasses import dataclass, field
from typing import TypedDict


class Competitor(TypedDict):
    name: str
    strengths: list[str]
    weaknesses: list[str]


class ResearchReport(TypedDict):
    """Output of the research agent."""

    summary: str
    market_size: str
    competitors: list[Competitor]
    opportunities: list[str]
    reviews_scanned: int
    score: int  # 0-100 confidence in the opportunity


class StrategyPlan(TypedDict):
    """Output of the strategy agent."""

    summary: str
    positioning: str
    core_features: list[str]
    monetization: str
    roadmap: list[str]
    tech_stack: dict[str, str]


class Migration(TypedDict):
    name: str
    sql: str


class QualityReport(TypedDict):
    """Output of the QA agent."""

    score: int  # 0-100
    tests_written: int
    issues: list[str]
    summary: str


@dataclass
class CodeArtifact:
    """One increment produced by the code agent.

    ``files`` are keyed by path relative to the artifact's own tree
    (``src/App.js``, ``routes/users.js``); archive prefixes are applied
    by ``archive_layout`` for both the preview and the download.
    """

    kind: str  # "frontend" | "backend" | "database"
    files: dict[str, str]
    components_created: int = 0
    apis_generated: int = 0
    migrations: list[Migration] = field(default_factory=list)
    schema: str | None = None


@dataclass
class PipelineResults:
    """Everything the phases produced for one build."""

    research: ResearchReport | None = None
    strategy: StrategyPlan | None = None
    frontend_files: dict[str, str] = field(default_factory=dict)
    backend_files: dict[str, str] = field(default_factory=dict)
    migrations: list[Migration] = field(default_factory=list)
    schema: str | None = None
    quality: QualityReport | None = None

    def add_artifact(self, artifact: CodeArtifact) -> None:
        if artifact.kind == "frontend":
            self.frontend_files.update(artifact.files)
        elif artifact.kind == "backend":
            self.backend_files.update(artifact.files)
        elif artifact.kind == "database":
            self.migrations.extend(artifact.migrations)
            if artifact.schema:
                self.schema = artifact.schema
        else:
            raise ValueError(f"Unknown code artifact kind: {artifact.kind}")

    def summary(self) -> dict:
        """Compact view returned to pollers once the build completes."""
        research = self.research or {}
        strategy = self.strategy or {}
        quality = self.quality or {}
        return {
            "research_summary": research.get("summary", ""),
            "competitors": [c["name"] for c in research.get("competitors", [])],
            "positioning": strategy.get("positioning", ""),
            "core_features": strategy.get("core_features", []),
            "frontend_files": len(self.frontend_files),
            "backend_files": len(self.backend_files),
            "migrations": len(self.migrations),
            "has_schema": self.schema is not None,
            "qa_score": quality.get("score"),
            "qa_issues": quality.get("issues", []),
        }
