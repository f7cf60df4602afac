"""BuildAgents Protocol: the seam between the build pipeline and the LLMs.

Implementations:
- AgentsFake: deterministic scenarios for tests and keyless local runs
- AgentsReal: Anthropic-backed agents used when an API key is configured

All four methods are awaited (or iterated) by the pipeline one phase at a
time; any exception they raise fails the build.
"""

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from app.agent.state import CodeArtifact, QualityReport, ResearchReport, StrategyPlan
from app.builds.schemas import ProjectBrief


@runtime_checkable
class BuildAgents(Protocol):
    """Protocol for the four content-generating agents."""

    async def research(self, brief: ProjectBrief) -> ResearchReport:
        """Analyse the market and competitors for the brief."""
        ...

    async def strategy(self, brief: ProjectBrief, research: ResearchReport) -> StrategyPlan:
        """Turn research into positioning, features and a tech stack."""
        ...

    def generate_code(self, brief: ProjectBrief, strategy: StrategyPlan) -> AsyncIterator[CodeArtifact]:
        """Yield code artifacts (frontend, backend, database) as each is ready.

        Returned as an async iterator so partial output reaches the live
        preview before the whole phase finishes.
        """
        ...

    async def quality(self, brief: ProjectBrief, files: dict[str, str]) -> QualityReport:
        """Review the generated files and score them."""
        ...
