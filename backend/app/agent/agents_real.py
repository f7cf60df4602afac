"""AgentsReal: Anthropic-backed implementation of the BuildAgents protocol.

Every agent asks Claude for a JSON object, with:
- Tenacity retry on 529 OverloadedError (see llm_helpers)
- Markdown fence stripping before JSON parsing
- One stricter re-ask on the first parse failure

Code generation makes one call per artifact kind and yields each result as
soon as it parses, so the live preview fills in while later calls run.
"""

import json
from collections.abc import AsyncIterator

import structlog
from anthropic import AsyncAnthropic

from app.agent.llm_helpers import _complete_json
from app.agent.state import CodeArtifact, QualityReport, ResearchReport, StrategyPlan
from app.builds.schemas import ProjectBrief
from app.core.config import Settings

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = """You are one agent in an automated product studio that turns a founder's idea
into a working full-stack application. Be concrete and practical. Every answer you give
is parsed by a program: respond with a single JSON object and nothing else.

{task_instructions}"""

RESEARCH_TASK = """Analyse the market for the product below. Return JSON with keys:
summary (string), market_size (string), competitors (list of {name, strengths, weaknesses}),
opportunities (list of strings), reviews_scanned (int, app-store and forum reviews you drew on),
score (int 0-100, how strong the opportunity is)."""

STRATEGY_TASK = """Turn the research into an MVP strategy. Return JSON with keys:
summary, positioning, core_features (list of strings), monetization,
roadmap (list of strings), tech_stack (object mapping layer to technology)."""

FRONTEND_TASK = """Write the frontend for the MVP. Return JSON with keys:
files (object mapping relative path, e.g. "src/App.js", to full file content),
components_created (int). Do not wrap file contents in markdown fences."""

BACKEND_TASK = """Write the backend API for the MVP. Return JSON with keys:
files (object mapping relative path, e.g. "routes/users.js", to full file content),
apis_generated (int, number of HTTP endpoints). Do not wrap file contents in markdown fences."""

DATABASE_TASK = """Design the database for the MVP. Return JSON with keys:
migrations (ordered list of {name, sql}), schema (Prisma schema as a string, or null)."""

QUALITY_TASK = """Review the generated application files. Return JSON with keys:
score (int 0-100), tests_written (int), issues (list of strings), summary (string)."""

# Cap on file content sent to the QA agent
QUALITY_CONTEXT_CHARS = 60_000


def _brief_block(brief: ProjectBrief) -> str:
    return json.dumps(brief.model_dump(), indent=2)


class AgentsReal:
    """Production BuildAgents using the Anthropic Messages API.

    Args:
        settings: Provides the API key and one model name per agent
        client: Optional pre-built AsyncAnthropic (tests inject a mock)
    """

    def __init__(self, settings: Settings, client: AsyncAnthropic | None = None) -> None:
        self.settings = settings
        self.client = client or AsyncAnthropic(api_key=settings.anthropic_api_key)

    async def research(self, brief: ProjectBrief) -> ResearchReport:
        data = await _complete_json(
            self.client,
            self.settings.research_model,
            SYSTEM_PROMPT.format(task_instructions=RESEARCH_TASK),
            f"Product brief:\n{_brief_block(brief)}",
        )
        return {
            "summary": str(data.get("summary", "")),
            "market_size": str(data.get("market_size", "")),
            "competitors": [
                {
                    "name": str(c.get("name", "")),
                    "strengths": list(c.get("strengths", [])),
                    "weaknesses": list(c.get("weaknesses", [])),
                }
                for c in data.get("competitors", [])
                if isinstance(c, dict)
            ],
            "opportunities": list(data.get("opportunities", [])),
            "reviews_scanned": int(data.get("reviews_scanned", 0)),
            "score": int(data.get("score", 0)),
        }

    async def strategy(self, brief: ProjectBrief, research: ResearchReport) -> StrategyPlan:
        data = await _complete_json(
            self.client,
            self.settings.strategy_model,
            SYSTEM_PROMPT.format(task_instructions=STRATEGY_TASK),
            f"Product brief:\n{_brief_block(brief)}\n\nResearch:\n{json.dumps(research, indent=2)}",
        )
        return {
            "summary": str(data.get("summary", "")),
            "positioning": str(data.get("positioning", "")),
            "core_features": list(data.get("core_features", brief.features)),
            "monetization": str(data.get("monetization", "")),
            "roadmap": list(data.get("roadmap", [])),
            "tech_stack": dict(data.get("tech_stack", {})),
        }

    async def generate_code(self, brief: ProjectBrief, strategy: StrategyPlan) -> AsyncIterator[CodeArtifact]:
        context = f"Product brief:\n{_brief_block(brief)}\n\nStrategy:\n{json.dumps(strategy, indent=2)}"

        frontend = await self._code_call(FRONTEND_TASK, context)
        yield CodeArtifact(
            kind="frontend",
            files=_string_files(frontend.get("files")),
            components_created=int(frontend.get("components_created", 0)),
        )

        backend = await self._code_call(BACKEND_TASK, context)
        yield CodeArtifact(
            kind="backend",
            files=_string_files(backend.get("files")),
            apis_generated=int(backend.get("apis_generated", 0)),
        )

        database = await self._code_call(DATABASE_TASK, context)
        migrations = [
            {"name": str(m.get("name", f"migration_{i}")), "sql": str(m.get("sql", ""))}
            for i, m in enumerate(database.get("migrations", []), start=1)
            if isinstance(m, dict)
        ]
        schema = database.get("schema") or None
        files = {f"migrations/{i:03d}_{m['name']}.sql": m["sql"] for i, m in enumerate(migrations, start=1)}
        if schema:
            files["prisma/schema.prisma"] = str(schema)
        yield CodeArtifact(kind="database", files=files, migrations=migrations, schema=schema)

    async def quality(self, brief: ProjectBrief, files: dict[str, str]) -> QualityReport:
        listing = []
        budget = QUALITY_CONTEXT_CHARS
        for path, content in files.items():
            if budget <= 0:
                listing.append(f"--- {path} (omitted)")
                continue
            excerpt = content[:budget]
            budget -= len(excerpt)
            listing.append(f"--- {path}\n{excerpt}")

        data = await _complete_json(
            self.client,
            self.settings.qa_model,
            SYSTEM_PROMPT.format(task_instructions=QUALITY_TASK),
            f"Product brief:\n{_brief_block(brief)}\n\nFiles:\n" + "\n".join(listing),
        )
        return {
            "score": int(data.get("score", 0)),
            "tests_written": int(data.get("tests_written", 0)),
            "issues": [str(i) for i in data.get("issues", [])],
            "summary": str(data.get("summary", "")),
        }

    async def _code_call(self, task: str, context: str) -> dict:
        return await _complete_json(
            self.client,
            self.settings.code_model,
            SYSTEM_PROMPT.format(task_instructions=task),
            context,
            max_tokens=16000,
        )


def _string_files(raw) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(path): str(content) for path, content in raw.items()}
