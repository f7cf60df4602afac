"""AgentsFake: Scenario-based test double for the BuildAgents protocol.

Provides deterministic, instant responses for 5 named scenarios:
- happy_path: Every phase succeeds with realistic content
- research_failure: Research agent raises "rate limited"
- code_failure: Code agent yields the frontend, then raises
- contaminated: Frontend output carries LLM artifacts (fences, special tokens,
  box-drawing placeholders) that packaging must clean or drop
- slow: Research blocks until ``release`` is set (cancellation tests)

Also used as the default agents when no Anthropic key is configured.
"""

import asyncio
from collections.abc import AsyncIterator

from app.agent.state import CodeArtifact, QualityReport, ResearchReport, StrategyPlan
from app.builds.schemas import ProjectBrief


class AgentsFake:
    """Scenario-based test double for BuildAgents."""

    VALID_SCENARIOS = {"happy_path", "research_failure", "code_failure", "contaminated", "slow"}

    def __init__(self, scenario: str = "happy_path"):
        """Initialize AgentsFake with a named scenario.

        Raises:
            ValueError: If scenario is not recognized
        """
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(
                f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}"
            )
        self.scenario = scenario
        self.release = asyncio.Event()
        self.calls: list[str] = []

    async def research(self, brief: ProjectBrief) -> ResearchReport:
        self.calls.append("research")
        if self.scenario == "research_failure":
            raise RuntimeError("rate limited")
        if self.scenario == "slow":
            await self.release.wait()

        return {
            "summary": f"{brief.project_name} targets an underserved niche in {brief.target_country}.",
            "market_size": "$2.4B",
            "competitors": [
                {
                    "name": "TaskFlow",
                    "strengths": ["Polished mobile app", "Strong brand"],
                    "weaknesses": ["Expensive team plans", "No offline mode"],
                },
                {
                    "name": "Listly",
                    "strengths": ["Free tier"],
                    "weaknesses": ["Dated UI", "Slow support"],
                },
                {
                    "name": "DoneDeal",
                    "strengths": ["Integrations"],
                    "weaknesses": ["Steep learning curve"],
                },
            ],
            "opportunities": [
                "Simple onboarding for non-technical teams",
                "Transparent flat pricing",
            ],
            "reviews_scanned": 1250,
            "score": 78,
        }

    async def strategy(self, brief: ProjectBrief, research: ResearchReport) -> StrategyPlan:
        self.calls.append("strategy")
        features = brief.features or ["User accounts", "Dashboard", "Notifications"]
        return {
            "summary": f"Launch {brief.project_name} as a focused {brief.target_platform} MVP.",
            "positioning": "The simplest tool for small teams who outgrew spreadsheets.",
            "core_features": features,
            "monetization": "Freemium with a $9/month pro plan",
            "roadmap": ["Week 1-2: core flows", "Week 3: billing", "Week 4: launch"],
            "tech_stack": {
                "frontend": brief.framework,
                "backend": "express",
                "database": brief.database,
            },
        }

    async def generate_code(self, brief: ProjectBrief, strategy: StrategyPlan) -> AsyncIterator[CodeArtifact]:
        self.calls.append("code")
        yield self._frontend_artifact()
        if self.scenario == "code_failure":
            raise RuntimeError("Code generation produced invalid backend output")
        yield self._backend_artifact()
        yield self._database_artifact()

    async def quality(self, brief: ProjectBrief, files: dict[str, str]) -> QualityReport:
        self.calls.append("quality")
        return {
            "score": 86,
            "tests_written": 12,
            "issues": ["Add rate limiting to auth routes"],
            "summary": f"Reviewed {len(files)} files; no blocking issues.",
        }

    # ------------------------------------------------------------------
    # Canned artifacts
    # ------------------------------------------------------------------

    def _frontend_artifact(self) -> CodeArtifact:
        files = {
            "src/App.js": (
                "import React from 'react';\n"
                "import Dashboard from './components/Dashboard';\n\n"
                "export default function App() {\n"
                "  return <Dashboard />;\n"
                "}\n"
            ),
            "src/components/Dashboard.jsx": (
                "export default function Dashboard() {\n"
                "  return <main><h1>Dashboard</h1></main>;\n"
                "}\n"
            ),
            "public/index.html": "<!DOCTYPE html>\n<html><body><div id=\"root\"></div></body></html>\n",
            "package.json": '{\n  "name": "frontend",\n  "dependencies": {"react": "^18.2.0"}\n}\n',
        }
        if self.scenario == "contaminated":
            files["App.js"] = "```js\nconsole.log(1)\n```"
            files["src/components/Broken.jsx"] = "<|start_header_id|>assistant<|end_header_id\nexport default null;\n"
            files["src/components/Placeholder.jsx"] = "┌──────────┐\n│          │\n└──────────┘\n"
        return CodeArtifact(kind="frontend", files=files, components_created=2)

    def _backend_artifact(self) -> CodeArtifact:
        files = {
            "server.js": (
                "const express = require('express');\n"
                "const users = require('./routes/users');\n\n"
                "const app = express();\n"
                "app.use(express.json());\n"
                "app.use('/api/users', users);\n"
                "app.listen(process.env.PORT || 5000);\n"
            ),
            "routes/users.js": (
                "const router = require('express').Router();\n"
                "const controller = require('../controllers/users');\n\n"
                "router.get('/', controller.list);\n"
                "router.post('/', controller.create);\n\n"
                "module.exports = router;\n"
            ),
            "controllers/users.js": (
                "exports.list = async (req, res) => res.json([]);\n"
                "exports.create = async (req, res) => res.status(201).json(req.body);\n"
            ),
            "package.json": '{\n  "name": "backend",\n  "dependencies": {"express": "^4.18.2"}\n}\n',
        }
        return CodeArtifact(kind="backend", files=files, apis_generated=2)

    def _database_artifact(self) -> CodeArtifact:
        schema = (
            "datasource db {\n  provider = \"postgresql\"\n  url = env(\"DATABASE_URL\")\n}\n\n"
            "model User {\n  id    Int    @id @default(autoincrement())\n  email String @unique\n}\n"
        )
        migrations = [
            {"name": "create_users", "sql": "CREATE TABLE users (id SERIAL PRIMARY KEY, email TEXT UNIQUE NOT NULL);\n"},
            {"name": "create_tasks", "sql": "CREATE TABLE tasks (id SERIAL PRIMARY KEY, user_id INT REFERENCES users(id));\n"},
        ]
        files = {"prisma/schema.prisma": schema}
        for index, migration in enumerate(migrations, start=1):
            files[f"migrations/{index:03d}_{migration['name']}.sql"] = migration["sql"]
        return CodeArtifact(kind="database", files=files, migrations=migrations, schema=schema)
