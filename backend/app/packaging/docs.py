"""Generated documentation and scaffolding for the download archive.

Rendered from the phase results with Jinja2 templates, never from the LLM,
so every archive ships the same set of files regardless of what the agents
produced.
"""

from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from jinja2 import Environment, FileSystemLoader

from app.agent.state import PipelineResults
from app.builds.schemas import ProjectBrief
from app.packaging.sanitizer import clean_value

TEMPLATE_DIR = Path(__file__).parent / "templates"

# Archive path -> template name
DOCUMENT_TEMPLATES: dict[str, str] = {
    "README.md": "README.md.j2",
    "RESEARCH_REPORT.md": "RESEARCH_REPORT.md.j2",
    "STRATEGIC_PLAN.md": "STRATEGIC_PLAN.md.j2",
    "DEPLOYMENT_GUIDE.md": "DEPLOYMENT_GUIDE.md.j2",
    "ARCHITECTURE.md": "ARCHITECTURE.md.j2",
    "API_DOCUMENTATION.md": "API_DOCUMENTATION.md.j2",
    "backend/.env.example": "env.example.j2",
    ".gitignore": "gitignore.j2",
    "backend/Dockerfile": "backend.Dockerfile.j2",
    "frontend/Dockerfile": "frontend.Dockerfile.j2",
    "docker-compose.yml": "docker-compose.yml.j2",
}


def migration_filename(index: int, name: str) -> str:
    """``3, "Add Users"`` -> ``003_add_users.sql``"""
    return f"{index:03d}_{slugify(name, separator='_') or 'migration'}.sql"


def slugify(value: str, separator: str = "-") -> str:
    chars = [ch.lower() if ch.isalnum() else " " for ch in value]
    return separator.join("".join(chars).split())


def scrub(value):
    """Clean every string inside a phase result; list items left empty are dropped."""
    if isinstance(value, str):
        return clean_value(value)
    if isinstance(value, dict):
        return {key: scrub(item) for key, item in value.items()}
    if isinstance(value, list):
        items = [scrub(item) for item in value]
        return [item for item in items if item != ""]
    return value


class DocumentationRenderer:
    """Render the fixed documentation set for one build."""

    def __init__(self, app_name: str = "Launch AI"):
        self.app_name = app_name
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=False,  # Markdown and config files must not be escaped
            keep_trailing_newline=True,
            trim_blocks=False,
        )

    def render_all(
        self,
        project_name: str,
        brief: ProjectBrief,
        results: PipelineResults,
        generated_date: str | None = None,
    ) -> dict[str, str]:
        """Return archive path -> content for every generated document."""
        context = self._context(project_name, brief, results, generated_date)
        return {
            path: self.env.get_template(template).render(**context)
            for path, template in DOCUMENT_TEMPLATES.items()
        }

    def _context(
        self,
        project_name: str,
        brief: ProjectBrief,
        results: PipelineResults,
        generated_date: str | None,
    ) -> dict:
        routes = [
            {"name": PurePosixPath(path).stem, "path": path}
            for path in sorted(results.backend_files)
            if path.startswith("routes/") or "/routes/" in path
        ]
        return {
            "app_name": self.app_name,
            "project_name": project_name,
            "slug": slugify(project_name, separator="_") or "app",
            "brief": brief.model_dump(),
            "research": scrub(results.research or {}),
            "strategy": scrub(results.strategy or {}),
            "quality": scrub(results.quality or {}),
            "frontend_files": sorted(results.frontend_files),
            "backend_files": sorted(results.backend_files),
            "migrations": [
                {"name": m["name"], "filename": migration_filename(i, m["name"])}
                for i, m in enumerate(results.migrations, start=1)
            ],
            "has_schema": results.schema is not None,
            "routes": routes,
            "generated_date": generated_date or datetime.now(UTC).strftime("%Y-%m-%d"),
        }
