"""Live preview index: pure read views over a build's file map.

These functions never mutate; they behave the same on a running build's
partial files and a completed build's full set. Categories are a path
heuristic, and list and search share it so a file is always reported in
the same category by both.
"""

from collections import defaultdict
from pathlib import PurePosixPath

from app.builds.registry import BuildRegistry
from app.builds.schemas import BuildStats, FileCacheEntry

CATEGORIES = ("frontend", "backend", "database", "docs", "config", "other")

_FRONTEND_PREFIXES = ("src/", "public/", "components/", "pages/")
_FRONTEND_NAMES = ("App.", "index.")
_BACKEND_MARKERS = ("routes/", "controllers/", "middleware/", "models/", "services/", "backend/")
_BACKEND_NAMES = ("server.", "app.js", "app.ts")
_DATABASE_MARKERS = ("prisma/", "migrations/", "database/")
_DATABASE_NAMES = ("schema.",)
_CONFIG_NAMES = (
    "package.json",
    "tsconfig.json",
    "Dockerfile",
    "docker-compose.yml",
    ".gitignore",
    ".env.example",
)

CONTENT_TYPES: dict[str, str] = {
    ".js": "application/javascript",
    ".jsx": "application/javascript",
    ".ts": "application/typescript",
    ".tsx": "application/typescript",
    ".json": "application/json",
    ".css": "text/css",
    ".html": "text/html",
    ".md": "text/markdown",
    ".txt": "text/plain",
    ".xml": "application/xml",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".pdf": "application/pdf",
    ".zip": "application/zip",
}

FILE_TYPES: dict[str, str] = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".json": "json",
    ".css": "css",
    ".scss": "css",
    ".html": "html",
    ".md": "markdown",
    ".sql": "sql",
    ".prisma": "prisma",
    ".env": "env",
    ".txt": "text",
}

MIN_QUERY_LENGTH = 2
FILENAME_PREVIEW_CHARS = 200
CONTEXT_BEFORE = 50
CONTEXT_AFTER = 150


def _suffix(path: str) -> str:
    name = PurePosixPath(path).name
    if name.startswith(".env"):
        return ".env"
    return PurePosixPath(path).suffix.lower()


def _is_database(path: str) -> bool:
    name = PurePosixPath(path).name
    return (
        any(marker in path for marker in _DATABASE_MARKERS)
        or name.startswith(_DATABASE_NAMES)
        or _suffix(path) == ".sql"
    )


def categorize(path: str) -> str:
    """Coarse category for a path. First matching rule wins."""
    name = PurePosixPath(path).name
    normalized = path.removeprefix("./").lstrip("/")

    if name in _CONFIG_NAMES:
        return "config"
    # Archive trees: frontend/..., backend/... (schema included), database/...
    top, _, rest = normalized.partition("/")
    if rest and top == "frontend":
        return "frontend"
    if rest and top == "backend":
        return "database" if _is_database(rest) else "backend"
    if rest and top == "database":
        return "database"
    if _is_database(normalized):
        return "database"
    if normalized.startswith(_FRONTEND_PREFIXES):
        return "frontend"
    if any(marker in normalized for marker in _BACKEND_MARKERS) or name.startswith(_BACKEND_NAMES):
        return "backend"
    if name.startswith(_FRONTEND_NAMES):
        return "frontend"
    if _suffix(path) in (".jsx", ".tsx", ".css", ".html"):
        return "frontend"
    if _suffix(path) == ".md":
        return "docs"
    return "other"


def content_type(path: str) -> str:
    return CONTENT_TYPES.get(PurePosixPath(path).suffix.lower(), "text/plain")


def file_type(path: str) -> str:
    return FILE_TYPES.get(_suffix(path), "other")


def list_files(files: dict[str, str], category: str | None = None) -> dict:
    """List files (optionally one category) with a directory tree.

    Returns:
        {"files": [{path, name, category, type, size}], "file_tree": {dir: [names]}}
        where top-level files sit under ``root``.
    """
    listed = []
    tree: dict[str, list[str]] = defaultdict(list)

    for path in sorted(files):
        file_category = categorize(path)
        if category and file_category != category:
            continue
        pure = PurePosixPath(path)
        listed.append({
            "path": path,
            "name": pure.name,
            "category": file_category,
            "type": file_type(path),
            "size": len(files[path].encode("utf-8")),
        })
        directory = str(pure.parent)
        tree["root" if directory in ("", ".") else directory].append(pure.name)

    return {"files": listed, "file_tree": dict(tree)}


def search(
    files: dict[str, str],
    query: str,
    file_type_filter: str | None = None,
    limit: int = 50,
) -> list[dict]:
    """Case-insensitive search over paths and contents.

    A path hit carries the file's first 200 characters; a content hit carries
    a window of 50 chars before to 150 after the first match, plus its index.

    Raises:
        ValueError: If the query is shorter than two characters
    """
    if len(query.strip()) < MIN_QUERY_LENGTH:
        raise ValueError(f"Search query must be at least {MIN_QUERY_LENGTH} characters")

    needle = query.lower()
    matches = []
    for path in sorted(files):
        if len(matches) >= limit:
            break
        ftype = file_type(path)
        if file_type_filter and ftype != file_type_filter:
            continue

        content = files[path]
        base = {"path": path, "type": ftype, "category": categorize(path)}
        if needle in path.lower():
            matches.append({**base, "match_type": "filename", "preview": content[:FILENAME_PREVIEW_CHARS]})
            continue

        index = content.lower().find(needle)
        if index != -1:
            start = max(0, index - CONTEXT_BEFORE)
            matches.append({
                **base,
                "match_type": "content",
                "context": content[start : index + CONTEXT_AFTER],
                "position": index,
            })
    return matches


def file_stats(files: dict[str, str]) -> dict:
    """File count, UTF-8 byte total and per-type breakdown."""
    by_type: dict[str, dict[str, int]] = {}
    by_category: dict[str, int] = defaultdict(int)
    total_bytes = 0

    for path, content in files.items():
        size = len(content.encode("utf-8"))
        total_bytes += size
        bucket = by_type.setdefault(file_type(path), {"count": 0, "size": 0})
        bucket["count"] += 1
        bucket["size"] += size
        by_category[categorize(path)] += 1

    return {
        "total_files": len(files),
        "total_size": total_bytes,
        "by_type": by_type,
        "by_category": dict(by_category),
    }


def resolve_build_files(registry: BuildRegistry, build_id: str) -> FileCacheEntry | None:
    """Preview view for a build: the cache entry, else a view built from the job."""
    entry = registry.file_cache(build_id)
    if entry is not None:
        return entry
    job = registry.get(build_id)
    if job is None:
        return None
    return FileCacheEntry(files=dict(job.files), stats=job.stats or BuildStats(), last_updated=job.last_updated)
