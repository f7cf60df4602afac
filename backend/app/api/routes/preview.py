"""Live preview routes: unauthenticated reads over a build's current files.

Served with open CORS (see PreviewCORSMiddleware) so an iframe on any origin
can render a build while it is still generating.
"""

import json
from pathlib import PurePosixPath

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from app.api.deps import get_runtime
from app.builds.runtime import BuildRuntime
from app.builds.schemas import FileCacheEntry
from app.preview.index import (
    CATEGORIES,
    categorize,
    content_type,
    file_stats,
    list_files,
    resolve_build_files,
    search,
)

router = APIRouter()

MISSING_FILE_SAMPLE = 20


def _entry_or_404(runtime: BuildRuntime, build_id: str) -> FileCacheEntry:
    entry = resolve_build_files(runtime.registry, build_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Build not found or expired")
    return entry


def _file_or_404(entry: FileCacheEntry, file_path: str) -> str:
    content = entry.files.get(file_path)
    if content is None:
        raise HTTPException(
            status_code=404,
            detail={
                "message": "File not found",
                "path": file_path,
                "available_files": sorted(entry.files)[:MISSING_FILE_SAMPLE],
            },
        )
    return content


@router.get("/health")
async def preview_health(runtime: BuildRuntime = Depends(get_runtime)):
    return {
        "status": "healthy",
        "service": "live-preview",
        "cached_builds": len(runtime.registry.file_cache_ids()),
    }


@router.get("/list")
async def list_previews(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    runtime: BuildRuntime = Depends(get_runtime),
):
    """Builds that currently have a preview view, most recently updated first."""
    entries = []
    for build_id in runtime.registry.file_cache_ids():
        entry = runtime.registry.file_cache(build_id)
        if entry is None:
            continue
        job = runtime.registry.get(build_id)
        entries.append({
            "build_id": build_id,
            "status": job.status.value if job else None,
            "file_count": len(entry.files),
            "last_updated": entry.last_updated,
        })
    entries.sort(key=lambda e: e["last_updated"], reverse=True)
    return {"builds": entries[offset : offset + limit], "total": len(entries), "limit": limit, "offset": offset}


@router.post("/clear/{build_id}")
async def clear_preview(build_id: str, runtime: BuildRuntime = Depends(get_runtime)):
    """Drop the preview view only. The build record is untouched."""
    cleared = runtime.registry.clear_file_cache(build_id)
    return {"success": True, "build_id": build_id, "cleared": cleared}


@router.get("/{build_id}")
async def preview_info(build_id: str, runtime: BuildRuntime = Depends(get_runtime)):
    entry = _entry_or_404(runtime, build_id)
    job = runtime.registry.get(build_id)
    categories = {category: 0 for category in CATEGORIES}
    for path in entry.files:
        categories[categorize(path)] += 1

    return {
        "build_id": build_id,
        "status": job.status.value if job else None,
        "phase": job.phase.value if job else None,
        "progress": job.progress if job else None,
        "project_name": job.metadata.get("project_name") if job else None,
        "file_count": len(entry.files),
        "categories": categories,
        "stats": entry.stats.model_dump(exclude_none=True),
        "last_updated": entry.last_updated,
        "endpoints": {
            "files": f"/api/preview/{build_id}/files",
            "bundle": f"/api/preview/{build_id}/bundle",
            "search": f"/api/preview/{build_id}/search",
            "stats": f"/api/preview/{build_id}/stats",
        },
    }


@router.get("/{build_id}/files")
async def preview_files(
    build_id: str,
    category: str | None = Query(default=None),
    runtime: BuildRuntime = Depends(get_runtime),
):
    if category is not None and category not in CATEGORIES:
        raise HTTPException(status_code=400, detail=f"Unknown category: {category}. Valid: {', '.join(CATEGORIES)}")
    entry = _entry_or_404(runtime, build_id)
    listing = list_files(entry.files, category)
    return {
        "build_id": build_id,
        "category": category,
        "total": len(listing["files"]),
        **listing,
    }


@router.get("/{build_id}/file/{file_path:path}")
async def preview_file(build_id: str, file_path: str, runtime: BuildRuntime = Depends(get_runtime)):
    entry = _entry_or_404(runtime, build_id)
    content = _file_or_404(entry, file_path)
    return Response(content=content, media_type=content_type(file_path))


@router.get("/{build_id}/download/{file_path:path}")
async def preview_download_file(build_id: str, file_path: str, runtime: BuildRuntime = Depends(get_runtime)):
    entry = _entry_or_404(runtime, build_id)
    content = _file_or_404(entry, file_path)
    filename = PurePosixPath(file_path).name
    return Response(
        content=content,
        media_type=content_type(file_path),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{build_id}/bundle")
async def preview_bundle(
    build_id: str,
    compress: bool = Query(default=False),
    runtime: BuildRuntime = Depends(get_runtime),
):
    """Entire file map plus stats in one payload. Pretty-printed unless ``compress``."""
    entry = _entry_or_404(runtime, build_id)
    payload = {
        "build_id": build_id,
        "files": entry.files,
        "file_count": len(entry.files),
        "stats": entry.stats.model_dump(exclude_none=True),
        "file_stats": file_stats(entry.files),
        "last_updated": entry.last_updated.isoformat(),
    }
    body = json.dumps(payload, separators=(",", ":")) if compress else json.dumps(payload, indent=2)
    return Response(content=body, media_type="application/json")


@router.get("/{build_id}/search")
async def preview_search(
    build_id: str,
    q: str = Query(default=""),
    type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    runtime: BuildRuntime = Depends(get_runtime),
):
    entry = _entry_or_404(runtime, build_id)
    try:
        matches = search(entry.files, q, file_type_filter=type, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"build_id": build_id, "query": q, "matches": matches, "total": len(matches)}


@router.get("/{build_id}/stats")
async def preview_stats(build_id: str, runtime: BuildRuntime = Depends(get_runtime)):
    entry = _entry_or_404(runtime, build_id)
    return {
        "build_id": build_id,
        **file_stats(entry.files),
        "build_stats": entry.stats.model_dump(exclude_none=True),
        "last_updated": entry.last_updated,
    }
