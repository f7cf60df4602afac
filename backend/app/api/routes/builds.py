"""Build API routes: submit, poll, logs, cancel, download, listing and stats."""

from pathlib import Path

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse
from pydantic import BaseModel

from app.api.deps import get_runtime
from app.builds.progress import display_progress
from app.builds.runtime import BuildRuntime
from app.builds.schemas import BuildJob, BuildStatus, ProjectBrief, generate_build_id, utcnow
from app.core.auth import AuthUser, require_auth
from app.core.exceptions import InsufficientCreditsError
from app.core.side_effects import best_effort
from app.packaging.docs import slugify

logger = structlog.get_logger(__name__)

router = APIRouter()

NOT_FOUND_DETAIL = "Build not found or expired"
RETRY_HINT = "Submit a new build for the same project to try again."


class BuildRequest(BaseModel):
    """Request model for build submission."""

    project_name: str
    description: str
    target_country: str = "Global"
    target_platform: str = "web"
    framework: str = "react"
    database: str = "postgresql"
    features: list[str] = []
    project_id: str | None = None


class BuildResponse(BaseModel):
    """Response model for build submission."""

    success: bool
    build_id: str
    project_id: str
    progress_url: str
    live_preview_url: str
    estimated_time: str
    message: str


def _get_owned_job(runtime: BuildRuntime, build_id: str, user: AuthUser) -> BuildJob:
    job = runtime.registry.get(build_id)
    if job is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    if job.owner_user_id != user.user_id:
        raise HTTPException(status_code=403, detail="Not authorized to access this build")
    return job


@router.post("/build", response_model=BuildResponse)
async def submit_build(
    request: BuildRequest,
    user: AuthUser = Depends(require_auth),
    runtime: BuildRuntime = Depends(get_runtime),
):
    """Validate, charge one credit, register the job and start its pipeline.

    Raises:
        HTTPException(400): Description shorter than the minimum
        HTTPException(403): No build credits left
    """
    settings = runtime.settings
    description = request.description.strip()
    if len(description) < settings.min_description_length:
        raise HTTPException(
            status_code=400,
            detail=f"Description must be at least {settings.min_description_length} characters",
        )
    if not request.project_name.strip():
        raise HTTPException(status_code=400, detail="Project name is required")

    if await runtime.accounts.get_credits(user.user_id) <= 0:
        raise HTTPException(status_code=403, detail="No credits remaining")

    brief = ProjectBrief(
        project_name=request.project_name.strip(),
        description=description,
        target_country=request.target_country,
        target_platform=request.target_platform,
        framework=request.framework,
        database=request.database,
        features=request.features,
    )

    project_id = request.project_id
    if not project_id:
        project_id = await runtime.projects.create_project(
            user.user_id, brief.project_name, brief.description, brief.model_dump()
        )

    try:
        await runtime.accounts.debit_credit(user.user_id)
    except InsufficientCreditsError:
        raise HTTPException(status_code=403, detail="No credits remaining")

    build_id = generate_build_id()
    runtime.registry.create(build_id, user.user_id, project_id=project_id, metadata=brief.model_dump())
    runtime.launch(build_id, brief)
    logger.info("build_submitted", build_id=build_id, project_id=project_id, user_id=user.user_id)

    await best_effort(
        "build_started_notification_failed",
        runtime.notifier.build_started(user.user_id, build_id, brief.project_name),
        build_id=build_id,
    )

    return BuildResponse(
        success=True,
        build_id=build_id,
        project_id=project_id,
        progress_url=f"/api/build/{build_id}",
        live_preview_url=f"/api/preview/{build_id}",
        estimated_time=settings.estimated_build_time,
        message="Build started",
    )


@router.get("/build/{build_id}")
async def get_build(
    build_id: str,
    user: AuthUser = Depends(require_auth),
    runtime: BuildRuntime = Depends(get_runtime),
):
    """Poll a build: status, smoothed progress, recent logs, stats and files."""
    job = _get_owned_job(runtime, build_id, user)
    now = utcnow()

    payload = {
        "build_id": job.build_id,
        "project_id": job.project_id,
        "status": job.status.value,
        "phase": job.phase.value,
        "progress": job.progress,
        "display_progress": display_progress(job, now),
        "message": job.message,
        "logs": job.logs[-runtime.settings.poll_log_window :],
        "stats": job.stats.model_dump(exclude_none=True),
        "files": job.files,
        "file_count": len(job.files),
        "started_at": job.started_at,
        "last_updated": job.last_updated,
        "elapsed_seconds": job.elapsed_seconds(now),
    }

    if job.status == BuildStatus.COMPLETED:
        payload.update(
            download_url=f"/api/download/{job.build_id}",
            live_preview_url=f"/api/preview/{job.build_id}",
            results=job.results,
            package=job.package,
            completed_at=job.completed_at,
        )
    elif job.status == BuildStatus.FAILED:
        payload.update(
            error=job.error,
            can_retry=True,
            retry_hint=RETRY_HINT,
            failed_at=job.failed_at,
        )
        if not runtime.settings.is_production:
            payload["trace"] = job.error_trace

    return payload


@router.get("/build/{build_id}/logs")
async def get_build_logs(
    build_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user: AuthUser = Depends(require_auth),
    runtime: BuildRuntime = Depends(get_runtime),
):
    """Paginated access to the retained log entries, oldest first."""
    job = _get_owned_job(runtime, build_id, user)
    return {
        "build_id": job.build_id,
        "logs": job.logs[offset : offset + limit],
        "total": len(job.logs),
        "limit": limit,
        "offset": offset,
    }


@router.delete("/build/{build_id}")
async def cancel_build(
    build_id: str,
    user: AuthUser = Depends(require_auth),
    runtime: BuildRuntime = Depends(get_runtime),
):
    """Cancel a non-completed build owned by the caller.

    Raises:
        HTTPException(400): Build already completed
        HTTPException(403): Caller does not own the build
        HTTPException(404): Unknown or expired build
    """
    job = _get_owned_job(runtime, build_id, user)
    if job.status == BuildStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Cannot cancel a completed build")

    await runtime.cancel(build_id)
    return {"success": True, "build_id": build_id, "message": "Build cancelled"}


@router.get("/download/{build_id}")
async def download_build(
    build_id: str,
    user: AuthUser = Depends(require_auth),
    runtime: BuildRuntime = Depends(get_runtime),
):
    """Stream the archive of a completed, caller-owned build."""
    job = _get_owned_job(runtime, build_id, user)
    if job.status != BuildStatus.COMPLETED or not job.zip_path:
        raise HTTPException(status_code=404, detail="Build not ready for download")

    zip_path = Path(job.zip_path)
    if not zip_path.is_file():
        logger.warning("archive_missing", build_id=build_id, zip_path=job.zip_path)
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)

    if job.project_id:
        await best_effort(
            "download_tracking_failed",
            runtime.projects.record_download(job.project_id, build_id=build_id),
            build_id=build_id,
        )

    project_name = job.metadata.get("project_name", "app")
    return FileResponse(
        zip_path,
        media_type="application/zip",
        filename=f"{slugify(project_name, separator='_') or 'app'}.zip",
    )


@router.get("/builds")
async def list_builds(
    user: AuthUser = Depends(require_auth),
    runtime: BuildRuntime = Depends(get_runtime),
):
    """Caller's builds, newest first."""
    jobs = sorted(runtime.registry.list_for_user(user.user_id), key=lambda j: j.started_at, reverse=True)
    return {
        "builds": [
            {
                "build_id": job.build_id,
                "project_id": job.project_id,
                "project_name": job.metadata.get("project_name"),
                "status": job.status.value,
                "phase": job.phase.value,
                "progress": job.progress,
                "started_at": job.started_at,
                "file_count": len(job.files),
            }
            for job in jobs
        ],
        "total": len(jobs),
    }


@router.get("/stats")
async def build_stats(runtime: BuildRuntime = Depends(get_runtime)):
    """Counts of builds by status across the whole registry."""
    counts = runtime.registry.counts_by_status()
    return {
        "total": len(runtime.registry),
        "by_status": counts,
        "active": counts[BuildStatus.BUILDING.value],
        "preview_cache_entries": len(runtime.registry.file_cache_ids()),
    }
