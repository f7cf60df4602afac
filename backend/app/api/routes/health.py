from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_runtime
from app.builds.runtime import BuildRuntime

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, runtime: BuildRuntime = Depends(get_runtime)):
    """Liveness probe.

    Returns 503 during graceful shutdown so the load balancer stops routing
    new builds here.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "launch-ai-backend"},
        )
    return {
        "status": "healthy",
        "service": "launch-ai-backend",
        "active_builds": runtime.registry.counts_by_status()["building"],
        "sweeper_running": runtime.sweeper.running,
    }
