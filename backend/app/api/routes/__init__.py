from fastapi import APIRouter

from app.api.routes import builds, health, preview

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(builds.router, tags=["builds"])
api_router.include_router(preview.router, prefix="/preview", tags=["preview"])
