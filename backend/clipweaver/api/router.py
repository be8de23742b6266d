from __future__ import annotations
"""Master API router — mounts all sub-routers."""

from fastapi import APIRouter

from clipweaver.api.jobs import router as jobs_router
from clipweaver.api.models import router as models_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(jobs_router, prefix="/jobs", tags=["Jobs"])
api_router.include_router(models_router, tags=["Models"])
