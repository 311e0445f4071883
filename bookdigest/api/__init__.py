"""API router for v1 endpoints."""

from fastapi import APIRouter

from bookdigest.api import cache, pipeline

router = APIRouter()

# Cache inspection and bulk deletion
router.include_router(cache.router, prefix="/cache", tags=["cache"])

# Pipeline runs
router.include_router(pipeline.router, prefix="/pipeline", tags=["pipeline"])
