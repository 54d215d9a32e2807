"""API Routes module"""
from fastapi import APIRouter

from .workflows import router as workflows_router
from .directory import router as directory_router

# Main API router
api_router = APIRouter()

api_router.include_router(workflows_router, prefix="/workflows", tags=["Workflows"])
api_router.include_router(directory_router, prefix="/directory", tags=["Directory"])

__all__ = ["api_router"]
