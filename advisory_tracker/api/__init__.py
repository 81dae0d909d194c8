"""API routes for the Advisory Tracker."""

from fastapi import APIRouter

from .admin import router as admin_router
from .auth import router as auth_router
from .entry_locking import router as entry_locking_router
from .sheets import router as sheets_router
from .team_responses import router as team_responses_router

# Main API router
api_router = APIRouter()

# Auth routes (login, me)
api_router.include_router(auth_router)

# Team workflow
api_router.include_router(entry_locking_router)
api_router.include_router(team_responses_router)
api_router.include_router(sheets_router)

# Admin-only routes
api_router.include_router(admin_router)

__all__ = ["api_router"]
