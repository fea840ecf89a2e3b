"""FastAPI API endpoints under /api.

Endpoint groups: health/settings/telemetry, sessions (conversation turns,
generation, restart, retry, progress), games and reference documents.
"""

from fastapi import APIRouter

from .games import router as games_router
from .sessions import router as sessions_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(sessions_router)
router.include_router(games_router)
