"""Health check, settings, and telemetry endpoints."""

from fastapi import APIRouter, Depends

from game_forge import storage
from game_forge.service import GameForgeService

from .deps import get_service

router = APIRouter()


@router.get("/health")
async def health(service: GameForgeService = Depends(get_service)):
    """Health check."""
    return {
        "status": "ok",
        "degraded": service.orchestrator.degraded,
        "sessions": len(service.registry),
    }


@router.get("/settings")
async def get_settings():
    """Get stored settings with secrets masked."""
    return storage.public_config(storage.get_config())


@router.patch("/settings")
async def update_settings(body: dict):
    """Update settings (partial merge per section). Takes effect on restart."""
    return storage.public_config(storage.update_config(body))


@router.get("/telemetry")
async def telemetry_report(service: GameForgeService = Depends(get_service)):
    """Aggregates, trends, alerts and recommendations."""
    return service.telemetry.report()
