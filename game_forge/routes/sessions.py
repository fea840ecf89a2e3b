"""Conversation and generation endpoints, nested under /api/sessions."""

from fastapi import APIRouter, Depends, HTTPException

from game_forge.errors import PreconditionError, SessionNotFoundError
from game_forge.service import GameForgeService

from .deps import get_service
from .models import StartSessionBody, TurnBody

router = APIRouter()


@router.post("/sessions", status_code=201)
async def start_session(body: StartSessionBody | None = None,
                        service: GameForgeService = Depends(get_service)):
    """Create a session (or return an existing one) and its greeting."""
    return await service.start_session(body.session_id if body else None)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, service: GameForgeService = Depends(get_service)):
    """Full session state: stage, requirements, history."""
    try:
        return service.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(404, "Session not found")


@router.post("/sessions/{session_id}/turns")
async def submit_turn(session_id: str, body: TurnBody,
                      service: GameForgeService = Depends(get_service)):
    """Send a user message; returns the new stage, reply and next question."""
    try:
        return await service.submit_turn(session_id, body.message)
    except SessionNotFoundError:
        raise HTTPException(404, "Session not found")
    except PreconditionError as e:
        raise HTTPException(409, str(e))


@router.post("/sessions/{session_id}/generate")
async def generate(session_id: str, service: GameForgeService = Depends(get_service)):
    """Generate, validate and store the game for a confirmed session."""
    try:
        return await service.confirm_and_generate(session_id)
    except SessionNotFoundError:
        raise HTTPException(404, "Session not found")
    except PreconditionError as e:
        raise HTTPException(409, str(e))


@router.get("/sessions/{session_id}/progress")
async def progress(session_id: str, service: GameForgeService = Depends(get_service)):
    """Latest generation progress event, or null before the first run."""
    try:
        event = service.progress(session_id)
    except SessionNotFoundError:
        raise HTTPException(404, "Session not found")
    return event.model_dump() if event else None


@router.post("/sessions/{session_id}/restart")
async def restart(session_id: str, service: GameForgeService = Depends(get_service)):
    """Clear requirements and history, keeping the session id."""
    try:
        return await service.restart(session_id)
    except SessionNotFoundError:
        raise HTTPException(404, "Session not found")
    except PreconditionError as e:
        raise HTTPException(409, str(e))


@router.post("/sessions/{session_id}/retry")
async def retry(session_id: str, service: GameForgeService = Depends(get_service)):
    """Return a failed session to confirmation so it can be generated again."""
    try:
        return await service.retry(session_id)
    except SessionNotFoundError:
        raise HTTPException(404, "Session not found")
    except PreconditionError as e:
        raise HTTPException(409, str(e))
