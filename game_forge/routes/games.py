"""Generated games and reference documents."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from game_forge import storage

from .models import DocumentBody

router = APIRouter()


@router.get("/games")
async def list_games():
    """List stored games, newest first."""
    return storage.list_games()


@router.get("/games/{artifact_id}")
async def get_game(artifact_id: str):
    """Metadata for one stored game."""
    game = storage.get_game(artifact_id)
    if not game:
        raise HTTPException(404, "Game not found")
    return game


@router.get("/games/{artifact_id}/play")
async def play_game(artifact_id: str):
    """Serve the stored HTML document."""
    path = storage.game_html_path(artifact_id)
    if path is None:
        raise HTTPException(404, "Game not found")
    return FileResponse(path, media_type="text/html")


@router.get("/documents")
async def list_documents():
    """Reference documents used for prompt context."""
    return storage.list_documents()


@router.put("/documents", status_code=201)
async def save_document(body: DocumentBody):
    """Create or replace a reference document."""
    path = storage.save_document(body.name, body.text)
    return {"name": path.stem}


@router.delete("/documents/{name}")
async def delete_document(name: str):
    """Delete a reference document."""
    if not storage.delete_document(name):
        raise HTTPException(404, "Document not found")
    return {"ok": True}
