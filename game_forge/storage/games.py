"""Generated game storage: one directory per artifact.

    games/<artifact_id>/index.html   the playable document
    games/<artifact_id>/game.json    metadata (requirements, score, run info)
    games/<artifact_id>/README.md    human-readable summary

Storing the same artifact id again overwrites the files in place and keeps
the original created_at, so retries are safe.
"""

import asyncio
import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from game_forge.errors import PersistenceError
from game_forge.models import StoredArtifact

from .core import _write_json, games_dir, slugify

logger = logging.getLogger(__name__)

_SLUG_MAX = 50


def artifact_id_for(session_id: str, title: str) -> str:
    """Stable id for the artifact of one session: title slug plus a short hash."""
    slug = slugify(title)[:_SLUG_MAX].rstrip("-") or "untitled"
    digest = hashlib.sha256(session_id.encode()).hexdigest()[:8]
    return f"{slug}-{digest}"


def _readme(metadata: dict[str, Any]) -> str:
    req = metadata.get("requirements", {})
    validation = metadata.get("validation") or {}
    lines = [
        f"# {metadata.get('title', 'Untitled')}",
        "",
        req.get("description") or "",
        "",
        f"- Genre: {req.get('genre') or 'unknown'}",
        f"- Players: {req.get('player_mode') or 'solo'}",
        f"- Controls: {', '.join(sorted(req.get('mechanics') or [])) or 'tilt'}",
        f"- Difficulty: {req.get('difficulty') or 'medium'}",
    ]
    if validation:
        lines.append(
            f"- Quality: {validation.get('score')}/{validation.get('max_score')} "
            f"({validation.get('grade')})"
        )
    objectives = req.get("objectives") or []
    if objectives:
        lines += ["", "## Objectives", ""] + [f"- {o}" for o in objectives]
    return "\n".join(lines) + "\n"


class ArtifactStore:
    """File-backed persistence gateway.

    Args:
        public_base_url: If set, stored games get a public URL of the form
                         "<base>/games/<artifact_id>/index.html".
    """

    def __init__(self, public_base_url: str = "") -> None:
        self._public_base_url = public_base_url.rstrip("/")

    def _game_dir(self, artifact_id: str) -> Path:
        return games_dir() / artifact_id

    def _write(self, artifact_id: str, artifact: bytes, metadata: dict[str, Any]) -> Path:
        game_dir = self._game_dir(artifact_id)
        game_dir.mkdir(parents=True, exist_ok=True)
        meta_path = game_dir / "game.json"
        now = datetime.now(timezone.utc).isoformat()
        created_at = now
        if meta_path.is_file():
            created_at = json.loads(meta_path.read_text()).get("created_at", now)
        record = {
            **metadata,
            "artifact_id": artifact_id,
            "created_at": created_at,
            "updated_at": now,
            "size_bytes": len(artifact),
        }
        (game_dir / "index.html").write_bytes(artifact)
        _write_json(meta_path, record)
        (game_dir / "README.md").write_text(_readme(record))
        return game_dir / "index.html"

    async def store(self, artifact: bytes, metadata: dict[str, Any]) -> StoredArtifact:
        """Write the artifact and its metadata. Upsert by metadata["artifact_id"]."""
        artifact_id = metadata.get("artifact_id")
        if not artifact_id:
            raise ValueError("metadata must include artifact_id")
        try:
            path = await asyncio.to_thread(self._write, artifact_id, artifact, metadata)
        except OSError as e:
            raise PersistenceError(f"Could not store game {artifact_id}: {e}") from e
        public_url = (
            f"{self._public_base_url}/games/{artifact_id}/index.html"
            if self._public_base_url else None
        )
        logger.info("stored game %s (%d bytes)", artifact_id, len(artifact))
        return StoredArtifact(artifact_id=artifact_id, locator=str(path), public_url=public_url)


def list_games() -> list[dict[str, Any]]:
    games: list[dict[str, Any]] = []
    for meta_path in sorted(games_dir().glob("*/game.json")):
        games.append(json.loads(meta_path.read_text()))
    games.sort(key=lambda g: g.get("updated_at", ""), reverse=True)
    return games


def get_game(artifact_id: str) -> dict[str, Any] | None:
    meta_path = games_dir() / artifact_id / "game.json"
    if not meta_path.is_file():
        return None
    return json.loads(meta_path.read_text())


def game_html_path(artifact_id: str) -> Path | None:
    path = games_dir() / artifact_id / "index.html"
    return path if path.is_file() else None
