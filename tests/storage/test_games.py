"""Tests for generated game storage."""

import json

import pytest

from game_forge import storage
from game_forge.errors import PersistenceError
from game_forge.storage.games import ArtifactStore, artifact_id_for


def _metadata(artifact_id="neon-maze-12345678", **extra):
    return {
        "artifact_id": artifact_id,
        "title": "Neon Maze",
        "requirements": {
            "description": "Roll through a glowing maze",
            "genre": "maze",
            "player_mode": "solo",
            "mechanics": ["tilt"],
            "difficulty": "hard",
            "objectives": ["reach the exit"],
        },
        "validation": {"score": 120, "max_score": 130, "grade": "A+"},
        **extra,
    }


def test_artifact_id_is_stable():
    first = artifact_id_for("session-1", "Neon Tilt Maze")
    assert first == artifact_id_for("session-1", "Neon Tilt Maze")
    assert first.startswith("neon-tilt-maze-")
    assert len(first.rsplit("-", 1)[1]) == 8
    assert artifact_id_for("session-2", "Neon Tilt Maze") != first


def test_artifact_id_long_title():
    artifact_id = artifact_id_for("s", "word " * 40)
    slug = artifact_id.rsplit("-", 1)[0]
    assert len(slug) <= 50
    assert not slug.endswith("-")


async def test_store_writes_files():
    stored = await ArtifactStore().store(b"<html></html>", _metadata())
    game_dir = storage.games_dir() / "neon-maze-12345678"
    assert stored.locator == str(game_dir / "index.html")
    assert stored.public_url is None
    assert (game_dir / "index.html").read_bytes() == b"<html></html>"
    meta = json.loads((game_dir / "game.json").read_text())
    assert meta["size_bytes"] == 13
    readme = (game_dir / "README.md").read_text()
    assert readme.startswith("# Neon Maze")
    assert "- Quality: 120/130 (A+)" in readme
    assert "- reach the exit" in readme


async def test_store_public_url():
    stored = await ArtifactStore("https://games.example/").store(b"x", _metadata())
    assert stored.public_url == "https://games.example/games/neon-maze-12345678/index.html"


async def test_store_is_an_upsert():
    store = ArtifactStore()
    await store.store(b"v1", _metadata())
    created = storage.get_game("neon-maze-12345678")["created_at"]
    await store.store(b"v2", _metadata(attempt=2))
    meta = storage.get_game("neon-maze-12345678")
    assert meta["created_at"] == created
    assert meta["attempt"] == 2
    assert storage.game_html_path("neon-maze-12345678").read_bytes() == b"v2"
    assert len(storage.list_games()) == 1


async def test_store_requires_artifact_id():
    with pytest.raises(ValueError):
        await ArtifactStore().store(b"x", {"title": "no id"})


async def test_store_maps_os_errors(monkeypatch):
    def broken(*args, **kwargs):
        raise OSError("disk full")

    store = ArtifactStore()
    monkeypatch.setattr(store, "_write", broken)
    with pytest.raises(PersistenceError, match="disk full"):
        await store.store(b"x", _metadata())


async def test_list_and_lookup():
    store = ArtifactStore()
    await store.store(b"a", _metadata("first-00000000"))
    await store.store(b"b", _metadata("second-00000000"))
    ids = {g["artifact_id"] for g in storage.list_games()}
    assert ids == {"first-00000000", "second-00000000"}
    assert storage.get_game("missing") is None
    assert storage.game_html_path("missing") is None
