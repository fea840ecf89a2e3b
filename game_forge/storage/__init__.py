"""Data-directory storage: config, generated games, reference documents."""

from .config import get_config, public_config, resolve_config, update_config
from .core import data_dir, documents_dir, games_dir, init_storage, slugify
from .documents import delete_document, list_documents, save_document
from .games import ArtifactStore, artifact_id_for, game_html_path, get_game, list_games

__all__ = [
    "ArtifactStore",
    "artifact_id_for",
    "data_dir",
    "delete_document",
    "documents_dir",
    "game_html_path",
    "games_dir",
    "get_config",
    "get_game",
    "init_storage",
    "list_documents",
    "list_games",
    "public_config",
    "resolve_config",
    "save_document",
    "slugify",
    "update_config",
]
