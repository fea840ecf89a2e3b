"""Pipeline configuration: defaults, stored config.json, environment overrides."""

import copy
import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .core import _write_json, data_dir

_CONFIG_DEFAULTS: dict[str, dict[str, Any]] = {
    "llm": {
        "provider_url": "https://api.anthropic.com",
        "provider_format": "anthropic",
        "model": "claude-sonnet-4-5",
        "api_key": "",
        "max_output_tokens": 64000,
        "temperature": 0.3,
        "timeout": 120,
    },
    "retrieval": {
        "search_url": "",
        "api_key": "",
        "top_k": 5,
        "similarity_threshold": 0.7,
        "cache_size": 64,
    },
    "generation": {
        "max_retries": 3,
        "backoff_seconds": 1.0,
        "progress_interval": 2.0,
        "timeout_seconds": 600,
        "acceptance_ratio": 0.8,
    },
    "sessions": {
        "idle_timeout": 1800,
        "max_sessions": 1000,
        "sweep_interval": 60,
    },
    "telemetry": {
        "window": 100,
        "max_generation_ms": 60000,
        "min_validation_score": 70,
        "max_response_ms": 10000,
        "max_memory_bytes": 1024 * 1024 * 1024,
        "min_success_rate": 0.8,
    },
    "storage": {
        "public_base_url": "",
    },
}

# env var -> (section, key); first non-empty value wins
_ENV_OVERRIDES: list[tuple[str, str, str]] = [
    ("LLM_API_KEY", "llm", "api_key"),
    ("ANTHROPIC_API_KEY", "llm", "api_key"),
    ("LLM_PROVIDER_URL", "llm", "provider_url"),
    ("LLM_PROVIDER_FORMAT", "llm", "provider_format"),
    ("LLM_MODEL", "llm", "model"),
    ("SEARCH_URL", "retrieval", "search_url"),
    ("SEARCH_API_KEY", "retrieval", "api_key"),
    ("PUBLIC_BASE_URL", "storage", "public_base_url"),
]

_SECRET_KEYS = {"api_key"}
MASK = "****"


def _config_path() -> Path:
    return data_dir() / "config.json"


def _is_masked(key: str, value: Any) -> bool:
    """A masked secret echoed back from the settings endpoint."""
    return key in _SECRET_KEYS and isinstance(value, str) and value.startswith(MASK)


def _merge_sections(config: dict[str, dict[str, Any]], fields: Mapping[str, Any]) -> None:
    for section, values in fields.items():
        if section in config and isinstance(values, dict):
            config[section].update({
                k: v for k, v in values.items()
                if k in config[section] and not _is_masked(k, v)
            })


def get_config() -> dict[str, dict[str, Any]]:
    """Read config, returning defaults merged with stored values."""
    config = copy.deepcopy(_CONFIG_DEFAULTS)
    path = _config_path()
    if path.is_file():
        _merge_sections(config, json.loads(path.read_text()))
    return config


def update_config(fields: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Merge fields into config and persist. Returns full config.

    Unknown sections and keys are ignored.
    """
    config = get_config()
    _merge_sections(config, fields)
    _write_json(_config_path(), config)
    return config


def resolve_config(environ: Mapping[str, str] | None = None) -> dict[str, dict[str, Any]]:
    """Stored config with environment overrides applied (not persisted)."""
    environ = os.environ if environ is None else environ
    config = get_config()
    applied: set[tuple[str, str]] = set()
    for var, section, key in _ENV_OVERRIDES:
        value = environ.get(var, "")
        if value and (section, key) not in applied:
            config[section][key] = value
            applied.add((section, key))
    return config


def public_config(config: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Config safe to return over the API: secrets are masked."""
    masked = copy.deepcopy(config)
    for values in masked.values():
        for key in _SECRET_KEYS & values.keys():
            if values[key]:
                values[key] = MASK + str(values[key])[-4:]
    return masked
