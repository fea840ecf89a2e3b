"""Pydantic models shared across the conversation and generation pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Stage(str, Enum):
    INITIAL = "initial"
    DETAILS = "details"
    MECHANICS = "mechanics"
    CONFIRMATION = "confirmation"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


STAGE_ORDER: list[Stage] = [
    Stage.INITIAL,
    Stage.DETAILS,
    Stage.MECHANICS,
    Stage.CONFIRMATION,
    Stage.GENERATING,
    Stage.COMPLETED,
    Stage.FAILED,
]

TERMINAL_STAGES = frozenset({Stage.COMPLETED, Stage.FAILED})

PlayerMode = Literal["solo", "dual", "multi"]
Role = Literal["user", "assistant"]
StopReason = Literal["stop", "max_tokens", "error"]


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

class Requirements(BaseModel):
    """Structured record of what the user wants built."""

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    description: str | None = None
    player_mode: PlayerMode | None = None
    genre: str | None = None
    mechanics: set[str] = Field(default_factory=set)
    difficulty: str | None = None
    objectives: list[str] = Field(default_factory=list)
    visual_style: str | None = None
    duration: str | None = None
    target_score: int | None = None
    confirmed: bool = False


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    text: str
    timestamp: datetime = Field(default_factory=utcnow)
    stage: Stage


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    index: int
    text: str


class Signals(BaseModel):
    """Extractor output for one pass over the accumulated conversation."""

    genre: str | None = None
    player_mode: PlayerMode | None = None
    mechanics: set[str] = Field(default_factory=set)
    difficulty: str | None = None
    objectives: list[str] = Field(default_factory=list)
    visual_style: str | None = None
    duration: str | None = None
    target_score: int | None = None
    confidence: dict[str, float] = Field(default_factory=dict)
    matches: dict[str, int] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class CategoryScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    max: int


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    max_score: int
    categories: dict[str, CategoryScore]
    errors: list[str]
    warnings: list[str]
    is_valid: bool
    grade: str
    genre: str | None = None


class GenerationRun(BaseModel):
    run_id: str
    session_id: str
    attempt: int = 1
    prompt_digest: str = ""
    raw_response: str = ""
    extracted_artifact: str | None = None
    stop_reason: StopReason | None = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    degraded: bool = False
    truncated: bool = False
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime | None = None
    validation: ValidationResult | None = None
    error: str | None = None


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    run_id: str
    step_index: int
    percentage: int
    message: str


class StoredArtifact(BaseModel):
    artifact_id: str
    locator: str
    public_url: str | None = None
