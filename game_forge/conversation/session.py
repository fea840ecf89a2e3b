"""ConversationSession: the stage machine around one user's game request.

All state changes go through methods on the session. The forward path is

    initial -> details -> mechanics -> confirmation -> generating -> completed | failed

Stage decisions for conversation turns come from next_stage(), a pure
function of the current stage, the merged requirements, the extracted
signals and the turn text. Generation code never moves the stage itself;
the service calls begin_generation(), complete() and fail().
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from game_forge.errors import PreconditionError
from game_forge.models import (
    HistoryEntry,
    Question,
    Requirements,
    Signals,
    Stage,
    StoredArtifact,
    utcnow,
)

from . import extractor
from .planner import next_question

logger = logging.getLogger(__name__)

IDEA_MIN_LENGTH = 10
GENRE_IDEA_CONFIDENCE = 0.6

STAGE_PROGRESS: dict[Stage, int] = {
    Stage.INITIAL: 25,
    Stage.DETAILS: 50,
    Stage.MECHANICS: 75,
    Stage.CONFIRMATION: 100,
    Stage.GENERATING: 100,
    Stage.COMPLETED: 100,
    Stage.FAILED: 100,
}

# Filled in for anything still unresolved when the session reaches confirmation.
DEFAULTS: dict[str, Any] = {
    "player_mode": "solo",
    "genre": "casual",
    "difficulty": "medium",
    "mechanics": {"tilt"},
    "objectives": ["Score as many points as possible before time runs out"],
    "duration": "2-5 minutes",
    "target_score": 1000,
}

_DESCRIPTION_MAX = 200


class TurnResult(BaseModel):
    stage: Stage
    previous_stage: Stage
    question: Question | None
    completion_score: int
    progress: int
    signals: Signals


def next_stage(stage: Stage, requirements: Requirements, signals: Signals, text: str) -> Stage:
    """Return the stage a conversation turn moves the session to."""
    wants_progress = extractor.is_progress_request(text)
    if stage is Stage.INITIAL:
        idea = len(text.strip()) > IDEA_MIN_LENGTH and (
            signals.confidence.get("genre", 0.0) > GENRE_IDEA_CONFIDENCE
            or extractor.mentions_game_idea(text)
        )
        if idea or wants_progress:
            return Stage.DETAILS
    elif stage is Stage.DETAILS:
        described = bool(requirements.player_mode and requirements.title and requirements.description)
        if described or wants_progress:
            return Stage.MECHANICS
    elif stage is Stage.MECHANICS:
        playable = bool(requirements.mechanics and requirements.difficulty and requirements.objectives)
        if playable or wants_progress:
            return Stage.CONFIRMATION
    return stage


def derive_title(requirements: Requirements) -> str:
    genre = (requirements.genre or "sensor").title()
    mechanic = sorted(requirements.mechanics)[0].title() if requirements.mechanics else "Motion"
    return f"{genre} {mechanic} Challenge"


def apply_defaults(requirements: Requirements) -> Requirements:
    update = {
        field: value for field, value in DEFAULTS.items()
        if not getattr(requirements, field)
    }
    if not requirements.title:
        update["title"] = derive_title(requirements.model_copy(update=update))
    return requirements.model_copy(update=update) if update else requirements


class ConversationSession:
    """One conversation from first idea to generated game."""

    def __init__(self, session_id: str | None = None) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.created_at: datetime = utcnow()
        self._reset()

    def _reset(self) -> None:
        self._stage = Stage.INITIAL
        self._requirements = Requirements()
        self._signals = Signals()
        self._history: list[HistoryEntry] = []
        self._asked: set[tuple[str, int]] = set()
        self._completion_score = 0
        self._active_run_id: str | None = None
        self._generation_started: float | None = None
        self._last_error: str | None = None
        self._artifact: StoredArtifact | None = None
        self.updated_at: datetime = utcnow()

    # -- read-only views ---------------------------------------------------

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def requirements(self) -> Requirements:
        return self._requirements

    @property
    def signals(self) -> Signals:
        return self._signals

    @property
    def history(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._history)

    @property
    def asked(self) -> frozenset[tuple[str, int]]:
        return frozenset(self._asked)

    @property
    def completion_score(self) -> int:
        return self._completion_score

    @property
    def active_run_id(self) -> str | None:
        return self._active_run_id

    @property
    def generation_started(self) -> float | None:
        return self._generation_started

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def artifact(self) -> StoredArtifact | None:
        return self._artifact

    def user_texts(self) -> list[str]:
        return [e.text for e in self._history if e.role == "user"]

    # -- conversation turns ------------------------------------------------

    def submit_user_turn(self, text: str) -> TurnResult:
        """Record a user message, update requirements and advance the stage."""
        if self._stage in (Stage.GENERATING, Stage.COMPLETED, Stage.FAILED):
            raise PreconditionError(
                f"Session {self.id} is {self._stage.value}; restart or retry it first"
            )

        previous = self._stage
        self._history.append(HistoryEntry(role="user", text=text, stage=previous))
        self._signals = extractor.extract(self.user_texts())

        if previous is Stage.CONFIRMATION:
            self._confirmation_turn(text)
        else:
            requirements = extractor.merge(self._requirements, self._signals)
            stage = next_stage(previous, requirements, self._signals, text)
            if stage is Stage.DETAILS and previous is Stage.INITIAL:
                requirements = requirements.model_copy(update={
                    "title": requirements.title or derive_title(requirements),
                    "description": requirements.description or text.strip()[:_DESCRIPTION_MAX],
                })
            if stage is Stage.CONFIRMATION:
                requirements = apply_defaults(requirements)
            self._requirements = requirements
            self._move_to(stage)

        # Never decreases, even when a change request drops a category.
        self._completion_score = max(
            self._completion_score, extractor.completion_score(self._requirements)
        )

        question = None
        if self._stage in (Stage.INITIAL, Stage.DETAILS, Stage.MECHANICS):
            question = next_question(self._requirements, self._signals, self._asked)
            if question is not None:
                self._asked.add((question.category, question.index))

        self.updated_at = utcnow()
        return TurnResult(
            stage=self._stage,
            previous_stage=previous,
            question=question,
            completion_score=self._completion_score,
            progress=STAGE_PROGRESS[self._stage],
            signals=self._signals,
        )

    def _confirmation_turn(self, text: str) -> None:
        turn_signals = extractor.extract([text])
        if extractor.is_change_request(text) or extractor.carries_requirements(turn_signals):
            self._requirements = extractor.patch(
                self._requirements, turn_signals, removing=extractor.is_removal_request(text)
            )
            logger.info("session %s requirements patched in confirmation", self.id)
        elif extractor.is_confirmation(text):
            self._requirements = self._requirements.model_copy(update={"confirmed": True})
            logger.info("session %s requirements confirmed", self.id)

    def append_assistant(self, text: str) -> None:
        self._history.append(HistoryEntry(role="assistant", text=text, stage=self._stage))
        self.updated_at = utcnow()

    # -- generation lifecycle ----------------------------------------------

    def begin_generation(self, run_id: str, now: float | None = None) -> None:
        if self._stage is not Stage.CONFIRMATION:
            raise PreconditionError(
                f"Session {self.id} is {self._stage.value}, expected confirmation"
            )
        if not self._requirements.confirmed:
            raise PreconditionError(f"Session {self.id} requirements are not confirmed")
        self._active_run_id = run_id
        self._generation_started = time.monotonic() if now is None else now
        self._last_error = None
        self._move_to(Stage.GENERATING)

    def complete(self, run_id: str, artifact: StoredArtifact | None = None) -> bool:
        """Finish the active run. Returns False if run_id is stale."""
        if not self._owns_run(run_id):
            return False
        self._artifact = artifact
        self._active_run_id = None
        self._generation_started = None
        self._move_to(Stage.COMPLETED)
        return True

    def fail(self, run_id: str, message: str) -> bool:
        """Fail the active run, keeping the requirements. False if stale."""
        if not self._owns_run(run_id):
            return False
        self._last_error = message
        self._active_run_id = None
        self._generation_started = None
        self._move_to(Stage.FAILED)
        return True

    def _owns_run(self, run_id: str) -> bool:
        if self._stage is not Stage.GENERATING or run_id != self._active_run_id:
            logger.info(
                "session %s ignoring result for run %s (active=%s, stage=%s)",
                self.id, run_id, self._active_run_id, self._stage.value,
            )
            return False
        return True

    # -- explicit reset actions ----------------------------------------------

    def restart(self) -> None:
        """Back to initial with empty requirements and history; id is kept."""
        if self._stage is Stage.GENERATING:
            raise PreconditionError(f"Session {self.id} is generating; cannot restart")
        logger.info("session %s restarted from %s", self.id, self._stage.value)
        self._reset()

    def retry(self) -> None:
        """Return a failed session to confirmation with its requirements intact."""
        if self._stage is not Stage.FAILED:
            raise PreconditionError(f"Session {self.id} is {self._stage.value}, not failed")
        self._move_to(Stage.CONFIRMATION)

    def _move_to(self, stage: Stage) -> None:
        if stage is not self._stage:
            logger.info("session %s stage %s -> %s", self.id, self._stage.value, stage.value)
            self._stage = stage
        self.updated_at = utcnow()

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stage": self._stage.value,
            "requirements": self._requirements.model_dump(mode="json"),
            "history": [e.model_dump(mode="json") for e in self._history],
            "completion_score": self._completion_score,
            "progress": STAGE_PROGRESS[self._stage],
            "active_run_id": self._active_run_id,
            "last_error": self._last_error,
            "artifact": self._artifact.model_dump() if self._artifact else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
