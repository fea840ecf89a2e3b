"""Requirement elicitation: extraction, question planning, session state."""

from .extractor import completion_score, extract, merge, patch
from .planner import next_question
from .registry import SessionRegistry, SessionStore
from .session import ConversationSession, TurnResult, next_stage

__all__ = [
    "ConversationSession",
    "SessionRegistry",
    "SessionStore",
    "TurnResult",
    "completion_score",
    "extract",
    "merge",
    "next_question",
    "next_stage",
    "patch",
]
