"""Game generation: orchestration, artifact extraction, quality scoring."""

from .extraction import extract_artifact
from .orchestrator import (
    DegradedCall,
    GenerationOrchestrator,
    GenerationTicket,
    LiveCall,
    Reply,
    select_backend,
)
from .validator import validate

__all__ = [
    "DegradedCall",
    "GenerationOrchestrator",
    "GenerationTicket",
    "LiveCall",
    "Reply",
    "extract_artifact",
    "select_backend",
    "validate",
]
