"""Exception hierarchy for the generation pipeline.

Validation failures are not exceptions: a failed quality check is a normal
ValidationResult with is_valid=False.
"""


class ForgeError(Exception):
    """Base class for all game_forge errors."""


class PreconditionError(ForgeError):
    """The session is in the wrong stage or its requirements are unconfirmed."""


class GenerationInProgressError(PreconditionError):
    """A generation run is already in flight for this session."""


class SessionNotFoundError(ForgeError, KeyError):
    """No session is registered under the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session '{self.session_id}' not found"


class ExternalServiceError(ForgeError):
    """An external collaborator failed; transient and retryable."""

    service = "external"

    def __init__(self, message: str, service: str | None = None) -> None:
        super().__init__(message)
        if service is not None:
            self.service = service


class LLMError(ExternalServiceError):
    """The text-generation backend cannot be reached or returned an error."""

    service = "text_generation"


class RetrievalError(ExternalServiceError):
    """The similarity search backend failed."""

    service = "similarity_search"


class PersistenceError(ExternalServiceError):
    """The artifact store failed to write."""

    service = "persistence"


class ArtifactExtractionError(ForgeError):
    """The generated text contained no recognizable HTML document."""
