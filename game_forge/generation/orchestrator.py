"""Generation orchestrator: context retrieval, prompt assembly, streaming
generation, artifact extraction, and the retry policy around them.

The text-generation backend is chosen once at construction:

    LiveCall      a real generator; used when a credential is configured
    DegradedCall  canned output; every run it produces is flagged degraded

A generation is split in two so callers can update session state between
the synchronous checks and the asynchronous work:

    ticket = orchestrator.prepare(session)   # preconditions + single-flight slot
    run = await orchestrator.execute(ticket) # always releases the slot

generate(session) does both.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from pydantic import BaseModel

from game_forge.conversation.session import ConversationSession
from game_forge.errors import (
    ArtifactExtractionError,
    ExternalServiceError,
    GenerationInProgressError,
    LLMError,
    PreconditionError,
)
from game_forge.events import Listener, ProgressChannel
from game_forge.llm import (
    DegradedTextGenerator,
    GenerationRequest,
    StreamSummary,
    TextFragment,
    TextGenerator,
    collect,
)
from game_forge.models import GenerationRun, Question, Requirements, Stage, utcnow
from game_forge.prompts import (
    GENERATION_TEMPLATE,
    REPLY_TEMPLATE,
    build_generation_context,
    build_reply_context,
    render_prompt,
)
from game_forge.retrieval import ContextRetriever
from game_forge.storage.games import artifact_id_for
from game_forge.telemetry import RunHandle, TelemetryMonitor

from .extraction import extract_artifact

logger = logging.getLogger(__name__)

PROGRESS_STEP = 5
STREAM_PROGRESS_START = 50
STREAM_PROGRESS_CAP = 75
REPLY_MAX_TOKENS = 1024
REPLY_TEMPERATURE = 0.7


# ---------------------------------------------------------------------------
# Backend variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LiveCall:
    generator: TextGenerator
    degraded: bool = field(default=False, init=False)


@dataclass(frozen=True)
class DegradedCall:
    generator: TextGenerator = field(default_factory=DegradedTextGenerator)
    degraded: bool = field(default=True, init=False)


Backend = LiveCall | DegradedCall


def select_backend(api_key: str, make_live: Callable[[], TextGenerator]) -> Backend:
    """LiveCall when a credential is present, DegradedCall otherwise."""
    if api_key:
        return LiveCall(make_live())
    logger.warning("no text generation credential configured; running in degraded mode")
    return DegradedCall()


# ---------------------------------------------------------------------------
# Tickets and replies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationTicket:
    run_id: str
    session_id: str
    artifact_id: str
    requirements: Requirements


class Reply(BaseModel):
    text: str
    degraded: bool = False


def plan_summary(requirements: Requirements) -> str:
    mechanics = ", ".join(sorted(requirements.mechanics)) or "tilt"
    objectives = "; ".join(requirements.objectives) or "score points"
    return (
        f"{requirements.title or 'Your game'}: a {requirements.genre or 'casual'} game for "
        f"{requirements.player_mode or 'solo'} play, controlled by {mechanics}, "
        f"{requirements.difficulty or 'medium'} difficulty. Goals: {objectives}."
    )


def _digest(prompt: str) -> str:
    return hashlib.sha256(prompt.encode()).hexdigest()


class GenerationOrchestrator:
    """Drives one generation run per confirmed session.

    Args:
        backend:           LiveCall or DegradedCall.
        retriever:         Reference context source.
        telemetry:         Optional monitor; stages are recorded against the
                           handle passed to execute().
        max_output_tokens: Output token limit per attempt.
        temperature:       Sampling temperature for generation.
        max_retries:       Attempts per run, counting the first.
        backoff_seconds:   Base delay; doubles after each failed attempt.
        progress_interval: Seconds between streaming progress events.
    """

    def __init__(
        self,
        backend: Backend,
        retriever: ContextRetriever,
        telemetry: TelemetryMonitor | None = None,
        max_output_tokens: int = 64000,
        temperature: float = 0.3,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        progress_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._retriever = retriever
        self._telemetry = telemetry
        self._max_output_tokens = max_output_tokens
        self._temperature = temperature
        self._max_retries = max(1, max_retries)
        self._backoff = backoff_seconds
        self._interval = progress_interval
        self._clock = clock
        self._sleep = sleep
        self._in_flight: set[str] = set()

    @property
    def degraded(self) -> bool:
        return self._backend.degraded

    def in_flight(self, session_id: str) -> bool:
        return session_id in self._in_flight

    # -- generation ------------------------------------------------------------

    def prepare(self, session: ConversationSession) -> GenerationTicket:
        """Check preconditions and claim the session's single generation slot."""
        if session.stage is not Stage.CONFIRMATION:
            raise PreconditionError(
                f"Session {session.id} is {session.stage.value}, expected confirmation"
            )
        requirements = session.requirements
        if not requirements.confirmed:
            raise PreconditionError(f"Session {session.id} requirements are not confirmed")
        if session.id in self._in_flight:
            raise GenerationInProgressError(f"Session {session.id} already has a run in flight")

        self._in_flight.add(session.id)
        return GenerationTicket(
            run_id=uuid.uuid4().hex,
            session_id=session.id,
            artifact_id=artifact_id_for(session.id, requirements.title or "untitled"),
            requirements=requirements.model_copy(deep=True),
        )

    def release(self, ticket: GenerationTicket) -> None:
        """Give back a slot claimed by prepare() when execute() will not run."""
        self._in_flight.discard(ticket.session_id)

    async def generate(
        self, session: ConversationSession, listeners: Iterable[Listener] = ()
    ) -> GenerationRun:
        ticket = self.prepare(session)
        return await self.execute(ticket, ProgressChannel(ticket.session_id, ticket.run_id, listeners))

    async def execute(
        self,
        ticket: GenerationTicket,
        progress: ProgressChannel | None = None,
        handle: RunHandle | None = None,
    ) -> GenerationRun:
        """Run retrieval, generation and extraction for a prepared ticket.

        Extraction failures end in a run with error set. ExternalServiceError
        propagates once retries are exhausted.
        """
        if progress is None:
            progress = ProgressChannel(ticket.session_id, ticket.run_id)
        run = GenerationRun(
            run_id=ticket.run_id,
            session_id=ticket.session_id,
            degraded=self.degraded,
        )
        req = ticket.requirements
        logger.info("run %s started for session %s (degraded=%s)",
                    ticket.run_id, ticket.session_id, self.degraded)
        try:
            progress.emit(1, 10, "Analyzing requirements")
            progress.emit(2, 20, "Retrieving reference material")
            context = await self._retriever.retrieve(req)
            self._mark(handle, "retrieval", {"matches": context.matches, "fallback": context.fallback})
            progress.emit(2, 40, "Reference material ready")

            strict = False
            while True:
                prompt = render_prompt(
                    GENERATION_TEMPLATE,
                    build_generation_context(req, context.text, ticket.artifact_id, strict),
                )
                run.prompt_digest = _digest(prompt)
                try:
                    text, summary = await self._stream(prompt, progress, handle)
                except ExternalServiceError as e:
                    if run.attempt >= self._max_retries:
                        logger.error("run %s giving up after %d attempts: %s", run.run_id, run.attempt, e)
                        raise
                    delay = self._backoff * 2 ** (run.attempt - 1)
                    logger.warning("run %s attempt %d failed (%s); retrying in %.1fs",
                                   run.run_id, run.attempt, e, delay)
                    await self._sleep(delay)
                    run.attempt += 1
                    continue

                run.raw_response = text
                run.stop_reason = summary.stop_reason
                run.token_usage = summary.usage
                run.truncated = summary.stop_reason == "max_tokens"
                if run.truncated:
                    logger.warning("run %s hit the output token limit; artifact may be truncated", run.run_id)

                try:
                    strategy, artifact = extract_artifact(text)
                except ArtifactExtractionError as e:
                    if strict or run.attempt >= self._max_retries:
                        run.error = str(e)
                        logger.warning("run %s produced no artifact: %s", run.run_id, e)
                        break
                    logger.warning("run %s: %s; retrying with strict prompt", run.run_id, e)
                    strict = True
                    run.attempt += 1
                    continue
                run.extracted_artifact = artifact
                logger.debug("run %s artifact extracted via %s (%d chars)", run.run_id, strategy, len(artifact))
                break
        finally:
            run.ended_at = utcnow()
            self._in_flight.discard(ticket.session_id)
        return run

    async def _stream(
        self, prompt: str, progress: ProgressChannel, handle: RunHandle | None
    ) -> tuple[str, StreamSummary]:
        request = GenerationRequest(
            prompt=prompt,
            max_output_tokens=self._max_output_tokens,
            temperature=self._temperature,
            stage="generation",
        )
        progress.emit(3, STREAM_PROGRESS_START, "Generating game code")
        started = self._clock()
        next_tick = started + self._interval
        parts: list[str] = []
        size = 0
        summary: StreamSummary | None = None
        try:
            async for item in self._backend.generator.stream(request):
                if isinstance(item, TextFragment):
                    parts.append(item.text)
                    size += len(item.text)
                    now = self._clock()
                    if now >= next_tick:
                        buckets = int((now - started) // self._interval)
                        percentage = min(STREAM_PROGRESS_CAP, STREAM_PROGRESS_START + buckets * PROGRESS_STEP)
                        progress.emit(3, percentage, f"Generating game code ({size} characters)")
                        next_tick = started + (buckets + 1) * self._interval
                else:
                    summary = item
            if summary is None or summary.stop_reason == "error":
                raise LLMError("Text generation stream ended without completing")
        except ExternalServiceError:
            self._record_request(started, 0, success=False)
            raise

        elapsed_ms = self._record_request(started, summary.usage.output_tokens, success=True)
        self._mark(handle, "generation", {
            "duration_ms": elapsed_ms,
            "output_tokens": summary.usage.output_tokens,
            "stop_reason": summary.stop_reason,
        })
        progress.emit(3, STREAM_PROGRESS_CAP, "Game code generated")
        return "".join(parts), summary

    def _record_request(self, started: float, tokens: int, success: bool) -> float:
        elapsed_ms = (self._clock() - started) * 1000
        if self._telemetry is not None:
            self._telemetry.record_ai_request(elapsed_ms, tokens, success)
        return elapsed_ms

    def _mark(self, handle: RunHandle | None, name: str, data: dict) -> None:
        if self._telemetry is not None and handle is not None:
            self._telemetry.record_stage(handle, name, data)

    # -- conversation replies ----------------------------------------------------

    async def respond(
        self,
        session: ConversationSession,
        message: str,
        question: Question | None = None,
    ) -> Reply:
        """Assistant reply for a conversation turn.

        Degraded backends, and live calls that fail, get the canned reply for
        the session's stage.
        """
        stage = session.stage
        request = GenerationRequest(
            prompt=render_prompt(
                REPLY_TEMPLATE, build_reply_context(stage, session.requirements, message, question)
            ),
            max_output_tokens=REPLY_MAX_TOKENS,
            temperature=REPLY_TEMPERATURE,
            stage=stage.value,
        )
        if not self.degraded:
            try:
                text, _ = await collect(self._backend.generator, request)
                if text.strip():
                    return Reply(text=text.strip())
                logger.warning("empty reply from text generation; using canned reply")
            except ExternalServiceError as e:
                logger.warning("reply generation failed, using canned reply: %s", e)
        return Reply(text=await self._canned_reply(request, session, question), degraded=True)

    async def _canned_reply(
        self, request: GenerationRequest, session: ConversationSession, question: Question | None
    ) -> str:
        text, _ = await collect(DegradedTextGenerator(), request)
        if session.stage is Stage.CONFIRMATION:
            text = f"{text} {plan_summary(session.requirements)}"
        if question is not None:
            text = f"{text} {question.text}"
        return text
