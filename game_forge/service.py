"""Session API: the operations the HTTP routes (or any other front end) call.

    start_session(id)          -> greeting and session state
    submit_turn(id, text)      -> {stage, next_question, progress, reply, ...}
    confirm_and_generate(id)   -> {artifact_locator, validation, ...}

plus restart, retry, progress lookup and the periodic sweep.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from game_forge.conversation.registry import SessionRegistry, SessionStore
from game_forge.conversation.session import ConversationSession
from game_forge.errors import ExternalServiceError
from game_forge.events import Listener, ProgressChannel
from game_forge.generation.orchestrator import (
    GenerationOrchestrator,
    GenerationTicket,
    select_backend,
)
from game_forge.generation.validator import validate
from game_forge.llm import DEGRADED_REPLIES, HttpTextGenerator
from game_forge.models import GenerationRun, ProgressEvent, Stage, StoredArtifact, ValidationResult
from game_forge.retrieval import ContextRetriever, HttpSimilaritySearch, LocalDocumentSearch
from game_forge.storage.games import ArtifactStore
from game_forge.telemetry import RunHandle, TelemetryMonitor, Thresholds

logger = logging.getLogger(__name__)


class GameForgeService:
    def __init__(
        self,
        registry: SessionStore,
        orchestrator: GenerationOrchestrator,
        telemetry: TelemetryMonitor,
        store: ArtifactStore,
        acceptance_ratio: float = 0.8,
        generation_timeout: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.orchestrator = orchestrator
        self.telemetry = telemetry
        self.store = store
        self._acceptance_ratio = acceptance_ratio
        self._generation_timeout = generation_timeout
        self._clock = clock
        self._progress: dict[str, ProgressEvent] = {}
        self._progress_listeners: list[Listener] = []
        self._executions: dict[str, asyncio.Future[GenerationRun]] = {}

    def add_progress_listener(self, listener: Listener) -> None:
        self._progress_listeners.append(listener)

    def _remember_progress(self, event: ProgressEvent) -> None:
        self._progress[event.session_id] = event

    # -- conversation --------------------------------------------------------------

    async def start_session(self, session_id: str | None = None) -> dict[str, Any]:
        session = self.registry.create(session_id)
        if not session.history:
            session.append_assistant(DEGRADED_REPLIES["initial"])
        return {
            "session_id": session.id,
            "stage": session.stage.value,
            "reply": session.history[-1].text,
            "progress": 0,
            "completion_score": session.completion_score,
        }

    async def submit_turn(self, session_id: str, text: str) -> dict[str, Any]:
        session = self.registry.get(session_id)
        self.registry.touch(session_id)
        async with self.registry.lock_for(session_id):
            turn = session.submit_user_turn(text)
            reply = await self.orchestrator.respond(session, text, turn.question)
            session.append_assistant(reply.text)
        self.telemetry.record_requirement_turn(session_id, turn.completion_score)
        return {
            "session_id": session.id,
            "stage": turn.stage.value,
            "next_question": turn.question.text if turn.question else None,
            "progress": turn.progress,
            "completion_score": turn.completion_score,
            "reply": reply.text,
            "degraded": reply.degraded,
            "requirements": session.requirements.model_dump(mode="json"),
        }

    # -- generation ------------------------------------------------------------------

    async def confirm_and_generate(self, session_id: str) -> dict[str, Any]:
        """Generate, validate and store the game for a confirmed session.

        Raises PreconditionError when the session is not ready. Every other
        failure moves the session to failed (requirements kept). Expected
        failures are reported in the result's "error" field; anything else
        is re-raised after the session is failed.
        """
        session = self.registry.get(session_id)
        self.registry.touch(session_id)
        async with self.registry.lock_for(session_id):
            ticket = self.orchestrator.prepare(session)
            try:
                session.begin_generation(ticket.run_id, now=self._clock())
            except Exception:
                self.orchestrator.release(ticket)
                raise
            self.registry.hold(session_id)
            try:
                return await self._generate(session, ticket)
            finally:
                self.registry.release(session_id)

    async def _generate(self, session: ConversationSession, ticket: GenerationTicket) -> dict[str, Any]:
        req = ticket.requirements
        handle = self.telemetry.start_run(session.id, {
            "genre": req.genre,
            "player_mode": req.player_mode,
            "degraded": self.orchestrator.degraded,
        })
        progress = ProgressChannel(
            session.id, ticket.run_id, [self._remember_progress, *self._progress_listeners]
        )
        try:
            return await self._run(session, ticket, handle, progress)
        except Exception as e:
            logger.exception("session %s generation crashed", session.id)
            if session.fail(ticket.run_id, f"Unexpected generation error: {e}"):
                self.telemetry.complete_run(handle, False, {"error": type(e).__name__})
            raise

    async def _run(
        self,
        session: ConversationSession,
        ticket: GenerationTicket,
        handle: RunHandle,
        progress: ProgressChannel,
    ) -> dict[str, Any]:
        req = ticket.requirements
        execution = asyncio.ensure_future(self.orchestrator.execute(ticket, progress, handle))
        self._executions[session.id] = execution
        try:
            done, _ = await asyncio.wait({execution}, timeout=self._generation_timeout)
        except asyncio.CancelledError:
            execution.cancel()
            session.fail(ticket.run_id, "Generation was cancelled")
            raise
        finally:
            self._executions.pop(session.id, None)

        if not done:
            await self._cancel(execution)
            return self._fail(session, ticket, handle, f"Generation timed out after {self._generation_timeout:.0f}s")
        if execution.cancelled():
            # sweep() already failed the session
            self.telemetry.complete_run(handle, False, {"error": "abandoned"})
            return self._outcome(session, None, None, None, "Run was abandoned before it finished")
        try:
            run = execution.result()
        except ExternalServiceError as e:
            return self._fail(session, ticket, handle, str(e))

        if run.extracted_artifact is None:
            return self._fail(session, ticket, handle, run.error or "No game was produced", run)

        progress.emit(4, 80, "Validating game")
        validation = validate(run.extracted_artifact, req.genre, self._acceptance_ratio)
        run.validation = validation
        self.telemetry.record_stage(handle, "validation", {
            "score": round(validation.score * 100 / validation.max_score, 2),
            "genre": validation.genre,
            "valid": validation.is_valid,
        })

        if run.degraded:
            return self._fail(
                session, ticket, handle,
                "Text generation is not configured; the placeholder game was not stored", run,
            )

        progress.emit(5, 90, "Saving game")
        metadata = {
            "artifact_id": ticket.artifact_id,
            "session_id": session.id,
            "run_id": run.run_id,
            "title": req.title,
            "requirements": req.model_dump(mode="json"),
            "validation": validation.model_dump(),
            "attempt": run.attempt,
            "stop_reason": run.stop_reason,
            "truncated": run.truncated,
            "token_usage": run.token_usage.model_dump(),
        }
        try:
            stored = await self.store.store(run.extracted_artifact.encode("utf-8"), metadata)
        except ExternalServiceError as e:
            return self._fail(session, ticket, handle, str(e), run)
        self.telemetry.record_stage(handle, "persistence", {"artifact_id": stored.artifact_id})

        if not session.complete(ticket.run_id, stored):
            self.telemetry.complete_run(handle, False, {"error": "abandoned"})
            return self._outcome(session, run, validation, None, "Run was abandoned before it finished")

        progress.emit(5, 100, "Game ready")
        self.telemetry.complete_run(handle, True, {
            "score": validation.score,
            "max_score": validation.max_score,
            "accepted": validation.is_valid,
        })
        return self._outcome(session, run, validation, stored, None)

    @staticmethod
    async def _cancel(execution: asyncio.Future[GenerationRun]) -> None:
        execution.cancel()
        await asyncio.wait({execution})

    def _fail(
        self,
        session: ConversationSession,
        ticket: GenerationTicket,
        handle: RunHandle,
        message: str,
        run: GenerationRun | None = None,
    ) -> dict[str, Any]:
        logger.warning("session %s generation failed: %s", session.id, message)
        session.fail(ticket.run_id, message)
        self.telemetry.complete_run(handle, False, {"error": message})
        return self._outcome(session, run, run.validation if run else None, None, message)

    def _outcome(
        self,
        session: ConversationSession,
        run: GenerationRun | None,
        validation: ValidationResult | None,
        stored: StoredArtifact | None,
        error: str | None,
    ) -> dict[str, Any]:
        return {
            "session_id": session.id,
            "stage": session.stage.value,
            "artifact_id": stored.artifact_id if stored else None,
            "artifact_locator": stored.locator if stored else None,
            "public_url": stored.public_url if stored else None,
            "validation": validation.model_dump() if validation else None,
            "run": run.model_dump(mode="json", exclude={"raw_response", "extracted_artifact", "validation"})
            if run else None,
            "error": error,
        }

    # -- explicit actions and lookups -----------------------------------------------

    async def restart(self, session_id: str) -> dict[str, Any]:
        session = self.registry.get(session_id)
        async with self.registry.lock_for(session_id):
            session.restart()
            self._progress.pop(session_id, None)
        return await self.start_session(session_id)

    async def retry(self, session_id: str) -> dict[str, Any]:
        session = self.registry.get(session_id)
        async with self.registry.lock_for(session_id):
            session.retry()
        return session.snapshot()

    def get(self, session_id: str) -> dict[str, Any]:
        return self.registry.get(session_id).snapshot()

    def progress(self, session_id: str) -> ProgressEvent | None:
        self.registry.get(session_id)
        return self._progress.get(session_id)

    def sweep(self, now: float | None = None) -> dict[str, list[str]]:
        """Fail overdue generations, then evict idle sessions."""
        now = self._clock() if now is None else now
        timed_out: list[str] = []
        for session_id, started in self.registry.generating_since():
            if now - started <= self._generation_timeout:
                continue
            session = self.registry.find(session_id)
            if session is not None and session.active_run_id is not None:
                session.fail(session.active_run_id, "Generation exceeded the time limit")
                execution = self._executions.get(session_id)
                if execution is not None:
                    execution.cancel()
                timed_out.append(session_id)
        evicted = self.registry.sweep(now)
        for session_id in evicted:
            self._progress.pop(session_id, None)
        self.telemetry.cleanup_stale()
        return {"timed_out": timed_out, "evicted": evicted}


def create_service(config: dict[str, dict[str, Any]]) -> GameForgeService:
    """Wire the pipeline from a resolved config (see storage.resolve_config)."""
    llm_cfg = config["llm"]
    retrieval_cfg = config["retrieval"]
    generation_cfg = config["generation"]
    sessions_cfg = config["sessions"]
    telemetry_cfg = config["telemetry"]

    backend = select_backend(
        llm_cfg["api_key"],
        lambda: HttpTextGenerator(
            provider_url=llm_cfg["provider_url"],
            api_key=llm_cfg["api_key"],
            provider_format=llm_cfg["provider_format"],
            model=llm_cfg["model"],
            timeout=float(llm_cfg["timeout"]),
        ),
    )
    if retrieval_cfg["search_url"]:
        search = HttpSimilaritySearch(retrieval_cfg["search_url"], retrieval_cfg["api_key"])
    else:
        search = LocalDocumentSearch()
    retriever = ContextRetriever(
        search,
        top_k=int(retrieval_cfg["top_k"]),
        threshold=float(retrieval_cfg["similarity_threshold"]),
        cache_size=int(retrieval_cfg["cache_size"]),
    )
    telemetry = TelemetryMonitor(
        window=int(telemetry_cfg["window"]),
        thresholds=Thresholds(
            max_generation_ms=telemetry_cfg["max_generation_ms"],
            min_validation_score=telemetry_cfg["min_validation_score"],
            max_response_ms=telemetry_cfg["max_response_ms"],
            max_memory_bytes=telemetry_cfg["max_memory_bytes"],
            min_success_rate=telemetry_cfg["min_success_rate"],
        ),
    )
    orchestrator = GenerationOrchestrator(
        backend,
        retriever,
        telemetry=telemetry,
        max_output_tokens=int(llm_cfg["max_output_tokens"]),
        temperature=float(llm_cfg["temperature"]),
        max_retries=int(generation_cfg["max_retries"]),
        backoff_seconds=float(generation_cfg["backoff_seconds"]),
        progress_interval=float(generation_cfg["progress_interval"]),
    )
    registry = SessionRegistry(
        idle_timeout=float(sessions_cfg["idle_timeout"]),
        max_sessions=int(sessions_cfg["max_sessions"]),
    )
    return GameForgeService(
        registry,
        orchestrator,
        telemetry,
        ArtifactStore(config["storage"]["public_base_url"]),
        acceptance_ratio=float(generation_cfg["acceptance_ratio"]),
        generation_timeout=float(generation_cfg["timeout_seconds"]),
    )
