"""Tests for the generation orchestrator."""

import pytest

from game_forge.conversation.session import ConversationSession
from game_forge.errors import GenerationInProgressError, LLMError, PreconditionError
from game_forge.generation.orchestrator import (
    DegradedCall,
    GenerationOrchestrator,
    LiveCall,
    plan_summary,
    select_backend,
)
from game_forge.llm import DEGRADED_DOCUMENT, DEGRADED_REPLIES
from game_forge.models import Question, Stage
from game_forge.retrieval import ContextRetriever, Match
from game_forge.storage.games import artifact_id_for
from game_forge.telemetry import TelemetryMonitor
from tests.stubs import (
    VALID_GAME,
    BrokenSearch,
    FakeSleep,
    ScriptedGenerator,
    StaticSearch,
    confirmed_session,
    failing,
)

STRICT_MARKER = "Return ONLY the complete HTML document"


class StepClock:
    """Advances one second per reading."""

    def __init__(self) -> None:
        self.now = -1.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def make_orchestrator(generator=None, search=None, backend=None, **kwargs) -> GenerationOrchestrator:
    if backend is None:
        backend = LiveCall(generator or ScriptedGenerator([VALID_GAME]))
    retriever = ContextRetriever(search or StaticSearch([Match(text="REFERENCE DOC", score=0.9)]))
    kwargs.setdefault("sleep", FakeSleep())
    return GenerationOrchestrator(backend, retriever, **kwargs)


# ---------------------------------------------------------------------------
# Preconditions and single flight
# ---------------------------------------------------------------------------

class TestPrepare:
    def test_ticket(self) -> None:
        session = confirmed_session()
        ticket = make_orchestrator().prepare(session)
        assert ticket.session_id == session.id
        assert ticket.requirements == session.requirements
        assert ticket.artifact_id == artifact_id_for(session.id, session.requirements.title)

    def test_requires_confirmation_stage(self) -> None:
        with pytest.raises(PreconditionError):
            make_orchestrator().prepare(ConversationSession())

    def test_requires_confirmed_requirements(self) -> None:
        session = confirmed_session()
        session.submit_user_turn("change it to hard")
        with pytest.raises(PreconditionError, match="not confirmed"):
            make_orchestrator().prepare(session)

    def test_single_flight(self) -> None:
        orchestrator = make_orchestrator()
        session = confirmed_session()
        ticket = orchestrator.prepare(session)
        assert orchestrator.in_flight(session.id)
        with pytest.raises(GenerationInProgressError):
            orchestrator.prepare(session)
        orchestrator.release(ticket)
        assert not orchestrator.in_flight(session.id)
        orchestrator.prepare(session)

    def test_in_progress_is_a_precondition_error(self) -> None:
        assert issubclass(GenerationInProgressError, PreconditionError)


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------

class TestExecute:
    async def test_happy_path(self) -> None:
        generator = ScriptedGenerator([f"Here you go:\n{VALID_GAME}\nHave fun"])
        orchestrator = make_orchestrator(generator)
        session = confirmed_session()
        ticket = orchestrator.prepare(session)
        run = await orchestrator.execute(ticket)
        assert run.extracted_artifact == VALID_GAME
        assert run.attempt == 1
        assert run.stop_reason == "stop"
        assert not run.degraded
        assert not run.truncated
        assert run.error is None
        assert len(run.prompt_digest) == 64
        assert run.ended_at is not None
        assert run.token_usage.output_tokens > 0
        assert not orchestrator.in_flight(session.id)

    async def test_prompt_contains_requirements_and_context(self) -> None:
        generator = ScriptedGenerator([VALID_GAME])
        orchestrator = make_orchestrator(generator)
        session = confirmed_session()
        ticket = orchestrator.prepare(session)
        await orchestrator.execute(ticket)
        prompt = generator.requests[0].prompt
        assert "REFERENCE DOC" in prompt
        assert session.requirements.title in prompt
        assert ticket.artifact_id in prompt
        assert STRICT_MARKER not in prompt
        assert generator.requests[0].stage == "generation"

    async def test_same_requirements_same_digest(self) -> None:
        first = make_orchestrator()
        second = make_orchestrator()
        session = confirmed_session()
        run_a = await first.execute(first.prepare(session))
        run_b = await second.execute(second.prepare(session))
        assert run_a.prompt_digest == run_b.prompt_digest

    async def test_progress_is_monotonic(self) -> None:
        events = []
        orchestrator = make_orchestrator(
            ScriptedGenerator([VALID_GAME], chunk_size=100),
            clock=StepClock(),
            progress_interval=2.0,
        )
        session = confirmed_session()
        await orchestrator.generate(session, [events.append])
        percentages = [e.percentage for e in events]
        assert percentages[:3] == [10, 20, 40]
        assert percentages == sorted(percentages)
        assert 55 in percentages
        assert max(percentages) == 75
        assert all(e.session_id == session.id for e in events)

    async def test_retries_transient_errors_with_backoff(self) -> None:
        sleep = FakeSleep()
        generator = ScriptedGenerator([failing(), failing(), VALID_GAME])
        orchestrator = make_orchestrator(generator, sleep=sleep, backoff_seconds=0.5)
        run = await orchestrator.execute(orchestrator.prepare(confirmed_session()))
        assert run.attempt == 3
        assert run.extracted_artifact == VALID_GAME
        assert sleep.delays == [0.5, 1.0]

    async def test_gives_up_after_max_retries(self) -> None:
        sleep = FakeSleep()
        generator = ScriptedGenerator([failing("still down")])
        orchestrator = make_orchestrator(generator, sleep=sleep, max_retries=2)
        session = confirmed_session()
        with pytest.raises(LLMError, match="still down"):
            await orchestrator.execute(orchestrator.prepare(session))
        assert generator.calls == 2
        assert sleep.delays == [1.0]
        assert not orchestrator.in_flight(session.id)

    async def test_stream_error_stop_reason_is_retried(self) -> None:
        generator = ScriptedGenerator([VALID_GAME], stop_reason="error")
        orchestrator = make_orchestrator(generator, max_retries=1)
        with pytest.raises(LLMError):
            await orchestrator.execute(orchestrator.prepare(confirmed_session()))
        assert generator.calls == 1

    async def test_strict_prompt_after_extraction_failure(self) -> None:
        generator = ScriptedGenerator(["I'd love to help, but first...", VALID_GAME])
        orchestrator = make_orchestrator(generator)
        run = await orchestrator.execute(orchestrator.prepare(confirmed_session()))
        assert run.extracted_artifact == VALID_GAME
        assert run.attempt == 2
        assert STRICT_MARKER not in generator.requests[0].prompt
        assert STRICT_MARKER in generator.requests[1].prompt

    async def test_strict_retry_happens_once(self) -> None:
        generator = ScriptedGenerator(["no markup here"])
        orchestrator = make_orchestrator(generator, max_retries=5)
        run = await orchestrator.execute(orchestrator.prepare(confirmed_session()))
        assert run.extracted_artifact is None
        assert "No HTML document" in run.error
        assert generator.calls == 2

    async def test_truncated_output_is_flagged_and_kept(self) -> None:
        generator = ScriptedGenerator([VALID_GAME], stop_reason="max_tokens")
        orchestrator = make_orchestrator(generator)
        run = await orchestrator.execute(orchestrator.prepare(confirmed_session()))
        assert run.truncated
        assert run.stop_reason == "max_tokens"
        assert run.extracted_artifact == VALID_GAME

    async def test_degraded_backend(self) -> None:
        orchestrator = make_orchestrator(backend=DegradedCall())
        assert orchestrator.degraded
        run = await orchestrator.execute(orchestrator.prepare(confirmed_session()))
        assert run.degraded
        assert run.extracted_artifact == DEGRADED_DOCUMENT

    async def test_retrieval_failure_uses_builtin_context(self) -> None:
        generator = ScriptedGenerator([VALID_GAME])
        search = BrokenSearch()
        orchestrator = make_orchestrator(generator, search=search)
        run = await orchestrator.execute(orchestrator.prepare(confirmed_session()))
        assert run.extracted_artifact == VALID_GAME
        assert search.calls == 1
        assert "Sensor game development basics" in generator.requests[0].prompt

    async def test_records_telemetry_stages(self) -> None:
        telemetry = TelemetryMonitor()
        orchestrator = make_orchestrator(telemetry=telemetry)
        session = confirmed_session()
        handle = telemetry.start_run(session.id)
        await orchestrator.execute(orchestrator.prepare(session), handle=handle)
        assert [s["name"] for s in handle.stages] == ["retrieval", "generation"]
        assert telemetry.metric("ai_request").count == 1

    async def test_failed_attempts_are_recorded(self) -> None:
        telemetry = TelemetryMonitor()
        generator = ScriptedGenerator([failing(), VALID_GAME])
        orchestrator = make_orchestrator(generator, telemetry=telemetry)
        await orchestrator.execute(orchestrator.prepare(confirmed_session()))
        requests = telemetry.metric("ai_request")
        assert requests.count == 2
        assert requests.successes == 1


# ---------------------------------------------------------------------------
# Backend selection and replies
# ---------------------------------------------------------------------------

def test_select_backend() -> None:
    built = []

    def make_live():
        built.append(True)
        return ScriptedGenerator(["hi"])

    assert isinstance(select_backend("", make_live), DegradedCall)
    assert built == []
    live = select_backend("sk-test", make_live)
    assert isinstance(live, LiveCall)
    assert not live.degraded
    assert built == [True]


class TestRespond:
    async def test_live_reply(self) -> None:
        generator = ScriptedGenerator(["  Love it! How many players?  "])
        orchestrator = make_orchestrator(generator)
        session = ConversationSession()
        session.submit_user_turn("a tilt game")
        reply = await orchestrator.respond(session, "a tilt game")
        assert reply.text == "Love it! How many players?"
        assert not reply.degraded
        assert generator.requests[0].stage == session.stage.value

    async def test_failing_backend_falls_back(self) -> None:
        orchestrator = make_orchestrator(ScriptedGenerator([failing()]))
        session = ConversationSession()
        question = Question(category="genre", index=0, text="What kind of game?")
        reply = await orchestrator.respond(session, "hello", question)
        assert reply.degraded
        assert reply.text == f"{DEGRADED_REPLIES['initial']} What kind of game?"

    async def test_empty_reply_falls_back(self) -> None:
        orchestrator = make_orchestrator(ScriptedGenerator(["   "]))
        reply = await orchestrator.respond(ConversationSession(), "hello")
        assert reply.degraded

    async def test_degraded_confirmation_reply_summarizes_plan(self) -> None:
        orchestrator = make_orchestrator(backend=DegradedCall())
        session = confirmed_session()
        assert session.stage is Stage.CONFIRMATION
        reply = await orchestrator.respond(session, "yes")
        assert reply.degraded
        assert reply.text.startswith(DEGRADED_REPLIES["confirmation"])
        assert plan_summary(session.requirements) in reply.text


def test_plan_summary() -> None:
    session = confirmed_session()
    summary = plan_summary(session.requirements)
    assert session.requirements.title in summary
    assert "tilt" in summary
    assert "solo" in summary
