"""Tests for the conversation stage machine."""

import pytest

from game_forge.conversation.session import (
    DEFAULTS,
    ConversationSession,
    apply_defaults,
    derive_title,
    next_stage,
)
from game_forge.errors import PreconditionError
from game_forge.models import STAGE_ORDER, Requirements, Signals, Stage, StoredArtifact
from tests.stubs import MAZE_IDEA, confirmed_session


# ── next_stage ───────────────────────────────────────────────


class TestNextStage:
    def test_short_text_stays_initial(self):
        assert next_stage(Stage.INITIAL, Requirements(), Signals(), "hi game") is Stage.INITIAL

    def test_idea_advances(self):
        assert next_stage(Stage.INITIAL, Requirements(), Signals(), "make a shaking game") is Stage.DETAILS

    def test_confident_genre_advances_without_keywords(self):
        signals = Signals(genre="racing", confidence={"genre": 0.7})
        assert next_stage(Stage.INITIAL, Requirements(), signals, "cars on a race track") is Stage.DETAILS

    def test_progress_keyword_advances(self):
        assert next_stage(Stage.INITIAL, Requirements(), Signals(), "next") is Stage.DETAILS
        assert next_stage(Stage.DETAILS, Requirements(), Signals(), "continue") is Stage.MECHANICS
        assert next_stage(Stage.MECHANICS, Requirements(), Signals(), "ready") is Stage.CONFIRMATION

    def test_details_needs_mode_title_description(self):
        partial = Requirements(player_mode="solo", title="T")
        assert next_stage(Stage.DETAILS, partial, Signals(), "neon") is Stage.DETAILS
        full = partial.model_copy(update={"description": "d"})
        assert next_stage(Stage.DETAILS, full, Signals(), "neon") is Stage.MECHANICS

    def test_mechanics_needs_mechanic_difficulty_objective(self):
        req = Requirements(mechanics={"tilt"}, difficulty="easy")
        assert next_stage(Stage.MECHANICS, req, Signals(), "neon") is Stage.MECHANICS
        req = req.model_copy(update={"objectives": ["win"]})
        assert next_stage(Stage.MECHANICS, req, Signals(), "neon") is Stage.CONFIRMATION

    def test_confirmation_is_not_advanced_by_turns(self):
        assert next_stage(Stage.CONFIRMATION, Requirements(), Signals(), "next") is Stage.CONFIRMATION


# ── conversation turns ───────────────────────────────────────


class TestTurns:
    def test_first_idea_scenario(self):
        session = ConversationSession()
        turn = session.submit_user_turn(MAZE_IDEA)
        assert turn.stage is Stage.DETAILS
        assert turn.previous_stage is Stage.INITIAL
        assert turn.completion_score >= 55
        assert turn.progress == 50
        req = session.requirements
        assert req.genre == "physics"
        assert req.mechanics == {"tilt"}
        assert req.player_mode == "solo"
        assert req.title == "Physics Tilt Challenge"
        assert req.description == MAZE_IDEA
        assert turn.question is not None
        assert turn.question.category == "mechanics"

    def test_history_records_turns(self):
        session = ConversationSession()
        session.submit_user_turn(MAZE_IDEA)
        session.append_assistant("Nice idea!")
        roles = [e.role for e in session.history]
        assert roles == ["user", "assistant"]
        assert session.history[0].stage is Stage.INITIAL

    def test_stage_and_score_never_go_back(self):
        session = ConversationSession()
        turns = [MAZE_IDEA, "make it hard", "remove nothing", "collect stars and avoid holes", "neon", "next"]
        last_index, last_score = 0, 0
        for text in turns:
            turn = session.submit_user_turn(text)
            index = STAGE_ORDER.index(turn.stage)
            assert index >= last_index
            assert turn.completion_score >= last_score
            last_index, last_score = index, turn.completion_score

    def test_questions_never_repeat(self):
        session = ConversationSession()
        asked = []
        for text in ["hello", "hmm", "not sure", "maybe", "I don't know", "whatever"]:
            turn = session.submit_user_turn(text)
            if turn.question is not None:
                key = (turn.question.category, turn.question.index)
                assert key not in asked
                asked.append(key)
        assert len(asked) == len(set(asked)) > 0

    def test_defaults_applied_at_confirmation(self):
        session = ConversationSession()
        session.submit_user_turn("next")
        session.submit_user_turn("next")
        turn = session.submit_user_turn("next")
        assert turn.stage is Stage.CONFIRMATION
        assert turn.question is None
        req = session.requirements
        assert req.player_mode == DEFAULTS["player_mode"]
        assert req.difficulty == "medium"
        assert req.mechanics == {"tilt"}
        assert req.target_score == 1000
        assert req.title
        assert not req.confirmed

    def test_confirmation_sets_flag(self):
        session = confirmed_session()
        assert session.stage is Stage.CONFIRMATION

    def test_change_request_patches_and_unconfirms(self):
        session = confirmed_session()
        session.submit_user_turn("actually change it to hard")
        assert session.requirements.difficulty == "hard"
        assert not session.requirements.confirmed
        assert session.stage is Stage.CONFIRMATION

    def test_plain_request_in_confirmation_patches(self):
        session = confirmed_session()
        session.submit_user_turn("make it hard and for two players")
        assert session.requirements.difficulty == "hard"
        assert session.requirements.player_mode == "dual"
        assert not session.requirements.confirmed
        session.submit_user_turn("yes")
        assert session.requirements.confirmed

    def test_removal_in_confirmation(self):
        session = confirmed_session()
        session.submit_user_turn("add shake please")
        assert "shake" in session.requirements.mechanics
        score = session.completion_score
        session.submit_user_turn("remove the shake")
        assert session.requirements.mechanics == {"tilt"}
        assert session.completion_score == score

    @pytest.mark.parametrize("stage_setup", ["generating", "completed", "failed"])
    def test_turns_rejected_outside_conversation(self, stage_setup):
        session = confirmed_session()
        session.begin_generation("run-1")
        if stage_setup == "completed":
            session.complete("run-1")
        elif stage_setup == "failed":
            session.fail("run-1", "boom")
        with pytest.raises(PreconditionError):
            session.submit_user_turn("one more thing")


# ── generation lifecycle ─────────────────────────────────────


class TestGenerationLifecycle:
    def test_begin_requires_confirmation_stage(self):
        session = ConversationSession()
        with pytest.raises(PreconditionError):
            session.begin_generation("run-1")

    def test_begin_requires_confirmed_flag(self):
        session = confirmed_session()
        session.submit_user_turn("change it to easy")
        with pytest.raises(PreconditionError):
            session.begin_generation("run-1")

    def test_complete(self):
        session = confirmed_session()
        session.begin_generation("run-1", now=5.0)
        assert session.stage is Stage.GENERATING
        assert session.generation_started == 5.0
        artifact = StoredArtifact(artifact_id="a", locator="/tmp/a")
        assert session.complete("run-1", artifact)
        assert session.stage is Stage.COMPLETED
        assert session.artifact == artifact
        assert session.active_run_id is None

    def test_stale_run_is_ignored(self):
        session = confirmed_session()
        session.begin_generation("run-2")
        assert not session.complete("run-1")
        assert not session.fail("run-1", "late")
        assert session.stage is Stage.GENERATING

    def test_fail_keeps_requirements(self):
        session = confirmed_session()
        before = session.requirements
        session.begin_generation("run-1")
        assert session.fail("run-1", "backend down")
        assert session.stage is Stage.FAILED
        assert session.last_error == "backend down"
        assert session.requirements == before

    def test_retry_returns_to_confirmation(self):
        session = confirmed_session()
        session.begin_generation("run-1")
        session.fail("run-1", "backend down")
        session.retry()
        assert session.stage is Stage.CONFIRMATION
        assert session.requirements.confirmed
        session.begin_generation("run-2")
        assert session.active_run_id == "run-2"

    def test_retry_only_from_failed(self):
        with pytest.raises(PreconditionError):
            confirmed_session().retry()


class TestRestart:
    def test_restart_clears_everything_but_id(self):
        session = confirmed_session()
        session.restart()
        assert session.id == "s-confirmed"
        assert session.stage is Stage.INITIAL
        assert session.requirements == Requirements()
        assert session.history == ()
        assert session.asked == frozenset()
        assert session.completion_score == 0

    def test_restart_from_completed(self):
        session = confirmed_session()
        session.begin_generation("run-1")
        session.complete("run-1")
        session.restart()
        assert session.stage is Stage.INITIAL

    def test_restart_refused_while_generating(self):
        session = confirmed_session()
        session.begin_generation("run-1")
        with pytest.raises(PreconditionError):
            session.restart()


# ── helpers ──────────────────────────────────────────────────


def test_derive_title():
    assert derive_title(Requirements(genre="maze", mechanics={"tilt", "shake"})) == "Maze Shake Challenge"
    assert derive_title(Requirements()) == "Sensor Motion Challenge"


def test_apply_defaults_keeps_given_values():
    req = apply_defaults(Requirements(genre="racing", difficulty="hard"))
    assert req.genre == "racing"
    assert req.difficulty == "hard"
    assert req.player_mode == "solo"
    assert req.title == "Racing Tilt Challenge"


def test_snapshot_is_json_ready():
    session = ConversationSession("snap")
    session.submit_user_turn(MAZE_IDEA)
    snap = session.snapshot()
    assert snap["id"] == "snap"
    assert snap["stage"] == "details"
    assert snap["progress"] == 50
    assert snap["requirements"]["mechanics"] == ["tilt"]
    assert snap["history"][0]["role"] == "user"
