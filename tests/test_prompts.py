"""Tests for game_forge.prompts: Handlebars rendering and template contexts."""

import pytest

from game_forge.models import Question, Requirements, Stage
from game_forge.prompts import (
    GENERATION_TEMPLATE,
    REPLY_TEMPLATE,
    PromptError,
    build_generation_context,
    build_reply_context,
    render_prompt,
)

REQ = Requirements(
    title="Neon Tilt Maze",
    description="Roll a ball through a glowing maze",
    genre="maze",
    player_mode="solo",
    mechanics={"tilt", "shake"},
    difficulty="hard",
    objectives=["reach the exit", "avoid the holes"],
    visual_style="neon",
)


class TestRenderPrompt:
    def test_simple_variable(self) -> None:
        assert render_prompt("Hello {{name}}", {"name": "world"}) == "Hello world"

    def test_join_helper(self) -> None:
        result = render_prompt('{{join items " | "}}', {"items": ["a", "b"]})
        assert result == "a | b"

    def test_join_default_separator(self) -> None:
        assert render_prompt("{{join items}}", {"items": ["a", "b"]}) == "a, b"

    def test_triple_stash_does_not_escape(self) -> None:
        assert render_prompt("{{{x}}}", {"x": "<b>"}) == "<b>"

    def test_missing_variable_renders_empty(self) -> None:
        assert render_prompt("Hello {{name}}!", {}) == "Hello !"

    def test_invalid_template(self) -> None:
        with pytest.raises(PromptError):
            render_prompt("{{> missing_partial}}", {})


class TestGenerationPrompt:
    def test_contains_requirements(self) -> None:
        prompt = render_prompt(GENERATION_TEMPLATE, build_generation_context(REQ, "CTX", "neon-tilt-maze-1234"))
        assert "Title: Neon Tilt Maze" in prompt
        assert "Controls: shake, tilt" in prompt
        assert "Difficulty: hard" in prompt
        assert "Visual style: neon" in prompt
        assert "- reach the exit\n- avoid the holes" in prompt
        assert "CTX" in prompt
        assert "gameId: 'neon-tilt-maze-1234'" in prompt
        assert "gameType: 'solo'" in prompt
        assert "Return ONLY" not in prompt

    def test_optional_fields_omitted(self) -> None:
        req = REQ.model_copy(update={"visual_style": None, "objectives": []})
        prompt = render_prompt(GENERATION_TEMPLATE, build_generation_context(req, "", "g"))
        assert "Visual style" not in prompt
        assert "Session length" not in prompt
        assert "- Score as many points as possible" in prompt

    def test_strict_variant(self) -> None:
        prompt = render_prompt(GENERATION_TEMPLATE, build_generation_context(REQ, "", "g", strict=True))
        assert "Return ONLY the complete HTML document" in prompt


class TestReplyPrompt:
    def test_question_and_known_facts(self) -> None:
        question = Question(category="difficulty", index=0, text="How hard should it be?")
        context = build_reply_context(Stage.DETAILS, REQ, "make it glow", question)
        prompt = render_prompt(REPLY_TEMPLATE, context)
        assert "Conversation stage: details" in prompt
        assert "- Genre: maze" in prompt
        assert "- Objective: avoid the holes" in prompt
        assert "The user just said: make it glow" in prompt
        assert "End your reply with this question: How hard should it be?" in prompt
        assert "confirm" not in prompt

    def test_confirmation_asks_for_confirmation(self) -> None:
        prompt = render_prompt(REPLY_TEMPLATE, build_reply_context(Stage.CONFIRMATION, REQ, "ok"))
        assert "ask the user to confirm" in prompt
        assert "End your reply" not in prompt

    def test_empty_requirements(self) -> None:
        prompt = render_prompt(REPLY_TEMPLATE, build_reply_context(Stage.INITIAL, Requirements(), "hi"))
        assert "- Genre" not in prompt
        assert "The user just said: hi" in prompt
