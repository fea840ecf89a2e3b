"""Handlebars prompt rendering for generation and conversation replies."""

from collections.abc import Callable
from typing import Any

import pybars

from game_forge.models import Question, Requirements, Stage


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_join(this, items, separator=", "):
    """{{join array ", "}}: items joined into one string."""
    return separator.join(str(i) for i in items or [])


_HELPERS: dict[str, Callable] = {
    "join": _helper_join,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

GENERATION_TEMPLATE = """You are an expert HTML5 game developer. Build a complete, playable
single-file browser game that is controlled by the motion sensors of one or
more phones connected through SessionSDK.

## Game
Title: {{{req.title}}}
Description: {{{req.description}}}
Genre: {{{req.genre}}}
Players: {{{req.player_mode}}}
Controls: {{{join mechanics ", "}}}
Difficulty: {{{req.difficulty}}}
{{#if req.visual_style}}Visual style: {{{req.visual_style}}}
{{/if}}{{#if req.duration}}Session length: {{{req.duration}}}
{{/if}}{{#if req.target_score}}Target score: {{{req.target_score}}}
{{/if}}
## Objectives
{{#if req.objectives}}{{#each req.objectives}}- {{{this}}}
{{/each}}{{else}}- Score as many points as possible
{{/if}}
## Reference material
{{{context}}}

## Technical requirements
- One HTML document with inline <style> and <script>, starting with <!DOCTYPE html>
- Load the SDK with `<script src="/js/SessionSDK.js"></script>` and create it with `new SessionSDK({ gameId: '{{{game_id}}}', gameType: '{{{req.player_mode}}}' })`
- Call createSession() only after the 'connected' event; show the session code on 'session-created'
- Unwrap every SDK event with `const data = event.detail || event;`
- Read orientation, acceleration and rotationRate from 'sensor-data' events and smooth the input
- Render on a <canvas> with requestAnimationFrame; track playing, paused and gameOver states
- Keep a score, show win and lose conditions, and support restarting
- Responsive layout with a viewport meta tag and CSS variables for colors
{{#if strict}}
Return ONLY the complete HTML document, from <!DOCTYPE html> to </html>.
No explanations and no markdown fences.
{{/if}}"""

REPLY_TEMPLATE = """You are a friendly game designer helping someone describe a
phone-sensor browser game. Keep the reply to two to four sentences.

Conversation stage: {{stage}}
What we know so far:
{{#if req.title}}- Title: {{{req.title}}}
{{/if}}{{#if req.genre}}- Genre: {{{req.genre}}}
{{/if}}{{#if req.player_mode}}- Players: {{{req.player_mode}}}
{{/if}}{{#if mechanics}}- Controls: {{{join mechanics ", "}}}
{{/if}}{{#if req.difficulty}}- Difficulty: {{{req.difficulty}}}
{{/if}}{{#each req.objectives}}- Objective: {{{this}}}
{{/each}}
The user just said: {{{message}}}
{{#if question}}
End your reply with this question: {{{question}}}
{{/if}}{{#if confirming}}
Summarize the game plan and ask the user to confirm it or request changes.
{{/if}}"""


def _requirements_context(requirements: Requirements) -> dict[str, Any]:
    req = requirements.model_dump(mode="json")
    return {"req": req, "mechanics": sorted(requirements.mechanics)}


def build_generation_context(
    requirements: Requirements,
    context: str,
    game_id: str,
    strict: bool = False,
) -> dict[str, Any]:
    """Template variables for GENERATION_TEMPLATE."""
    return {
        **_requirements_context(requirements),
        "context": context,
        "game_id": game_id,
        "strict": strict,
    }


def build_reply_context(
    stage: Stage,
    requirements: Requirements,
    message: str,
    question: Question | None = None,
) -> dict[str, Any]:
    """Template variables for REPLY_TEMPLATE."""
    return {
        **_requirements_context(requirements),
        "stage": stage.value,
        "message": message,
        "question": question.text if question else None,
        "confirming": stage is Stage.CONFIRMATION,
    }
