"""Streaming text-generation client.

Every generator matches the protocol:

    def stream(self, request: GenerationRequest) -> AsyncIterator[TextFragment | StreamSummary]

The stream yields TextFragment items as text arrives and ends with exactly
one StreamSummary carrying the stop reason and token usage.

Two implementations are provided:

    HttpTextGenerator      server-sent-events client for the Anthropic
                           messages API or OpenAI-compatible chat
                           completions. Selected by provider_format.
    DegradedTextGenerator  canned per-stage text, no network. Used when
                           no credential is configured.

Tests use ScriptedGenerator (tests/stubs.py) for controlled output.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel

from game_forge.errors import LLMError
from game_forge.models import StopReason, TokenUsage

logger = logging.getLogger(__name__)


class GenerationRequest(BaseModel):
    prompt: str
    max_output_tokens: int = 64000
    temperature: float = 0.3
    stage: str = "generation"


class TextFragment(BaseModel):
    text: str


class StreamSummary(BaseModel):
    stop_reason: StopReason
    usage: TokenUsage = TokenUsage()


StreamItem = TextFragment | StreamSummary


# ---------------------------------------------------------------------------
# Protocol: every generator implementation must match this signature
# ---------------------------------------------------------------------------

class TextGenerator(Protocol):
    def stream(self, request: GenerationRequest) -> AsyncIterator[StreamItem]: ...


async def collect(generator: TextGenerator, request: GenerationRequest) -> tuple[str, StreamSummary]:
    """Drain a stream into (full text, summary)."""
    parts: list[str] = []
    summary = StreamSummary(stop_reason="error")
    async for item in generator.stream(request):
        if isinstance(item, TextFragment):
            parts.append(item.text)
        else:
            summary = item
    return "".join(parts), summary


# ---------------------------------------------------------------------------
# HttpTextGenerator: streams from a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["anthropic", "openai"]

ANTHROPIC_VERSION = "2023-06-01"

_STOP_REASONS: dict[str, StopReason] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "stop": "stop",
    "tool_use": "stop",
    "max_tokens": "max_tokens",
    "length": "max_tokens",
}


class _StreamState:
    def __init__(self) -> None:
        self.input_tokens = 0
        self.output_tokens = 0
        self.stop_reason: StopReason | None = None

    def summary(self) -> StreamSummary:
        return StreamSummary(
            stop_reason=self.stop_reason or "error",
            usage=TokenUsage(input_tokens=self.input_tokens, output_tokens=self.output_tokens),
        )


class HttpTextGenerator:
    """Async streaming client for hosted text-generation APIs.

    Supported formats:
      "anthropic"  POST /v1/messages          {"stream": true, ...}
                   Events: message_start, content_block_delta,
                   message_delta (stop_reason, usage), message_stop
      "openai"     POST /v1/chat/completions  {"stream": true, ...}
                   Chunks: choices[0].delta.content, finish_reason,
                   final usage chunk, then [DONE]

    Args:
        provider_url:    Base URL, e.g. "https://api.anthropic.com".
        api_key:         Credential for the provider.
        provider_format: Wire format to use. Defaults to "anthropic".
        model:           Model identifier.
        timeout:         HTTP timeout in seconds. Defaults to 120.
        transport:       Optional httpx transport (tests pass MockTransport).
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "anthropic",
        model: str = "",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._format == "anthropic":
            headers["anthropic-version"] = ANTHROPIC_VERSION
            if self._api_key:
                headers["x-api-key"] = self._api_key
        elif self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, request: GenerationRequest) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        messages = [{"role": "user", "content": request.prompt}]
        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            body: dict[str, Any] = {
                "messages": messages,
                "max_tokens": request.max_output_tokens,
                "temperature": request.temperature,
                "stream": True,
                "stream_options": {"include_usage": True},
            }
        else:
            url = f"{self._base_url}/v1/messages"
            body = {
                "messages": messages,
                "max_tokens": request.max_output_tokens,
                "temperature": request.temperature,
                "stream": True,
            }
        if self._model:
            body["model"] = self._model
        return url, body

    def _parse_event(self, data: dict, state: _StreamState) -> str | None:
        """Update state from one decoded SSE payload; return any text in it."""
        if self._format == "openai":
            usage = data.get("usage")
            if usage:
                state.input_tokens = usage.get("prompt_tokens", state.input_tokens)
                state.output_tokens = usage.get("completion_tokens", state.output_tokens)
            choices = data.get("choices") or []
            if not choices:
                return None
            choice = choices[0]
            if choice.get("finish_reason"):
                state.stop_reason = _STOP_REASONS.get(choice["finish_reason"], "error")
            return (choice.get("delta") or {}).get("content")

        kind = data.get("type")
        if kind == "message_start":
            usage = data.get("message", {}).get("usage", {})
            state.input_tokens = usage.get("input_tokens", 0)
            state.output_tokens = usage.get("output_tokens", 0)
        elif kind == "content_block_delta":
            delta = data.get("delta", {})
            if delta.get("type") == "text_delta":
                return delta.get("text")
        elif kind == "message_delta":
            reason = data.get("delta", {}).get("stop_reason")
            if reason:
                state.stop_reason = _STOP_REASONS.get(reason, "error")
            state.output_tokens = data.get("usage", {}).get("output_tokens", state.output_tokens)
        elif kind == "error":
            message = data.get("error", {}).get("message", "unknown error")
            raise LLMError(f"Text generation stream error: {message}")
        return None

    async def stream(self, request: GenerationRequest) -> AsyncIterator[StreamItem]:
        url, body = self._build_request(request)
        logger.debug("llm stream stage=%s url=%s prompt_len=%d", request.stage, url, len(request.prompt))

        state = _StreamState()
        chunks = 0
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream("POST", url, json=body, headers=self._headers()) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        payload = line[len("data:"):].strip()
                        if not payload or payload == "[DONE]":
                            continue
                        try:
                            data = json.loads(payload)
                        except json.JSONDecodeError as e:
                            raise LLMError("Malformed event in text generation stream") from e
                        text = self._parse_event(data, state)
                        if text:
                            chunks += 1
                            yield TextFragment(text=text)
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to text generation backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"Text generation backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"Text generation backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Text generation request failed: {type(e).__name__}: {e}") from e

        summary = state.summary()
        logger.debug(
            "llm stream done stage=%s chunks=%d stop=%s out_tokens=%d",
            request.stage, chunks, summary.stop_reason, summary.usage.output_tokens,
        )
        yield summary


# ---------------------------------------------------------------------------
# DegradedTextGenerator: canned output; no network
# ---------------------------------------------------------------------------

DEGRADED_REPLIES: dict[str, str] = {
    "initial": (
        "Hi! Describe the sensor game you would like to build. "
        "What should the player do with their phone?"
    ),
    "details": "Sounds fun. Let's pin down a few details about the game.",
    "mechanics": "Great. Now let's decide how the phone controls the game and how to win.",
    "confirmation": (
        "Here is the plan for your game. Say 'yes' to confirm, or tell me what to change."
    ),
    "generating": "Your game is being generated.",
    "completed": "Your game is ready.",
    "failed": "Generation failed. You can retry without answering the questions again.",
}

DEGRADED_DOCUMENT = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>Placeholder Game</title>
</head>
<body>
<p>Text generation is not configured; this is a placeholder game.</p>
</body>
</html>"""


class DegradedTextGenerator:
    """Deterministic stand-in used when no text generation credential exists.

    Conversation stages get a fixed reply; the "generation" stage gets a
    placeholder document that is never accepted as a final artifact.
    """

    async def stream(self, request: GenerationRequest) -> AsyncIterator[StreamItem]:
        logger.debug("degraded stream stage=%s prompt_len=%d", request.stage, len(request.prompt))
        if request.stage == "generation":
            text = DEGRADED_DOCUMENT
        else:
            text = DEGRADED_REPLIES.get(request.stage, DEGRADED_REPLIES["initial"])
        yield TextFragment(text=text)
        yield StreamSummary(stop_reason="stop")
