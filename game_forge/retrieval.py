"""Reference-context retrieval for the generation prompt.

A SimilaritySearch returns ranked text matches for a query:

    async def search(self, query: str, top_k: int, threshold: float) -> list[Match]

    HttpSimilaritySearch  remote search service over HTTP.
    LocalDocumentSearch   keyword overlap over the markdown files in the
                          data directory's documents/ folder.

ContextRetriever issues one query per requirement facet, merges and dedupes
the matches, and caches the joined context per query set. Any failure, or no
matches at all, falls back to DEFAULT_CONTEXT.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import OrderedDict
from typing import Protocol

import httpx
from pydantic import BaseModel

from game_forge.errors import ExternalServiceError, RetrievalError
from game_forge.models import Requirements
from game_forge.storage import list_documents

logger = logging.getLogger(__name__)

SEPARATOR = "\n\n---\n\n"

DEFAULT_CONTEXT = """# Sensor game development basics

## Game types
- Solo: one phone controls the game (rolling a ball, escaping a maze)
- Dual: two phones cooperate (shared puzzles)
- Multi: three to eight phones compete on one screen

## Sensor data
- orientation: alpha (rotation), beta (front/back tilt), gamma (left/right tilt)
- acceleration: x, y, z
- rotationRate: rotation speed

## Required patterns
- Load and construct SessionSDK with gameId and gameType
- Create the session only after the 'connected' event
- Unwrap SDK events with `event.detail || event`
- Handle 'sensor-data' events and smooth noisy input
- Render with HTML5 canvas and requestAnimationFrame
"""


class Match(BaseModel):
    text: str
    score: float


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class SimilaritySearch(Protocol):
    async def search(self, query: str, top_k: int, threshold: float) -> list[Match]: ...


# ---------------------------------------------------------------------------
# HttpSimilaritySearch
# ---------------------------------------------------------------------------

class HttpSimilaritySearch:
    """Client for a remote similarity search endpoint.

    Request:  POST <search_url>  {"query", "top_k", "similarity_threshold"}
    Response: {"results": [{"text": ..., "score": ...}, ...]}
    """

    def __init__(
        self,
        search_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = search_url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def search(self, query: str, top_k: int, threshold: float) -> list[Match]:
        body = {"query": query, "top_k": top_k, "similarity_threshold": threshold}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise RetrievalError(f"Cannot connect to search service at {self._url}") from e
        except httpx.HTTPStatusError as e:
            raise RetrievalError(f"Search service returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise RetrievalError(f"Search service timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise RetrievalError(f"Search request failed: {type(e).__name__}: {e}") from e

        data = resp.json()
        results = data.get("results") if isinstance(data, dict) else data
        if not isinstance(results, list):
            raise RetrievalError("Unexpected response format from search service")
        return [Match.model_validate(r) for r in results]


# ---------------------------------------------------------------------------
# LocalDocumentSearch
# ---------------------------------------------------------------------------

_WORD = re.compile(r"[a-z0-9]+")


def _terms(text: str) -> set[str]:
    return {w for w in _WORD.findall(text.lower()) if len(w) > 2}


class LocalDocumentSearch:
    """Scores stored documents by the fraction of query terms they contain."""

    async def search(self, query: str, top_k: int, threshold: float) -> list[Match]:
        docs = await asyncio.to_thread(list_documents)
        wanted = _terms(query)
        if not wanted:
            return []
        matches = []
        for doc in docs:
            score = len(wanted & _terms(doc["text"])) / len(wanted)
            if score >= threshold:
                matches.append(Match(text=doc["text"], score=round(score, 4)))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]


# ---------------------------------------------------------------------------
# ContextRetriever
# ---------------------------------------------------------------------------

class RetrievedContext(BaseModel):
    text: str
    matches: int
    fallback: bool = False


def queries_for(requirements: Requirements) -> list[str]:
    """One query per requirement facet."""
    mechanics = " ".join(sorted(requirements.mechanics)) or "tilt"
    return [
        f"{requirements.player_mode or 'solo'} {requirements.genre or 'casual'} complete example",
        f"sensor {mechanics} game implementation",
        "SessionSDK integration pattern",
        "game loop update render pattern",
        "complete game template HTML structure",
    ]


class ContextRetriever:
    def __init__(
        self,
        search: SimilaritySearch,
        top_k: int = 5,
        threshold: float = 0.7,
        cache_size: int = 64,
    ) -> None:
        self._search = search
        self._top_k = top_k
        self._threshold = threshold
        self._cache_size = cache_size
        self._cache: OrderedDict[tuple[str, ...], RetrievedContext] = OrderedDict()

    @property
    def cached_entries(self) -> int:
        return len(self._cache)

    async def retrieve(self, requirements: Requirements) -> RetrievedContext:
        queries = tuple(queries_for(requirements))
        cached = self._cache.get(queries)
        if cached is not None:
            logger.debug("context cache hit for %d queries", len(queries))
            return cached

        try:
            ranked: dict[str, float] = {}
            for query in queries:
                for match in await self._search.search(query, self._top_k, self._threshold):
                    if match.score > ranked.get(match.text, -1.0):
                        ranked[match.text] = match.score
        except (ExternalServiceError, ValueError) as e:
            logger.warning("context retrieval failed, using built-in context: %s", e)
            return RetrievedContext(text=DEFAULT_CONTEXT, matches=0, fallback=True)

        if not ranked:
            logger.info("no reference documents matched; using built-in context")
            return RetrievedContext(text=DEFAULT_CONTEXT, matches=0, fallback=True)

        best = sorted(ranked.items(), key=lambda kv: kv[1], reverse=True)[: self._top_k]
        context = RetrievedContext(text=SEPARATOR.join(text for text, _ in best), matches=len(best))
        self._cache[queries] = context
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return context
