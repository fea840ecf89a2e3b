"""Pull the HTML document out of raw model output.

Strategies run from strictest to loosest; the first non-empty match wins.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from game_forge.errors import ArtifactExtractionError

Strategy = tuple[str, Callable[[str], str | None]]


def _pattern(regex: str, group: int = 0) -> Callable[[str], str | None]:
    compiled = re.compile(regex, re.IGNORECASE)

    def strategy(text: str) -> str | None:
        m = compiled.search(text)
        if m is None:
            return None
        return m.group(group).strip() or None

    return strategy


def _fenced_html(text: str) -> str | None:
    """Any fenced block whose body looks like markup."""
    for m in re.finditer(r"```[\w-]*\s*\n([\s\S]*?)```", text):
        body = m.group(1).strip()
        if re.search(r"<html[\s>]|<body[\s>]|<canvas", body, re.IGNORECASE):
            return body
    return None


STRATEGIES: list[Strategy] = [
    ("doctype", _pattern(r"<!DOCTYPE html>[\s\S]*</html>")),
    ("html_fence", _pattern(r"```html\s*\n([\s\S]*?)```", group=1)),
    ("html_element", _pattern(r"<html[\s\S]*</html>")),
    ("any_fence", _fenced_html),
]


def extract_artifact(raw: str, strategies: list[Strategy] | None = None) -> tuple[str, str]:
    """Return (strategy name, document). Raises ArtifactExtractionError."""
    for name, strategy in strategies or STRATEGIES:
        found = strategy(raw)
        if found:
            return name, found
    raise ArtifactExtractionError(
        f"No HTML document found in generated text ({len(raw)} chars)"
    )
