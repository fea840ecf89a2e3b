"""Keyword/pattern requirement extraction.

The rule table is applied to the whole accumulated conversation on every
turn. Each rule that matches adds its weight to the category confidence once
per match; confidence is capped per category at CONFIDENCE_CAP.

Categories with a fixed value per rule (genre, player mode, mechanics,
difficulty, visual style) resolve by vote: the value with the most matches
wins and ties go to the value listed first. Categories whose value is
captured from the text (objectives, duration, target score) keep the
captured phrases in order of appearance.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import NamedTuple

from game_forge.models import Requirements, Signals

CONFIDENCE_CAP = 1.0


class Rule(NamedTuple):
    category: str
    value: str | None
    pattern: re.Pattern[str]
    weight: float


def _rule(category: str, value: str | None, pattern: str, weight: float) -> Rule:
    return Rule(category, value, re.compile(pattern, re.IGNORECASE), weight)


RULES: list[Rule] = [
    # genre
    _rule("genre", "physics", r"\b(physics|gravity|roll(?:s|ing)?|bounc\w*|balls?|momentum)\b", 0.35),
    _rule("genre", "maze", r"\b(maze|labyrinth|corridors?)\b", 0.35),
    _rule("genre", "action", r"\b(action|dodg\w*|shoot\w*|fight\w*|battle|enem(?:y|ies))\b", 0.35),
    _rule("genre", "puzzle", r"\b(puzzles?|brain|logic|riddles?|match(?:ing)? tiles)\b", 0.35),
    _rule("genre", "racing", r"\b(rac(?:e|es|ing)|cars?|driv(?:e|ing)|laps?|track)\b", 0.35),
    _rule("genre", "cooking", r"\b(cook\w*|kitchen|recipes?|chef|ingredients?)\b", 0.35),
    _rule("genre", "arcade", r"\b(arcade|high ?scores?|retro game)\b", 0.35),
    _rule("genre", "casual", r"\b(casual|relax\w*|chill)\b", 0.35),
    # player mode
    _rule("player_mode", "solo",
          r"\b(solo|single[- ]?player|one (?:person|player)|1 player|alone|by myself|just me)\b", 0.3),
    _rule("player_mode", "dual",
          r"\b(two (?:people|players?)|2 players?|dual|co-?op|versus|head[- ]to[- ]head|with a friend)\b", 0.3),
    _rule("player_mode", "multi",
          r"\b(multi[- ]?player|group|party game|(?:three|four|many|several|[3-9]) players)\b", 0.3),
    # mechanics
    _rule("mechanics", "tilt", r"\b(tilt\w*|lean\w*|incline)\b", 0.25),
    _rule("mechanics", "shake", r"\b(shak\w*|jiggl\w*)\b", 0.25),
    _rule("mechanics", "rotate", r"\b(rotat\w*|spin\w*|twist\w*)\b", 0.25),
    _rule("mechanics", "tap", r"\b(tap\w*|touch\w*)\b", 0.25),
    _rule("mechanics", "swipe", r"\b(swip\w*|flick\w*)\b", 0.25),
    # difficulty
    _rule("difficulty", "easy", r"\b(easy|beginner|gentle|for kids)\b", 0.3),
    _rule("difficulty", "medium", r"\b(medium|normal|moderate|intermediate)\b", 0.3),
    _rule("difficulty", "hard", r"\b(hard|difficult|challenging|expert)\b", 0.3),
    # objectives
    _rule("objectives", None, r"\b(?:goal|objective|aim|mission)\s+(?:is\s+)?(?:to\s+)?([^.,!?;\n]{3,60})", 0.3),
    _rule("objectives", None,
          r"\b((?:reach|collect|avoid|escape|finish|clear|beat|survive|win|catch)\b[^.,!?;\n]{0,50})", 0.3),
    # visual style
    _rule("visual_style", "neon", r"\b(neon|glow\w*)\b", 0.2),
    _rule("visual_style", "retro", r"\b(retro|pixel\w*|8-bit)\b", 0.2),
    _rule("visual_style", "minimal", r"\b(minimal\w*|clean|flat design)\b", 0.2),
    _rule("visual_style", "cartoon", r"\b(cartoon\w*|cute|playful)\b", 0.2),
    _rule("visual_style", "pastel", r"\b(pastel|soft colou?rs?)\b", 0.2),
    _rule("visual_style", "dark", r"\b(dark (?:theme|mode|colou?rs?)|spooky|night)\b", 0.2),
    _rule("visual_style", "colorful", r"\b(colou?rful|bright|vivid)\b", 0.2),
    # duration / target metric
    _rule("duration", None, r"\b(\d+(?:\s*-\s*\d+)?\s*(?:minutes?|mins?|seconds?|secs?))\b", 0.5),
    _rule("target_score", None, r"\b(\d{2,7})\s*(?:points?|pts)\b", 0.5),
    _rule("target_score", None, r"\bscore\s+(?:of\s+)?(\d{2,7})\b", 0.5),
]

# Full weight per category once any signal for it exists.
COMPLETION_WEIGHTS: dict[str, int] = {
    "genre": 20,
    "player_mode": 20,
    "mechanics": 15,
    "difficulty": 10,
    "objectives": 15,
    "visual_style": 10,
    "duration": 5,
    "target_score": 5,
}

_SCALAR_FIELDS = ("genre", "player_mode", "difficulty", "visual_style", "duration", "target_score")

_OBJECTIVE_SPLIT = re.compile(r"\s+(?:and|then|but|while|or)\s+", re.IGNORECASE)
_MAX_OBJECTIVE_WORDS = 8


def extract(history: Iterable[str]) -> Signals:
    """Extract requirement signals from the accumulated user text."""
    text = "\n".join(history)
    votes: dict[str, dict[str, int]] = {}
    captures: dict[str, list[tuple[int, str]]] = {}
    confidence: dict[str, float] = {}
    matches: dict[str, int] = {}

    for rule in RULES:
        hits = list(rule.pattern.finditer(text))
        if not hits:
            continue
        matches[rule.category] = matches.get(rule.category, 0) + len(hits)
        raised = confidence.get(rule.category, 0.0) + rule.weight * len(hits)
        confidence[rule.category] = round(min(CONFIDENCE_CAP, raised), 4)
        if rule.value is not None:
            bucket = votes.setdefault(rule.category, {})
            bucket[rule.value] = bucket.get(rule.value, 0) + len(hits)
        else:
            captures.setdefault(rule.category, []).extend(
                (m.start(), m.group(1).strip()) for m in hits
            )

    def top(category: str) -> str | None:
        bucket = votes.get(category)
        if not bucket:
            return None
        return max(bucket, key=bucket.__getitem__)

    def first_capture(category: str) -> str | None:
        found = sorted(captures.get(category, []))
        return found[0][1] if found else None

    target = first_capture("target_score")
    return Signals(
        genre=top("genre"),
        player_mode=top("player_mode"),
        mechanics=set(votes.get("mechanics", {})),
        difficulty=top("difficulty"),
        objectives=_objectives(captures.get("objectives", [])),
        visual_style=top("visual_style"),
        duration=first_capture("duration"),
        target_score=int(target) if target else None,
        confidence=confidence,
        matches=matches,
    )


def _objectives(found: list[tuple[int, str]]) -> list[str]:
    result: list[str] = []
    seen: set[str] = set()
    for _, phrase in sorted(found):
        for part in _OBJECTIVE_SPLIT.split(phrase):
            words = part.split()[:_MAX_OBJECTIVE_WORDS]
            objective = " ".join(words).strip(" -'")
            if len(objective) < 3 or objective.lower() in seen:
                continue
            seen.add(objective.lower())
            result.append(objective)
    return result


# ---------------------------------------------------------------------------
# Merging into the running requirement snapshot
# ---------------------------------------------------------------------------

def merge(requirements: Requirements, signals: Signals) -> Requirements:
    """Fill unresolved categories; resolved ones are kept.

    Mechanics and objectives accumulate across turns.
    """
    update: dict = {}
    for field in _SCALAR_FIELDS:
        value = getattr(signals, field)
        if getattr(requirements, field) is None and value is not None:
            update[field] = value
    if not signals.mechanics <= requirements.mechanics:
        update["mechanics"] = requirements.mechanics | signals.mechanics
    objectives = _append_new(requirements.objectives, signals.objectives)
    if objectives != requirements.objectives:
        update["objectives"] = objectives
    return requirements.model_copy(update=update) if update else requirements


def patch(requirements: Requirements, signals: Signals, removing: bool = False) -> Requirements:
    """Apply an explicit change request from a single turn.

    Unlike merge(), scalar values found in the turn overwrite existing ones.
    With removing=True, mentioned mechanics and objectives are dropped
    instead of added.
    """
    update: dict = {"confirmed": False}
    if removing:
        update["mechanics"] = requirements.mechanics - signals.mechanics
        dropped = {o.lower() for o in signals.objectives}
        update["objectives"] = [o for o in requirements.objectives if o.lower() not in dropped]
        return requirements.model_copy(update=update)

    for field in _SCALAR_FIELDS:
        value = getattr(signals, field)
        if value is not None:
            update[field] = value
    update["mechanics"] = requirements.mechanics | signals.mechanics
    update["objectives"] = _append_new(requirements.objectives, signals.objectives)
    return requirements.model_copy(update=update)


def _append_new(existing: list[str], found: list[str]) -> list[str]:
    known = {o.lower() for o in existing}
    added = [o for o in found if o.lower() not in known]
    return existing + added if added else existing


def completion_score(requirements: Requirements) -> int:
    """Weighted presence score over requirement categories, 0 to 100."""
    total = 0
    for category, weight in COMPLETION_WEIGHTS.items():
        value = getattr(requirements, category)
        if value:
            total += weight
    return min(100, total)


# ---------------------------------------------------------------------------
# User intent keywords
# ---------------------------------------------------------------------------

_PROGRESS = re.compile(
    r"\b(next|continue|go on|proceed|move on|let'?s go|that'?s all|that'?s it|ready|skip)\b",
    re.IGNORECASE,
)
_CHANGE = re.compile(
    r"\b(change|modify|instead|switch|replace|add|remove|drop|without|different|rather)\b",
    re.IGNORECASE,
)
_REMOVE = re.compile(r"\b(remove|drop|without|no more|get rid of)\b", re.IGNORECASE)
_CONFIRM = re.compile(
    r"\b(yes|yep|yeah|ok(?:ay)?|confirm\w*|looks good|sounds good|perfect|go ahead|generate|build it|correct)\b",
    re.IGNORECASE,
)
_GAME_IDEA = re.compile(r"\b(game|make|build|create|tilt|shake|sensor|phone|play)\b", re.IGNORECASE)


def is_progress_request(text: str) -> bool:
    return bool(_PROGRESS.search(text))


def is_change_request(text: str) -> bool:
    return bool(_CHANGE.search(text))


def is_removal_request(text: str) -> bool:
    return bool(_REMOVE.search(text))


def is_confirmation(text: str) -> bool:
    return bool(_CONFIRM.search(text))


def mentions_game_idea(text: str) -> bool:
    return bool(_GAME_IDEA.search(text))


def carries_requirements(signals: Signals) -> bool:
    """True when a turn names any requirement value on its own."""
    return any(getattr(signals, field) is not None for field in _SCALAR_FIELDS) or bool(
        signals.mechanics or signals.objectives
    )
