"""Deterministic quality scoring for generated game documents.

Every check is an independent probe against the raw HTML text. A passing
check adds its points to its category; a failing one may add an error (hard
requirement) or a warning (suggestion). Category totals are clamped to the
category maximum. The result is valid only with no errors and a score of at
least the acceptance fraction of the maximum.

When the requested genre has its own rule set, a "genre" category worth 30
points is added on top of the base 100.
"""

from __future__ import annotations

import math
import re
from typing import Literal, NamedTuple

from game_forge.models import CategoryScore, ValidationResult

DEFAULT_ACCEPTANCE_RATIO = 0.8

Severity = Literal["error", "warning"] | None


class Check(NamedTuple):
    category: str
    points: int
    patterns: tuple[re.Pattern[str], ...]
    severity: Severity
    message: str

    def passes(self, text: str) -> bool:
        return all(p.search(text) for p in self.patterns)


def _check(category: str, points: int, patterns: str | tuple[str, ...],
           severity: Severity = None, message: str = "", flags: int = re.IGNORECASE) -> Check:
    if isinstance(patterns, str):
        patterns = (patterns,)
    return Check(category, points, tuple(re.compile(p, flags) for p in patterns), severity, message)


CATEGORY_MAX: dict[str, int] = {
    "structure": 20,
    "integration": 30,
    "game_logic": 25,
    "sensors": 15,
    "presentation": 10,
}

GENRE_MAX = 30
GENRE_PATTERN_POINTS = 20
GENRE_FEATURE_POINTS = 10

CHECKS: list[Check] = [
    # structure
    _check("structure", 4, r"<!DOCTYPE\s+html", "error", "Missing <!DOCTYPE html> declaration"),
    _check("structure", 4, (r"<html[\s>]", r"</html>"), "error", "Missing <html> root element"),
    _check("structure", 2, r"<head[\s>]", "warning", "Missing <head> section"),
    _check("structure", 2, r"<meta[^>]+charset", "warning", "Missing <meta charset> tag"),
    _check("structure", 2, r"<title>", "warning", "Missing <title> tag"),
    _check("structure", 2, r"<body[\s>]", "warning", "Missing <body> element"),
    _check("structure", 4, r"<script[^>]+src\s*=\s*['\"][^'\"]*SessionSDK\.js", "error",
           "Missing <script src> tag loading SessionSDK.js"),
    # integration with the sensor session SDK
    _check("integration", 10, r"SessionSDK", "error", "SessionSDK is never referenced",
           flags=0),
    _check("integration", 8, r"new\s+SessionSDK\s*\(", "error", "SessionSDK is never constructed",
           flags=0),
    _check("integration", 2, (r"gameId\s*:", r"gameType\s*:"), "warning",
           "SessionSDK options should set gameId and gameType", flags=0),
    _check("integration", 4, r"event\.detail\s*\|\|\s*event", "warning",
           "SDK events should be unwrapped with 'event.detail || event'", flags=0),
    _check("integration", 2, r"\.on\(\s*['\"]connected['\"]", "warning",
           "No handler for the 'connected' event"),
    _check("integration", 2, r"\.createSession\s*\(", "warning",
           "The game never calls createSession()", flags=0),
    _check("integration", 2, r"session-created", "warning",
           "No handler for the 'session-created' event"),
    # core game logic
    _check("game_logic", 8, r"<canvas|createElement\(\s*['\"]canvas", "warning", "No canvas element"),
    _check("game_logic", 2, r"getContext\(", None, ""),
    _check("game_logic", 6, r"requestAnimationFrame|setInterval", "warning", "No game loop found"),
    _check("game_logic", 4, r"\b(playing|paused|gameOver|ready)\b", "warning",
           "No game state tracking (playing, paused, gameOver)"),
    _check("game_logic", 3, (r"\bscore\b", r"\+\+|\+="), "warning", "Score never increases"),
    _check("game_logic", 2, r"\b(win|lose|game ?over)\b", None, ""),
    # sensor handling
    _check("sensors", 8, r"sensor-data", "error", "No 'sensor-data' event handling"),
    _check("sensors", 2, r"orientation", None, ""),
    _check("sensors", 2, r"acceleration", None, ""),
    _check("sensors", 2, r"rotationRate", None, "", flags=0),
    _check("sensors", 3, r"smooth|filter|threshold|deadzone|lerp", "warning",
           "Sensor input is not smoothed or thresholded"),
    # presentation
    _check("presentation", 4, r"<style|\.css\b", "warning", "No styling found"),
    _check("presentation", 2, r"var\(--", None, ""),
    _check("presentation", 2, r"@media|viewport", "warning", "Layout is not responsive"),
    _check("presentation", 2, r"<button|onclick|addEventListener\(\s*['\"]click", None, ""),
]


class GenreRules(NamedTuple):
    patterns: tuple[re.Pattern[str], ...]
    features: dict[str, tuple[str, ...]]


def _genre(patterns: list[str], features: dict[str, tuple[str, ...]]) -> GenreRules:
    compiled = tuple(
        re.compile(p) if p.startswith("Math") else re.compile(p, re.IGNORECASE) for p in patterns
    )
    return GenreRules(compiled, features)


GENRE_RULES: dict[str, GenreRules] = {
    "arcade": _genre(
        [r"score|point", r"level|stage", r"timer|time|countdown", r"collision|hit", r"game.*over|gameOver"],
        {
            "score system": ("score", "point", "highscore"),
            "level progression": ("level", "stage"),
            "timer": ("timer", "countdown"),
        },
    ),
    "physics": _genre(
        [r"gravity", r"friction", r"velocity|vx.*vy|speed", r"collision|bounce|reflect",
         r"Math\.(sin|cos|atan2)"],
        {
            "gravity simulation": ("gravity", "fall", "drop"),
            "object collision": ("collision", "hit", "bounce"),
            "momentum": ("momentum", "inertia", "velocity"),
        },
    ),
    "maze": _genre(
        [r"maze|labyrinth|wall", r"collision|hit|bounds", r"goal|exit|finish",
         r"level|stage", r"timer|time|moves"],
        {
            "wall collision": ("wall", "collision"),
            "goal detection": ("goal", "exit", "finish"),
            "level progression": ("level", "stage"),
        },
    ),
    "cooking": _genre(
        [r"stir|mix|shake|flip", r"recipe|ingredient|cooking", r"timer|time|duration",
         r"temperature|heat|cook", r"progress|quality|done"],
        {
            "gesture recognition": ("gesture", "shake", "stir"),
            "timing system": ("timer", "timing", "duration"),
            "cooking progress": ("progress", "cooking", "done"),
        },
    ),
    "action": _genre(
        [r"combo|score|points", r"speed|fast|quick", r"enemy|obstacle|avoid",
         r"powerup|bonus", r"level|difficulty"],
        {
            "combo system": ("combo", "chain", "streak"),
            "score competition": ("score", "point", "highscore"),
            "difficulty ramp": ("difficulty", "level", "hard"),
        },
    ),
    "puzzle": _genre(
        [r"solve|solution|puzzle", r"hint|help|guide", r"level|stage|challenge",
         r"logic|think|strategy", r"complete|finish|success"],
        {
            "problem solving": ("solve", "solution", "puzzle"),
            "hint system": ("hint", "help", "guide"),
            "staged progression": ("stage", "level", "progress"),
        },
    ),
    "racing": _genre(
        [r"steering|turn|control", r"track|road|path", r"speed|acceleration|brake",
         r"lap|time|record", r"car|vehicle|drive"],
        {
            "steering control": ("steering", "control", "turn"),
            "speed management": ("speed", "acceleration", "brake"),
            "race track": ("track", "road", "course"),
        },
    ),
}

GRADES: list[tuple[float, str]] = [
    (0.9, "A+"),
    (0.8, "A"),
    (0.7, "B+"),
    (0.6, "B"),
    (0.5, "C"),
]


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def grade_for(score: int, max_score: int) -> str:
    ratio = score / max_score if max_score else 0.0
    for floor, grade in GRADES:
        if ratio >= floor:
            return grade
    return "F"


def validate(
    artifact: str,
    genre: str | None = None,
    acceptance_ratio: float = DEFAULT_ACCEPTANCE_RATIO,
) -> ValidationResult:
    """Score an HTML game document. Same input, same result."""
    earned = dict.fromkeys(CATEGORY_MAX, 0)
    errors: list[str] = []
    warnings: list[str] = []

    for check in CHECKS:
        if check.passes(artifact):
            earned[check.category] += check.points
        elif check.severity == "error":
            errors.append(f"{check.category}: {check.message}")
        elif check.severity == "warning":
            warnings.append(f"{check.category}: {check.message}")

    categories = {
        name: CategoryScore(score=min(earned[name], maximum), max=maximum)
        for name, maximum in CATEGORY_MAX.items()
    }

    genre_key = genre.lower() if genre else None
    rules = GENRE_RULES.get(genre_key) if genre_key else None
    if rules is not None:
        categories["genre"] = _score_genre(artifact, genre_key, rules, warnings)

    score = sum(c.score for c in categories.values())
    max_score = sum(c.max for c in categories.values())
    threshold = math.ceil(acceptance_ratio * max_score)
    return ValidationResult(
        score=score,
        max_score=max_score,
        categories=categories,
        errors=errors,
        warnings=warnings,
        is_valid=not errors and score >= threshold,
        grade=grade_for(score, max_score),
        genre=genre_key if rules is not None else None,
    )


def _score_genre(artifact: str, genre: str, rules: GenreRules, warnings: list[str]) -> CategoryScore:
    found_patterns = 0
    for pattern in rules.patterns:
        if pattern.search(artifact):
            found_patterns += 1
        else:
            warnings.append(f"genre: {genre} games usually include /{pattern.pattern}/")

    lowered = artifact.lower()
    found_features = 0
    for feature, keywords in rules.features.items():
        if any(k in lowered for k in keywords):
            found_features += 1
        else:
            warnings.append(f"genre: consider adding {feature}")

    score = (
        _round(found_patterns / len(rules.patterns) * GENRE_PATTERN_POINTS)
        + _round(found_features / len(rules.features) * GENRE_FEATURE_POINTS)
    )
    return CategoryScore(score=min(score, GENRE_MAX), max=GENRE_MAX)
