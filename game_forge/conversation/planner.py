"""Pick the next clarifying question from a fixed, prioritized catalog."""

from __future__ import annotations

from collections.abc import Callable, Collection
from typing import NamedTuple

from game_forge.models import Question, Requirements, Signals

GENRE_CONFIDENCE_TARGET = 0.7


class Category(NamedTuple):
    name: str
    priority: int
    needed: Callable[[Requirements, Signals], bool]
    questions: tuple[str, ...]


CATALOG: list[Category] = [
    Category(
        "genre", 1,
        lambda req, sig: req.genre is None
        or sig.confidence.get("genre", 0.0) < GENRE_CONFIDENCE_TARGET,
        (
            "What kind of game are you imagining: action, puzzle, physics, racing or something else?",
            "Is there an existing game that feels close to what you have in mind?",
            "What should the player feel while playing: rushed, relaxed, clever?",
        ),
    ),
    Category(
        "player_mode", 2,
        lambda req, sig: req.player_mode is None,
        (
            "Is this a single-player game, or should two or more people play together?",
            "Should players compete against each other or cooperate?",
            "How many phones should be able to join one game screen?",
        ),
    ),
    Category(
        "mechanics", 3,
        lambda req, sig: len(req.mechanics) < 2,
        (
            "How should the phone control the game: tilting, shaking, rotating or tapping?",
            "Would a second motion, like a shake for a special move, make it more fun?",
            "Should the controls be smooth and analog, or quick one-off gestures?",
        ),
    ),
    Category(
        "difficulty", 4,
        lambda req, sig: req.difficulty is None,
        (
            "How hard should it be: easy, medium or hard?",
            "Should the game get harder as the player progresses?",
            "Who is the audience: kids, casual players or experienced gamers?",
        ),
    ),
    Category(
        "visual_style", 5,
        lambda req, sig: req.visual_style is None,
        (
            "What visual style do you like: neon, retro pixel, minimal, cartoon?",
            "Any favorite colors or a theme for the game world?",
            "Should the screen feel calm and clean, or busy and flashy?",
        ),
    ),
    Category(
        "objectives", 6,
        lambda req, sig: len(req.objectives) < 2,
        (
            "What is the player's goal? How do they win?",
            "How does the player lose, or what should they avoid?",
            "Is there a score, a timer or levels to clear?",
        ),
    ),
]


def next_question(
    requirements: Requirements,
    signals: Signals,
    asked: Collection[tuple[str, int]],
    catalog: list[Category] | None = None,
) -> Question | None:
    """Return the first unasked question of the most urgent needed category.

    Categories whose questions have all been asked are skipped. Returns None
    when nothing is left to ask.
    """
    pending = sorted(
        (c for c in (catalog or CATALOG) if c.needed(requirements, signals)),
        key=lambda c: c.priority,
    )
    for category in pending:
        for index, text in enumerate(category.questions):
            if (category.name, index) not in asked:
                return Question(category=category.name, index=index, text=text)
    return None
