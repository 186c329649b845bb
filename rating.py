"""Elo-style rating update coupled to an adaptive engine strength."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Tuple

from skill import MAX_DEPTH, MAX_LEVEL, MIN_DEPTH, MIN_LEVEL
from utils import clamp, round_half_up

K_FACTOR = 32
RATING_FLOOR = 100
BASE_OPPONENT_RATING = 1000
RATING_PER_LEVEL = 100

DEFAULT_RATING = 1000
DEFAULT_LEVEL = 0
DEFAULT_DEPTH = 5


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"

    @property
    def score(self) -> float:
        return {Outcome.WIN: 1.0, Outcome.LOSS: 0.0, Outcome.DRAW: 0.5}[self]


def expected_score(rating: int, opponent_rating: int) -> float:
    return 1.0 / (1 + 10 ** ((opponent_rating - rating) / 400.0))


def next_rating(current_rating: int, opponent_rating: int, outcome: Outcome) -> int:
    expected = expected_score(current_rating, opponent_rating)
    delta = round_half_up(K_FACTOR * (outcome.score - expected))
    return max(RATING_FLOOR, current_rating + delta)


def opponent_rating(level: int) -> int:
    return BASE_OPPONENT_RATING + level * RATING_PER_LEVEL


def next_strength(level: int, depth: int, outcome: Outcome) -> Tuple[int, int]:
    if outcome is Outcome.WIN:
        return min(MAX_LEVEL, level + 1), min(MAX_DEPTH, depth + 1)
    if outcome is Outcome.LOSS:
        return max(MIN_LEVEL, level - 1), max(MIN_DEPTH, depth - 1)
    return level, depth


@dataclass(frozen=True)
class RatingState:
    rating: int = DEFAULT_RATING
    strength_level: int = DEFAULT_LEVEL
    search_depth: int = DEFAULT_DEPTH

    def __post_init__(self) -> None:
        object.__setattr__(self, "rating", max(RATING_FLOOR, int(self.rating)))
        object.__setattr__(self, "strength_level", clamp(int(self.strength_level), MIN_LEVEL, MAX_LEVEL))
        object.__setattr__(self, "search_depth", clamp(int(self.search_depth), MIN_DEPTH, MAX_DEPTH))

    def after(self, outcome: Outcome) -> "RatingState":
        """Rating and engine strength once a game ends with ``outcome`` for the human."""
        rating = next_rating(self.rating, opponent_rating(self.strength_level), outcome)
        level, depth = next_strength(self.strength_level, self.search_depth, outcome)
        return replace(self, rating=rating, strength_level=level, search_depth=depth)
