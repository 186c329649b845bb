"""Strength dial to worker option mapping, plus the engine-move selection policy."""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

from utils import clamp, round_half_up

if TYPE_CHECKING:
    from engine_session import EngineResult

MIN_LEVEL = 0
MAX_LEVEL = 20
MIN_DEPTH = 1
MAX_DEPTH = 15
MAX_VARIANCE_BUDGET = 3


def error_probability(level: int) -> int:
    return round_half_up(level * 6.35 + 1)


def maximum_error(level: int) -> int:
    return round_half_up(level * -0.5 + 10)


def candidate_line_count(variance_budget: int) -> int:
    return clamp(variance_budget, 0, MAX_VARIANCE_BUDGET) + 1


@dataclass(frozen=True)
class SkillSettings:
    level: int = MIN_LEVEL
    depth: int = 5
    variance_budget: int = 0

    @classmethod
    def clamped(cls, level: int, depth: int, variance_budget: int = 0) -> "SkillSettings":
        return cls(
            level=clamp(int(level), MIN_LEVEL, MAX_LEVEL),
            depth=clamp(int(depth), MIN_DEPTH, MAX_DEPTH),
            variance_budget=clamp(int(variance_budget), 0, MAX_VARIANCE_BUDGET),
        )

    def options(self) -> Dict[str, int]:
        return {
            "Skill Level": self.level,
            "Skill Level Maximum Error": maximum_error(self.level),
            "Skill Level Probability": error_probability(self.level),
            "MultiPV": candidate_line_count(self.variance_budget),
        }

    def commands(self) -> List[str]:
        return [f"setoption name {name} value {value}" for name, value in self.options().items()]


class CandidatePolicy(str, Enum):
    BEST = "best"
    UNIFORM = "uniform"


def pick_candidate(
    result: "EngineResult",
    policy: CandidatePolicy = CandidatePolicy.BEST,
    rng: Optional[random.Random] = None,
) -> Optional[str]:
    """Choose the move to play from a finished search.

    ``UNIFORM`` draws among the distinct first moves of the ranked candidate
    lines; with fewer than two candidates it behaves like ``BEST``.
    """
    if policy is CandidatePolicy.BEST:
        return result.move

    candidates: List[str] = []
    for line in result.lines:
        if line.moves and line.moves[0] not in candidates:
            candidates.append(line.moves[0])
    if len(candidates) < 2:
        return result.move
    return (rng or random).choice(candidates)
