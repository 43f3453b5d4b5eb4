"""Scaffold intensity selection from mastery probability."""

from __future__ import annotations

from enum import IntEnum

from engines.validation import validate_probability


class ScaffoldLevel(IntEnum):
    WORKED_EXAMPLES = 1
    PARTIAL_SOLUTIONS = 2
    HINTS_ON_REQUEST = 3
    INDEPENDENT_PRACTICE = 4

    @property
    def label(self) -> str:
        return self.name.lower().replace("_", " ")


def calculate_scaffold_level(p_mastery: float) -> ScaffoldLevel:
    """Step function over mastery; recomputed on every attempt, no hysteresis."""

    p = validate_probability(p_mastery, "p_mastery")
    if p < 0.3:
        return ScaffoldLevel.WORKED_EXAMPLES
    if p < 0.5:
        return ScaffoldLevel.PARTIAL_SOLUTIONS
    if p < 0.7:
        return ScaffoldLevel.HINTS_ON_REQUEST
    return ScaffoldLevel.INDEPENDENT_PRACTICE


def clamp_scaffold_level(level: int) -> int:
    return max(int(ScaffoldLevel.WORKED_EXAMPLES), min(int(ScaffoldLevel.INDEPENDENT_PRACTICE), level))


__all__ = ["ScaffoldLevel", "calculate_scaffold_level", "clamp_scaffold_level"]
