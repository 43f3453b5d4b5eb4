"""SM-2 review scheduling for learner skill states."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional
import math

from engines.validation import (
    ParameterValidationError,
    validate_positive_time,
    validate_quality,
)

MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SpacedRepetitionState:
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval: int = 0
    next_review_at: Optional[datetime] = None
    repetitions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["next_review_at"] = self.next_review_at.isoformat() if self.next_review_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpacedRepetitionState":
        raw_next = data.get("next_review_at")
        if isinstance(raw_next, str) and raw_next:
            next_review = datetime.fromisoformat(raw_next)
        else:
            next_review = raw_next or None
        return cls(
            ease_factor=float(data.get("ease_factor", DEFAULT_EASE_FACTOR)),
            interval=int(data.get("interval", 0)),
            next_review_at=next_review,
            repetitions=int(data.get("repetitions", 0)),
        )


def quality_from_response(
    is_correct: bool,
    response_time_ms: Optional[float] = None,
    expected_time_ms: Optional[float] = None,
) -> int:
    """Map a graded response (and optional timing) onto an SM-2 quality grade."""

    if not is_correct:
        return 1
    if response_time_ms is None or expected_time_ms is None:
        return 4
    response = validate_positive_time(response_time_ms, "response_time_ms")
    expected = validate_positive_time(expected_time_ms, "expected_time_ms")
    ratio = response / expected
    if ratio < 0.5:
        return 5
    if ratio < 1.0:
        return 4
    return 3


def update_sm2(
    state: SpacedRepetitionState,
    quality: int,
    now: Optional[datetime] = None,
) -> SpacedRepetitionState:
    """Apply one SM-2 review with grade ``quality`` (0..5)."""

    q = validate_quality(quality)
    now = now or utcnow()

    if q < 3:
        repetitions = 0
        interval = 1
    else:
        if state.repetitions == 0:
            interval = 1
        elif state.repetitions == 1:
            interval = 6
        else:
            # half-up rounding
            interval = int(math.floor(state.interval * state.ease_factor + 0.5))
        repetitions = state.repetitions + 1

    miss = 5 - q
    ease = state.ease_factor + (0.1 - miss * (0.08 + miss * 0.02))
    ease = max(MIN_EASE_FACTOR, ease)

    return SpacedRepetitionState(
        ease_factor=ease,
        interval=interval,
        next_review_at=now + timedelta(days=interval),
        repetitions=repetitions,
    )


def predicted_retention(days_since_review: float, ease_factor: float = DEFAULT_EASE_FACTOR) -> float:
    """Exponential forgetting curve whose half-life scales with the ease factor."""

    if days_since_review < 0:
        raise ParameterValidationError("days_since_review must be non-negative")
    if ease_factor <= 0:
        raise ParameterValidationError("ease_factor must be positive")
    retention = math.exp(-days_since_review / (ease_factor * 10))
    return max(0.0, min(1.0, retention))


class SpacedRepetitionScheduler:
    """Review planning over learner skill states that carry SM-2 schedules."""

    def __init__(self, minutes_per_review: int = 5):
        self.minutes_per_review = minutes_per_review

    @staticmethod
    def _next_review(item: Any) -> Optional[datetime]:
        return item.spaced_repetition.next_review_at

    def get_due_reviews(
        self,
        states: Iterable[Any],
        current_time: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Any]:
        """Return states whose next review is due, soonest first."""
        if current_time is None:
            current_time = utcnow()

        due = [
            state for state in states
            if self._next_review(state) is not None and self._next_review(state) <= current_time
        ]
        due.sort(key=lambda s: (self._next_review(s), s.skill_id))
        if limit is not None:
            due = due[:limit]
        return due

    def review_load(
        self,
        states: Iterable[Any],
        current_time: Optional[datetime] = None,
        days: int = 7,
    ) -> Dict[str, int]:
        """Count scheduled reviews per calendar day for the next ``days`` days."""
        now = current_time or utcnow()
        scheduled = [self._next_review(s) for s in states if self._next_review(s) is not None]
        load = {}
        for i in range(days):
            date = (now + timedelta(days=i)).date()
            load[date.isoformat()] = len([d for d in scheduled if d.date() == date])
        return load

    def suggest_daily_review_plan(
        self,
        states: Iterable[Any],
        available_time_minutes: int = 30,
        current_time: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Pick the due reviews that fit into the available time, weakest mastery first."""
        due_items = self.get_due_reviews(states, current_time)
        items_possible = min(len(due_items), available_time_minutes // self.minutes_per_review)

        prioritized = sorted(
            due_items,
            key=lambda s: (s.p_mastery, self._next_review(s)),
        )[:items_possible]

        return {
            "total_due": len(due_items),
            "recommended_reviews": items_possible,
            "estimated_time": items_possible * self.minutes_per_review,
            "items": [
                {
                    "skill_id": state.skill_id,
                    "p_mastery": state.p_mastery,
                    "next_review_at": self._next_review(state).isoformat(),
                }
                for state in prioritized
            ],
        }


__all__ = [
    "MIN_EASE_FACTOR",
    "DEFAULT_EASE_FACTOR",
    "SpacedRepetitionState",
    "SpacedRepetitionScheduler",
    "quality_from_response",
    "update_sm2",
    "predicted_retention",
    "utcnow",
]
