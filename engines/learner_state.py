"""Per-learner, per-skill knowledge state and the practice-attempt lifecycle."""

from __future__ import annotations

import threading
import weakref
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from engines.bkt import DEFAULT_BKT_PARAMS, BKTParams, update_bkt
from engines.scaffolding import calculate_scaffold_level
from engines.spaced_repetition import (
    SpacedRepetitionScheduler,
    SpacedRepetitionState,
    quality_from_response,
    update_sm2,
    utcnow,
)
from engines.structured_log import log_json
from engines.validation import validate_probability

DEFAULT_MASTERY_THRESHOLD = 0.8
MASTERY_STREAK = 3

NOT_STARTED = "not_started"
LEARNING = "learning"
MASTERED = "mastered"
MASTERY_STATUSES = (NOT_STARTED, LEARNING, MASTERED)


@dataclass(frozen=True)
class LearnerSkillState:
    learner_id: str
    skill_id: str
    p_mastery: float
    bkt_params: BKTParams = DEFAULT_BKT_PARAMS
    mastery_status: str = NOT_STARTED
    mastery_threshold: float = DEFAULT_MASTERY_THRESHOLD
    total_attempts: int = 0
    correct_attempts: int = 0
    consecutive_successes: int = 0
    spaced_repetition: SpacedRepetitionState = field(default_factory=SpacedRepetitionState)
    current_scaffold_level: int = 1
    updated_at: Optional[datetime] = None
    notebook_id: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.learner_id, self.skill_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "skill_id": self.skill_id,
            "notebook_id": self.notebook_id,
            "p_mastery": self.p_mastery,
            "bkt_params": self.bkt_params.to_dict(),
            "mastery_status": self.mastery_status,
            "mastery_threshold": self.mastery_threshold,
            "total_attempts": self.total_attempts,
            "correct_attempts": self.correct_attempts,
            "consecutive_successes": self.consecutive_successes,
            "spaced_repetition": self.spaced_repetition.to_dict(),
            "current_scaffold_level": self.current_scaffold_level,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def create_initial_state(
    learner_id: str,
    skill_id: str,
    mastery_threshold: float = DEFAULT_MASTERY_THRESHOLD,
    params: Optional[BKTParams] = None,
    notebook_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LearnerSkillState:
    params = params or DEFAULT_BKT_PARAMS
    return LearnerSkillState(
        learner_id=learner_id,
        skill_id=skill_id,
        notebook_id=notebook_id,
        p_mastery=params.p_l0,
        bkt_params=params,
        mastery_threshold=validate_probability(mastery_threshold, "mastery_threshold"),
        updated_at=now or utcnow(),
    )


def apply_attempt(
    state: LearnerSkillState,
    is_correct: bool,
    response_time_ms: Optional[float] = None,
    expected_time_ms: Optional[float] = None,
    now: Optional[datetime] = None,
) -> LearnerSkillState:
    """Fold one practice attempt into ``state`` and return the new state."""

    now = now or utcnow()
    p_mastery = update_bkt(state.p_mastery, is_correct, state.bkt_params)
    quality = quality_from_response(is_correct, response_time_ms, expected_time_ms)
    schedule = update_sm2(state.spaced_repetition, quality, now)

    total = state.total_attempts + 1
    correct = state.correct_attempts + (1 if is_correct else 0)
    streak = state.consecutive_successes + 1 if is_correct else 0

    if p_mastery >= state.mastery_threshold and streak >= MASTERY_STREAK:
        status = MASTERED
    else:
        status = LEARNING

    return replace(
        state,
        p_mastery=p_mastery,
        mastery_status=status,
        total_attempts=total,
        correct_attempts=correct,
        consecutive_successes=streak,
        spaced_repetition=schedule,
        current_scaffold_level=int(calculate_scaffold_level(p_mastery)),
        updated_at=now,
    )


class LearnerStateService:
    """Read-compute-write transactions over an injected learner state store.

    Updates for the same (learner, skill) key are serialised; BKT and SM-2
    updates do not commute, so concurrent writers would otherwise lose attempts.
    """

    def __init__(self, store, scheduler: Optional[SpacedRepetitionScheduler] = None):
        self.store = store
        self.scheduler = scheduler or SpacedRepetitionScheduler()
        # entries disappear once no attempt holds the lock
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, learner_id: str, skill_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get((learner_id, skill_id))
            if lock is None:
                lock = threading.Lock()
                self._locks[(learner_id, skill_id)] = lock
            return lock

    def get_state(self, learner_id: str, skill_id: str) -> Optional[LearnerSkillState]:
        return self.store.get_state(learner_id, skill_id)

    def record_practice_attempt(
        self,
        learner_id: str,
        skill_id: str,
        is_correct: bool,
        *,
        notebook_id: Optional[str] = None,
        mastery_threshold: float = DEFAULT_MASTERY_THRESHOLD,
        response_time_ms: Optional[float] = None,
        expected_time_ms: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> LearnerSkillState:
        """Apply one attempt to the stored state, creating it on first practice.

        ``mastery_threshold`` and the skill's stored BKT params are only read when
        the state is created; later attempts keep the threshold already stored.
        """

        with self._lock_for(learner_id, skill_id):
            state = self.store.get_state(learner_id, skill_id)
            if state is None:
                params = self.store.get_skill_params(skill_id)
                state = create_initial_state(
                    learner_id,
                    skill_id,
                    mastery_threshold,
                    params=params,
                    notebook_id=notebook_id,
                    now=now,
                )
            elif notebook_id and state.notebook_id is None:
                state = replace(state, notebook_id=notebook_id)
            updated = apply_attempt(state, is_correct, response_time_ms, expected_time_ms, now)
            self.store.upsert_state(updated)

        log_json(
            "practice_attempt_recorded",
            {
                "learner_id": learner_id,
                "skill_id": skill_id,
                "is_correct": bool(is_correct),
                "p_mastery": round(updated.p_mastery, 6),
                "mastery_status": updated.mastery_status,
                "scaffold_level": updated.current_scaffold_level,
                "interval_days": updated.spaced_repetition.interval,
            },
        )
        return updated

    def list_states(self, learner_id: str, notebook_id: Optional[str] = None) -> List[LearnerSkillState]:
        return self.store.list_states(learner_id, notebook_id)

    def mastered_skill_ids(self, learner_id: str, notebook_id: Optional[str] = None) -> List[str]:
        return sorted(
            state.skill_id
            for state in self.store.list_states(learner_id, notebook_id)
            if state.mastery_status == MASTERED
        )

    def skills_due_for_review(
        self,
        learner_id: str,
        notebook_id: Optional[str] = None,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[LearnerSkillState]:
        states = self.store.list_states(learner_id, notebook_id)
        return self.scheduler.get_due_reviews(states, now, limit)

    def progress_summary(
        self,
        learner_id: str,
        notebook_id: Optional[str] = None,
        skill_ids: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Aggregate progress over the notebook's skills; untracked skills count as not started."""

        now = now or utcnow()
        states = {s.skill_id: s for s in self.store.list_states(learner_id, notebook_id)}
        scope = list(dict.fromkeys(skill_ids)) if skill_ids is not None else list(states)
        tracked = [states[skill_id] for skill_id in scope if skill_id in states]

        mastered = sum(1 for s in tracked if s.mastery_status == MASTERED)
        learning = sum(1 for s in tracked if s.mastery_status == LEARNING)
        average = sum(s.p_mastery for s in tracked) / len(scope) if scope else 0.0
        reviews = [s.spaced_repetition.next_review_at for s in tracked if s.spaced_repetition.next_review_at]
        upcoming = [r for r in reviews if r > now]
        return {
            "total_skills": len(scope),
            "mastered_skills": mastered,
            "learning_skills": learning,
            "not_started_skills": len(scope) - mastered - learning,
            "average_mastery": average,
            "skills_due_for_review": sum(1 for r in reviews if r <= now),
            "next_review_at": min(upcoming).isoformat() if upcoming else None,
            "review_load": self.scheduler.review_load(tracked, now),
        }

    def reset_notebook(self, learner_id: str, notebook_id: str) -> int:
        return self.store.delete_states(learner_id, notebook_id)


__all__ = [
    "DEFAULT_MASTERY_THRESHOLD",
    "MASTERY_STATUSES",
    "NOT_STARTED",
    "LEARNING",
    "MASTERED",
    "LearnerSkillState",
    "create_initial_state",
    "apply_attempt",
    "LearnerStateService",
]
