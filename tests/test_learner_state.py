"""Tests for the practice-attempt lifecycle."""

import gc
import threading
from datetime import datetime, timedelta, timezone

import pytest

import db
from engines.bkt import BKTParams, update_bkt
from engines.learner_state import (
    LEARNING,
    MASTERED,
    NOT_STARTED,
    LearnerStateService,
    apply_attempt,
    create_initial_state,
)

NOW = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


def test_initial_state_uses_prior_and_defaults():
    state = create_initial_state("learner-1", "fractions", now=NOW)
    assert state.p_mastery == 0.0
    assert state.mastery_status == NOT_STARTED
    assert state.mastery_threshold == 0.8
    assert state.current_scaffold_level == 1
    assert state.spaced_repetition.ease_factor == 2.5
    assert state.updated_at == NOW


def test_apply_attempt_updates_every_component():
    state = create_initial_state("learner-1", "fractions", now=NOW)
    updated = apply_attempt(state, True, now=NOW)

    assert updated.p_mastery == pytest.approx(update_bkt(0.0, True))
    assert updated.total_attempts == 1
    assert updated.correct_attempts == 1
    assert updated.consecutive_successes == 1
    assert updated.mastery_status == LEARNING
    assert updated.spaced_repetition.interval == 1
    assert updated.spaced_repetition.next_review_at == NOW + timedelta(days=1)
    # pure: the input is untouched
    assert state.total_attempts == 0


def test_mastery_needs_threshold_and_streak():
    params = BKTParams(p_l0=0.9, p_t=0.1, p_s=0.1, p_g=0.2)
    state = create_initial_state("l", "s", params=params, now=NOW)

    state = apply_attempt(state, True, now=NOW)
    assert state.p_mastery >= 0.8
    assert state.mastery_status == LEARNING  # streak of one

    state = apply_attempt(apply_attempt(state, True, now=NOW), True, now=NOW)
    assert state.mastery_status == MASTERED
    assert state.current_scaffold_level == 4

    state = apply_attempt(state, False, now=NOW)
    assert state.consecutive_successes == 0
    assert state.mastery_status == LEARNING
    assert state.spaced_repetition.repetitions == 0


def test_service_records_attempts_with_store(sqlite_store):
    service = LearnerStateService(sqlite_store)
    for outcome in (True, True, False):
        state = service.record_practice_attempt("alice", "algebra", outcome, notebook_id="nb", now=NOW)

    stored = service.get_state("alice", "algebra")
    assert stored == state
    assert stored.total_attempts == 3
    assert stored.correct_attempts == 2
    assert stored.notebook_id == "nb"


def test_service_uses_fitted_params_for_new_states(memory_store):
    params = BKTParams(p_l0=0.4, p_t=0.2, p_s=0.05, p_g=0.15)
    memory_store.store_skill_params("geometry", params)
    service = LearnerStateService(memory_store)

    state = service.record_practice_attempt("bob", "geometry", True, now=NOW)
    assert state.bkt_params == params
    assert state.p_mastery == pytest.approx(update_bkt(0.4, True, params))


def test_concurrent_attempts_are_not_lost(memory_store):
    service = LearnerStateService(memory_store)

    def worker():
        for _ in range(25):
            service.record_practice_attempt("carol", "logic", True, now=NOW)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert service.get_state("carol", "logic").total_attempts == 100


def test_key_locks_are_released_after_attempts(memory_store):
    service = LearnerStateService(memory_store)
    for i in range(50):
        service.record_practice_attempt("erin", f"skill-{i}", True, now=NOW)

    gc.collect()
    assert len(service._locks) == 0

    held = service._lock_for("erin", "skill-0")
    assert service._lock_for("erin", "skill-0") is held


def test_progress_summary_and_reviews(memory_store):
    service = LearnerStateService(memory_store)
    high = BKTParams(p_l0=0.95, p_t=0.1, p_s=0.1, p_g=0.2)
    memory_store.store_skill_params("mastered-skill", high)
    for _ in range(3):
        service.record_practice_attempt("dana", "mastered-skill", True, notebook_id="nb", now=NOW)
    service.record_practice_attempt("dana", "learning-skill", False, notebook_id="nb", now=NOW)

    assert service.mastered_skill_ids("dana", "nb") == ["mastered-skill"]

    summary = service.progress_summary(
        "dana", "nb", skill_ids=["mastered-skill", "learning-skill", "untouched"], now=NOW
    )
    assert summary["total_skills"] == 3
    assert summary["mastered_skills"] == 1
    assert summary["learning_skills"] == 1
    assert summary["not_started_skills"] == 1
    assert summary["skills_due_for_review"] == 0
    assert summary["next_review_at"] is not None

    due = service.skills_due_for_review("dana", "nb", now=NOW + timedelta(days=30))
    assert {s.skill_id for s in due} == {"mastered-skill", "learning-skill"}

    assert service.reset_notebook("dana", "nb") == 2
    assert service.list_states("dana") == []
