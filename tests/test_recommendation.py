"""Tests for the adaptive recommendation scorer."""

import pytest

from engines.recommendation import (
    AdaptiveRecommender,
    MotivationalIntervention,
    active_interventions,
    adjust_time_estimate,
    calculate_adjustments,
    cognitive_match,
    filter_by_profile,
    generate_explanation,
    generate_recommendations,
    motivational_fit,
    should_show_intervention,
    urgency,
)
from engines.zpd import ZPDSkill
from knowledge_graph import SkillNode
from schemas import (
    CognitiveIndicators,
    KnowledgeState,
    LearnerProfile,
    MetacognitiveIndicators,
    MotivationalIndicators,
    RecentPerformance,
)


def _zpd(skill_id, readiness=1.0, **skill_kwargs):
    skill_kwargs.setdefault("name", skill_id.title())
    return ZPDSkill(skill=SkillNode(id=skill_id, **skill_kwargs), readiness_score=readiness)


def _profile(**overrides):
    return LearnerProfile(learner_id="learner-1", **overrides)


def test_threshold_concept_scores_strictly_higher():
    plain = _zpd("plain", difficulty=5)
    threshold = _zpd("threshold", difficulty=5, is_threshold_concept=True)

    result = generate_recommendations([plain, threshold], _profile())
    scores = {rec.skill_id: rec.score for rec in result.recommendations}
    assert scores["threshold"] > scores["plain"]
    assert result.recommendations[0].skill_id == "threshold"
    assert scores["threshold"] - scores["plain"] == pytest.approx(0.4 * 0.20)


def test_filter_drops_overloaded_and_interactive_skills():
    cognitive = CognitiveIndicators(working_memory_indicator="low", cognitive_load_threshold=0.5)
    skills = [
        _zpd("light", cognitive_load_estimate="low"),
        _zpd("medium", cognitive_load_estimate="medium"),
        _zpd("heavy", cognitive_load_estimate="high"),
        _zpd("interactive", element_interactivity="high"),
    ]
    kept = [z.skill_id for z in filter_by_profile(skills, cognitive)]
    assert kept == ["light", "medium"]


def test_cognitive_match_formula():
    cognitive = CognitiveIndicators(optimal_complexity_level=0.5)
    exact = SkillNode(id="s", name="S", difficulty=5, cognitive_load_estimate="low")
    assert cognitive_match(exact, cognitive) == pytest.approx(1.0)

    far = SkillNode(id="t", name="T", difficulty=10, cognitive_load_estimate="high")
    # distance 0.5 -> match 0; load 0.8 over 0.7 -> 0.5
    assert cognitive_match(far, cognitive) == pytest.approx(0.15)


@pytest.mark.parametrize(
    "orientation,difficulty,persistence,expected",
    [
        ("mastery", 6, None, 1.0),
        ("mastery", 2, None, 0.6),
        ("performance", 5, None, 1.0),
        ("performance", 6, None, 0.5),
        ("avoidance", 3, None, 1.0),
        ("avoidance", 4, None, 0.3),
        ("unknown", 5, 0.8, 1.0),
        ("unknown", 9, 0.8, 0.7),
        ("unknown", 4, None, 1.0),
        ("unknown", 7, None, 0.6),
    ],
)
def test_motivational_fit(orientation, difficulty, persistence, expected):
    motivational = MotivationalIndicators(goal_orientation=orientation, persistence_score=persistence)
    skill = SkillNode(id="s", name="S", difficulty=difficulty)
    assert motivational_fit(skill, motivational) == pytest.approx(expected)


def test_urgency_caps_at_one():
    knowledge = KnowledgeState(knowledge_gaps=["s"], misconceptions=["s"])
    skill = SkillNode(id="s", name="S", is_threshold_concept=True)
    assert urgency(skill, knowledge) == 1.0
    assert urgency(SkillNode(id="q", name="Q"), knowledge) == 0.0


def test_adjustments_follow_expertise_and_recent_performance():
    novice = _profile(
        cognitive_indicators=CognitiveIndicators(expertise_level="novice", working_memory_indicator="low"),
        metacognitive_indicators=MetacognitiveIndicators(help_seeking_pattern="excessive"),
    )
    adjustments = calculate_adjustments(novice)
    assert adjustments.scaffold_level == 2
    assert adjustments.difficulty_adjustment == pytest.approx(-0.15)
    assert adjustments.cognitive_load_limit == "low"
    assert adjustments.help_prompt.type == "help_excessive"

    expert = _profile(
        cognitive_indicators=CognitiveIndicators(expertise_level="expert"),
        metacognitive_indicators=MetacognitiveIndicators(help_seeking_pattern="avoidant", overconfidence_rate=0.5),
    )
    struggling = calculate_adjustments(expert, RecentPerformance(consecutive_failures=3))
    assert struggling.scaffold_level == 2
    assert struggling.difficulty_adjustment == pytest.approx(0.0)
    assert struggling.cognitive_load_limit == "medium"
    assert struggling.help_prompt.type == "overconfidence"
    assert struggling.help_prompt.action_label == "Review my work"

    streak = calculate_adjustments(expert, RecentPerformance(consecutive_successes=5))
    assert streak.difficulty_adjustment == pytest.approx(0.15)


def test_explanation_mentions_reasons_and_time():
    skill = SkillNode(id="s", name="Loops", difficulty=5, is_threshold_concept=True, estimated_minutes=20)
    profile = _profile(cognitive_indicators=CognitiveIndicators(expertise_level="novice"))
    result = generate_recommendations([ZPDSkill(skill=skill, readiness_score=1.0)], profile)
    text = result.recommendations[0].why_explanation

    assert text.startswith('"Loops" is a threshold concept')
    assert "This skill all prerequisites mastered and matches your current skill level." in text
    assert "We'll provide extra guidance" in text
    assert text.endswith("Estimated time: ~30 minutes.")

    intermediate = CognitiveIndicators(expertise_level="intermediate")
    plain = generate_explanation(SkillNode(id="p", name="Plain"), [], intermediate)
    assert plain == '"Plain" is recommended based on your learning profile.'


def test_fallback_without_profile():
    zone = [_zpd(f"s{i}", readiness=1.0 - i * 0.05) for i in range(7)]
    result = generate_recommendations(zone, None)

    assert [r.skill_id for r in result.recommendations] == ["s0", "s1", "s2", "s3", "s4"]
    first = result.recommendations[0]
    assert first.score == 1.0
    assert first.reasons[0].description == "Prerequisites met"
    assert first.adjustments.scaffold_level == 2
    assert first.adjustments.cognitive_load_limit == "medium"
    assert result.active_interventions == {}
    assert result.profile_summary["expertise_level"] == "beginner"
    assert result.profile_summary["goal_orientation"] == "unknown"


def test_limit_and_stable_ties():
    zone = [_zpd(f"s{i}", difficulty=5) for i in range(4)]
    recommender = AdaptiveRecommender(limit=3)
    result = recommender.recommend(zone, _profile())
    assert [r.skill_id for r in result.recommendations] == ["s0", "s1", "s2"]
    assert recommender.next_best_skill([], _profile()) is None

    with pytest.raises(ValueError):
        AdaptiveRecommender(limit=0)


def test_active_interventions_later_rules_override():
    profile = _profile(
        metacognitive_indicators=MetacognitiveIndicators(overconfidence_rate=0.6),
        motivational_indicators=MotivationalIndicators(goal_orientation="mastery"),
    )
    found = active_interventions(
        profile, RecentPerformance(consecutive_successes=9, session_duration_ms=50 * 60000)
    )
    assert found["metacognitive"].type == "overconfidence"
    assert found["motivational"].type == "challenge_prompt"

    found = active_interventions(_profile(), RecentPerformance(session_duration_ms=45 * 60000))
    assert found["motivational"].type == "break_suggestion"
    assert "metacognitive" not in found


def test_should_show_intervention_uses_message_prefix():
    nudge = MotivationalIntervention("celebration", "You're on fire! 5 correct answers in a row!", "low")
    assert should_show_intervention(nudge, [])
    assert not should_show_intervention(nudge, ["celebration-You're on fire! 5 co"])


def test_adjust_time_estimate_rounds():
    assert adjust_time_estimate(30, "novice") == 45
    assert adjust_time_estimate(30, "advanced") == 26
    assert adjust_time_estimate(30, "intermediate") == 30


def test_result_serialises():
    result = generate_recommendations([_zpd("a")], _profile())
    payload = result.to_dict()
    assert payload["recommendations"][0]["skill_id"] == "a"
    assert "adjustments" in payload["recommendations"][0]
