from decimal import Decimal
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from schemas import (
    CognitiveIndicators,
    LearnerProfile,
    MotivationalIndicators,
    SkillGraphPayload,
    TriggerRequest,
    coerce_number,
)


def test_profile_defaults_are_documented_values():
    profile = LearnerProfile()
    assert profile.cognitive_indicators.expertise_level == "beginner"
    assert profile.cognitive_indicators.load_threshold == 0.7
    assert profile.cognitive_indicators.optimal_complexity == 0.5
    assert profile.motivational_indicators.persistence == 0.5
    assert profile.metacognitive_indicators.overconfidence_rate is None
    assert profile.knowledge_state.knowledge_gaps == []


def test_profile_rejects_out_of_range_values():
    with pytest.raises(ValidationError):
        CognitiveIndicators(cognitive_load_threshold=1.5)
    with pytest.raises(ValidationError):
        MotivationalIndicators(goal_orientation="curiosity")
    with pytest.raises(ValidationError):
        TriggerRequest(recent_difficulties=[0.2, 4.0])


def test_explicit_values_override_defaults():
    cognitive = CognitiveIndicators(cognitive_load_threshold=0.4, optimal_complexity_level=0.0)
    assert cognitive.load_threshold == 0.4
    assert cognitive.optimal_complexity == 0.0


@pytest.mark.parametrize(
    "raw,expected",
    [
        (3, 3),
        (0.25, 0.25),
        (Decimal("1.5"), 1.5),
        ("42", 42),
        (" 0.75 ", 0.75),
        ({"low": 7, "high": 0}, 7),
        ({"low": 0, "high": 1}, 2 ** 32),
        (SimpleNamespace(low=-1, high=0), 0xFFFFFFFF),
    ],
)
def test_coerce_number(raw, expected):
    assert coerce_number(raw) == expected


def test_coerce_number_rejects_non_numbers():
    with pytest.raises(TypeError):
        coerce_number(True)
    with pytest.raises(TypeError):
        coerce_number(None)
    with pytest.raises(ValueError):
        coerce_number("n/a")


def test_graph_payload_builds_skill_graph():
    payload = SkillGraphPayload(
        skills=[
            {"id": "a", "name": "A", "bloom_level": 1},
            {"id": "b", "name": "B", "bloom_level": 2, "difficulty": 4, "keywords": ["x"]},
        ],
        prerequisites=[{"from_skill_id": "a", "to_skill_id": "b", "strength": "recommended"}],
    )
    graph = payload.to_graph()
    assert len(graph) == 2
    assert graph.get_skill("b").keywords == ("x",)
    assert graph.prerequisites_of("b")[0].strength == "recommended"
