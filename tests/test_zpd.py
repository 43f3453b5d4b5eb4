import pytest

from engines.zpd import compute_zpd
from knowledge_graph import PrerequisiteRelationship, SkillGraph, SkillNode


def _graph() -> SkillGraph:
    skills = [
        SkillNode(id="a", name="A", bloom_level=1, difficulty=2),
        SkillNode(id="b", name="B", bloom_level=1, difficulty=1),
        SkillNode(id="c", name="C", bloom_level=2),
        SkillNode(id="d", name="D", bloom_level=2, difficulty=6),
        SkillNode(id="e", name="E", bloom_level=3),
    ]
    edges = [
        PrerequisiteRelationship("a", "c", "required"),
        PrerequisiteRelationship("b", "c", "recommended"),
        PrerequisiteRelationship("a", "d", "helpful"),
        PrerequisiteRelationship("c", "e", "required"),
    ]
    return SkillGraph.from_parts(skills, edges)


def test_skills_without_prerequisites_are_fully_ready():
    zone = compute_zpd(_graph(), [])
    ids = [item.skill_id for item in zone]
    assert "a" in ids and "b" in ids
    for item in zone:
        if item.skill_id in {"a", "b"}:
            assert item.readiness_score == 1.0
    # c needs a; e needs c
    assert "c" not in ids
    assert "e" not in ids


def test_readiness_weights_each_tier():
    zone = {item.skill_id: item for item in compute_zpd(_graph(), ["a"])}
    # c: required 1/1, recommended 0/1, helpful empty
    assert zone["c"].readiness_score == pytest.approx(0.6 + 0.0 + 0.1)
    assert zone["c"].prerequisites_mastered == ["a"]
    assert zone["c"].prerequisites_pending == ["b"]
    # d: helpful 1/1, other tiers empty
    assert zone["d"].readiness_score == pytest.approx(1.0)
    assert "a" not in zone


def test_ordering_breaks_ties_by_bloom_then_difficulty():
    zone = compute_zpd(_graph(), [])
    # a and b score 1.0; d's only edge is an unmet helpful one, so 0.9
    ids = [item.skill_id for item in zone]
    assert ids == ["b", "a", "d"]
    assert zone[-1].readiness_score == pytest.approx(0.9)


def test_mastered_skills_never_appear():
    zone = compute_zpd(_graph(), ["a", "b", "c", "d", "e"])
    assert zone == []
