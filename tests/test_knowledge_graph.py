import json

import pytest
import yaml

from engines.validation import GraphIntegrityError, ParameterValidationError
from knowledge_graph import PrerequisiteRelationship, SkillGraph, SkillNode


def _graph() -> SkillGraph:
    skills = [
        SkillNode(id="counting", name="Counting", bloom_level=1, difficulty=1, estimated_minutes=10),
        SkillNode(id="addition", name="Addition", bloom_level=2, difficulty=3),
        SkillNode(id="multiplication", name="Multiplication", bloom_level=3, is_threshold_concept=True),
        SkillNode(id="estimation", name="Estimation", bloom_level=2, difficulty=4),
    ]
    edges = [
        PrerequisiteRelationship("counting", "addition"),
        PrerequisiteRelationship("addition", "multiplication"),
        PrerequisiteRelationship("estimation", "multiplication", strength="helpful"),
    ]
    return SkillGraph.from_parts(skills, edges)


def test_edges_and_ancestors():
    graph = _graph()
    assert len(graph) == 4
    assert "addition" in graph
    assert [e.from_skill_id for e in graph.prerequisites_of("multiplication")] == ["addition", "estimation"]
    assert [e.to_skill_id for e in graph.dependents_of("counting")] == ["addition"]
    assert graph.ancestors("multiplication") == {"addition", "counting", "estimation"}
    assert graph.ancestors("counting") == set()


def test_unknown_endpoints_are_rejected():
    graph = _graph()
    with pytest.raises(GraphIntegrityError) as excinfo:
        graph.add_prerequisite(PrerequisiteRelationship("ghost", "addition"))
    assert str(excinfo.value) == "Cannot link ghost -> addition: unknown skill id(s) ghost"
    assert all(e.from_skill_id != "ghost" for e in graph.prerequisites_of("addition"))
    with pytest.raises(GraphIntegrityError) as excinfo:
        graph.require_skill("ghost")
    assert str(excinfo.value) == "Unknown skill: ghost"
    assert graph.get_skill("ghost") is None


def test_skill_node_validation_and_defaults():
    node = SkillNode(id="x", name="X")
    assert node.minutes == 30
    assert node.difficulty_or_default == 5
    assert node.normalized_difficulty == 0.5
    assert SkillNode(id="z", name="Z", difficulty=0).normalized_difficulty == 0.0

    with pytest.raises(ParameterValidationError):
        SkillNode(id="y", name="Y", bloom_level=7)
    with pytest.raises(ParameterValidationError):
        SkillNode(id="y", name="Y", cognitive_load_estimate="extreme")
    with pytest.raises(ParameterValidationError):
        PrerequisiteRelationship("a", "b", strength="optional")


def test_curriculum_overview_groups_by_bloom_level():
    overview = _graph().curriculum_overview()
    assert overview["total_skills"] == 4
    assert overview["total_threshold_concepts"] == 1
    assert overview["total_minutes"] == 10 + 30 + 30 + 30
    stage_two = overview["stages"][1]
    assert stage_two["bloom_label"] == "Understand"
    assert stage_two["skill_ids"] == ["addition", "estimation"]
    assert len(overview["stages"]) == 6


def test_load_from_json_and_yaml(tmp_path):
    graph = _graph()
    json_path = tmp_path / "graph.json"
    graph.save_json(json_path)
    loaded = SkillGraph.load(json_path)
    assert loaded.to_dict() == graph.to_dict()

    yaml_path = tmp_path / "graph.yaml"
    yaml_path.write_text(yaml.safe_dump(json.loads(json_path.read_text())), encoding="utf-8")
    assert SkillGraph.load(yaml_path).ancestors("multiplication") == {"addition", "counting", "estimation"}

    with pytest.raises(ValueError):
        SkillGraph.load(tmp_path / "graph.txt")
