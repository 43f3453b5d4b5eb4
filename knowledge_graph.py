"""Skill graph with strength-tiered prerequisite edges."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple
import json

import yaml

from bloom_levels import BLOOM_LEVELS
from engines.validation import GraphIntegrityError, ParameterValidationError, ensure_known_ids

PREREQUISITE_STRENGTHS = ("required", "recommended", "helpful")
LOAD_LEVELS = ("low", "medium", "high")
DEFAULT_SKILL_MINUTES = 30
DEFAULT_DIFFICULTY = 5


def _load_graph_payload(path: Path) -> Dict[str, Any]:
    suffix = path.suffix.lower()
    if suffix in {".json", ".jsonc"}:
        return json.loads(path.read_text(encoding="utf-8"))
    if suffix in {".yml", ".yaml"}:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    raise ValueError(f"Unsupported skill graph format: {path}")


@dataclass(frozen=True)
class IRTParameters:
    difficulty: float = 0.0
    discrimination: float = 1.0
    guessing: float = 0.0


@dataclass(frozen=True)
class SkillNode:
    """A learnable skill; read-only input owned by the content store."""

    id: str
    name: str
    description: str = ""
    notebook_id: Optional[str] = None
    bloom_level: int = 1
    difficulty: Optional[float] = None
    estimated_minutes: Optional[float] = None
    is_threshold_concept: bool = False
    cognitive_load_estimate: Optional[str] = None
    element_interactivity: Optional[str] = None
    irt: Optional[IRTParameters] = None
    mastery_threshold: Optional[float] = None
    keywords: Tuple[str, ...] = ()
    domain: Optional[str] = None

    def __post_init__(self) -> None:
        if not 1 <= self.bloom_level <= 6:
            raise ParameterValidationError(f"{self.id}: bloom_level must be within 1..6")
        if self.difficulty is not None and not 0 <= self.difficulty <= 10:
            raise ParameterValidationError(f"{self.id}: difficulty must be within 0..10")
        for name in ("cognitive_load_estimate", "element_interactivity"):
            value = getattr(self, name)
            if value is not None and value not in LOAD_LEVELS:
                raise ParameterValidationError(f"{self.id}: {name} must be one of {', '.join(LOAD_LEVELS)}")

    @property
    def minutes(self) -> float:
        return DEFAULT_SKILL_MINUTES if self.estimated_minutes is None else self.estimated_minutes

    @property
    def difficulty_or_default(self) -> float:
        return DEFAULT_DIFFICULTY if self.difficulty is None else self.difficulty

    @property
    def normalized_difficulty(self) -> float:
        return self.difficulty_or_default / 10

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["keywords"] = list(self.keywords)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SkillNode":
        payload = dict(data)
        irt = payload.get("irt")
        if isinstance(irt, Mapping):
            payload["irt"] = IRTParameters(**irt)
        payload["keywords"] = tuple(payload.get("keywords") or ())
        return cls(**payload)


@dataclass
class PrerequisiteRelationship:
    """Directed edge: ``from_skill_id`` is a prerequisite of ``to_skill_id``."""

    from_skill_id: str
    to_skill_id: str
    strength: str = "required"
    confidence_score: float = 1.0

    def __post_init__(self) -> None:
        if self.strength not in PREREQUISITE_STRENGTHS:
            raise ParameterValidationError(
                f"strength must be one of {', '.join(PREREQUISITE_STRENGTHS)}, got {self.strength!r}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_skill_id": self.from_skill_id,
            "to_skill_id": self.to_skill_id,
            "strength": self.strength,
            "confidence_score": self.confidence_score,
        }


class SkillGraph:
    """Skills plus prerequisite edges for one curriculum scope."""

    def __init__(self) -> None:
        self._nodes: Dict[str, SkillNode] = {}
        # prerequisite -> edges to the skills it unlocks
        self._edges: Dict[str, List[PrerequisiteRelationship]] = {}
        # skill -> edges from its prerequisites
        self._reverse_edges: Dict[str, List[PrerequisiteRelationship]] = {}

    def add_skill(self, skill: SkillNode) -> None:
        self._nodes[skill.id] = skill
        self._edges.setdefault(skill.id, [])
        self._reverse_edges.setdefault(skill.id, [])

    def add_prerequisite(self, edge: PrerequisiteRelationship) -> None:
        ensure_known_ids(
            (edge.from_skill_id, edge.to_skill_id),
            self._nodes,
            f"Cannot link {edge.from_skill_id} -> {edge.to_skill_id}",
        )
        self._edges[edge.from_skill_id].append(edge)
        self._reverse_edges[edge.to_skill_id].append(edge)

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get_skill(self, skill_id: str) -> Optional[SkillNode]:
        return self._nodes.get(skill_id)

    def require_skill(self, skill_id: str) -> SkillNode:
        skill = self._nodes.get(skill_id)
        if skill is None:
            raise GraphIntegrityError(f"Unknown skill: {skill_id}")
        return skill

    def skills(self) -> List[SkillNode]:
        return list(self._nodes.values())

    def prerequisites(self) -> List[PrerequisiteRelationship]:
        return [edge for edges in self._edges.values() for edge in edges]

    # ------------------------------------------------------------------
    def prerequisites_of(self, skill_id: str) -> List[PrerequisiteRelationship]:
        return list(self._reverse_edges.get(skill_id, []))

    def dependents_of(self, skill_id: str) -> List[PrerequisiteRelationship]:
        return list(self._edges.get(skill_id, []))

    def ancestors(self, skill_id: str) -> Set[str]:
        """All direct and transitive prerequisites of ``skill_id``, any strength."""

        visited: Set[str] = set()
        stack: List[str] = [skill_id]
        while stack:
            current = stack.pop()
            for edge in self.prerequisites_of(current):
                source = edge.from_skill_id
                if source not in visited:
                    visited.add(source)
                    stack.append(source)
        visited.discard(skill_id)
        return visited

    # ------------------------------------------------------------------
    def curriculum_overview(self) -> Dict[str, Any]:
        """Group skills into Bloom stages with time and threshold-concept totals."""

        stages = []
        for level in range(1, 7):
            level_skills = sorted(
                (s for s in self._nodes.values() if s.bloom_level == level),
                key=lambda s: s.id,
            )
            stages.append(
                {
                    "bloom_level": level,
                    "bloom_label": BLOOM_LEVELS.label_for_rank(level),
                    "skill_ids": [s.id for s in level_skills],
                    "total_minutes": sum(s.minutes for s in level_skills),
                    "threshold_count": sum(1 for s in level_skills if s.is_threshold_concept),
                }
            )
        skills = list(self._nodes.values())
        return {
            "stages": stages,
            "total_skills": len(skills),
            "total_minutes": sum(s.minutes for s in skills),
            "total_threshold_concepts": sum(1 for s in skills if s.is_threshold_concept),
        }

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "skills": [skill.to_dict() for skill in self._nodes.values()],
            "prerequisites": [edge.to_dict() for edge in self.prerequisites()],
        }

    def save_json(self, path: Path) -> None:
        path.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False))

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SkillGraph":
        graph = cls()
        for data in payload.get("skills", []):
            graph.add_skill(SkillNode.from_dict(data))
        for edge_data in payload.get("prerequisites", []):
            graph.add_prerequisite(PrerequisiteRelationship(**edge_data))
        return graph

    @classmethod
    def from_parts(
        cls, skills: Iterable[SkillNode], prerequisites: Iterable[PrerequisiteRelationship] = ()
    ) -> "SkillGraph":
        graph = cls()
        for skill in skills:
            graph.add_skill(skill)
        for edge in prerequisites:
            graph.add_prerequisite(edge)
        return graph

    @classmethod
    def load(cls, path: Path) -> "SkillGraph":
        """Load a graph from a JSON or YAML file."""

        return cls.from_dict(_load_graph_payload(Path(path)))


__all__ = [
    "PREREQUISITE_STRENGTHS",
    "DEFAULT_SKILL_MINUTES",
    "DEFAULT_DIFFICULTY",
    "IRTParameters",
    "SkillNode",
    "PrerequisiteRelationship",
    "SkillGraph",
]
