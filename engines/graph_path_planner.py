"""Prerequisite-ordered learning paths towards a goal skill."""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from knowledge_graph import SkillGraph, SkillNode

_LOGGER = logging.getLogger(__name__)


@dataclass
class LearningPath:
    """Ordered study sequence for one goal."""

    goal_skill_id: str
    skills: List[SkillNode] = field(default_factory=list)
    total_estimated_minutes: float = 0.0
    threshold_concepts: List[SkillNode] = field(default_factory=list)
    current_position: int = 0
    unresolved_skill_ids: List[str] = field(default_factory=list)

    @property
    def skill_ids(self) -> List[str]:
        return [skill.id for skill in self.skills]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_skill_id": self.goal_skill_id,
            "skill_ids": self.skill_ids,
            "skills": [skill.to_dict() for skill in self.skills],
            "total_estimated_minutes": self.total_estimated_minutes,
            "threshold_concepts": [skill.id for skill in self.threshold_concepts],
            "current_position": self.current_position,
            "unresolved_skill_ids": list(self.unresolved_skill_ids),
        }


class LearningPathPlanner:
    """Linearise a goal's prerequisite closure with Kahn's algorithm."""

    def __init__(self, graph: SkillGraph) -> None:
        self.graph = graph

    # ------------------------------------------------------------------
    @staticmethod
    def _priority(skill: SkillNode) -> Tuple[int, float, str]:
        return (skill.bloom_level, skill.difficulty_or_default, skill.id)

    # ------------------------------------------------------------------
    def closure(self, goal_skill_id: str, mastered: Iterable[str] = ()) -> Set[str]:
        """Goal plus all transitive prerequisites, minus mastered skills."""

        self.graph.require_skill(goal_skill_id)
        mastered_set = set(mastered)
        scope = self.graph.ancestors(goal_skill_id) | {goal_skill_id}
        return {skill_id for skill_id in scope if skill_id not in mastered_set}

    # ------------------------------------------------------------------
    def generate(self, goal_skill_id: str, mastered: Iterable[str] = ()) -> LearningPath:
        remaining = self.closure(goal_skill_id, mastered)

        in_degree: Dict[str, int] = {skill_id: 0 for skill_id in remaining}
        adjacency: Dict[str, List[str]] = {skill_id: [] for skill_id in remaining}
        for skill_id in remaining:
            for edge in self.graph.dependents_of(skill_id):
                if edge.to_skill_id in remaining:
                    adjacency[skill_id].append(edge.to_skill_id)
                    in_degree[edge.to_skill_id] += 1

        # The heap keeps every ready skill in (bloom, difficulty, id) order,
        # including those freed by the previous dequeue.
        ready = [
            self._priority(self.graph.require_skill(skill_id))
            for skill_id, degree in in_degree.items()
            if degree == 0
        ]
        heapq.heapify(ready)
        ordered: List[SkillNode] = []
        while ready:
            _, _, skill_id = heapq.heappop(ready)
            ordered.append(self.graph.require_skill(skill_id))
            for target in adjacency[skill_id]:
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    heapq.heappush(ready, self._priority(self.graph.require_skill(target)))

        unresolved = sorted(remaining - {skill.id for skill in ordered})
        if unresolved:
            _LOGGER.warning(
                "Prerequisite cycle around %s; omitting %d skill(s) from the path to %s",
                ", ".join(unresolved),
                len(unresolved),
                goal_skill_id,
            )

        return LearningPath(
            goal_skill_id=goal_skill_id,
            skills=ordered,
            total_estimated_minutes=sum(skill.minutes for skill in ordered),
            threshold_concepts=[skill for skill in ordered if skill.is_threshold_concept],
            unresolved_skill_ids=unresolved,
        )


def generate_learning_path(
    graph: SkillGraph,
    goal_skill_id: str,
    mastered: Optional[Iterable[str]] = None,
) -> LearningPath:
    return LearningPathPlanner(graph).generate(goal_skill_id, mastered or ())


__all__ = [
    "LearningPath",
    "LearningPathPlanner",
    "generate_learning_path",
]
