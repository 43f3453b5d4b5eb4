"""Zone of Proximal Development: which unmastered skills are learnable now."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from knowledge_graph import SkillGraph, SkillNode

TIER_WEIGHTS = {"required": 0.6, "recommended": 0.3, "helpful": 0.1}


@dataclass
class ZPDSkill:
    skill: SkillNode
    readiness_score: float
    prerequisites_mastered: List[str] = field(default_factory=list)
    prerequisites_pending: List[str] = field(default_factory=list)

    @property
    def skill_id(self) -> str:
        return self.skill.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill": self.skill.to_dict(),
            "readiness_score": self.readiness_score,
            "prerequisites_mastered": list(self.prerequisites_mastered),
            "prerequisites_pending": list(self.prerequisites_pending),
        }


def _tier_ratio(mastered: int, total: int) -> float:
    return 1.0 if total == 0 else mastered / total


def zpd_sort_key(item: ZPDSkill):
    skill = item.skill
    return (-item.readiness_score, skill.bloom_level, skill.difficulty_or_default, skill.id)


def compute_zpd(graph: SkillGraph, mastered: Iterable[str]) -> List[ZPDSkill]:
    """Return unmastered skills whose required prerequisites are all mastered.

    Readiness weights the mastered share of each strength tier (required 0.6,
    recommended 0.3, helpful 0.1); an empty tier counts as fully satisfied.
    """

    mastered_set = set(mastered)
    zone: List[ZPDSkill] = []
    for skill in graph.skills():
        if skill.id in mastered_set:
            continue
        edges = graph.prerequisites_of(skill.id)
        totals = {tier: 0 for tier in TIER_WEIGHTS}
        met = {tier: 0 for tier in TIER_WEIGHTS}
        for edge in edges:
            totals[edge.strength] += 1
            if edge.from_skill_id in mastered_set:
                met[edge.strength] += 1
        if met["required"] != totals["required"]:
            continue

        readiness = sum(
            weight * _tier_ratio(met[tier], totals[tier]) for tier, weight in TIER_WEIGHTS.items()
        )
        zone.append(
            ZPDSkill(
                skill=skill,
                readiness_score=readiness,
                prerequisites_mastered=[e.from_skill_id for e in edges if e.from_skill_id in mastered_set],
                prerequisites_pending=[e.from_skill_id for e in edges if e.from_skill_id not in mastered_set],
            )
        )
    zone.sort(key=zpd_sort_key)
    return zone


__all__ = ["TIER_WEIGHTS", "ZPDSkill", "compute_zpd", "zpd_sort_key"]
