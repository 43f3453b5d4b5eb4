"""Profile-aware ranking of ZPD skills with pedagogical adjustments."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from engines.scaffolding import clamp_scaffold_level
from engines.structured_log import log_json
from engines.zpd import ZPDSkill
from knowledge_graph import SkillNode
from schemas import (
    CognitiveIndicators,
    GoalOrientation,
    KnowledgeState,
    LearnerProfile,
    MetacognitiveIndicators,
    MotivationalIndicators,
    RecentPerformance,
)

RANKING_WEIGHTS = {
    "readiness": 0.40,
    "cognitive_match": 0.25,
    "motivational_fit": 0.15,
    "urgency": 0.20,
}

TIME_MULTIPLIERS = {
    "novice": 1.5,
    "beginner": 1.3,
    "intermediate": 1.0,
    "advanced": 0.85,
    "expert": 0.7,
}

LOAD_SCORES = {"low": 0.3, "medium": 0.5, "high": 0.8}
DEFAULT_LOAD_SCORE = 0.5
LOAD_MARGIN = 0.1
DEFAULT_LIMIT = 5

_EXPERTISE_SCAFFOLD = {
    "novice": 1,
    "beginner": 2,
    "intermediate": 3,
    "advanced": 4,
    "expert": 4,
}

_FIT_REASONS = {
    "mastery": "Provides the right level of challenge for deep learning",
    "performance": "Good opportunity for demonstrating competence",
    "avoidance": "Manageable task to build confidence",
}


@dataclass
class RecommendationReason:
    factor: str
    weight: float
    description: str
    profile_dimension: str


@dataclass
class MetacognitivePrompt:
    type: str
    message: str
    priority: str
    action_label: Optional[str] = None


@dataclass
class MotivationalIntervention:
    type: str
    message: str
    priority: str
    emoji: Optional[str] = None


@dataclass
class LearningAdjustments:
    scaffold_level: int = 2
    difficulty_adjustment: float = 0.0
    cognitive_load_limit: str = "medium"
    help_prompt: Optional[MetacognitivePrompt] = None


@dataclass
class AdaptiveRecommendation:
    skill: SkillNode
    score: float
    reasons: List[RecommendationReason]
    adjustments: LearningAdjustments
    why_explanation: str
    component_scores: Dict[str, float] = field(default_factory=dict)

    @property
    def skill_id(self) -> str:
        return self.skill.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill_id": self.skill.id,
            "skill": self.skill.to_dict(),
            "score": self.score,
            "reasons": [asdict(r) for r in self.reasons],
            "adjustments": asdict(self.adjustments),
            "why_explanation": self.why_explanation,
            "component_scores": dict(self.component_scores),
        }


@dataclass
class RecommendationResult:
    recommendations: List[AdaptiveRecommendation]
    active_interventions: Dict[str, Any]
    profile_summary: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendations": [r.to_dict() for r in self.recommendations],
            "active_interventions": {
                key: asdict(value) for key, value in self.active_interventions.items()
            },
            "profile_summary": dict(self.profile_summary),
        }


# ----------------------------------------------------------------------
def load_score(level: Optional[str]) -> float:
    return LOAD_SCORES.get(level or "", DEFAULT_LOAD_SCORE)


def filter_by_profile(skills: Iterable[ZPDSkill], cognitive: CognitiveIndicators) -> List[ZPDSkill]:
    """Drop overloaded skills, and high-interactivity skills for low working memory."""

    threshold = cognitive.load_threshold
    kept = []
    for zpd in skills:
        if load_score(zpd.skill.cognitive_load_estimate) > threshold + LOAD_MARGIN:
            continue
        if cognitive.working_memory_indicator == "low" and zpd.skill.element_interactivity == "high":
            continue
        kept.append(zpd)
    return kept


def cognitive_match(skill: SkillNode, cognitive: CognitiveIndicators) -> float:
    distance = abs(skill.normalized_difficulty - cognitive.optimal_complexity)
    match = 1 - min(distance * 2, 1)
    load_match = 1.0 if load_score(skill.cognitive_load_estimate) <= cognitive.load_threshold else 0.5
    return match * 0.7 + load_match * 0.3


def motivational_fit(skill: SkillNode, motivational: MotivationalIndicators) -> float:
    difficulty = skill.normalized_difficulty
    orientation = motivational.goal_orientation
    if orientation == "mastery":
        return 1.0 if 0.5 <= difficulty <= 0.8 else 0.6
    if orientation == "performance":
        return 1.0 if difficulty <= 0.5 else 0.5
    if orientation == "avoidance":
        return 1.0 if difficulty <= 0.3 else 0.3
    # unknown orientation: persistence stands in
    if motivational.persistence > 0.6:
        return 1.0 if 0.4 <= difficulty <= 0.7 else 0.7
    return 1.0 if difficulty <= 0.5 else 0.6


def urgency(skill: SkillNode, knowledge: KnowledgeState) -> float:
    score = 0.0
    if skill.is_threshold_concept:
        score += 0.4
    if skill.id in knowledge.knowledge_gaps:
        score += 0.3
    if skill.id in knowledge.misconceptions:
        score += 0.3
    return min(score, 1.0)


def weighted_total(scores: Dict[str, float]) -> float:
    return sum(scores[name] * weight for name, weight in RANKING_WEIGHTS.items())


def score_skill(zpd: ZPDSkill, profile: LearnerProfile) -> Dict[str, float]:
    return {
        "readiness": zpd.readiness_score,
        "cognitive_match": cognitive_match(zpd.skill, profile.cognitive_indicators),
        "motivational_fit": motivational_fit(zpd.skill, profile.motivational_indicators),
        "urgency": urgency(zpd.skill, profile.knowledge_state),
    }


def adjust_time_estimate(base_minutes: float, expertise_level: str) -> int:
    return int(base_minutes * TIME_MULTIPLIERS[expertise_level] + 0.5)


# ----------------------------------------------------------------------
def build_reasons(
    skill: SkillNode, scores: Dict[str, float], orientation: GoalOrientation
) -> List[RecommendationReason]:
    reasons = []
    if scores["readiness"] >= 0.7:
        reasons.append(
            RecommendationReason("High readiness", scores["readiness"], "All prerequisites mastered", "knowledge")
        )
    if scores["cognitive_match"] >= 0.7:
        reasons.append(
            RecommendationReason(
                "Optimal difficulty", scores["cognitive_match"], "Matches your current skill level", "cognitive"
            )
        )
    if scores["motivational_fit"] >= 0.7:
        reasons.append(
            RecommendationReason(
                "Learning style fit",
                scores["motivational_fit"],
                _FIT_REASONS.get(orientation, "Well-suited for your learning style"),
                "motivational",
            )
        )
    if scores["urgency"] >= 0.3:
        description = (
            "This is a threshold concept that unlocks new understanding"
            if skill.is_threshold_concept
            else "Addresses a knowledge gap"
        )
        reasons.append(RecommendationReason("Priority skill", scores["urgency"], description, "knowledge"))
    return reasons


def help_prompt_for(metacognitive: MetacognitiveIndicators) -> Optional[MetacognitivePrompt]:
    """Single prompt by priority: overconfidence, underconfidence, avoidant, excessive."""

    if metacognitive.overconfidence_rate is not None and metacognitive.overconfidence_rate > 0.4:
        return MetacognitivePrompt(
            "overconfidence",
            "Take a moment to double-check your answers before submitting.",
            "medium",
            action_label="Review my work",
        )
    if metacognitive.underconfidence_rate is not None and metacognitive.underconfidence_rate > 0.5:
        return MetacognitivePrompt(
            "underconfidence",
            "Trust your preparation - you know more than you think!",
            "low",
        )
    if metacognitive.help_seeking_pattern == "avoidant":
        return MetacognitivePrompt(
            "help_avoidant",
            "Hints are designed to help you learn, not just give answers. Use them when stuck!",
            "medium",
            action_label="Show hint",
        )
    if metacognitive.help_seeking_pattern == "excessive":
        return MetacognitivePrompt(
            "help_excessive",
            "Try working through this one on your own first. You can do it!",
            "low",
        )
    return None


def calculate_adjustments(
    profile: LearnerProfile, recent: Optional[RecentPerformance] = None
) -> LearningAdjustments:
    cognitive = profile.cognitive_indicators
    metacognitive = profile.metacognitive_indicators
    expertise = cognitive.expertise_level

    scaffold = _EXPERTISE_SCAFFOLD[expertise]
    if metacognitive.help_seeking_pattern == "avoidant":
        scaffold = clamp_scaffold_level(scaffold - 1)
    elif metacognitive.help_seeking_pattern == "excessive":
        scaffold = clamp_scaffold_level(scaffold + 1)

    delta = 0.0
    if expertise in ("novice", "beginner"):
        delta = -0.15
    elif expertise in ("advanced", "expert"):
        delta = 0.1

    if recent is not None:
        if recent.consecutive_failures >= 3:
            delta -= 0.1
            scaffold = clamp_scaffold_level(scaffold - 1)
        elif recent.consecutive_successes >= 5:
            delta += 0.05

    memory = cognitive.working_memory_indicator
    ceiling = memory if memory in ("low", "high") else "medium"

    return LearningAdjustments(
        scaffold_level=scaffold,
        difficulty_adjustment=delta,
        cognitive_load_limit=ceiling,
        help_prompt=help_prompt_for(metacognitive),
    )


def generate_explanation(
    skill: SkillNode, reasons: Sequence[RecommendationReason], cognitive: CognitiveIndicators
) -> str:
    parts = []
    if skill.is_threshold_concept:
        parts.append(f'"{skill.name}" is a threshold concept that will transform your understanding of this topic.')
    else:
        parts.append(f'"{skill.name}" is recommended based on your learning profile.')

    top = [reason.description.lower() for reason in reasons[:2]]
    if top:
        parts.append(f"This skill {' and '.join(top)}.")

    expertise = cognitive.expertise_level
    if expertise in ("novice", "beginner"):
        parts.append("We'll provide extra guidance as you work through this.")
    elif expertise in ("advanced", "expert"):
        parts.append("Given your expertise, you may move through this quickly.")

    adjusted = adjust_time_estimate(skill.minutes, expertise)
    if adjusted != skill.minutes:
        parts.append(f"Estimated time: ~{adjusted} minutes.")
    return " ".join(parts)


def active_interventions(
    profile: LearnerProfile, recent: Optional[RecentPerformance] = None
) -> Dict[str, Any]:
    """Profile-level nudges; later motivational rules replace earlier ones."""

    metacognitive = profile.metacognitive_indicators
    motivational = profile.motivational_indicators
    recent = recent or RecentPerformance()
    found: Dict[str, Any] = {}

    if metacognitive.overconfidence_rate is not None and metacognitive.overconfidence_rate > 0.4:
        found["metacognitive"] = MetacognitivePrompt(
            "overconfidence",
            "Your confidence sometimes exceeds your accuracy. Consider double-checking answers.",
            "high",
            action_label="Learn more",
        )
    elif metacognitive.help_seeking_pattern == "avoidant" and recent.consecutive_failures >= 3:
        found["metacognitive"] = MetacognitivePrompt(
            "help_avoidant",
            "Struggling a bit? Hints are here to help you learn, not just give answers.",
            "high",
            action_label="Use a hint",
        )

    persistence = motivational.persistence_score
    if persistence is not None and persistence < 0.3 and recent.consecutive_failures >= 2:
        found["motivational"] = MotivationalIntervention(
            "persistence",
            "Don't give up! Mistakes are part of learning. Try breaking this down into smaller steps.",
            "high",
            emoji="\U0001F4AA",
        )
    elif recent.consecutive_successes >= 5:
        found["motivational"] = MotivationalIntervention(
            "celebration",
            "You're on fire! 5 correct answers in a row!",
            "low",
            emoji="\U0001F525",
        )

    if recent.session_duration_ms / 60000 >= 45:
        found["motivational"] = MotivationalIntervention(
            "break_suggestion",
            "You've been studying for a while. A short break can help consolidate learning!",
            "medium",
            emoji="☕",
        )

    if motivational.goal_orientation == "mastery" and recent.consecutive_successes >= 8:
        found["motivational"] = MotivationalIntervention(
            "challenge_prompt",
            "Ready for a bigger challenge? Try something more difficult!",
            "low",
            emoji="\U0001F680",
        )
    return found


def should_show_intervention(intervention: Any, dismissed: Iterable[str]) -> bool:
    key = f"{intervention.type}-{intervention.message[:20]}"
    return key not in set(dismissed)


# ----------------------------------------------------------------------
class AdaptiveRecommender:
    """Rank ZPD skills for a learner and attach adjustments and explanations."""

    def __init__(self, limit: int = DEFAULT_LIMIT) -> None:
        if limit < 1:
            raise ValueError("limit must be positive")
        self.limit = limit

    def _fallback(self, zpd_skills: Sequence[ZPDSkill]) -> RecommendationResult:
        recommendations = [
            AdaptiveRecommendation(
                skill=zpd.skill,
                score=zpd.readiness_score,
                reasons=[RecommendationReason("readiness", 1.0, "Prerequisites met", "knowledge")],
                adjustments=LearningAdjustments(),
                why_explanation="This skill has all prerequisites completed and is ready to learn.",
                component_scores={"readiness": zpd.readiness_score},
            )
            for zpd in list(zpd_skills)[: self.limit]
        ]
        return RecommendationResult(
            recommendations=recommendations,
            active_interventions={},
            profile_summary={
                "expertise_level": "beginner",
                "optimal_complexity": None,
                "help_seeking_pattern": "unknown",
                "goal_orientation": "unknown",
            },
        )

    def rank(self, zpd_skills: Sequence[ZPDSkill], profile: LearnerProfile) -> List[tuple]:
        filtered = filter_by_profile(zpd_skills, profile.cognitive_indicators)
        scored = []
        for zpd in filtered:
            scores = score_skill(zpd, profile)
            scored.append((weighted_total(scores), zpd, scores))
        # stable: ties keep ZPD order
        scored.sort(key=lambda item: -item[0])
        return scored

    def recommend(
        self,
        zpd_skills: Sequence[ZPDSkill],
        profile: Optional[LearnerProfile] = None,
        recent_performance: Optional[RecentPerformance] = None,
    ) -> RecommendationResult:
        if profile is None:
            result = self._fallback(zpd_skills)
        else:
            recommendations = []
            for total, zpd, scores in self.rank(zpd_skills, profile)[: self.limit]:
                reasons = build_reasons(zpd.skill, scores, profile.motivational_indicators.goal_orientation)
                recommendations.append(
                    AdaptiveRecommendation(
                        skill=zpd.skill,
                        score=total,
                        reasons=reasons,
                        adjustments=calculate_adjustments(profile, recent_performance),
                        why_explanation=generate_explanation(zpd.skill, reasons, profile.cognitive_indicators),
                        component_scores=scores,
                    )
                )
            cognitive = profile.cognitive_indicators
            result = RecommendationResult(
                recommendations=recommendations,
                active_interventions=active_interventions(profile, recent_performance),
                profile_summary={
                    "expertise_level": cognitive.expertise_level,
                    "optimal_complexity": cognitive.optimal_complexity_level,
                    "help_seeking_pattern": profile.metacognitive_indicators.help_seeking_pattern,
                    "goal_orientation": profile.motivational_indicators.goal_orientation,
                },
            )

        log_json(
            "recommendations_generated",
            {
                "learner_id": profile.learner_id if profile else None,
                "candidates": len(zpd_skills),
                "skill_ids": [r.skill_id for r in result.recommendations],
                "interventions": sorted(result.active_interventions),
            },
        )
        return result

    def next_best_skill(
        self,
        zpd_skills: Sequence[ZPDSkill],
        profile: Optional[LearnerProfile] = None,
        recent_performance: Optional[RecentPerformance] = None,
    ) -> Optional[AdaptiveRecommendation]:
        result = self.recommend(zpd_skills, profile, recent_performance)
        return result.recommendations[0] if result.recommendations else None


def generate_recommendations(
    zpd_skills: Sequence[ZPDSkill],
    profile: Optional[LearnerProfile] = None,
    recent_performance: Optional[RecentPerformance] = None,
    limit: int = DEFAULT_LIMIT,
) -> RecommendationResult:
    return AdaptiveRecommender(limit).recommend(zpd_skills, profile, recent_performance)


__all__ = [
    "RANKING_WEIGHTS",
    "TIME_MULTIPLIERS",
    "RecommendationReason",
    "MetacognitivePrompt",
    "MotivationalIntervention",
    "LearningAdjustments",
    "AdaptiveRecommendation",
    "RecommendationResult",
    "AdaptiveRecommender",
    "load_score",
    "filter_by_profile",
    "cognitive_match",
    "motivational_fit",
    "urgency",
    "weighted_total",
    "score_skill",
    "adjust_time_estimate",
    "build_reasons",
    "help_prompt_for",
    "calculate_adjustments",
    "generate_explanation",
    "active_interventions",
    "should_show_intervention",
    "generate_recommendations",
]
