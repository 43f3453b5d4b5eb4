"""Pydantic schemas for learner profiles, graph payloads and API requests."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "ExpertiseLevel",
    "WorkingMemoryIndicator",
    "HelpSeekingPattern",
    "GoalOrientation",
    "LoadLevel",
    "KnowledgeState",
    "CognitiveIndicators",
    "MetacognitiveIndicators",
    "MotivationalIndicators",
    "LearnerProfile",
    "RecentPerformance",
    "SkillPayload",
    "PrerequisitePayload",
    "SkillGraphPayload",
    "AttemptRequest",
    "FitRequest",
    "ZPDRequest",
    "LearningPathRequest",
    "RecommendationRequest",
    "TriggerRequest",
    "coerce_number",
]

ExpertiseLevel = Literal["novice", "beginner", "intermediate", "advanced", "expert"]
WorkingMemoryIndicator = Literal["low", "medium", "high", "unknown"]
HelpSeekingPattern = Literal["avoidant", "appropriate", "excessive", "unknown"]
GoalOrientation = Literal["mastery", "performance", "avoidance", "unknown"]
LoadLevel = Literal["low", "medium", "high"]
ActivityType = Literal["practice", "hint", "skip", "view"]


def coerce_number(value: Any) -> float:
    """Convert a store-native numeric value to a Python number.

    Accepts plain ints/floats, ``Decimal``, numeric strings, and 64-bit integer
    wrappers that expose ``low``/``high`` 32-bit halves (as attributes or mapping
    keys). Booleans and anything else raise ``TypeError``.
    """

    if isinstance(value, bool):
        raise TypeError("boolean is not a numeric value")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            return float(text)
    if isinstance(value, Mapping) and "low" in value and "high" in value:
        low, high = value["low"], value["high"]
    elif hasattr(value, "low") and hasattr(value, "high"):
        low, high = value.low, value.high
    else:
        raise TypeError(f"cannot convert {type(value).__name__} to a number")
    return int(high) * 2**32 + (int(low) & 0xFFFFFFFF)


class KnowledgeState(BaseModel):
    average_mastery: float = Field(default=0.0, ge=0.0, le=1.0)
    skills_mastered: int = Field(default=0, ge=0)
    skills_in_progress: int = Field(default=0, ge=0)
    skills_not_started: int = Field(default=0, ge=0)
    knowledge_gaps: List[str] = Field(
        default_factory=list,
        description="Skill ids the learner is known to be missing; each adds 0.3 urgency.",
    )
    misconceptions: List[str] = Field(
        default_factory=list,
        description="Skill ids with observed misconceptions; each adds 0.3 urgency.",
    )
    current_zpd: List[str] = Field(default_factory=list)


class CognitiveIndicators(BaseModel):
    working_memory_indicator: WorkingMemoryIndicator = "unknown"
    expertise_level: ExpertiseLevel = "beginner"
    cognitive_load_threshold: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Maximum tolerated load score; unset means 0.7.",
    )
    optimal_complexity_level: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Normalised difficulty the learner handles best; unset means 0.5.",
    )
    average_response_time_ms: Optional[float] = Field(default=None, ge=0.0)

    @property
    def load_threshold(self) -> float:
        return 0.7 if self.cognitive_load_threshold is None else self.cognitive_load_threshold

    @property
    def optimal_complexity(self) -> float:
        return 0.5 if self.optimal_complexity_level is None else self.optimal_complexity_level


class MetacognitiveIndicators(BaseModel):
    calibration_accuracy: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    help_seeking_pattern: HelpSeekingPattern = "unknown"
    self_monitoring_accuracy: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    overconfidence_rate: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Share of confident-but-wrong answers; unset never triggers a prompt.",
    )
    underconfidence_rate: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Share of unsure-but-right answers; unset never triggers a prompt.",
    )


class MotivationalIndicators(BaseModel):
    session_frequency: Optional[float] = Field(default=None, ge=0.0)
    average_session_duration: Optional[float] = Field(default=None, ge=0.0)
    voluntary_return_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    persistence_score: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Unset means 0.5 for motivational fit and never fires persistence nudges.",
    )
    goal_orientation: GoalOrientation = "unknown"

    @property
    def persistence(self) -> float:
        return 0.5 if self.persistence_score is None else self.persistence_score


class LearnerProfile(BaseModel):
    """Inferred learner profile; every indicator block falls back to documented defaults."""

    learner_id: Optional[str] = None
    knowledge_state: KnowledgeState = Field(default_factory=KnowledgeState)
    cognitive_indicators: CognitiveIndicators = Field(default_factory=CognitiveIndicators)
    metacognitive_indicators: MetacognitiveIndicators = Field(default_factory=MetacognitiveIndicators)
    motivational_indicators: MotivationalIndicators = Field(default_factory=MotivationalIndicators)


class RecentPerformance(BaseModel):
    consecutive_successes: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    session_duration_ms: float = Field(default=0.0, ge=0.0)


class SkillPayload(BaseModel):
    id: str
    name: str
    description: str = ""
    notebook_id: Optional[str] = None
    bloom_level: int = Field(default=1, ge=1, le=6)
    difficulty: Optional[float] = Field(default=None, ge=0.0, le=10.0)
    estimated_minutes: Optional[float] = Field(default=None, ge=0.0)
    is_threshold_concept: bool = False
    cognitive_load_estimate: Optional[LoadLevel] = None
    element_interactivity: Optional[LoadLevel] = None
    irt: Optional[Dict[str, float]] = None
    mastery_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list)
    domain: Optional[str] = None


class PrerequisitePayload(BaseModel):
    from_skill_id: str
    to_skill_id: str
    strength: Literal["required", "recommended", "helpful"] = "required"
    confidence_score: float = Field(default=1.0, ge=0.0, le=1.0)


class SkillGraphPayload(BaseModel):
    skills: List[SkillPayload]
    prerequisites: List[PrerequisitePayload] = Field(default_factory=list)

    def to_graph(self):
        from knowledge_graph import SkillGraph

        return SkillGraph.from_dict(self.model_dump())


class AttemptRequest(BaseModel):
    is_correct: bool
    notebook_id: Optional[str] = None
    mastery_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    response_time_ms: Optional[float] = Field(default=None, gt=0.0)
    expected_time_ms: Optional[float] = Field(default=None, gt=0.0)


class FitRequest(BaseModel):
    attempts: List[bool] = Field(description="Chronological correctness outcomes for the skill.")
    notebook_id: Optional[str] = None
    # unset values fall back to the KLSE_EM_* settings
    max_iterations: Optional[int] = Field(default=None, ge=1)
    tolerance: Optional[float] = Field(default=None, gt=0.0)


class ZPDRequest(BaseModel):
    graph: SkillGraphPayload
    mastered_skill_ids: List[str] = Field(default_factory=list)
    learner_id: Optional[str] = Field(
        default=None,
        description="When set without mastered ids, the mastered set is read from the learner store.",
    )
    notebook_id: Optional[str] = None


class LearningPathRequest(ZPDRequest):
    goal_skill_id: str


class RecommendationRequest(ZPDRequest):
    profile: Optional[LearnerProfile] = None
    recent_performance: Optional[RecentPerformance] = None
    limit: Optional[int] = Field(default=None, ge=1)


class TriggerRequest(BaseModel):
    profile: Optional[LearnerProfile] = None
    consecutive_successes: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    current_errors: int = Field(default=0, ge=0)
    session_duration_ms: float = Field(default=0.0, ge=0.0)
    last_activity_type: Optional[ActivityType] = None
    recent_difficulties: List[float] = Field(default_factory=list)
    dismissed: List[str] = Field(default_factory=list)

    @field_validator("recent_difficulties")
    @classmethod
    def _difficulties_in_range(cls, values: List[float]) -> List[float]:
        for value in values:
            if not 0.0 <= value <= 1.0:
                raise ValueError("recent_difficulties must be normalised to [0, 1]")
        return values
