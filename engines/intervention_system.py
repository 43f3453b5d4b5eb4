"""Rule-based metacognitive and motivational intervention triggers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from engines.validation import ParameterValidationError
from schemas import LearnerProfile

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}
ACTIVITY_TYPES = ("practice", "hint", "skip", "view")

SESSION_BUCKET_MS = 15 * 60 * 1000
STREAK_BUCKET = 5
ERROR_BUCKET = 3


@dataclass
class TriggerContext:
    profile: Optional[LearnerProfile] = None
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    current_errors: int = 0
    session_duration_ms: float = 0.0
    last_activity_type: Optional[str] = None
    # normalised to [0, 1], most recent last
    recent_difficulties: List[float] = field(default_factory=list)

    def __post_init__(self) -> None:
        for name in ("consecutive_successes", "consecutive_failures", "current_errors"):
            if getattr(self, name) < 0:
                raise ParameterValidationError(f"{name} must be non-negative")
        if self.session_duration_ms < 0:
            raise ParameterValidationError("session_duration_ms must be non-negative")
        if self.last_activity_type is not None and self.last_activity_type not in ACTIVITY_TYPES:
            raise ParameterValidationError(f"Unknown activity type: {self.last_activity_type}")


@dataclass(frozen=True)
class DismissKey:
    """Trigger id plus an optional bucket; a new bucket lets a trigger refire."""

    trigger_id: str
    bucket: Optional[int] = None

    def __str__(self) -> str:
        if self.bucket is None:
            return self.trigger_id
        return f"{self.trigger_id}-{self.bucket}"


def session_bucket(context: TriggerContext) -> int:
    return int(context.session_duration_ms // SESSION_BUCKET_MS)


def streak_bucket(context: TriggerContext) -> int:
    return context.consecutive_successes // STREAK_BUCKET


def error_bucket(context: TriggerContext) -> int:
    return context.current_errors // ERROR_BUCKET


@dataclass(frozen=True)
class TriggerDefinition:
    id: str
    name: str
    dimension: str
    priority: str
    check: Callable[[TriggerContext], bool]
    message: str
    action_label: Optional[str] = None
    emoji: Optional[str] = None
    bucket: Optional[Callable[[TriggerContext], int]] = None

    def dismiss_key(self, context: TriggerContext) -> DismissKey:
        return DismissKey(self.id, self.bucket(context) if self.bucket else None)


@dataclass
class ActiveTrigger:
    trigger_id: str
    trigger_name: str
    dimension: str
    priority: str
    message: str
    dismiss_key: str
    action_label: Optional[str] = None
    emoji: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ----------------------------------------------------------------------
def _overconfident(ctx: TriggerContext) -> bool:
    rate = ctx.profile.metacognitive_indicators.overconfidence_rate if ctx.profile else None
    return rate is not None and rate > 0.4


def _underconfident(ctx: TriggerContext) -> bool:
    rate = ctx.profile.metacognitive_indicators.underconfidence_rate if ctx.profile else None
    return rate is not None and rate > 0.5


def _help_pattern(ctx: TriggerContext) -> Optional[str]:
    return ctx.profile.metacognitive_indicators.help_seeking_pattern if ctx.profile else None


def _low_persistence_failure(ctx: TriggerContext) -> bool:
    persistence = ctx.profile.motivational_indicators.persistence_score if ctx.profile else None
    return persistence is not None and persistence < 0.3 and ctx.consecutive_failures >= 2


def _mastery_all_easy(ctx: TriggerContext) -> bool:
    if ctx.profile is None or ctx.profile.motivational_indicators.goal_orientation != "mastery":
        return False
    if len(ctx.recent_difficulties) < 5:
        return False
    average = sum(ctx.recent_difficulties) / len(ctx.recent_difficulties)
    return average < 0.3 and ctx.consecutive_successes >= 8


TRIGGERS: Sequence[TriggerDefinition] = (
    TriggerDefinition(
        id="overconfidence_high",
        name="High Overconfidence",
        dimension="metacognitive",
        priority="high",
        check=_overconfident,
        message="Take a moment to double-check your answers before submitting.",
        action_label="Got it",
    ),
    TriggerDefinition(
        id="underconfidence_high",
        name="High Underconfidence",
        dimension="metacognitive",
        priority="medium",
        check=_underconfident,
        message="Trust your preparation - you've been doing better than you think!",
        emoji="\U0001F4AA",
    ),
    TriggerDefinition(
        id="help_avoidant_struggling",
        name="Avoidant Help-Seeking While Struggling",
        dimension="metacognitive",
        priority="high",
        check=lambda ctx: _help_pattern(ctx) == "avoidant" and ctx.current_errors >= 3,
        message="Struggling a bit? That's okay! Hints are here to help you learn, not just give answers.",
        action_label="Show hint",
        emoji="\U0001F4A1",
        bucket=error_bucket,
    ),
    TriggerDefinition(
        id="help_excessive",
        name="Excessive Help-Seeking",
        dimension="metacognitive",
        priority="low",
        check=lambda ctx: _help_pattern(ctx) == "excessive" and ctx.last_activity_type == "hint",
        message="Try working through this one on your own first. You might surprise yourself!",
        emoji="\U0001F31F",
    ),
    TriggerDefinition(
        id="low_persistence_failure",
        name="Low Persistence After Failure",
        dimension="motivational",
        priority="high",
        check=_low_persistence_failure,
        message="Don't give up! Mistakes are part of learning. Try breaking this down into smaller steps.",
        action_label="Get help",
        emoji="\U0001F4AA",
    ),
    TriggerDefinition(
        id="success_streak",
        name="Success Streak",
        dimension="motivational",
        priority="low",
        check=lambda ctx: ctx.consecutive_successes >= 5,
        message="You're on fire! Keep up the great work!",
        emoji="\U0001F525",
        bucket=streak_bucket,
    ),
    TriggerDefinition(
        id="long_session",
        name="Long Session Break Suggestion",
        dimension="motivational",
        priority="medium",
        check=lambda ctx: ctx.session_duration_ms / 60000 >= 45,
        message="You've been studying hard! Consider taking a short break - it helps with retention.",
        action_label="Take a break",
        emoji="☕",
        bucket=session_bucket,
    ),
    TriggerDefinition(
        id="mastery_all_easy",
        name="Mastery Learner Doing Only Easy Tasks",
        dimension="motivational",
        priority="low",
        check=_mastery_all_easy,
        message="You're crushing it! Ready to challenge yourself with something harder?",
        action_label="Try a challenge",
        emoji="\U0001F680",
    ),
    TriggerDefinition(
        id="extended_struggle",
        name="Extended Struggle",
        dimension="motivational",
        priority="high",
        check=lambda ctx: ctx.consecutive_failures >= 5,
        message="This is a tough one. Would you like to try a simpler problem first or get some extra help?",
        action_label="Get help",
        emoji="\U0001F91D",
        bucket=error_bucket,
    ),
)

_TRIGGERS_BY_ID = {definition.id: definition for definition in TRIGGERS}


# ----------------------------------------------------------------------
def evaluate_triggers(context: TriggerContext, dismissed: Iterable[str] = ()) -> List[ActiveTrigger]:
    """Fire every matching, undismissed trigger; high priority first, table order within a tier."""

    dismissed_keys = {str(key) for key in dismissed}
    active: List[ActiveTrigger] = []
    for definition in TRIGGERS:
        key = str(definition.dismiss_key(context))
        if key in dismissed_keys:
            continue
        if not definition.check(context):
            continue
        active.append(
            ActiveTrigger(
                trigger_id=definition.id,
                trigger_name=definition.name,
                dimension=definition.dimension,
                priority=definition.priority,
                message=definition.message,
                dismiss_key=key,
                action_label=definition.action_label,
                emoji=definition.emoji,
            )
        )
    active.sort(key=lambda trigger: PRIORITY_ORDER[trigger.priority])
    return active


def evaluate_metacognitive_triggers(
    context: TriggerContext, dismissed: Iterable[str] = ()
) -> List[ActiveTrigger]:
    return [t for t in evaluate_triggers(context, dismissed) if t.dimension == "metacognitive"]


def evaluate_motivational_triggers(
    context: TriggerContext, dismissed: Iterable[str] = ()
) -> List[ActiveTrigger]:
    return [t for t in evaluate_triggers(context, dismissed) if t.dimension == "motivational"]


def top_trigger(context: TriggerContext, dismissed: Iterable[str] = ()) -> Optional[ActiveTrigger]:
    triggers = evaluate_triggers(context, dismissed)
    return triggers[0] if triggers else None


def create_trigger_context(profile: Optional[LearnerProfile] = None, **session: Any) -> TriggerContext:
    """Build a context from session counters, defaulting missing ones to zero."""

    return TriggerContext(
        profile=profile,
        consecutive_successes=session.get("consecutive_successes") or 0,
        consecutive_failures=session.get("consecutive_failures") or 0,
        current_errors=session.get("current_errors") or 0,
        session_duration_ms=session.get("session_duration_ms") or 0.0,
        last_activity_type=session.get("last_activity_type"),
        recent_difficulties=list(session.get("recent_difficulties") or []),
    )


def is_trigger_active(trigger_id: str, context: TriggerContext) -> bool:
    definition = _TRIGGERS_BY_ID.get(trigger_id)
    return definition.check(context) if definition else False


def trigger_definitions() -> List[TriggerDefinition]:
    return list(TRIGGERS)


__all__ = [
    "TriggerContext",
    "DismissKey",
    "TriggerDefinition",
    "ActiveTrigger",
    "TRIGGERS",
    "session_bucket",
    "streak_bucket",
    "error_bucket",
    "evaluate_triggers",
    "evaluate_metacognitive_triggers",
    "evaluate_motivational_triggers",
    "top_trigger",
    "create_trigger_context",
    "is_trigger_active",
    "trigger_definitions",
]
