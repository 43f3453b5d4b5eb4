"""Bayesian Knowledge Tracing for per-skill mastery estimates."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from engines.base import BaseEngine
from engines.metrics import (
    MasteryEstimate,
    ValidationMetrics,
    effective_sample_size,
    evaluate_predictions,
    wilson_score_interval,
)
from engines.validation import (
    ParameterValidationError,
    validate_confidence_level,
    validate_open_probability,
    validate_probability,
)

_EPSILON = 1e-10


@dataclass(frozen=True)
class BKTParams:
    """Prior, learn, slip and guess probabilities for one skill."""

    p_l0: float
    p_t: float
    p_s: float
    p_g: float

    def __post_init__(self) -> None:
        validate_probability(self.p_l0, "p_l0")
        validate_open_probability(self.p_t, "p_t")
        validate_open_probability(self.p_s, "p_s")
        validate_open_probability(self.p_g, "p_g")
        if self.p_l0 >= 1.0:
            raise ParameterValidationError("p_l0 must be below 1")
        if self.p_s + self.p_g >= 1.0:
            raise ParameterValidationError(
                f"p_s + p_g must be below 1 for identifiability, got {self.p_s + self.p_g}"
            )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], base: Optional["BKTParams"] = None) -> "BKTParams":
        """Build params from a partial mapping, filling gaps from ``base``."""

        base = base or DEFAULT_BKT_PARAMS
        return cls(
            p_l0=float(data.get("p_l0", base.p_l0)),
            p_t=float(data.get("p_t", base.p_t)),
            p_s=float(data.get("p_s", base.p_s)),
            p_g=float(data.get("p_g", base.p_g)),
        )


DEFAULT_BKT_PARAMS = BKTParams(p_l0=0.0, p_t=0.1, p_s=0.1, p_g=0.2)


@dataclass(frozen=True)
class PracticeAttempt:
    is_correct: bool
    timestamp: Optional[float] = None
    skill_id: Optional[str] = None


def update_bkt(p_mastery: float, is_correct: bool, params: BKTParams = DEFAULT_BKT_PARAMS) -> float:
    """Posterior mastery after one observation, followed by the learning transition."""

    p = validate_probability(p_mastery, "p_mastery")
    if is_correct:
        marginal = (1 - params.p_s) * p + params.p_g * (1 - p)
        posterior = (1 - params.p_s) * p / max(marginal, _EPSILON)
    else:
        marginal = params.p_s * p + (1 - params.p_g) * (1 - p)
        posterior = params.p_s * p / max(marginal, _EPSILON)
    updated = posterior + (1 - posterior) * params.p_t
    return min(1.0, max(0.0, updated))


def predict_correct_probability(p_mastery: float, params: BKTParams = DEFAULT_BKT_PARAMS) -> float:
    p = validate_probability(p_mastery, "p_mastery")
    return (1 - params.p_s) * p + params.p_g * (1 - p)


def as_attempts(values: Iterable[Any]) -> List[PracticeAttempt]:
    """Accept attempts, booleans or ``{"is_correct": ...}`` mappings."""

    attempts: List[PracticeAttempt] = []
    for value in values:
        if isinstance(value, PracticeAttempt):
            attempts.append(value)
        elif isinstance(value, Mapping):
            attempts.append(
                PracticeAttempt(
                    is_correct=bool(value["is_correct"]),
                    timestamp=value.get("timestamp"),
                    skill_id=value.get("skill_id"),
                )
            )
        else:
            attempts.append(PracticeAttempt(is_correct=bool(value)))
    return attempts


class BKTEngine(BaseEngine):
    """BKT estimator bound to one parameter set, with fitting and validation helpers."""

    def __init__(
        self,
        params: Optional[BKTParams] = None,
        *,
        skill_id: Optional[str] = None,
        notebook_id: Optional[str] = None,
    ) -> None:
        self._params = params or DEFAULT_BKT_PARAMS
        self.skill_id = skill_id
        self.notebook_id = notebook_id

    @property
    def params(self) -> BKTParams:
        return self._params

    def update(self, p_mastery: float, is_correct: bool) -> float:
        return update_bkt(p_mastery, is_correct, self._params)

    def predict(self, p_mastery: float) -> float:
        return predict_correct_probability(p_mastery, self._params)

    # ------------------------------------------------------------------
    def trace(self, attempts: Sequence[Any]) -> List[float]:
        """Mastery trajectory after each attempt, starting from the prior."""

        p = self._params.p_l0
        trajectory = []
        for attempt in as_attempts(attempts):
            p = self.update(p, attempt.is_correct)
            trajectory.append(p)
        return trajectory

    def predictions(self, attempts: Sequence[Any], params: Optional[BKTParams] = None) -> List[float]:
        """One-step-ahead P(correct) for each attempt, made before observing it."""

        params = params or self._params
        p = params.p_l0
        preds = []
        for attempt in as_attempts(attempts):
            preds.append(predict_correct_probability(p, params))
            p = update_bkt(p, attempt.is_correct, params)
        return preds

    def fit_parameters(
        self,
        attempts: Sequence[Any],
        max_iterations: int = 100,
        tolerance: float = 1e-6,
    ):
        """Fit parameters with EM and adopt them when enough data was supplied."""

        from engines.parameter_fitting import fit_parameters

        result = fit_parameters(
            attempts,
            initial=self._params,
            max_iterations=max_iterations,
            tolerance=tolerance,
        )
        self._params = result.params
        return result

    def validation_metrics(
        self, attempts: Sequence[Any], params: Optional[BKTParams] = None
    ) -> ValidationMetrics:
        attempts = as_attempts(attempts)
        preds = self.predictions(attempts, params)
        return evaluate_predictions(preds, [a.is_correct for a in attempts])

    def mastery_with_confidence(
        self, attempts: Sequence[Any], confidence_level: float = 0.95
    ) -> MasteryEstimate:
        level = validate_confidence_level(confidence_level)
        attempts = as_attempts(attempts)
        trajectory = self.trace(attempts)
        p_mastery = trajectory[-1] if trajectory else self._params.p_l0
        n_eff = effective_sample_size(len(attempts), self._params.p_t)
        interval = wilson_score_interval(p_mastery, n_eff, level)
        return MasteryEstimate(
            p_mastery=p_mastery,
            confidence_interval=interval,
            n_effective=n_eff,
        )


def log_likelihood(attempts: Sequence[Any], params: BKTParams) -> float:
    """Sequential log-likelihood of the observed outcomes under ``params``."""

    total = 0.0
    p = params.p_l0
    for attempt in as_attempts(attempts):
        pc = predict_correct_probability(p, params)
        prob = pc if attempt.is_correct else 1 - pc
        total += math.log(max(prob, 1e-300))
        p = update_bkt(p, attempt.is_correct, params)
    return total


__all__ = [
    "BKTParams",
    "DEFAULT_BKT_PARAMS",
    "PracticeAttempt",
    "update_bkt",
    "predict_correct_probability",
    "as_attempts",
    "BKTEngine",
    "log_likelihood",
]
