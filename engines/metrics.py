"""Predictive-validity metrics and interval estimates for mastery predictions."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Sequence

from engines.validation import (
    ParameterValidationError,
    validate_confidence_level,
    validate_paired_sequences,
    validate_probability,
)

LOG_LOSS_EPSILON = 1e-15
CALIBRATION_BINS = 10

# Acklam's rational approximation of the inverse normal CDF.
_A = (-39.6968302866538, 220.946098424521, -275.928510446969,
      138.357751867269, -30.6647980661472, 2.50662823884)
_B = (-54.4760987982241, 161.585836858041, -155.698979859887,
      66.8013118877197, -13.2806815528857)
_C = (-7.78489400243029e-03, -0.322396458041136, -2.40075827716184,
      -2.54973253934373, 4.37466414146497, 2.93816398269878)
_D = (7.78469570904146e-03, 0.32246712907004, 2.445134137143, 3.75440866190742)
_P_LOW = 0.02425
_P_HIGH = 1 - _P_LOW


@dataclass(frozen=True)
class ValidationMetrics:
    auc: float
    brier_score: float
    calibration_error: float
    accuracy: float
    log_loss: float
    sample_size: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ConfidenceInterval:
    lower: float
    upper: float
    level: float


@dataclass(frozen=True)
class MasteryEstimate:
    """Posterior mastery with a Wilson interval over the effective sample size."""

    p_mastery: float
    confidence_interval: ConfidenceInterval
    n_effective: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "p_mastery": self.p_mastery,
            "confidence_interval": asdict(self.confidence_interval),
            "n_effective": self.n_effective,
        }


NEUTRAL_METRICS = ValidationMetrics(
    auc=0.5,
    brier_score=0.25,
    calibration_error=0.0,
    accuracy=0.5,
    log_loss=math.log(2),
    sample_size=0,
)


def normal_quantile(p: float) -> float:
    """Return the standard normal quantile for ``p`` in the open interval (0, 1)."""

    if not 0.0 < p < 1.0:
        raise ParameterValidationError(f"p must be strictly between 0 and 1, got {p}")
    c1, c2, c3, c4, c5, c6 = _C
    d1, d2, d3, d4 = _D
    if p < _P_LOW:
        q = math.sqrt(-2 * math.log(p))
        return (((((c1 * q + c2) * q + c3) * q + c4) * q + c5) * q + c6) / (
            (((d1 * q + d2) * q + d3) * q + d4) * q + 1
        )
    if p <= _P_HIGH:
        a1, a2, a3, a4, a5, a6 = _A
        b1, b2, b3, b4, b5 = _B
        q = p - 0.5
        r = q * q
        return (((((a1 * r + a2) * r + a3) * r + a4) * r + a5) * r + a6) * q / (
            ((((b1 * r + b2) * r + b3) * r + b4) * r + b5) * r + 1
        )
    q = math.sqrt(-2 * math.log(1 - p))
    return -(((((c1 * q + c2) * q + c3) * q + c4) * q + c5) * q + c6) / (
        (((d1 * q + d2) * q + d3) * q + d4) * q + 1
    )


def wilson_score_interval(p: float, n: float, confidence_level: float = 0.95) -> ConfidenceInterval:
    """Wilson score interval for proportion ``p`` observed over ``n`` trials, clipped to [0, 1]."""

    p = validate_probability(p, "p")
    level = validate_confidence_level(confidence_level)
    if n <= 0:
        raise ParameterValidationError(f"n must be positive, got {n}")
    z = normal_quantile((1 + level) / 2)
    z2 = z * z
    center = (p + z2 / (2 * n)) / (1 + z2 / n)
    margin = (z / (1 + z2 / n)) * math.sqrt(p * (1 - p) / n + z2 / (4 * n * n))
    return ConfidenceInterval(
        lower=max(0.0, center - margin),
        upper=min(1.0, center + margin),
        level=level,
    )


def effective_sample_size(n_attempts: int, p_t: float) -> float:
    """Discount the attempt count for the serial correlation learning introduces."""

    if n_attempts <= 0:
        return 1.0
    correlation = 1 + 2 * p_t * (n_attempts - 1) / n_attempts
    return max(1.0, n_attempts / correlation)


# ----------------------------------------------------------------------
def _as_outcomes(outcomes: Sequence[Any]) -> List[int]:
    return [1 if bool(value) else 0 for value in outcomes]


def auc_score(predictions: Sequence[float], outcomes: Sequence[Any]) -> float:
    """Mann-Whitney AUC; tied pairs count half, a missing class yields 0.5."""

    actual = _as_outcomes(outcomes)
    positives = [p for p, y in zip(predictions, actual) if y]
    negatives = [p for p, y in zip(predictions, actual) if not y]
    if not positives or not negatives:
        return 0.5
    concordant = 0.0
    for pos in positives:
        for neg in negatives:
            if pos > neg:
                concordant += 1.0
            elif pos == neg:
                concordant += 0.5
    return concordant / (len(positives) * len(negatives))


def brier_score(predictions: Sequence[float], outcomes: Sequence[Any]) -> float:
    actual = _as_outcomes(outcomes)
    if not actual:
        return 0.0
    return sum((p - y) ** 2 for p, y in zip(predictions, actual)) / len(actual)


def expected_calibration_error(
    predictions: Sequence[float],
    outcomes: Sequence[Any],
    n_bins: int = CALIBRATION_BINS,
) -> float:
    """Weighted gap between mean prediction and observed rate over equal-width bins."""

    actual = _as_outcomes(outcomes)
    if not actual:
        return 0.0
    counts = [0] * n_bins
    pred_sums = [0.0] * n_bins
    actual_sums = [0.0] * n_bins
    for p, y in zip(predictions, actual):
        # the top bin is closed so p == 1.0 lands in it
        idx = min(int(math.floor(p * n_bins)), n_bins - 1)
        counts[idx] += 1
        pred_sums[idx] += p
        actual_sums[idx] += y
    total = len(actual)
    ece = 0.0
    for count, pred_sum, actual_sum in zip(counts, pred_sums, actual_sums):
        if count:
            ece += (count / total) * abs(pred_sum / count - actual_sum / count)
    return ece


def log_loss(predictions: Sequence[float], outcomes: Sequence[Any]) -> float:
    actual = _as_outcomes(outcomes)
    if not actual:
        return 0.0
    total = 0.0
    for pred, y in zip(predictions, actual):
        p = max(LOG_LOSS_EPSILON, min(1 - LOG_LOSS_EPSILON, pred))
        # Only the observed class contributes, so a perfect predictor scores exactly 0.
        if y:
            total += -math.log(p) if pred < 1.0 else 0.0
        else:
            total += -math.log(1 - p) if pred > 0.0 else 0.0
    return total / len(actual)


def accuracy_score(predictions: Sequence[float], outcomes: Sequence[Any], threshold: float = 0.5) -> float:
    actual = _as_outcomes(outcomes)
    if not actual:
        return 0.0
    hits = sum(1 for p, y in zip(predictions, actual) if (p >= threshold) == bool(y))
    return hits / len(actual)


def evaluate_predictions(predictions: Sequence[float], outcomes: Sequence[Any]) -> ValidationMetrics:
    """Compute the full validation bundle for paired predictions and outcomes."""

    validate_paired_sequences(predictions, outcomes)
    if len(predictions) < 2:
        return NEUTRAL_METRICS
    return ValidationMetrics(
        auc=auc_score(predictions, outcomes),
        brier_score=brier_score(predictions, outcomes),
        calibration_error=expected_calibration_error(predictions, outcomes),
        accuracy=accuracy_score(predictions, outcomes),
        log_loss=log_loss(predictions, outcomes),
        sample_size=len(predictions),
    )


__all__ = [
    "ValidationMetrics",
    "ConfidenceInterval",
    "MasteryEstimate",
    "NEUTRAL_METRICS",
    "normal_quantile",
    "wilson_score_interval",
    "effective_sample_size",
    "auc_score",
    "brier_score",
    "expected_calibration_error",
    "log_loss",
    "accuracy_score",
    "evaluate_predictions",
]
