"""EM estimation of BKT parameters over a single chronological attempt sequence.

The hidden state is binary (0 = not mastered, 1 = mastered) and mastery is
absorbing: 0 -> 1 with probability ``p_t``, 1 -> 1 always. The E-step runs a
scaled forward-backward pass, the M-step re-estimates the four parameters from
the posterior state and transition expectations.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from engines.bkt import (
    DEFAULT_BKT_PARAMS,
    BKTEngine,
    BKTParams,
    PracticeAttempt,
    as_attempts,
)
from engines.metrics import brier_score
from engines.structured_log import log_json
from engines.validation import ParameterValidationError

_LOGGER = logging.getLogger(__name__)

MIN_ATTEMPTS_FOR_FIT = 5
_DENOM_EPSILON = 1e-10
_SCALE_FLOOR = 1e-300

P_L0_BOUNDS = (0.001, 0.999)
P_T_BOUNDS = (0.001, 0.999)
P_S_BOUNDS = (0.001, 0.5)
P_G_BOUNDS = (0.001, 0.5)

FIT_QUALITY_LEVELS = ("excellent", "good", "acceptable", "poor")


@dataclass
class FittingResult:
    params: BKTParams
    log_likelihood: float
    iterations: int
    converged: bool
    fit_quality: str
    brier_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "params": self.params.to_dict(),
            # -inf (no fit performed) is not representable in JSON
            "log_likelihood": self.log_likelihood if math.isfinite(self.log_likelihood) else None,
            "iterations": self.iterations,
            "converged": self.converged,
            "fit_quality": self.fit_quality,
            "brier_score": self.brier_score,
        }


@dataclass
class ForwardBackward:
    alpha: List[Tuple[float, float]] = field(default_factory=list)
    beta: List[Tuple[float, float]] = field(default_factory=list)
    log_likelihood: float = 0.0


def _emission(is_correct: bool, state: int, params: BKTParams) -> float:
    if state == 1:
        return 1 - params.p_s if is_correct else params.p_s
    return params.p_g if is_correct else 1 - params.p_g


def forward_backward(attempts: Sequence[PracticeAttempt], params: BKTParams) -> ForwardBackward:
    """Scaled forward-backward pass; ``log_likelihood`` is the sum of log scale factors."""

    n = len(attempts)
    result = ForwardBackward()
    if n == 0:
        return result

    scales: List[float] = []
    obs = attempts[0].is_correct
    a0 = (1 - params.p_l0) * _emission(obs, 0, params)
    a1 = params.p_l0 * _emission(obs, 1, params)
    c = max(a0 + a1, _SCALE_FLOOR)
    scales.append(c)
    result.alpha.append((a0 / c, a1 / c))

    for t in range(1, n):
        prev0, prev1 = result.alpha[t - 1]
        obs = attempts[t].is_correct
        a0 = prev0 * (1 - params.p_t) * _emission(obs, 0, params)
        a1 = (prev0 * params.p_t + prev1) * _emission(obs, 1, params)
        c = max(a0 + a1, _SCALE_FLOOR)
        scales.append(c)
        result.alpha.append((a0 / c, a1 / c))

    beta: List[Tuple[float, float]] = [(1.0, 1.0)] * n
    for t in range(n - 2, -1, -1):
        next0, next1 = beta[t + 1]
        obs = attempts[t + 1].is_correct
        e0 = _emission(obs, 0, params)
        e1 = _emission(obs, 1, params)
        b0 = (1 - params.p_t) * e0 * next0 + params.p_t * e1 * next1
        b1 = e1 * next1
        beta[t] = (b0 / scales[t + 1], b1 / scales[t + 1])
    result.beta = beta
    result.log_likelihood = sum(math.log(s) for s in scales)
    return result


def m_step(attempts: Sequence[PracticeAttempt], fb: ForwardBackward, params: BKTParams) -> Dict[str, float]:
    """Re-estimate raw (unclamped) parameters from posterior expectations."""

    n = len(attempts)
    gamma: List[Tuple[float, float]] = []
    for t in range(n):
        g0 = fb.alpha[t][0] * fb.beta[t][0]
        g1 = fb.alpha[t][1] * fb.beta[t][1]
        norm = max(g0 + g1, _DENOM_EPSILON)
        gamma.append((g0 / norm, g1 / norm))

    xi00 = 0.0
    xi01 = 0.0
    for t in range(n - 1):
        obs = attempts[t + 1].is_correct
        e0 = _emission(obs, 0, params)
        e1 = _emission(obs, 1, params)
        denom = max(
            fb.alpha[t][0] * fb.beta[t][0] + fb.alpha[t][1] * fb.beta[t][1],
            _DENOM_EPSILON,
        )
        xi00 += fb.alpha[t][0] * (1 - params.p_t) * e0 * fb.beta[t + 1][0] / denom
        xi01 += fb.alpha[t][0] * params.p_t * e1 * fb.beta[t + 1][1] / denom

    mastered_total = sum(g[1] for g in gamma)
    mastered_correct = sum(g[1] for g, a in zip(gamma, attempts) if a.is_correct)
    unmastered_total = sum(g[0] for g in gamma)
    unmastered_correct = sum(g[0] for g, a in zip(gamma, attempts) if a.is_correct)

    return {
        "p_l0": gamma[0][1],
        "p_t": xi01 / (xi00 + xi01 + _DENOM_EPSILON),
        "p_s": 1 - mastered_correct / (mastered_total + _DENOM_EPSILON),
        "p_g": unmastered_correct / (unmastered_total + _DENOM_EPSILON),
    }


def _clamp(value: float, bounds: Tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


def constrain_parameters(raw: Dict[str, float]) -> BKTParams:
    """Clamp re-estimated values into the admissible box and restore ``p_s + p_g < 1``."""

    p_l0 = _clamp(raw["p_l0"], P_L0_BOUNDS)
    p_t = _clamp(raw["p_t"], P_T_BOUNDS)
    p_s = _clamp(raw["p_s"], P_S_BOUNDS)
    p_g = _clamp(raw["p_g"], P_G_BOUNDS)
    if p_s + p_g >= 1:
        scale = 0.9 / (p_s + p_g)
        p_s *= scale
        p_g *= scale
    return BKTParams(p_l0=p_l0, p_t=p_t, p_s=p_s, p_g=p_g)


def classify_fit_quality(brier: float) -> str:
    if brier < 0.15:
        return "excellent"
    if brier < 0.25:
        return "good"
    if brier < 0.35:
        return "acceptable"
    return "poor"


def assess_fit_quality(attempts: Sequence[Any], params: BKTParams) -> Tuple[str, float]:
    """Grade ``params`` by the Brier score of their one-step-ahead predictions."""

    attempts = as_attempts(attempts)
    preds = BKTEngine(params).predictions(attempts)
    brier = brier_score(preds, [a.is_correct for a in attempts])
    return classify_fit_quality(brier), brier


def fit_parameters(
    attempts: Sequence[Any],
    initial: BKTParams = DEFAULT_BKT_PARAMS,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
) -> FittingResult:
    """Fit BKT parameters to one chronological attempt sequence with EM."""

    if isinstance(max_iterations, bool) or not isinstance(max_iterations, int) or max_iterations < 1:
        raise ParameterValidationError("max_iterations must be a positive integer")
    if not tolerance > 0:
        raise ParameterValidationError("tolerance must be positive")

    attempts = as_attempts(attempts)
    if len(attempts) < MIN_ATTEMPTS_FOR_FIT:
        return FittingResult(
            params=initial,
            log_likelihood=float("-inf"),
            iterations=0,
            converged=False,
            fit_quality="poor",
        )

    params = initial
    previous_ll = float("-inf")
    iterations = 0
    converged = False
    for iteration in range(max_iterations):
        iterations = iteration + 1
        fb = forward_backward(attempts, params)
        if abs(fb.log_likelihood - previous_ll) < tolerance:
            converged = True
            break
        previous_ll = fb.log_likelihood
        params = constrain_parameters(m_step(attempts, fb, params))

    if not converged:
        _LOGGER.debug("EM stopped after %d iterations without converging", iterations)
    quality, brier = assess_fit_quality(attempts, params)
    return FittingResult(
        params=params,
        log_likelihood=previous_ll,
        iterations=iterations,
        converged=converged,
        fit_quality=quality,
        brier_score=brier,
    )


def fit_skill_parameters(
    skill_id: str,
    attempts: Sequence[Any],
    store=None,
    *,
    notebook_id: Optional[str] = None,
    persist_poor: bool = False,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
) -> FittingResult:
    """Fit a skill's parameters from defaults and store them unless the fit is poor."""

    result = fit_parameters(
        attempts,
        initial=DEFAULT_BKT_PARAMS,
        max_iterations=max_iterations,
        tolerance=tolerance,
    )
    stored = False
    if store is not None and (persist_poor or result.fit_quality != "poor"):
        store.store_skill_params(skill_id, result.params, result, notebook_id=notebook_id)
        stored = True
    log_json(
        "bkt_parameters_fitted",
        {
            "skill_id": skill_id,
            "attempts": len(attempts),
            "iterations": result.iterations,
            "converged": result.converged,
            "fit_quality": result.fit_quality,
            "stored": stored,
        },
    )
    return result


def engine_for_skill(skill_id: str, store=None, notebook_id: Optional[str] = None) -> BKTEngine:
    """Return an engine using the skill's stored params, or the defaults when none exist."""

    params = None
    if store is not None:
        params = store.get_skill_params(skill_id)
    return BKTEngine(params or DEFAULT_BKT_PARAMS, skill_id=skill_id, notebook_id=notebook_id)


__all__ = [
    "MIN_ATTEMPTS_FOR_FIT",
    "FIT_QUALITY_LEVELS",
    "FittingResult",
    "ForwardBackward",
    "forward_backward",
    "m_step",
    "constrain_parameters",
    "classify_fit_quality",
    "assess_fit_quality",
    "fit_parameters",
    "fit_skill_parameters",
    "engine_for_skill",
]
