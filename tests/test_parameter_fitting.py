"""Tests for EM fitting of BKT parameters."""

import math

import pytest

import db
from engines.bkt import DEFAULT_BKT_PARAMS, BKTParams
from engines.parameter_fitting import (
    classify_fit_quality,
    constrain_parameters,
    engine_for_skill,
    fit_parameters,
    fit_skill_parameters,
    forward_backward,
)
from engines.bkt import as_attempts
from engines.validation import ParameterValidationError


def _two_phase_sequence():
    """20 unmastered attempts at a 0.2 guess rate, then 180 mastered at a 0.1 slip rate.

    Guessing is only identifiable from the unmastered phase, so it is kept long.
    """

    unmastered = [i % 5 == 2 for i in range(20)]
    mastered = [i % 10 != 5 for i in range(180)]
    return unmastered + mastered


def test_fit_recovers_guess_and_slip_from_long_history():
    attempts = _two_phase_sequence()
    assert len(attempts) >= 200

    result = fit_parameters(attempts, max_iterations=500, tolerance=1e-6)

    assert result.converged
    assert result.iterations > 1
    assert result.params.p_g == pytest.approx(0.2, abs=0.1)
    assert result.params.p_s == pytest.approx(0.1, abs=0.1)
    assert result.params.p_t == pytest.approx(0.05, abs=0.1)
    assert result.params.p_l0 < 0.1
    assert result.fit_quality in {"excellent", "good"}
    assert result.brier_score is not None
    assert math.isfinite(result.log_likelihood)


def test_fewer_than_five_attempts_returns_defaults_as_poor():
    result = fit_parameters([True, False, True, True])
    assert result.params == DEFAULT_BKT_PARAMS
    assert result.fit_quality == "poor"
    assert result.converged is False
    assert result.iterations == 0


@pytest.mark.parametrize(
    "attempts",
    [
        [True, False] * 20,
        [False] * 30,
        [True] * 30,
        [True] * 15 + [False] * 15,
        [False, False, True, False, True, True, False, True, True, True],
    ],
)
def test_fitted_slip_and_guess_stay_identifiable(attempts):
    result = fit_parameters(attempts, max_iterations=50)
    params = result.params
    assert params.p_s + params.p_g < 1
    assert 0.001 <= params.p_s <= 0.5
    assert 0.001 <= params.p_g <= 0.5
    assert 0.001 <= params.p_t <= 0.999
    assert 0.001 <= params.p_l0 <= 0.999


def test_constrain_parameters_clamps_and_rescales():
    params = constrain_parameters({"p_l0": 1.4, "p_t": -0.2, "p_s": 0.7, "p_g": 0.9})
    assert params.p_l0 == pytest.approx(0.999)
    assert params.p_t == pytest.approx(0.001)
    # both clamp to 0.5, then rescale to a 0.9 total
    assert params.p_s == pytest.approx(0.45)
    assert params.p_g == pytest.approx(0.45)


def test_forward_backward_log_likelihood_matches_direct_product():
    params = BKTParams(p_l0=0.3, p_t=0.2, p_s=0.1, p_g=0.25)
    attempts = as_attempts([True])
    fb = forward_backward(attempts, params)
    expected = 0.7 * 0.25 + 0.3 * 0.9
    assert fb.log_likelihood == pytest.approx(math.log(expected))
    assert sum(fb.alpha[0]) == pytest.approx(1.0)


def test_classify_fit_quality_thresholds():
    assert classify_fit_quality(0.1) == "excellent"
    assert classify_fit_quality(0.2) == "good"
    assert classify_fit_quality(0.3) == "acceptable"
    assert classify_fit_quality(0.35) == "poor"


def test_fit_rejects_bad_iteration_settings():
    with pytest.raises(ParameterValidationError):
        fit_parameters([True] * 10, max_iterations=0)
    with pytest.raises(ParameterValidationError):
        fit_parameters([True] * 10, tolerance=0)


def test_fit_skill_parameters_stores_good_fits_only():
    store = db.InMemoryLearnerStore()

    poor = fit_skill_parameters("skill-a", [True, False], store)
    assert poor.fit_quality == "poor"
    assert store.get_skill_params("skill-a") is None

    good = fit_skill_parameters("skill-b", _two_phase_sequence(), store, notebook_id="nb-1")
    assert good.fit_quality != "poor"
    assert store.get_skill_params("skill-b") == good.params
    assert "skill-b" in store.list_skill_params("nb-1")

    engine = engine_for_skill("skill-b", store)
    assert engine.params == good.params
    assert engine_for_skill("unknown", store).params == DEFAULT_BKT_PARAMS


def test_fit_skill_parameters_can_persist_poor_fits():
    store = db.InMemoryLearnerStore()
    fit_skill_parameters("skill-a", [True, False], store, persist_poor=True)
    assert store.get_skill_params("skill-a") == DEFAULT_BKT_PARAMS
