"""Tests for the BKT mastery tracker."""

import pytest

from engines.bkt import (
    DEFAULT_BKT_PARAMS,
    BKTEngine,
    BKTParams,
    PracticeAttempt,
    as_attempts,
    log_likelihood,
    predict_correct_probability,
    update_bkt,
)
from engines.validation import ParameterValidationError


def _reference_update(p, correct, p_t=0.1, p_s=0.1, p_g=0.2):
    if correct:
        posterior = (1 - p_s) * p / ((1 - p_s) * p + p_g * (1 - p))
    else:
        posterior = p_s * p / (p_s * p + (1 - p_g) * (1 - p))
    return posterior + (1 - posterior) * p_t


def test_default_trajectory_matches_hand_computation():
    engine = BKTEngine()
    trajectory = engine.trace([False, False, True, True, True])

    # From p=0 an incorrect answer leaves the posterior at 0; only the learn step moves it.
    assert trajectory[0] == pytest.approx(0.1)
    # 0.01 / 0.73 = 0.0136986..., then + (1 - 0.0136986) * 0.1
    assert trajectory[1] == pytest.approx(0.01 / 0.73 + (1 - 0.01 / 0.73) * 0.1)
    assert trajectory[1] == pytest.approx(0.1123287671, abs=1e-9)

    expected = [0.0]
    for outcome in [False, False, True, True, True]:
        expected.append(_reference_update(expected[-1], outcome))
    assert trajectory == pytest.approx(expected[1:])
    assert trajectory[2] == pytest.approx(0.4265488, abs=1e-6)
    assert trajectory[2] < trajectory[3] < trajectory[4]


def test_update_stays_in_unit_interval_at_extremes():
    for p in (0.0, 1.0, 0.5):
        for outcome in (True, False):
            value = update_bkt(p, outcome, DEFAULT_BKT_PARAMS)
            assert 0.0 <= value <= 1.0


def test_correct_answers_converge_towards_one():
    p = 0.0
    for _ in range(40):
        new_p = update_bkt(p, True)
        assert new_p >= p
        p = new_p
    assert p > 0.99


def test_prediction_formula():
    params = BKTParams(p_l0=0.2, p_t=0.15, p_s=0.05, p_g=0.25)
    assert predict_correct_probability(0.6, params) == pytest.approx(0.95 * 0.6 + 0.25 * 0.4)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"p_l0": -0.1, "p_t": 0.1, "p_s": 0.1, "p_g": 0.2},
        {"p_l0": 0.1, "p_t": 0.0, "p_s": 0.1, "p_g": 0.2},
        {"p_l0": 0.1, "p_t": 0.1, "p_s": 0.6, "p_g": 0.5},
        {"p_l0": 1.0, "p_t": 0.1, "p_s": 0.1, "p_g": 0.2},
    ],
)
def test_invalid_params_are_rejected(kwargs):
    with pytest.raises(ParameterValidationError):
        BKTParams(**kwargs)


def test_update_rejects_out_of_range_mastery():
    with pytest.raises(ParameterValidationError):
        update_bkt(1.2, True)
    with pytest.raises(ValueError):
        predict_correct_probability(-0.01)


def test_as_attempts_accepts_mixed_inputs():
    attempts = as_attempts([True, {"is_correct": 0, "skill_id": "s1"}, PracticeAttempt(True)])
    assert [a.is_correct for a in attempts] == [True, False, True]
    assert attempts[1].skill_id == "s1"


def test_predictions_are_made_before_each_observation():
    engine = BKTEngine()
    preds = engine.predictions([True, True])
    assert preds[0] == pytest.approx(predict_correct_probability(0.0))
    assert preds[1] == pytest.approx(predict_correct_probability(update_bkt(0.0, True)))


def test_mastery_with_confidence_interval_brackets_estimate():
    engine = BKTEngine(BKTParams(p_l0=0.3, p_t=0.1, p_s=0.1, p_g=0.2))
    estimate = engine.mastery_with_confidence([True] * 10, confidence_level=0.9)
    interval = estimate.confidence_interval
    assert interval.level == 0.9
    assert 0.0 <= interval.lower <= estimate.p_mastery <= interval.upper <= 1.0
    assert 1.0 <= estimate.n_effective < 10

    with pytest.raises(ParameterValidationError):
        engine.mastery_with_confidence([True], confidence_level=1.0)


def test_validation_metrics_on_short_history_are_neutral():
    metrics = BKTEngine().validation_metrics([True])
    assert metrics.auc == 0.5
    assert metrics.sample_size == 0


def test_log_likelihood_is_negative_and_finite():
    value = log_likelihood([True, False, True], DEFAULT_BKT_PARAMS)
    assert value < 0
    assert value > -100
