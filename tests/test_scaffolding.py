import pytest

from engines.scaffolding import ScaffoldLevel, calculate_scaffold_level, clamp_scaffold_level
from engines.validation import ParameterValidationError


@pytest.mark.parametrize(
    "p_mastery,level",
    [
        (0.0, 1),
        (0.29, 1),
        (0.3, 2),
        (0.49, 2),
        (0.5, 3),
        (0.69, 3),
        (0.7, 4),
        (1.0, 4),
    ],
)
def test_scaffold_thresholds(p_mastery, level):
    assert calculate_scaffold_level(p_mastery) == level


def test_scaffold_rejects_out_of_range_mastery():
    with pytest.raises(ParameterValidationError):
        calculate_scaffold_level(1.01)


def test_scaffold_labels_and_clamp():
    assert ScaffoldLevel.WORKED_EXAMPLES.label == "worked examples"
    assert ScaffoldLevel.INDEPENDENT_PRACTICE.label == "independent practice"
    assert clamp_scaffold_level(0) == 1
    assert clamp_scaffold_level(7) == 4
    assert clamp_scaffold_level(3) == 3
