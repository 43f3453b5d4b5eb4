"""Validation utilities for knowledge-state inputs and the shared error taxonomy."""

from __future__ import annotations

import math
from typing import Any, Iterable, Sequence


class ValidationError(Exception):
    """Base class for validation errors."""
    pass


class ParameterValidationError(ValidationError, ValueError):
    """Raised when a numeric input or model parameter is out of range."""
    pass


class GraphIntegrityError(ValidationError, KeyError):
    """Raised when a skill graph references an unknown skill."""

    def __str__(self) -> str:
        # KeyError quotes its message; keep the plain text for API responses.
        return str(self.args[0]) if self.args else ""


def _finite(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ParameterValidationError(f"{name} must be numeric, got {value!r}") from exc
    if math.isnan(number) or math.isinf(number):
        raise ParameterValidationError(f"{name} must be finite, got {value!r}")
    return number


def validate_probability(value: Any, name: str = "probability") -> float:
    """Return ``value`` as a float in [0, 1] or raise ParameterValidationError."""
    number = _finite(value, name)
    if not 0.0 <= number <= 1.0:
        raise ParameterValidationError(f"{name} must be between 0 and 1, got {number}")
    return number


def validate_open_probability(value: Any, name: str = "probability") -> float:
    """Return ``value`` as a float strictly inside (0, 1)."""
    number = _finite(value, name)
    if not 0.0 < number < 1.0:
        raise ParameterValidationError(f"{name} must be strictly between 0 and 1, got {number}")
    return number


def validate_confidence_level(value: Any) -> float:
    return validate_open_probability(value, "confidence_level")


def validate_non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ParameterValidationError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ParameterValidationError(f"{name} must be non-negative, got {value}")
    return value


def validate_quality(value: Any) -> int:
    """SM-2 quality must be an integer grade 0..5."""
    quality = validate_non_negative_int(value, "quality")
    if quality > 5:
        raise ParameterValidationError(f"quality must be between 0 and 5, got {quality}")
    return quality


def validate_positive_time(value: Any, name: str) -> float:
    number = _finite(value, name)
    if number <= 0:
        raise ParameterValidationError(f"{name} must be positive, got {number}")
    return number


def validate_paired_sequences(predictions: Sequence[float], outcomes: Sequence[Any]) -> None:
    """Ensure predictions and outcomes line up one-to-one."""
    if len(predictions) != len(outcomes):
        raise ParameterValidationError(
            f"predictions and outcomes differ in length ({len(predictions)} != {len(outcomes)})"
        )
    for idx, prediction in enumerate(predictions):
        validate_probability(prediction, f"predictions[{idx}]")


def ensure_known_ids(ids: Iterable[str], known: Iterable[str], context: str) -> None:
    known_set = set(known)
    missing = sorted({skill_id for skill_id in ids if skill_id not in known_set})
    if missing:
        raise GraphIntegrityError(f"{context}: unknown skill id(s) {', '.join(missing)}")


__all__ = [
    "ValidationError",
    "ParameterValidationError",
    "GraphIntegrityError",
    "validate_probability",
    "validate_open_probability",
    "validate_confidence_level",
    "validate_non_negative_int",
    "validate_quality",
    "validate_positive_time",
    "validate_paired_sequences",
    "ensure_known_ids",
]
