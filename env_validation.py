"""Environment variable validation and engine settings."""

import os
import logging
from dataclasses import dataclass
from typing import Dict

from engines.validation import ValidationError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on", "enabled"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


class ConfigurationError(ValidationError):
    """Raised when environment variables are missing or invalid."""
    pass


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean for {name}: {value}")


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid number for {name}: {raw}") from exc


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid integer for {name}: {raw}") from exc


@dataclass(frozen=True)
class EngineSettings:
    mastery_threshold: float = 0.80
    em_max_iterations: int = 100
    em_tolerance: float = 1e-6
    confidence_level: float = 0.95
    recommendation_limit: int = 5
    persist_poor_fits: bool = False
    db_path: str = "data.db"


def load_settings() -> EngineSettings:
    """Read engine settings from the environment and range-check them."""

    settings = EngineSettings(
        mastery_threshold=get_env_float("KLSE_MASTERY_THRESHOLD", 0.80),
        em_max_iterations=get_env_int("KLSE_EM_MAX_ITERATIONS", 100),
        em_tolerance=get_env_float("KLSE_EM_TOLERANCE", 1e-6),
        confidence_level=get_env_float("KLSE_CONFIDENCE_LEVEL", 0.95),
        recommendation_limit=get_env_int("KLSE_RECOMMENDATION_LIMIT", 5),
        persist_poor_fits=get_env_bool("KLSE_PERSIST_POOR_FITS", False),
        db_path=os.getenv("DB_PATH") or "data.db",
    )
    if not 0.0 < settings.mastery_threshold <= 1.0:
        raise ConfigurationError("KLSE_MASTERY_THRESHOLD must be within (0, 1]")
    if settings.em_max_iterations < 1:
        raise ConfigurationError("KLSE_EM_MAX_ITERATIONS must be at least 1")
    if settings.em_tolerance <= 0:
        raise ConfigurationError("KLSE_EM_TOLERANCE must be positive")
    if not 0.0 < settings.confidence_level < 1.0:
        raise ConfigurationError("KLSE_CONFIDENCE_LEVEL must be within (0, 1)")
    if settings.recommendation_limit < 1:
        raise ConfigurationError("KLSE_RECOMMENDATION_LIMIT must be at least 1")
    return settings


def validate_environment() -> EngineSettings:
    """Apply defaults and validate engine configuration.

    Raises ConfigurationError if validation fails.
    """
    defaults: Dict[str, str] = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "KLSE_MASTERY_THRESHOLD": "Default mastery threshold for new learner states",
        "KLSE_EM_MAX_ITERATIONS": "Iteration cap for BKT parameter fitting",
        "KLSE_CONFIDENCE_LEVEL": "Confidence level for mastery intervals",
    }
    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.debug("Optional environment variable not set: %s (%s)", var, description)

    return load_settings()
