"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate the settings the evaluation core reads at startup.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "DB_PATH": "data.db",
        "DEFAULT_PASSING_SCORE": "70",
        "CONTENT_LOOKUP_TIMEOUT": "2.0",
        "RECOMMENDATION_PIPELINE_ENABLED": "true",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    numeric_ranges = {
        "DEFAULT_PASSING_SCORE": (0.0, 100.0),
        "CONTENT_LOOKUP_TIMEOUT": (0.0, 300.0),
    }
    for var, (low, high) in numeric_ranges.items():
        value = get_env_float(var, 0.0)
        if not low <= value <= high:
            raise EnvironmentError(f"{var} must be between {low:g} and {high:g}, got {value:g}")

    optional_vars: Dict[str, str] = {
        "INTERNAL_API_KEY": "Shared secret for the internal recommendation webhook",
    }
    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_float(name: str, default: float) -> float:
    """Get a float from the environment, raising EnvironmentError when malformed."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return float(default)
    try:
        return float(value)
    except ValueError as exc:
        raise EnvironmentError(f"Invalid numeric value for {name}: {value}") from exc
