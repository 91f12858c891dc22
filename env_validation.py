"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

DEFAULT_LLM_URL = "http://localhost:4891/v1/chat/completions"
DEFAULT_MODEL_ID = "DeepSeek-R1-Distill-Qwen-14B"


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Every setting has a usable default; the dict is kept for settings that
    # must be provided explicitly by a deployment.
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
        "LLM_URL": os.getenv("LLM_URL") or os.getenv("GPT4ALL_URL") or DEFAULT_LLM_URL,
        "MODEL_ID": os.getenv("MODEL_ID") or DEFAULT_MODEL_ID,
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "LLM_TIMEOUT": "Seconds to wait for a text-generation response",
        "GUIDED_QUESTIONING_TTL_MINUTES": "Lifetime of a guided questioning dialogue",
        "STRICT_SAFETY": "Reject shortcut-seeking responses in the safety gate",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    url_vars = {"LLM_URL", "GPT4ALL_URL"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    positive_numbers = {
        "DB_MAX_CONNECTIONS": int,
        "LLM_TIMEOUT": float,
        "SCAFFOLD_MAX_TOKENS": int,
        "GUIDED_QUESTIONING_TTL_MINUTES": int,
    }
    for var, cast in positive_numbers.items():
        value = os.getenv(var)
        if not value:
            continue
        try:
            parsed = cast(value)
        except ValueError:
            raise EnvironmentError(f"Invalid numeric value for {var}: {value}")
        if parsed <= 0:
            raise EnvironmentError(f"{var} must be positive (got {value})")

    temperature = os.getenv("LLM_TEMPERATURE")
    if temperature:
        try:
            if not 0.0 <= float(temperature) <= 2.0:
                raise EnvironmentError(f"LLM_TEMPERATURE must be within [0, 2]: {temperature}")
        except ValueError:
            raise EnvironmentError(f"Invalid numeric value for LLM_TEMPERATURE: {temperature}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.debug("Optional environment variable not set: %s (%s)", var, description)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.error("Invalid integer for %s: '%s'; using %s", name, raw, default)
        return default


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.error("Invalid number for %s: '%s'; using %s", name, raw, default)
        return default
