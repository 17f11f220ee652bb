"""Environment variable validation and management."""

import os
import logging
from typing import Dict, List

logger = logging.getLogger(__name__)

class ConfigurationError(Exception):
    """Raised when environment variables are missing or invalid."""
    pass

DEFAULTS: Dict[str, str] = {
    "DB_PATH": "data.db",
    "FETCH_CONCURRENCY": "8",
    "INCLUDE_MARKED_COMPLETE": "false",
    "CORS_ALLOW_ORIGINS": "*",
}

_TRUE_VALUES = {"1", "true", "yes", "on", "enabled"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}

def validate_environment() -> None:
    """Apply defaults and validate the service configuration.

    Raises ConfigurationError if validation fails.
    """
    for var, value in DEFAULTS.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    concurrency = get_env_int("FETCH_CONCURRENCY", 8)
    if concurrency < 1:
        raise ConfigurationError(f"FETCH_CONCURRENCY must be at least 1, got {concurrency}")

    flag = os.environ["INCLUDE_MARKED_COMPLETE"].strip().lower()
    if flag not in _TRUE_VALUES | _FALSE_VALUES:
        raise ConfigurationError(f"Invalid boolean for INCLUDE_MARKED_COMPLETE: {flag}")

    for origin in get_cors_origins():
        if origin != "*" and not (origin.startswith("http://") or origin.startswith("https://")):
            raise ConfigurationError(f"Invalid origin in CORS_ALLOW_ORIGINS: {origin}")

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES

def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid integer for {name}: {value}") from exc

def get_cors_origins() -> List[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", DEFAULTS["CORS_ALLOW_ORIGINS"])
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
