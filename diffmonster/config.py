"""Environment-driven configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from diffmonster.github_client import GITHUB_API_BASE_URL

API_BASE_URL_ENV_VAR = "DIFFMONSTER_API_BASE_URL"
GRAPHQL_URL_ENV_VAR = "DIFFMONSTER_GRAPHQL_URL"
TIMEOUT_SECONDS_ENV_VAR = "DIFFMONSTER_TIMEOUT_SECONDS"
SERIALIZE_REVIEW_COMMENTS_ENV_VAR = "DIFFMONSTER_SERIALIZE_REVIEW_COMMENTS"
LOG_LEVEL_ENV_VAR = "DIFFMONSTER_LOG_LEVEL"
LOG_JSON_ENV_VAR = "DIFFMONSTER_LOG_JSON"

DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_LOG_LEVEL = "WARNING"
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class ConfigError(ValueError):
    """Raised when an environment setting has an invalid value."""


@dataclass(frozen=True, slots=True)
class DiffMonsterConfig:
    api_base_url: str = GITHUB_API_BASE_URL
    graphql_url: str = f"{GITHUB_API_BASE_URL}/graphql"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    serialize_review_comments: bool = True
    log_level: str = DEFAULT_LOG_LEVEL
    log_json: bool = False


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean (1/0, true/false), got '{value}'.")


def _read_timeout() -> float:
    value = os.getenv(TIMEOUT_SECONDS_ENV_VAR)
    if value is None or not value.strip():
        return DEFAULT_TIMEOUT_SECONDS
    try:
        timeout = float(value)
    except ValueError as error:
        raise ConfigError(f"{TIMEOUT_SECONDS_ENV_VAR} must be a number, got '{value}'.") from error
    if timeout <= 0:
        raise ConfigError(f"{TIMEOUT_SECONDS_ENV_VAR} must be positive, got '{value}'.")
    return timeout


def load_config() -> DiffMonsterConfig:
    """Build configuration from the environment and an optional `.env` file."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    api_base_url = (os.getenv(API_BASE_URL_ENV_VAR) or GITHUB_API_BASE_URL).rstrip("/")
    graphql_url = os.getenv(GRAPHQL_URL_ENV_VAR) or f"{api_base_url}/graphql"

    log_level = (os.getenv(LOG_LEVEL_ENV_VAR) or DEFAULT_LOG_LEVEL).strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(
            f"{LOG_LEVEL_ENV_VAR} must be one of {', '.join(sorted(LOG_LEVELS))}, got '{log_level}'."
        )

    return DiffMonsterConfig(
        api_base_url=api_base_url,
        graphql_url=graphql_url,
        timeout_seconds=_read_timeout(),
        serialize_review_comments=_read_bool(SERIALIZE_REVIEW_COMMENTS_ENV_VAR, True),
        log_level=log_level,
        log_json=_read_bool(LOG_JSON_ENV_VAR, False),
    )
