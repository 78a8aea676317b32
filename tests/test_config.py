"""Unit tests for environment-driven configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from diffmonster.config import (
    API_BASE_URL_ENV_VAR,
    LOG_LEVEL_ENV_VAR,
    SERIALIZE_REVIEW_COMMENTS_ENV_VAR,
    TIMEOUT_SECONDS_ENV_VAR,
    ConfigError,
    DiffMonsterConfig,
    load_config,
)


@pytest.mark.unit
def test_load_config_defaults(no_github_env: None) -> None:
    assert load_config() == DiffMonsterConfig()


@pytest.mark.unit
def test_load_config_derives_graphql_url_from_api_base(
    no_github_env: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv(API_BASE_URL_ENV_VAR, "https://ghe.example.com/api/v3/")

    config = load_config()

    assert config.api_base_url == "https://ghe.example.com/api/v3"
    assert config.graphql_url == "https://ghe.example.com/api/v3/graphql"


@pytest.mark.unit
def test_load_config_reads_dotenv(no_github_env: None, tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "DIFFMONSTER_SERIALIZE_REVIEW_COMMENTS=false\n"
        "DIFFMONSTER_LOG_LEVEL=debug\n"
        "DIFFMONSTER_LOG_JSON=1\n"
        "DIFFMONSTER_TIMEOUT_SECONDS=3.5\n",
        encoding="utf-8",
    )

    config = load_config()

    assert config.serialize_review_comments is False
    assert config.log_level == "DEBUG"
    assert config.log_json is True
    assert config.timeout_seconds == 3.5


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "value"),
    [
        (TIMEOUT_SECONDS_ENV_VAR, "0"),
        (TIMEOUT_SECONDS_ENV_VAR, "soon"),
        (SERIALIZE_REVIEW_COMMENTS_ENV_VAR, "maybe"),
        (LOG_LEVEL_ENV_VAR, "chatty"),
    ],
)
def test_load_config_rejects_invalid_values(
    no_github_env: None, monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigError):
        load_config()
