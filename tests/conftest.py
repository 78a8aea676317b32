"""Shared pytest fixtures and test-run configuration."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog
from tests.github_fakes import FakeGitHub


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for integration test execution."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (live GitHub API).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly enabled."""
    run_integration = config.getoption("--run-integration")
    env_enabled = os.getenv("RUN_INTEGRATION_TESTS") == "1"
    if run_integration or env_enabled:
        return

    skip_marker = pytest.mark.skip(
        reason=(
            "Integration tests are disabled by default. "
            "Use --run-integration or set RUN_INTEGRATION_TESTS=1."
        )
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def fake_github() -> FakeGitHub:
    """Fresh in-memory GitHub for one test."""
    return FakeGitHub()


def _is_github_setting(name: str) -> bool:
    return name.startswith("DIFFMONSTER_") or name in {"GITHUB_TOKEN", "GH_TOKEN"}


@pytest.fixture
def no_github_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Run with no token and no diffmonster settings in the environment or `.env`."""
    for name in list(os.environ):
        if _is_github_setting(name):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    yield
    # Drop values a test loaded from its `.env` file.
    for name in list(os.environ):
        if _is_github_setting(name):
            del os.environ[name]


@pytest.fixture(autouse=True)
def reset_structlog() -> Iterator[None]:
    """Undo logging configuration done by commands under test."""
    yield
    structlog.reset_defaults()
