"""
Shared test fixtures for collector tests.

All collector env vars are cleaned before each test to ensure isolation,
and the working directory moves to tmp_path so no .env file is loaded by
Pydantic BaseSettings.

CHANGELOG:
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

from pathlib import Path

import pytest

# All CollectorSettings environment variable names, used for cleanup.
_ALL_COLLECTOR_ENV_VARS = (
    "PORTAL_BASE_URL",
    "COOKIE_FILE",
    "API_ENDPOINTS",
    "ENDPOINT_PROFILE",
    "UPDATE_INTERVAL_MS",
    "RETRY_DELAY_MS",
    "MAX_RETRY_DELAY_MS",
    "MAX_RETRIES",
    "REQUEST_TIMEOUT_S",
    "INTER_REQUEST_DELAY_MS",
    "CREDENTIAL_TTL_S",
    "ALLOW_DEGRADED",
    "MAX_JSON_DEPTH",
    "SUN_HOURS",
    "PORTAL_USERNAME",
    "PORTAL_PASSWORD",
    "STATUS_PATH",
    "HISTORY_PERIODS",
    "BACKGROUND_POLLING",
)

PORTAL = "https://portal.example.com"


@pytest.fixture(autouse=True)
def _clean_collector_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all collector env vars and isolate from .env files before each test."""
    for var in _ALL_COLLECTOR_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def cookie_file(tmp_path: Path) -> Path:
    """A cookie file holding a valid-looking session cookie."""
    path = tmp_path / "cookies.txt"
    path.write_text("SESSION=abc123; XSRF-TOKEN=xyz\n", encoding="utf-8")
    return path


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> dict[str, str]:
    """Set every CollectorSettings environment variable.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "PORTAL_BASE_URL": "https://portal.example.com/",
        "COOKIE_FILE": str(tmp_path / "session.txt"),
        "API_ENDPOINTS": '["/api/a", "/api/b"]',
        "ENDPOINT_PROFILE": "powerflow",
        "UPDATE_INTERVAL_MS": "600000",
        "RETRY_DELAY_MS": "30000",
        "MAX_RETRY_DELAY_MS": "240000",
        "MAX_RETRIES": "3",
        "REQUEST_TIMEOUT_S": "10",
        "INTER_REQUEST_DELAY_MS": "250",
        "CREDENTIAL_TTL_S": "120",
        "ALLOW_DEGRADED": "false",
        "MAX_JSON_DEPTH": "7",
        "SUN_HOURS": "4.5",
        "PORTAL_USERNAME": "owner@example.com",
        "PORTAL_PASSWORD": "hunter2",
        "STATUS_PATH": str(tmp_path / "status.json"),
        "HISTORY_PERIODS": '["day", "month"]',
        "BACKGROUND_POLLING": "false",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
