"""
Unit tests for the collector daemon wiring.

Tests verify:
- JSON log formatting, including exceptions.
- Secret fingerprinting; the startup summary never contains the password.
- build_runtime wires settings into every component, login only when
  credentials are configured.
- handle_outcome records the outcome and refreshes history after success.
- refresh_history skips on a missing cookie and tolerates per-period
  failures; a 401/403 drops the cached session and stops the refresh.
- The signal handler sets the shutdown event.

CHANGELOG:
- 2026-10-19: Rejected history refresh drops the session
- 2026-10-13: History refresh tests
- 2026-10-07: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from portal_collector.src.config import CollectorSettings
from portal_collector.src.errors import AuthRejectedError, HistoryUnavailableError
from portal_collector.src.main import (
    Runtime,
    _handle_signal,
    _masked_secret,
    build_runtime,
    configure_logging,
    log_config_summary,
)
from portal_collector.src.models import (
    AcquisitionSuccess,
    MeasurementRecord,
    NoDataFailure,
    ProductionSeries,
)
from portal_collector.src.orchestrator import Orchestrator
from portal_collector.src.session import SessionStore
from portal_collector.src.status import StatusWriter

_SUCCESS = AcquisitionSuccess(
    record=MeasurementRecord(
        endpoint="/api/v1/plants",
        timestamp=datetime(2026, 10, 19, 12, 0, tzinfo=UTC),
        current_power=3120,
    )
)


def _runtime(tmp_path: Path, cookie_path: Path, periods: list[str]) -> Runtime:
    """Runtime with real status/session objects and a mocked history client."""
    settings = MagicMock()
    settings.history_periods = periods
    orchestrator = Orchestrator(SessionStore(cookie_path), MagicMock())
    history = MagicMock()
    history.fetch_history = AsyncMock(
        side_effect=lambda period, credential: ProductionSeries(
            period=period, plant_id="42", resolution="day"
        )
    )
    return Runtime(
        settings=settings,
        orchestrator=orchestrator,
        scheduler=MagicMock(),
        status=StatusWriter(tmp_path / "status.json"),
        history=history,
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class TestLogging:
    """Structured logs and secret masking."""

    def test_json_formatter(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging()
            formatter = root.handlers[0].formatter
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        try:
            raise ValueError("bad value")
        except ValueError:
            record = logging.LogRecord(
                "portal_collector.src.prober", logging.WARNING, __file__, 1,
                "Endpoint %s failed", ("/api/v1/plants",), sys.exc_info(),
            )
        entry = json.loads(formatter.format(record))

        assert entry["level"] == "WARNING"
        assert entry["logger"] == "portal_collector.src.prober"
        assert entry["msg"] == "Endpoint /api/v1/plants failed"
        assert "ValueError: bad value" in entry["exception"]
        assert entry["ts"].endswith("+00:00")

    def test_masked_secret(self) -> None:
        masked = _masked_secret("hunter2")

        assert masked.startswith("len=7 sha256=")
        assert "hunter2" not in masked
        assert _masked_secret("") == "empty"
        assert _masked_secret(None) == "empty"

    def test_summary_excludes_password(
        self, env_vars_full: dict[str, str], caplog: pytest.LogCaptureFixture
    ) -> None:
        settings = CollectorSettings()

        with caplog.at_level(logging.INFO, logger="portal_collector.src.main"):
            log_config_summary(settings)

        full_log = caplog.text
        assert "hunter2" not in full_log
        assert "owner@example.com" in full_log
        assert "endpoint_profile=powerflow" in full_log
        assert "update_interval_ms=600000" in full_log

    def test_summary_does_not_read_cookie(
        self, env_vars_full: dict[str, str], caplog: pytest.LogCaptureFixture
    ) -> None:
        Path(env_vars_full["COOKIE_FILE"]).write_text("SESSION=topsecret")

        with caplog.at_level(logging.INFO, logger="portal_collector.src.main"):
            log_config_summary(CollectorSettings())

        assert "topsecret" not in caplog.text
        assert env_vars_full["COOKIE_FILE"] in caplog.text


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


class TestBuildRuntime:
    """Settings flow into the components."""

    @pytest.mark.asyncio
    async def test_full_settings(self, env_vars_full: dict[str, str]) -> None:
        settings = CollectorSettings()

        async with httpx.AsyncClient() as client:
            runtime = build_runtime(settings, client)

        store = runtime.orchestrator.session_store
        assert str(store.cookie_file) == env_vars_full["COOKIE_FILE"]
        assert store.ttl_s == 120.0
        assert runtime.orchestrator._login is not None
        assert runtime.status.path == Path(env_vars_full["STATUS_PATH"])
        assert runtime.status.state.max_retries == 3
        assert runtime.scheduler.backoff_ms(1) == 30_000
        assert runtime.scheduler.backoff_ms(5) == 240_000

    @pytest.mark.asyncio
    async def test_no_login_without_credentials(self, tmp_path: Path) -> None:
        settings = CollectorSettings(status_path=str(tmp_path / "status.json"))

        async with httpx.AsyncClient() as client:
            runtime = build_runtime(settings, client)

        assert runtime.orchestrator._login is None


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


class TestRuntime:
    """Outcome handling and history refresh."""

    @pytest.mark.asyncio
    async def test_success_refreshes_history(self, tmp_path: Path, cookie_file: Path) -> None:
        runtime = _runtime(tmp_path, cookie_file, ["day", "month"])

        await runtime.handle_outcome(_SUCCESS)

        assert runtime.status.state.record == _SUCCESS.record
        assert set(runtime.status.state.history) == {"day", "month"}
        credential = runtime.history.fetch_history.await_args.args[1]
        assert credential.value == "SESSION=abc123; XSRF-TOKEN=xyz"

    @pytest.mark.asyncio
    async def test_failure_skips_history(self, tmp_path: Path, cookie_file: Path) -> None:
        runtime = _runtime(tmp_path, cookie_file, ["day"])

        await runtime.handle_outcome(NoDataFailure(message="nothing", endpoints_tried=["/a"]))

        runtime.history.fetch_history.assert_not_awaited()
        assert runtime.status.state.error is not None

    @pytest.mark.asyncio
    async def test_no_periods_configured(self, tmp_path: Path, cookie_file: Path) -> None:
        runtime = _runtime(tmp_path, cookie_file, [])

        await runtime.handle_outcome(_SUCCESS)

        runtime.history.fetch_history.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_cookie_skips_refresh(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        runtime = _runtime(tmp_path, tmp_path / "missing.txt", ["day"])

        with caplog.at_level(logging.WARNING):
            await runtime.refresh_history()

        runtime.history.fetch_history.assert_not_awaited()
        assert "Skipping history refresh" in caplog.text

    @pytest.mark.asyncio
    async def test_period_failure_does_not_stop_others(
        self, tmp_path: Path, cookie_file: Path
    ) -> None:
        runtime = _runtime(tmp_path, cookie_file, ["day", "year"])
        runtime.history.fetch_history = AsyncMock(
            side_effect=[
                HistoryUnavailableError("HTTP 500"),
                ProductionSeries(period="year", plant_id="42", resolution="month"),
            ]
        )

        await runtime.refresh_history()

        assert list(runtime.status.state.history) == ["year"]

    @pytest.mark.asyncio
    async def test_rejected_history_drops_session(
        self, tmp_path: Path, cookie_file: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        runtime = _runtime(tmp_path, cookie_file, ["day", "month"])
        runtime.history.fetch_history = AsyncMock(
            side_effect=[
                AuthRejectedError("/api/v1/plants", 401),
                ProductionSeries(period="month", plant_id="42", resolution="day"),
            ]
        )

        with caplog.at_level(logging.WARNING):
            await runtime.refresh_history()

        assert runtime.orchestrator.session_store.cached is None
        assert runtime.history.fetch_history.await_count == 1
        assert runtime.status.state.history == {}
        assert "dropping session" in caplog.text


class TestSignalHandling:
    """Graceful shutdown."""

    def test_handle_signal_sets_event(self) -> None:
        event = asyncio.Event()

        _handle_signal(event)

        assert event.is_set()
