"""
Unit tests for the status file writer.

Tests verify:
- Success stores the record, clears the error and the retry counter.
- Failure keeps the last-known-good record and increments the counter.
- ``blocked`` is set only without any record.
- History series are stored per period.
- The retry limit can change at runtime.
- An unwritable path is logged, not raised.

CHANGELOG:
- 2026-10-19: Runtime retry limit
- 2026-10-14: DisplayState fields
- 2026-10-07: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

import pytest

from portal_collector.src.models import (
    AcquisitionSuccess,
    AuthFailure,
    MeasurementRecord,
    ProductionSeries,
    SeriesPoint,
    TransientFailure,
)
from portal_collector.src.status import StatusWriter

_TS = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
_SUCCESS = AcquisitionSuccess(
    record=MeasurementRecord(endpoint="/api/v1/plants", timestamp=_TS, current_power=3120)
)


class TestStatusWriter:
    """Outcome folding and file output."""

    def test_success(self, tmp_path: Path) -> None:
        path = tmp_path / "status.json"
        writer = StatusWriter(path, max_retries=5)

        writer.record(_SUCCESS)

        data = json.loads(path.read_text())
        assert data["record"]["currentPower"] == 3120.0
        assert data["last_success_ts"].startswith("2026-10-19T12:00:00")
        assert data["error"] is None
        assert data["retry_count"] == 0
        assert data["max_retries"] == 5
        assert data["blocked"] is False

    def test_failure_without_record_blocks(self, tmp_path: Path) -> None:
        path = tmp_path / "status.json"
        writer = StatusWriter(path)

        state = writer.record(AuthFailure(message="Cookie file not found", hint="Export cookies"))

        assert state.blocked is True
        data = json.loads(path.read_text())
        assert data["blocked"] is True
        assert data["error"]["kind"] == "authentication"
        assert data["error"]["hint"] == "Export cookies"
        assert data["retry_count"] == 1

    def test_failure_keeps_last_record(self, tmp_path: Path) -> None:
        writer = StatusWriter(tmp_path / "status.json")
        writer.record(_SUCCESS)

        writer.record(TransientFailure(message="down", reason="unreachable"))
        state = writer.record(TransientFailure(message="down", reason="unreachable"))

        assert state.record == _SUCCESS.record
        assert state.retry_count == 2
        assert state.blocked is False
        assert state.last_success_ts == _TS

    def test_success_clears_error(self, tmp_path: Path) -> None:
        writer = StatusWriter(tmp_path / "status.json")
        writer.record(TransientFailure(message="down", reason="unreachable"))

        state = writer.record(_SUCCESS)

        assert state.error is None
        assert state.retry_count == 0

    def test_set_history(self, tmp_path: Path) -> None:
        path = tmp_path / "status.json"
        writer = StatusWriter(path)
        series = ProductionSeries(
            period="day",
            plant_id="42",
            resolution="15min",
            points=[SeriesPoint(timestamp=_TS, value=3000)],
        )

        writer.set_history(series)

        data = json.loads(path.read_text())
        assert data["history"]["day"]["plant_id"] == "42"
        assert data["history"]["day"]["points"][0]["value"] == 3000.0
        assert writer.state.history["day"] == series

    def test_set_max_retries(self, tmp_path: Path) -> None:
        path = tmp_path / "status.json"
        writer = StatusWriter(path, max_retries=5)

        writer.set_max_retries(2)

        assert json.loads(path.read_text())["max_retries"] == 2
        assert writer.state.max_retries == 2

    def test_no_tmp_left_behind(self, tmp_path: Path) -> None:
        writer = StatusWriter(tmp_path / "status.json")

        writer.record(_SUCCESS)

        assert [p.name for p in tmp_path.iterdir()] == ["status.json"]

    def test_unwritable_path(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        writer = StatusWriter(tmp_path / "missing" / "status.json")

        with caplog.at_level(logging.WARNING):
            state = writer.record(_SUCCESS)

        assert state.record == _SUCCESS.record
        assert "Failed to write status file" in caplog.text
