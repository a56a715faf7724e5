"""
Status file writer for the dashboard widget.

Keeps a DisplayState in memory and rewrites a JSON status file after every
acquisition outcome:

- success: the record becomes the last-known-good record, the error and
  the retry counter are cleared.
- failure: the last-known-good record stays, the error is stored and the
  retry counter increments.

``blocked`` in the written file is true only when no record has ever been
obtained and the latest attempt failed.

CHANGELOG:
- 2026-10-19: Allow the retry limit to change at runtime
- 2026-10-14: Track DisplayState instead of bare timestamps
- 2026-10-07: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from portal_collector.src.models import (
    AcquisitionOutcome,
    DisplayState,
    ProductionSeries,
)

logger = logging.getLogger(__name__)


class StatusWriter:
    """Writes the widget display state to a JSON file.

    Args:
        path: Filesystem path for the status JSON file. Accepts str or Path.
        max_retries: Shown next to the retry counter.
    """

    def __init__(self, path: str | Path, *, max_retries: int = 0) -> None:
        self.path = Path(path)
        self._state = DisplayState(max_retries=max_retries)

    @property
    def state(self) -> DisplayState:
        return self._state

    def record(self, outcome: AcquisitionOutcome) -> DisplayState:
        """Fold *outcome* into the display state and write the file."""
        if outcome.kind == "success":
            self._state = self._state.model_copy(
                update={
                    "record": outcome.record,
                    "last_success_ts": outcome.record.timestamp,
                    "error": None,
                    "retry_count": 0,
                }
            )
        else:
            self._state = self._state.model_copy(
                update={"error": outcome, "retry_count": self._state.retry_count + 1}
            )
        self._write()
        return self._state

    def set_max_retries(self, max_retries: int) -> None:
        """Update the retry limit shown next to the counter and write the file."""
        self._state = self._state.model_copy(update={"max_retries": max_retries})
        self._write()

    def set_history(self, series: ProductionSeries) -> None:
        """Store the latest series for its period and write the file."""
        history = dict(self._state.history)
        history[series.period] = series
        self._state = self._state.model_copy(update={"history": history})
        self._write()

    def _write(self) -> None:
        """Write the status JSON file with the current state."""
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_text(self._state.model_dump_json(by_alias=True))
            os.replace(tmp, self.path)
        except OSError:
            logger.warning("Failed to write status file %s", self.path, exc_info=True)
