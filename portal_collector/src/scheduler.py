"""
Retry scheduler: decides when the next acquisition runs.

- success: regular update interval; the transient streak resets to zero.
- transient: exponential backoff ``floor * 2**(n-1)`` capped at the
  ceiling, where n is the number of consecutive transient failures. Once n
  exceeds ``max_retries`` the regular interval is used again.
- authentication / no_data: regular interval, no escalation. The origin
  is healthy (or needs operator action); retrying faster would not help.

All delays are in milliseconds to match the widget configuration.

CHANGELOG:
- 2026-10-19: Apply interval, floor and retry limit from an acquisition request
- 2026-10-12: Fall back to the regular interval after max_retries
- 2026-10-07: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from portal_collector.src.errors import AcquisitionBusyError
from portal_collector.src.models import AcquisitionOutcome, TransientFailure

if TYPE_CHECKING:
    from portal_collector.src.config import AcquisitionConfig
    from portal_collector.src.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_MS: int = 60_000
"""Backoff floor after the first transient failure."""

DEFAULT_MAX_RETRY_DELAY_MS: int = 300_000
"""Backoff ceiling."""

OutcomeCallback = Callable[[AcquisitionOutcome], Awaitable[None]]


class RetryScheduler:
    """Computes delays between acquisition attempts.

    Args:
        update_interval_ms: Regular refresh interval.
        retry_delay_ms: Backoff floor.
        max_retry_delay_ms: Backoff ceiling.
        max_retries: Transient failures retried with backoff.
    """

    def __init__(
        self,
        *,
        update_interval_ms: int,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        max_retry_delay_ms: int = DEFAULT_MAX_RETRY_DELAY_MS,
        max_retries: int = 5,
    ) -> None:
        self._update_interval_ms = update_interval_ms
        self._retry_delay_ms = retry_delay_ms
        self._max_retry_delay_ms = max_retry_delay_ms
        self._max_retries = max_retries
        self._consecutive_transient: int = 0

    @property
    def retry_count(self) -> int:
        """Consecutive transient failures since the last success."""
        return self._consecutive_transient

    def configure(self, config: AcquisitionConfig) -> None:
        """Adopt the interval, backoff floor and retry limit of *config*.

        The ceiling is raised to the floor when the new floor exceeds it.
        """
        self._update_interval_ms = config.update_interval_ms
        self._retry_delay_ms = config.retry_delay_ms
        self._max_retry_delay_ms = max(self._max_retry_delay_ms, config.retry_delay_ms)
        self._max_retries = config.max_retries
        logger.info(
            "Schedule updated: interval=%dms, retry_delay=%dms, max_retries=%d",
            config.update_interval_ms,
            config.retry_delay_ms,
            config.max_retries,
        )

    def backoff_ms(self, failures: int) -> int:
        """Backoff delay after *failures* consecutive transient failures."""
        if failures <= 0:
            return 0
        return min(self._retry_delay_ms * (2 ** (failures - 1)), self._max_retry_delay_ms)

    def next_delay_ms(self, outcome: AcquisitionOutcome) -> int:
        """Record *outcome* and return the delay before the next attempt."""
        if outcome.kind == "success":
            if self._consecutive_transient:
                logger.info("Acquisition recovered after %d failure(s)", self._consecutive_transient)
            self._consecutive_transient = 0
            return self._update_interval_ms

        if outcome.kind != "transient":
            self._consecutive_transient = 0
            return self._update_interval_ms

        self._consecutive_transient += 1
        if self._consecutive_transient > self._max_retries:
            logger.warning(
                "Max retries (%d) reached, falling back to regular interval",
                self._max_retries,
            )
            return self._update_interval_ms
        delay = self.backoff_ms(self._consecutive_transient)
        logger.warning(
            "Backoff: retrying in %.1fs (consecutive failures: %d/%d)",
            delay / 1000,
            self._consecutive_transient,
            self._max_retries,
        )
        return delay

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_once(
        self,
        orchestrator: Orchestrator,
        *,
        cancel_event: asyncio.Event | None = None,
        on_outcome: OutcomeCallback | None = None,
    ) -> int:
        """Run one attempt, report it and return the delay before the next.

        Never raises: an unexpected error counts as a transient failure and
        a busy orchestrator is retried after the backoff floor.
        """
        try:
            outcome: AcquisitionOutcome = await orchestrator.acquire(cancel_event=cancel_event)
        except AcquisitionBusyError:
            logger.info("Acquisition already running, skipping scheduled attempt")
            return self._retry_delay_ms
        except Exception:
            logger.error("Acquisition cycle error", exc_info=True)
            outcome = TransientFailure(message="Unexpected acquisition error", reason="error")

        delay = self.next_delay_ms(outcome)

        if on_outcome is not None:
            try:
                await on_outcome(outcome)
            except Exception:
                logger.warning("Outcome handler failed", exc_info=True)
        return delay

    async def run(
        self,
        orchestrator: Orchestrator,
        shutdown_event: asyncio.Event,
        *,
        on_outcome: OutcomeCallback | None = None,
    ) -> None:
        """Acquire on schedule until *shutdown_event* is set.

        The shutdown event doubles as the cancel token, so a shutdown stops
        an in-flight probe before its next endpoint.
        """
        logger.info("Acquisition loop started (interval=%dms)", self._update_interval_ms)
        while not shutdown_event.is_set():
            delay_ms = await self.run_once(
                orchestrator, cancel_event=shutdown_event, on_outcome=on_outcome
            )
            logger.info("Next acquisition in %.0fs", delay_ms / 1000)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(shutdown_event.wait(), timeout=delay_ms / 1000)
        logger.info("Acquisition loop stopped")
