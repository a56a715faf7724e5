"""
Collector daemon for the Sunny Portal solar data pipeline.

Runs one asyncio loop: the RetryScheduler asks the Orchestrator for an
acquisition, the outcome is folded into the StatusWriter's display state
and, after a success, the configured history periods are refreshed. The
scheduler then waits for the regular interval or the backoff delay.

An exception in one iteration is logged and does not crash the loop.
SIGTERM/SIGINT set a shared asyncio.Event that both ends the loop and
cancels an in-flight probe before its next endpoint.

Structured JSON logging is used for all events. Secrets (cookie value,
password) are never logged, only a fingerprint.

CHANGELOG:
- 2026-10-19: Drop the cached session when history is rejected with 401/403
- 2026-10-13: Refresh history periods after each success
- 2026-10-07: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx

from portal_collector.src.errors import AuthMissingError, AuthRejectedError, PortalError
from portal_collector.src.extractor import ResponseExtractor
from portal_collector.src.history import HistoryClient
from portal_collector.src.login import PortalLogin
from portal_collector.src.orchestrator import Orchestrator
from portal_collector.src.prober import EndpointProber
from portal_collector.src.scheduler import RetryScheduler
from portal_collector.src.session import SessionStore
from portal_collector.src.status import StatusWriter

if TYPE_CHECKING:
    from portal_collector.src.config import CollectorSettings
    from portal_collector.src.models import AcquisitionOutcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging() -> None:
    """Configure structured JSON logging for the collector.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.INFO)


def _masked_secret(value: str | None) -> str:
    """Return a short non-reversible fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: CollectorSettings) -> None:
    """Log a config summary at startup, excluding secrets.

    The portal password is only logged as a fingerprint; the cookie file
    path is logged, never its contents.
    """
    logger.info(
        "Collector starting with config: "
        "portal_base_url=%s, cookie_file=%s, endpoint_profile=%s, "
        "api_endpoints=%s, update_interval_ms=%s, retry_delay_ms=%s, "
        "max_retry_delay_ms=%s, max_retries=%s, request_timeout_s=%s, "
        "inter_request_delay_ms=%s, allow_degraded=%s, history_periods=%s, "
        "status_path=%s, portal_username=%s, portal_password_masked=%s",
        settings.portal_base_url,
        settings.cookie_file,
        settings.endpoint_profile,
        settings.api_endpoints or "-",
        settings.update_interval_ms,
        settings.retry_delay_ms,
        settings.max_retry_delay_ms,
        settings.max_retries,
        settings.request_timeout_s,
        settings.inter_request_delay_ms,
        settings.allow_degraded,
        settings.history_periods or "-",
        settings.status_path,
        settings.portal_username or "-",
        _masked_secret(settings.portal_password),
    )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass
class Runtime:
    """Everything one collector process needs, built from settings."""

    settings: CollectorSettings
    orchestrator: Orchestrator
    scheduler: RetryScheduler
    status: StatusWriter
    history: HistoryClient

    async def handle_outcome(self, outcome: AcquisitionOutcome) -> None:
        """Record *outcome*; after a success refresh the history periods."""
        self.status.record(outcome)
        if outcome.kind == "success" and self.settings.history_periods:
            await self.refresh_history()

    async def refresh_history(self) -> None:
        """Fetch every configured history period. Failures are logged only.

        A 401/403 drops the cached session and stops the refresh.
        """
        try:
            credential = self.orchestrator.session_store.get_credential()
        except AuthMissingError as exc:
            logger.warning("Skipping history refresh: %s", exc.message)
            return
        for period in self.settings.history_periods:
            try:
                series = await self.history.fetch_history(period, credential)
            except AuthRejectedError as exc:
                logger.warning("History refresh rejected, dropping session: %s", exc)
                self.orchestrator.session_store.invalidate()
                return
            except PortalError as exc:
                logger.warning("History for %s unavailable: %s", period, exc)
                continue
            self.status.set_history(series)


def build_runtime(
    settings: CollectorSettings,
    client: httpx.AsyncClient,
    *,
    login_transport: httpx.AsyncBaseTransport | None = None,
) -> Runtime:
    """Wire the collector components from *settings*.

    Args:
        settings: Loaded CollectorSettings.
        client: Shared HTTP client for probing and history.
        login_transport: Optional transport for the login flow (tests).
    """
    store = SessionStore(settings.cookie_file, ttl_s=settings.credential_ttl_s)
    prober = EndpointProber(
        client,
        base_url=settings.portal_base_url,
        extractor=ResponseExtractor(max_depth=settings.max_json_depth),
        timeout_s=settings.request_timeout_s,
        inter_request_delay_ms=settings.inter_request_delay_ms,
        allow_degraded=settings.allow_degraded,
        sun_hours=settings.sun_hours,
    )
    login = None
    if settings.login_enabled:
        login = PortalLogin(
            settings.portal_base_url,
            settings.portal_username,
            settings.portal_password,
            timeout_s=settings.request_timeout_s,
            transport=login_transport,
        )
    orchestrator = Orchestrator(
        store,
        prober,
        endpoints=settings.api_endpoints,
        profile=settings.endpoint_profile,
        login=login,
    )
    scheduler = RetryScheduler(
        update_interval_ms=settings.update_interval_ms,
        retry_delay_ms=settings.retry_delay_ms,
        max_retry_delay_ms=settings.max_retry_delay_ms,
        max_retries=settings.max_retries,
    )
    return Runtime(
        settings=settings,
        orchestrator=orchestrator,
        scheduler=scheduler,
        status=StatusWriter(settings.status_path, max_retries=settings.max_retries),
        history=HistoryClient(
            client, base_url=settings.portal_base_url, timeout_s=settings.request_timeout_s
        ),
    )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run the loop.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from portal_collector.src.config import CollectorSettings

    settings = CollectorSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    async with httpx.AsyncClient(timeout=settings.request_timeout_s) as client:
        runtime = build_runtime(settings, client)
        await runtime.scheduler.run(
            runtime.orchestrator,
            shutdown_event,
            on_outcome=runtime.handle_outcome,
        )
    logger.info("Shutdown complete")


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the collector daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
