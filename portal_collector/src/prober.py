"""
Endpoint prober: tries candidate portal endpoints one after another.

Issues one authenticated GET per candidate, strictly in list order, with a
per-request timeout and a fixed pause between requests so the portal's
anti-bot defences are not tripped. Stops at the first HTTP 200 whose
extraction classifies into a meaningful record; a bare 200 is not enough.

- 401/403 stops probing immediately and raises AuthRejectedError.
- A response that cannot be extracted counts as an empty answer.
- 404 is logged and skipped.
- Any other status, a timeout or a transport error is skipped.
- If nothing was meaningful but some 200 produced a non-empty extraction,
  the last such extraction is returned as a ``degraded`` record (when
  ``allow_degraded`` is on).

Never more than one request is in flight.

CHANGELOG:
- 2026-10-19: Skip endpoints whose response breaks extraction
- 2026-10-11: Honour a cancel event between probes
- 2026-10-08: Add degraded last-resort fallback behind allow_degraded
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx

from portal_collector.src.classifier import DEFAULT_SUN_HOURS, classify, is_meaningful
from portal_collector.src.errors import AuthRejectedError
from portal_collector.src.extractor import ResponseExtractor

if TYPE_CHECKING:
    from portal_collector.src.models import (
        MeasurementRecord,
        RawExtractionRecord,
        SessionCredential,
    )

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TIMEOUT_S: float = 15.0
"""Timeout per portal request in seconds."""

DEFAULT_INTER_REQUEST_DELAY_MS: int = 500
"""Pause between two consecutive endpoint probes."""

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class AttemptOutcome(StrEnum):
    MEANINGFUL = "meaningful"
    EMPTY = "empty"
    NOT_FOUND = "not_found"
    HTTP_ERROR = "http_error"
    SERVER_ERROR = "server_error"
    TRANSPORT_ERROR = "transport_error"


_TRANSIENT_OUTCOMES = frozenset({AttemptOutcome.SERVER_ERROR, AttemptOutcome.TRANSPORT_ERROR})


@dataclass(frozen=True, slots=True)
class ProbeAttempt:
    """One request made during a probe.

    Attributes:
        endpoint: Path that was requested.
        status_code: HTTP status, or ``None`` when no response arrived.
        outcome: How the attempt was judged.
    """

    endpoint: str
    status_code: int | None
    outcome: AttemptOutcome

    @property
    def transient(self) -> bool:
        return self.outcome in _TRANSIENT_OUTCOMES


@dataclass(slots=True)
class ProbeResult:
    """Result of probing a candidate list.

    ``record`` is ``None`` when the list was exhausted (or the probe was
    cancelled) without a usable record.
    """

    record: MeasurementRecord | None
    attempts: list[ProbeAttempt] = field(default_factory=list)
    cancelled: bool = False

    @property
    def exhausted(self) -> bool:
        return self.record is None and not self.cancelled

    @property
    def degraded(self) -> bool:
        return self.record is not None and self.record.status == "degraded"

    @property
    def endpoints_tried(self) -> list[str]:
        return [attempt.endpoint for attempt in self.attempts]

    @property
    def all_transient(self) -> bool:
        """True when every attempt failed for network/server reasons."""
        return bool(self.attempts) and all(a.transient for a in self.attempts)


# ---------------------------------------------------------------------------
# Prober
# ---------------------------------------------------------------------------


class EndpointProber:
    """Sequential, authenticated endpoint prober.

    Args:
        client: Shared ``httpx.AsyncClient``. Redirects are not followed so
            a bounce to the login page is never mistaken for data.
        base_url: Portal origin, e.g. ``https://ennexos.sunnyportal.com``.
        extractor: Response extractor; a default one is built if omitted.
        timeout_s: Per-request timeout.
        inter_request_delay_ms: Pause between two probes. 0 disables it.
        allow_degraded: Enable the last-resort degraded fallback.
        sun_hours: Passed to the classifier for estimated energy.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        extractor: ResponseExtractor | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        inter_request_delay_ms: int = DEFAULT_INTER_REQUEST_DELAY_MS,
        allow_degraded: bool = True,
        sun_hours: float = DEFAULT_SUN_HOURS,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._extractor = extractor or ResponseExtractor()
        self._timeout_s = timeout_s
        self._delay_s = inter_request_delay_ms / 1000.0
        self._allow_degraded = allow_degraded
        self._sun_hours = sun_hours

    @property
    def allow_degraded(self) -> bool:
        return self._allow_degraded

    async def probe(
        self,
        endpoints: list[str],
        credential: SessionCredential,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ProbeResult:
        """Probe *endpoints* in order until one yields a meaningful record.

        Args:
            endpoints: Ordered candidate paths (priority = list order).
            credential: Session credential sent as the Cookie header.
            cancel_event: When set, probing stops before the next request.

        Returns:
            A ProbeResult carrying the record (meaningful or degraded) or
            ``None`` when the list was exhausted or the probe cancelled.

        Raises:
            AuthRejectedError: On the first 401/403 response.
        """
        result = ProbeResult(record=None)
        last_raw: RawExtractionRecord | None = None
        total = len(endpoints)

        for idx, endpoint in enumerate(endpoints):
            if idx > 0 and self._delay_s > 0:
                await self._pause(cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Probe cancelled before endpoint [%d/%d]", idx + 1, total)
                result.cancelled = True
                return result

            logger.info("Testing endpoint [%d/%d]: %s", idx + 1, total, endpoint)
            attempt, raw = await self._attempt(endpoint, credential)
            result.attempts.append(attempt)

            if raw is None or raw.is_empty():
                continue
            last_raw = raw
            record = classify(raw, ts=datetime.now(tz=UTC), sun_hours=self._sun_hours)
            if is_meaningful(record):
                result.attempts[-1] = ProbeAttempt(
                    endpoint, attempt.status_code, AttemptOutcome.MEANINGFUL
                )
                logger.info("Solar data extracted from %s", endpoint)
                result.record = record
                return result
            logger.info("No meaningful solar data in response from %s", endpoint)

        if last_raw is not None and self._allow_degraded:
            logger.warning(
                "All %d endpoints tried; returning degraded data from %s",
                total,
                last_raw.endpoint,
            )
            result.record = classify(
                last_raw,
                ts=datetime.now(tz=UTC),
                sun_hours=self._sun_hours,
                degraded=True,
            )
            return result

        logger.warning("All %d endpoints tried, no solar data found", total)
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _pause(self, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is None:
            await asyncio.sleep(self._delay_s)
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(cancel_event.wait(), timeout=self._delay_s)

    def _headers(self, credential: SessionCredential) -> dict[str, str]:
        return {
            "Cookie": credential.value,
            "User-Agent": USER_AGENT,
            "Accept": "application/json, text/html, */*",
            "Referer": f"{self._base_url}/dashboard",
            "X-Requested-With": "XMLHttpRequest",
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
        }

    async def _attempt(
        self,
        endpoint: str,
        credential: SessionCredential,
    ) -> tuple[ProbeAttempt, RawExtractionRecord | None]:
        """Issue one GET and extract it. Raises only for 401/403."""
        try:
            response = await self._client.get(
                f"{self._base_url}{endpoint}",
                headers=self._headers(credential),
                timeout=self._timeout_s,
            )
        except httpx.TimeoutException:
            logger.warning("Timeout for endpoint %s", endpoint)
            return ProbeAttempt(endpoint, None, AttemptOutcome.TRANSPORT_ERROR), None
        except httpx.HTTPError as exc:
            logger.warning("Request to %s failed: %s", endpoint, exc)
            return ProbeAttempt(endpoint, None, AttemptOutcome.TRANSPORT_ERROR), None

        status = response.status_code
        content_type = response.headers.get("content-type", "")
        logger.info(
            "%s -> status=%d, type=%s, size=%db",
            endpoint,
            status,
            content_type or "-",
            len(response.content),
        )

        if status in (401, 403):
            logger.warning("Authentication failed on %s (HTTP %d)", endpoint, status)
            raise AuthRejectedError(endpoint, status)
        if status == 404:
            logger.info("Endpoint not found: %s", endpoint)
            return ProbeAttempt(endpoint, status, AttemptOutcome.NOT_FOUND), None
        if status >= 500:
            return ProbeAttempt(endpoint, status, AttemptOutcome.SERVER_ERROR), None
        if status != 200:
            if response.is_redirect:
                logger.info(
                    "%s redirected to %s; session may have expired",
                    endpoint,
                    response.headers.get("location", "?"),
                )
            return ProbeAttempt(endpoint, status, AttemptOutcome.HTTP_ERROR), None

        try:
            raw = self._extractor.extract(endpoint, response.text, content_type)
        except Exception:
            logger.warning("Extraction failed for %s, skipping", endpoint, exc_info=True)
            return ProbeAttempt(endpoint, status, AttemptOutcome.EMPTY), None
        return ProbeAttempt(endpoint, status, AttemptOutcome.EMPTY), raw
