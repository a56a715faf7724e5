"""
Acquisition orchestrator: one attempt from credential to outcome.

State machine::

    IDLE -> AWAITING_CREDENTIAL -> PROBING -> SUCCEEDED   -> IDLE
                               \\           \\-> AUTH_FAILED -> IDLE
                                \\-> AUTH_FAILED            -> IDLE
                                            \\-> EXHAUSTED  -> IDLE

Every attempt emits exactly one outcome (success, authentication, no_data
or transient). At most one attempt is in flight; a request arriving while
one is running is rejected with AcquisitionBusyError, never interleaved.

The orchestrator owns the SessionStore. A 401/403 invalidates the cached
credential; when login credentials are configured the next attempt logs in
again instead of rereading the stale cookie.

CHANGELOG:
- 2026-10-19: Pass the login client explicitly to the login step
- 2026-10-11: Cancel event, transient vs no_data exhaustion
- 2026-10-09: Automatic login when the cookie is missing or rejected
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from portal_collector.src.endpoints import DEFAULT_PROFILE, resolve_endpoints
from portal_collector.src.errors import (
    AcquisitionBusyError,
    AuthMissingError,
    AuthRejectedError,
    LoginError,
)
from portal_collector.src.models import (
    AcquisitionOutcome,
    AcquisitionSuccess,
    AuthFailure,
    NoDataFailure,
    SessionCredential,
    TransientFailure,
)
from portal_collector.src.session import COOKIE_HINT, SessionStore

if TYPE_CHECKING:
    from portal_collector.src.config import AcquisitionConfig
    from portal_collector.src.login import PortalLogin
    from portal_collector.src.prober import EndpointProber

logger = logging.getLogger(__name__)

AUTH_REJECTED_HINT = "Session expired or rejected. " + COOKIE_HINT

NO_DATA_HINT = (
    "The portal answered but no endpoint returned production data. "
    "The portal layout may have changed; try another ENDPOINT_PROFILE or "
    "set API_ENDPOINTS."
)


class AcquisitionState(StrEnum):
    IDLE = "idle"
    AWAITING_CREDENTIAL = "awaiting_credential"
    PROBING = "probing"
    SUCCEEDED = "succeeded"
    AUTH_FAILED = "auth_failed"
    EXHAUSTED = "exhausted"


class Orchestrator:
    """Runs acquisition attempts one at a time.

    Args:
        session_store: Source of the session credential.
        prober: Endpoint prober used for the PROBING stage.
        endpoints: Default candidate list; empty/None uses *profile*.
        profile: Built-in endpoint profile name.
        login: Optional automatic login flow.
    """

    def __init__(
        self,
        session_store: SessionStore,
        prober: EndpointProber,
        *,
        endpoints: list[str] | None = None,
        profile: str = DEFAULT_PROFILE,
        login: PortalLogin | None = None,
    ) -> None:
        self._store = session_store
        self._prober = prober
        self._endpoints = list(endpoints or [])
        self._profile = profile
        self._login = login
        self._lock = asyncio.Lock()
        self._state = AcquisitionState.IDLE
        self._last_terminal: AcquisitionState | None = None
        self._relogin = False

    @property
    def state(self) -> AcquisitionState:
        return self._state

    @property
    def last_terminal_state(self) -> AcquisitionState | None:
        """Terminal state reached by the most recent attempt."""
        return self._last_terminal

    @property
    def session_store(self) -> SessionStore:
        return self._store

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request_acquisition(
        self,
        config: AcquisitionConfig,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AcquisitionOutcome:
        """Run one attempt for an inbound widget request.

        A different ``cookie_source`` replaces the session store. An empty
        ``api_endpoints`` falls back to the default list.

        Raises:
            AcquisitionBusyError: If an attempt is already in flight.
        """
        if self.busy:
            raise AcquisitionBusyError("An acquisition is already in progress")
        if Path(config.cookie_source) != self._store.cookie_file:
            logger.info("Switching cookie source to %s", config.cookie_source)
            self._store = SessionStore(config.cookie_source, ttl_s=self._store.ttl_s)
        return await self.acquire(endpoints=config.api_endpoints, cancel_event=cancel_event)

    async def acquire(
        self,
        *,
        endpoints: list[str] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AcquisitionOutcome:
        """Run one acquisition attempt and return its outcome.

        Args:
            endpoints: Candidate list for this attempt only.
            cancel_event: Checked between endpoint probes.

        Raises:
            AcquisitionBusyError: If an attempt is already in flight.
        """
        if self.busy:
            raise AcquisitionBusyError("An acquisition is already in progress")
        async with self._lock:
            try:
                outcome = await self._attempt(endpoints, cancel_event)
            finally:
                self._last_terminal = self._state
                self._set_state(AcquisitionState.IDLE)
        logger.info("Acquisition finished: %s", outcome.kind)
        return outcome

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _set_state(self, state: AcquisitionState) -> None:
        logger.debug("Acquisition state %s -> %s", self._state, state)
        self._state = state

    async def _attempt(
        self,
        endpoints: list[str] | None,
        cancel_event: asyncio.Event | None,
    ) -> AcquisitionOutcome:
        self._set_state(AcquisitionState.AWAITING_CREDENTIAL)
        try:
            credential = await self._credential()
        except AuthMissingError as exc:
            self._set_state(AcquisitionState.AUTH_FAILED)
            return AuthFailure(message=exc.message, hint=exc.hint)

        self._set_state(AcquisitionState.PROBING)
        candidates = resolve_endpoints(endpoints or self._endpoints, self._profile)
        try:
            result = await self._prober.probe(candidates, credential, cancel_event=cancel_event)
        except AuthRejectedError as exc:
            self._store.invalidate()
            self._relogin = self._login is not None
            self._set_state(AcquisitionState.AUTH_FAILED)
            return AuthFailure(message=str(exc), hint=AUTH_REJECTED_HINT)

        if result.record is not None:
            self._set_state(AcquisitionState.SUCCEEDED)
            return AcquisitionSuccess(record=result.record)

        self._set_state(AcquisitionState.EXHAUSTED)
        if result.cancelled:
            return TransientFailure(message="Acquisition cancelled", reason="cancelled")
        if result.all_transient:
            return TransientFailure(
                message=f"All {len(result.attempts)} endpoints failed with network or server errors",
                reason="unreachable",
                hint="Check network connectivity to the portal.",
            )
        tried = result.endpoints_tried
        return NoDataFailure(
            message=f"No solar data found on {len(tried)} endpoint(s)",
            hint=NO_DATA_HINT,
            endpoints_tried=tried,
        )

    async def _credential(self) -> SessionCredential:
        """Return a credential, logging in when allowed and needed."""
        login = self._login
        if self._relogin and login is not None:
            self._relogin = False
            return await self._login_and_save(login)
        try:
            return self._store.get_credential()
        except AuthMissingError:
            if login is None:
                raise
            logger.info("No usable session cookie; attempting automatic login")
            return await self._login_and_save(login)

    async def _login_and_save(self, login: PortalLogin) -> SessionCredential:
        try:
            cookie = await login.login()
        except LoginError as exc:
            logger.warning("Automatic login failed: %s", exc)
            raise AuthMissingError(f"Automatic login failed: {exc}", hint=COOKIE_HINT) from exc
        return self._store.save(cookie)
