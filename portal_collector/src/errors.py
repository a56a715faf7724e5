"""
Exception taxonomy for the collector.

Only conditions that must cross a component boundary are modelled as
exceptions. Extraction and classification problems are never raised; they
are logged and treated as "this endpoint produced nothing".

CHANGELOG:
- 2026-10-06: Initial creation
"""

from __future__ import annotations


class PortalError(Exception):
    """Base class for all collector errors."""


class AuthMissingError(PortalError):
    """No usable session credential could be loaded.

    Raised by the session store when the cookie file is missing, empty or
    unreadable. Requires operator action (a fresh cookie export or working
    login credentials); it is not retried within an acquisition attempt.
    """

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class AuthRejectedError(PortalError):
    """The portal answered 401/403 for an authenticated request.

    Args:
        endpoint: Path of the request that was rejected.
        status_code: The HTTP status returned by the portal.
    """

    def __init__(self, endpoint: str, status_code: int) -> None:
        super().__init__(f"Portal rejected session on {endpoint} (HTTP {status_code})")
        self.endpoint = endpoint
        self.status_code = status_code


class LoginError(PortalError):
    """The automatic login flow did not yield an authenticated session."""


class AcquisitionBusyError(PortalError):
    """An acquisition was requested while another one is still in flight."""


class HistoryUnavailableError(PortalError):
    """The plant list or a measurement series could not be retrieved."""
