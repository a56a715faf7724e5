"""
Session store: cached, TTL-bounded access to the portal session cookie.

The durable source is a text file holding the ``Cookie`` header value
exported from a logged-in browser (or written by the automatic login
flow). The value is cached in memory and reused while it is younger than
the TTL; after that the file is read again. A 401/403 anywhere downstream
invalidates the cache so the next attempt rereads the file.

Operations:
- get_credential(): cached or freshly loaded SessionCredential.
- invalidate(): drop the cached credential.
- save(cookie): persist a new cookie string and cache it.

CHANGELOG:
- 2026-10-09: Add save() for the automatic login flow
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

from portal_collector.src.errors import AuthMissingError
from portal_collector.src.models import SessionCredential

logger = logging.getLogger(__name__)

DEFAULT_TTL_S: float = 300.0
"""Cookie cache lifetime in seconds (5 minutes)."""

COOKIE_HINT = (
    "Export the Cookie header of a logged-in Sunny Portal browser session "
    "into the cookie file, or set PORTAL_USERNAME/PORTAL_PASSWORD."
)


def _parse_cookie_text(text: str) -> str:
    """Turn the cookie file contents into a single Cookie header value.

    Accepts either one ``a=1; b=2`` line or one cookie per line. Lines
    starting with ``#`` are comments.
    """
    parts = [
        line.strip().rstrip(";")
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]
    return "; ".join(parts)


class SessionStore:
    """Holds the session credential and reloads it from disk when stale.

    Args:
        cookie_file: Path of the cookie file. Accepts ``str`` or ``Path``.
        ttl_s: Seconds a loaded credential is reused before rereading.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        cookie_file: str | Path,
        *,
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cookie_file = Path(cookie_file)
        self._ttl_s = ttl_s
        self._clock = clock
        self._cached: SessionCredential | None = None

    @property
    def cached(self) -> SessionCredential | None:
        return self._cached

    @property
    def ttl_s(self) -> float:
        return self._ttl_s

    def get_credential(self) -> SessionCredential:
        """Return a credential that is within its TTL.

        Raises:
            AuthMissingError: If the cache is stale or empty and the cookie
                file is missing, unreadable or empty.
        """
        now = self._clock()
        if self._cached is not None and self._cached.is_fresh(now, self._ttl_s):
            return self._cached
        return self._load(now)

    def invalidate(self) -> None:
        """Discard the cached credential (after a 401/403)."""
        if self._cached is not None:
            logger.info("Invalidating cached session credential")
        self._cached = None

    def save(self, cookie: str) -> SessionCredential:
        """Persist *cookie* to the cookie file and cache it.

        The file is written next to its final location and then renamed so
        a concurrent reader never sees a half-written cookie.
        """
        cookie = cookie.strip()
        if not cookie:
            raise AuthMissingError("Refusing to save an empty session cookie", hint=COOKIE_HINT)
        self.cookie_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.cookie_file.with_name(self.cookie_file.name + ".tmp")
        tmp.write_text(cookie + "\n", encoding="utf-8")
        os.replace(tmp, self.cookie_file)
        self._cached = SessionCredential(
            value=cookie, loaded_at=self._clock(), source=str(self.cookie_file)
        )
        logger.info("Saved new session cookie to %s", self.cookie_file)
        return self._cached

    def _load(self, now: float) -> SessionCredential:
        self._cached = None
        try:
            text = self.cookie_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.error("Cookie file not found: %s", self.cookie_file)
            raise AuthMissingError(
                f"Cookie file not found: {self.cookie_file}", hint=COOKIE_HINT
            ) from None
        except OSError as exc:
            logger.error("Cookie file unreadable: %s (%s)", self.cookie_file, exc)
            raise AuthMissingError(
                f"Cookie file unreadable: {self.cookie_file}", hint=COOKIE_HINT
            ) from exc

        cookie = _parse_cookie_text(text)
        if not cookie:
            logger.error("Cookie file is empty: %s", self.cookie_file)
            raise AuthMissingError(
                f"Cookie file is empty: {self.cookie_file}", hint=COOKIE_HINT
            )

        self._cached = SessionCredential(
            value=cookie, loaded_at=now, source=str(self.cookie_file)
        )
        logger.info("Session cookie loaded from %s", self.cookie_file)
        return self._cached
