"""
Automatic login against the Sunny Portal / SMA identity provider.

Flow:
1. GET ``{base}/login`` following redirects.
2. If the final URL is on another host (the SMA IdP), parse its first
   ``<form>``: action and hidden inputs. POST ``username``, ``password``,
   ``email`` and ``login`` (the IdP uses different field names across
   revisions) together with the hidden fields.
3. Otherwise post ``username``/``password`` to the portal's own form
   action (``/auth/login`` when none is found).
4. Success = landed back on the portal host, or HTTP 200 without
   error/invalid markers in the body.

The resulting cookie jar is serialised as one ``name=value; ...`` string,
ready to be stored by SessionStore.save().

CHANGELOG:
- 2026-10-09: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from portal_collector.src.errors import LoginError
from portal_collector.src.prober import DEFAULT_TIMEOUT_S, USER_AGENT

logger = logging.getLogger(__name__)

_PAGE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

_FAILURE_MARKERS = ("error", "invalid")


def parse_login_form(html: str) -> tuple[str | None, dict[str, str]]:
    """Return ``(action, hidden_fields)`` of the first form in *html*."""
    soup = BeautifulSoup(html, "html.parser")
    form = soup.find("form")
    scope = form if form is not None else soup
    action = form.get("action") if form is not None else None
    hidden: dict[str, str] = {}
    for field in scope.find_all("input", attrs={"type": "hidden"}):
        name = field.get("name")
        if name:
            hidden[name] = field.get("value", "")
    return (action or None), hidden


class PortalLogin:
    """Logs in with username/password and returns a Cookie header value.

    Args:
        base_url: Portal origin.
        username: SMA account name (e-mail).
        password: SMA account password.
        timeout_s: Per-request timeout.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._portal_host = httpx.URL(self._base_url).host
        self._username = username
        self._password = password
        self._timeout_s = timeout_s
        self._transport = transport

    async def login(self) -> str:
        """Run the login flow.

        Returns:
            The session cookies as a single ``Cookie`` header value.

        Raises:
            LoginError: On network failure, rejected credentials or when
                the flow ends without any session cookie.
        """
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self._timeout_s,
            headers=_PAGE_HEADERS,
            transport=self._transport,
        ) as client:
            try:
                landing = await client.get(f"{self._base_url}/login")
                logger.info(
                    "Login page status=%d, final URL=%s", landing.status_code, landing.url
                )
                if landing.url.host != self._portal_host:
                    response = await self._submit_idp_form(client, landing)
                else:
                    response = await self._submit_portal_form(client, landing)
            except httpx.HTTPError as exc:
                raise LoginError(f"Login request failed: {exc}") from exc

            self._check_response(response)
            cookie = "; ".join(f"{c.name}={c.value}" for c in client.cookies.jar)

        if not cookie:
            raise LoginError("Login finished without any session cookie")
        logger.info("Automatic login succeeded")
        return cookie

    async def _submit_idp_form(
        self, client: httpx.AsyncClient, landing: httpx.Response
    ) -> httpx.Response:
        logger.info("Redirected to identity provider %s", landing.url.host)
        action, hidden = parse_login_form(landing.text)
        target = urljoin(str(landing.url), action or "/login")
        form = {
            "username": self._username,
            "password": self._password,
            "email": self._username,
            "login": self._username,
            **hidden,
        }
        return await client.post(target, data=form, headers={"Referer": str(landing.url)})

    async def _submit_portal_form(
        self, client: httpx.AsyncClient, landing: httpx.Response
    ) -> httpx.Response:
        logger.info("No identity provider redirect, trying direct portal login")
        action, _ = parse_login_form(landing.text)
        target = urljoin(str(landing.url), action or "/auth/login")
        return await client.post(
            target, data={"username": self._username, "password": self._password}
        )

    def _check_response(self, response: httpx.Response) -> None:
        if response.url.host == self._portal_host and response.status_code < 400:
            return
        if response.status_code == 200:
            body = response.text.lower()
            if not any(marker in body for marker in _FAILURE_MARKERS):
                return
            raise LoginError("Login rejected: invalid credentials")
        raise LoginError(f"Login failed with HTTP {response.status_code}")
