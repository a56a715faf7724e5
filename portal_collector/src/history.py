"""
Historical production series from the portal's plant measurements API.

Linear pipeline, each stage short-circuiting on failure:

    plants -> plant id -> measurements -> ProductionSeries

- GET ``/api/v1/plants``: first plant's ``id`` | ``plantId`` | ``oid``.
- GET ``/api/v1/plants/{id}/measurements?from=..&to=..&resolution=..``.

Period to range/resolution:

    day   -> that day,                       15min
    month -> that calendar month,            day
    year  -> that calendar year,             month
    total -> ten years back to end of year,  year

Each ``measurements[]`` item with a ``timestamp`` and a ``power`` or
``energy`` value becomes one point.

CHANGELOG:
- 2026-10-09: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta
from typing import Any

import httpx
from pydantic import ValidationError

from portal_collector.src.errors import AuthRejectedError, HistoryUnavailableError
from portal_collector.src.models import (
    HistoryPeriod,
    ProductionSeries,
    SeriesPoint,
    SessionCredential,
)
from portal_collector.src.prober import DEFAULT_TIMEOUT_S, USER_AGENT

logger = logging.getLogger(__name__)

PLANTS_PATH = "/api/v1/plants"
MEASUREMENTS_PATH = "/api/v1/plants/{plant_id}/measurements"

RESOLUTIONS: dict[str, str] = {
    "day": "15min",
    "month": "day",
    "year": "month",
    "total": "year",
}

TOTAL_YEARS_BACK: int = 10


def _midnight(d: date) -> datetime:
    return datetime(d.year, d.month, d.day, tzinfo=UTC)


def period_range(period: HistoryPeriod, on: date) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` range covering *period* around *on*."""
    if period == "day":
        start = _midnight(on)
        return start, start + timedelta(days=1)
    if period == "month":
        start = datetime(on.year, on.month, 1, tzinfo=UTC)
        if on.month == 12:
            return start, datetime(on.year + 1, 1, 1, tzinfo=UTC)
        return start, datetime(on.year, on.month + 1, 1, tzinfo=UTC)
    if period == "year":
        return datetime(on.year, 1, 1, tzinfo=UTC), datetime(on.year + 1, 1, 1, tzinfo=UTC)
    if period == "total":
        return (
            datetime(on.year - TOTAL_YEARS_BACK, 1, 1, tzinfo=UTC),
            datetime(on.year + 1, 1, 1, tzinfo=UTC),
        )
    raise ValueError(f"Unknown history period: {period!r}")


def _iso(ts: datetime) -> str:
    return ts.isoformat().replace("+00:00", "Z")


def first_plant_id(payload: Any) -> str:
    """Pick the first plant's identifier from a plants response.

    Raises:
        HistoryUnavailableError: If the response holds no usable plant.
    """
    plants = payload
    if isinstance(payload, dict):
        plants = payload.get("plants") or payload.get("items") or payload.get("data")
    if not isinstance(plants, list) or not plants or not isinstance(plants[0], dict):
        raise HistoryUnavailableError("No plants found")
    first = plants[0]
    for key in ("id", "plantId", "oid"):
        if first.get(key) not in (None, ""):
            return str(first[key])
    raise HistoryUnavailableError("First plant carries no id/plantId/oid")


def parse_measurements(payload: Any) -> list[SeriesPoint]:
    """Turn a measurements response into time-ordered points."""
    if not isinstance(payload, dict) or not isinstance(payload.get("measurements"), list):
        logger.info("No measurements data found")
        return []
    points: list[SeriesPoint] = []
    for item in payload["measurements"]:
        if not isinstance(item, dict) or not item.get("timestamp"):
            continue
        value = item.get("power")
        if value is None:
            value = item.get("energy")
        if value is None:
            continue
        try:
            points.append(SeriesPoint(timestamp=item["timestamp"], value=value))
        except ValidationError:
            logger.debug("Skipping malformed measurement %r", item)
    points.sort(key=lambda p: p.timestamp)
    return points


class HistoryClient:
    """Fetches historical production for the first plant of the account.

    The plant id is looked up once and reused.

    Args:
        client: Shared ``httpx.AsyncClient``.
        base_url: Portal origin.
        timeout_s: Per-request timeout.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._plant_id: str | None = None

    @property
    def plant_id(self) -> str | None:
        return self._plant_id

    async def fetch_history(
        self,
        period: HistoryPeriod,
        credential: SessionCredential,
        *,
        on: date | None = None,
    ) -> ProductionSeries:
        """Fetch the production series for *period*.

        Args:
            period: ``day``, ``month``, ``year`` or ``total``.
            credential: Session cookie to authenticate with.
            on: Reference date; defaults to today (UTC).

        Raises:
            AuthRejectedError: On 401/403.
            HistoryUnavailableError: On any other failure.
        """
        if period not in RESOLUTIONS:
            raise HistoryUnavailableError(f"Unknown history period: {period!r}")
        on = on or datetime.now(tz=UTC).date()

        if self._plant_id is None:
            self._plant_id = first_plant_id(await self._get_json(PLANTS_PATH, credential))
            logger.info("Found plant ID: %s", self._plant_id)

        start, end = period_range(period, on)
        payload = await self._get_json(
            MEASUREMENTS_PATH.format(plant_id=self._plant_id),
            credential,
            params={"from": _iso(start), "to": _iso(end), "resolution": RESOLUTIONS[period]},
        )
        points = parse_measurements(payload)
        logger.info("Processed %d data points for %s", len(points), period)
        return ProductionSeries(
            period=period,
            plant_id=self._plant_id,
            resolution=RESOLUTIONS[period],
            points=points,
        )

    async def _get_json(
        self,
        path: str,
        credential: SessionCredential,
        *,
        params: dict[str, str] | None = None,
    ) -> Any:
        headers = {
            "Cookie": credential.value,
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }
        try:
            response = await self._client.get(
                f"{self._base_url}{path}",
                params=params,
                headers=headers,
                timeout=self._timeout_s,
            )
        except httpx.HTTPError as exc:
            raise HistoryUnavailableError(f"Request to {path} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthRejectedError(path, response.status_code)
        if response.status_code != 200:
            raise HistoryUnavailableError(f"{path} returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise HistoryUnavailableError(f"{path} did not return JSON") from exc
