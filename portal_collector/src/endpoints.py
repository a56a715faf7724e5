"""
Candidate endpoint lists for the Ennexos Sunny Portal.

The portal publishes no API, so the collector keeps several ordered lists of
paths that have returned production data at one time or another. Each list
is a *profile*; list order is probe priority. Profiles are plain data so a
new portal revision only needs a new entry here (or ``API_ENDPOINTS`` in the
environment), never a code change.

CHANGELOG:
- 2026-10-08: Collapse dashboard/widget/powerflow lists into named profiles
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

DEFAULT_PROFILE = "ennexos"

ENDPOINT_PROFILES: dict[str, tuple[str, ...]] = {
    # Full dashboard probe list, structured APIs first.
    "ennexos": (
        "/api/v1/plants",
        "/api/v1/navigation",
        "/api/dt/plants/Plant:1/components/all/system-time/v2/properties",
        "/api/v1/powerflow/livedata",
        "/dashboard/data",
        "/live/data",
    ),
    # Shorter list shipped with the widget defaults.
    "widget": (
        "/api/v1/plants",
        "/api/v1/navigation",
        "/api/dt/plants/Plant:1/components/all/system-time/v2/properties",
        "/dashboard/data",
    ),
    # Live power-flow endpoints only.
    "powerflow": (
        "/api/v1/powerflow/livedata",
        "/api/powerflow/livedata",
        "/dashboard/livedata",
        "/api/dashboard/current",
        "/live",
    ),
}

DEFAULT_ENDPOINTS: tuple[str, ...] = ENDPOINT_PROFILES[DEFAULT_PROFILE]


def resolve_endpoints(
    explicit: list[str] | tuple[str, ...] | None,
    profile: str = DEFAULT_PROFILE,
) -> list[str]:
    """Return the ordered candidate list to probe.

    An explicit, non-empty list always wins. Otherwise the named profile is
    used. Blank entries are dropped and every path gets a leading slash.

    Raises:
        KeyError: If *profile* is not a known profile name.
    """
    source = explicit if explicit else ENDPOINT_PROFILES[profile]
    endpoints: list[str] = []
    for path in source:
        path = path.strip()
        if not path:
            continue
        if not path.startswith("/"):
            path = "/" + path
        endpoints.append(path)
    return endpoints
