"""
Collector configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files.

``AcquisitionConfig`` is the per-request contract a dashboard widget sends
with an acquisition request; ``CollectorSettings.acquisition_config()``
builds the same object from the environment for a request without a body.

CHANGELOG:
- 2026-10-13: Add HISTORY_PERIODS and BACKGROUND_POLLING
- 2026-10-09: Add optional PORTAL_USERNAME / PORTAL_PASSWORD for auto-login
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings

from portal_collector.src.endpoints import DEFAULT_PROFILE, ENDPOINT_PROFILES

_HISTORY_PERIODS = ("day", "month", "year", "total")


class AcquisitionConfig(BaseModel):
    """Inbound acquisition request as sent by the dashboard widget.

    Field names are accepted in camelCase (``cookieSource``,
    ``apiEndpoints`` ...) as well as snake_case.

    Attributes:
        cookie_source: Path of the file holding the session cookie string.
        api_endpoints: Ordered candidate endpoints. ``None`` or empty means
            "use the built-in default list".
        update_interval_ms: Regular refresh interval.
        retry_delay_ms: Backoff floor after a transient failure.
        max_retries: Consecutive transient failures retried with backoff.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cookie_source: str = "cookies.txt"
    api_endpoints: list[str] | None = None
    update_interval_ms: int = Field(default=1_800_000, ge=1_000)
    retry_delay_ms: int = Field(default=60_000, ge=0)
    max_retries: int = Field(default=5, ge=0)


class CollectorSettings(BaseSettings):
    """Collector daemon configuration.

    All values are loaded from environment variables. Every variable has a
    default so a bare ``COOKIE_FILE`` is enough to start.

    Attributes:
        portal_base_url: Portal origin (must be HTTPS).
        cookie_file: File containing the exported session cookie string.
        api_endpoints: Explicit candidate list; empty means use the profile.
        endpoint_profile: Name of the built-in candidate list.
        update_interval_ms: Regular refresh interval (min 60s).
        retry_delay_ms: Backoff floor after transient failures.
        max_retry_delay_ms: Backoff ceiling.
        max_retries: Transient failures retried with backoff before falling
            back to the regular interval.
        request_timeout_s: Per-request timeout.
        inter_request_delay_ms: Pause between two endpoint probes.
        credential_ttl_s: How long a loaded cookie is reused before the
            file is read again.
        allow_degraded: Return the last non-empty extraction when no
            endpoint produced a meaningful record.
        max_json_depth: Depth bound for the JSON walker.
        sun_hours: Effective sun hours used for estimated daily energy.
        portal_username: Optional login for automatic session refresh.
        portal_password: Optional password for automatic session refresh.
        status_path: Where the widget status JSON is written.
        history_periods: Historical series fetched after each success.
        background_polling: Whether the API process runs the poll loop.
    """

    portal_base_url: str = "https://ennexos.sunnyportal.com"
    cookie_file: str = "cookies.txt"
    api_endpoints: list[str] = Field(default_factory=list)
    endpoint_profile: str = DEFAULT_PROFILE
    update_interval_ms: int = 1_800_000
    retry_delay_ms: int = 60_000
    max_retry_delay_ms: int = 300_000
    max_retries: int = 5
    request_timeout_s: float = 15.0
    inter_request_delay_ms: int = 500
    credential_ttl_s: float = 300.0
    allow_degraded: bool = True
    max_json_depth: int = 5
    sun_hours: float = 6.0
    portal_username: str = ""
    portal_password: str = ""
    status_path: str = "/data/status.json"
    history_periods: list[str] = Field(default_factory=list)
    background_polling: bool = True

    @field_validator("portal_base_url")
    @classmethod
    def portal_base_url_must_be_https(cls, v: str) -> str:
        """Validate that the portal URL uses HTTPS; the session cookie is a secret."""
        if not v.lower().startswith("https://"):
            raise ValueError(f"PORTAL_BASE_URL must use HTTPS (got: '{v[:30]}')")
        return v.rstrip("/")

    @field_validator("endpoint_profile")
    @classmethod
    def endpoint_profile_must_exist(cls, v: str) -> str:
        """Validate the profile name against the built-in profiles."""
        if v not in ENDPOINT_PROFILES:
            known = ", ".join(sorted(ENDPOINT_PROFILES))
            raise ValueError(f"ENDPOINT_PROFILE must be one of: {known}")
        return v

    @field_validator("update_interval_ms")
    @classmethod
    def update_interval_must_not_hammer_portal(cls, v: int) -> int:
        """Refreshing more than once a minute gets sessions flagged by the portal."""
        if v < 60_000:
            raise ValueError("UPDATE_INTERVAL_MS must be >= 60000")
        return v

    @field_validator("retry_delay_ms")
    @classmethod
    def retry_delay_must_be_valid(cls, v: int) -> int:
        if v < 1_000:
            raise ValueError("RETRY_DELAY_MS must be >= 1000")
        return v

    @field_validator("max_retries", "inter_request_delay_ms")
    @classmethod
    def must_be_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value must be >= 0")
        return v

    @field_validator("request_timeout_s", "credential_ttl_s", "sun_hours")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("value must be > 0")
        return v

    @field_validator("max_json_depth")
    @classmethod
    def max_json_depth_must_be_valid(cls, v: int) -> int:
        if v < 1 or v > 20:
            raise ValueError("MAX_JSON_DEPTH must be between 1 and 20")
        return v

    @field_validator("history_periods")
    @classmethod
    def history_periods_must_be_known(cls, v: list[str]) -> list[str]:
        unknown = [p for p in v if p not in _HISTORY_PERIODS]
        if unknown:
            raise ValueError(
                f"HISTORY_PERIODS contains unknown period(s) {unknown}; "
                f"allowed: {', '.join(_HISTORY_PERIODS)}"
            )
        return v

    @model_validator(mode="after")
    def _backoff_bounds_ordered(self) -> "CollectorSettings":
        """Validate that the backoff ceiling is not below the floor."""
        if self.max_retry_delay_ms < self.retry_delay_ms:
            raise ValueError("MAX_RETRY_DELAY_MS must be >= RETRY_DELAY_MS")
        return self

    @property
    def login_enabled(self) -> bool:
        return bool(self.portal_username and self.portal_password)

    def acquisition_config(self) -> AcquisitionConfig:
        """Build the per-request contract object from these settings."""
        return AcquisitionConfig(
            cookie_source=self.cookie_file,
            api_endpoints=list(self.api_endpoints) or None,
            update_interval_ms=self.update_interval_ms,
            retry_delay_ms=self.retry_delay_ms,
            max_retries=self.max_retries,
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
