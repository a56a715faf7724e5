"""
Pydantic models shared by every stage of the acquisition pipeline.

Data flows one way through these types:

    SessionCredential -> RawExtractionRecord -> MeasurementRecord
                                             -> AcquisitionOutcome

plus the historical ``ProductionSeries`` and the widget-facing
``DisplayState``.

``MeasurementRecord`` serialises with camelCase aliases (``currentPower``,
``dailyEnergy`` ...) because that is what the dashboard widget reads.

CHANGELOG:
- 2026-10-14: Add DisplayState for last-known-good rendering
- 2026-10-09: Add ProductionSeries for historical data
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionCredential(BaseModel):
    """Opaque session material (a Cookie header value) plus its load time.

    Attributes:
        value: The cookie string sent verbatim in the ``Cookie`` header.
        loaded_at: Monotonic clock reading taken when the value was loaded.
        source: Where the value came from (file path or ``"login"``).
    """

    model_config = ConfigDict(frozen=True)

    value: str = Field(min_length=1, repr=False)
    loaded_at: float
    source: str

    def is_fresh(self, now: float, ttl_s: float) -> bool:
        """Return True while the credential is younger than *ttl_s*."""
        return now - self.loaded_at < ttl_s


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class ExtractionMethod(StrEnum):
    """How a raw value was found in a portal response."""

    JSON = "json"
    HTML_TEXT = "html-text"
    HTML_TABLE = "html-table"
    HTML_SCRIPT = "html-script"


METADATA_KEYS: frozenset[str] = frozenset({"_endpoint", "_timestamp", "_status"})
"""Bookkeeping keys that never count as measurements."""


class RawExtractionRecord(BaseModel):
    """Flat mapping of extraction-derived keys to numeric values.

    Attributes:
        endpoint: The endpoint path the response came from.
        values: ``{key: number}``, e.g. ``{"json.plant.power": 3120.0}``.
        methods: ``{key: ExtractionMethod}`` provenance for every value.
    """

    endpoint: str
    values: dict[str, float] = Field(default_factory=dict)
    methods: dict[str, ExtractionMethod] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.values


# ---------------------------------------------------------------------------
# Canonical measurement record
# ---------------------------------------------------------------------------


CANONICAL_FIELDS: tuple[str, ...] = (
    "current_power",
    "daily_energy",
    "monthly_energy",
    "yearly_energy",
    "total_energy",
    "voltage",
    "current",
    "efficiency",
)
"""Field names of MeasurementRecord that hold measurements."""


class ProvenanceFlag(StrEnum):
    """Marks values that were derived rather than read from the portal."""

    ESTIMATED_FROM_VI = "estimatedFromVI"
    ESTIMATED_DAILY = "estimatedDaily"
    DEGRADED = "degraded"


class MeasurementRecord(BaseModel):
    """Normalized, immutable snapshot of one acquisition.

    Power is in W, energies in kWh, voltage in V, current in A and
    efficiency in percent. Every populated measurement is non-negative.

    Attributes:
        current_power: Live production in watts.
        daily_energy: Energy produced today in kWh.
        monthly_energy: Energy produced this month in kWh.
        yearly_energy: Energy produced this year in kWh.
        total_energy: Lifetime energy in kWh.
        voltage: System voltage in volts.
        current: System current in amperes.
        efficiency: Efficiency (or other percentage reading) in percent.
        extras: Numeric raw fields that did not map onto a canonical field.
        endpoint: Endpoint the data came from.
        timestamp: When the record was built.
        status: ``"success"`` or ``"degraded"`` (last-resort fallback).
        flags: Provenance flags such as ``estimatedFromVI``.
        estimated_fields: Names of canonical fields that were synthesized.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    current_power: float | None = Field(default=None, ge=0)
    daily_energy: float | None = Field(default=None, ge=0)
    monthly_energy: float | None = Field(default=None, ge=0)
    yearly_energy: float | None = Field(default=None, ge=0)
    total_energy: float | None = Field(default=None, ge=0)
    voltage: float | None = Field(default=None, ge=0)
    current: float | None = Field(default=None, ge=0)
    efficiency: float | None = Field(default=None, ge=0)
    extras: dict[str, float] = Field(default_factory=dict)
    endpoint: str
    timestamp: datetime
    status: Literal["success", "degraded"] = "success"
    flags: tuple[ProvenanceFlag, ...] = ()
    estimated_fields: tuple[str, ...] = ()

    def populated_fields(self) -> dict[str, float]:
        """Return every canonical field that holds a value."""
        return {
            name: getattr(self, name)
            for name in CANONICAL_FIELDS
            if getattr(self, name) is not None
        }

    def measured_fields(self) -> dict[str, float]:
        """Return populated canonical fields that were not estimated."""
        return {
            name: value
            for name, value in self.populated_fields().items()
            if name not in self.estimated_fields
        }

    def as_raw_values(self) -> dict[str, float]:
        """Flatten the record back into a raw ``{key: value}`` mapping.

        Canonical fields use their camelCase names, extras keep their raw
        keys. Feeding the result to the classifier reproduces the measured
        fields.
        """
        values = {to_camel(name): value for name, value in self.populated_fields().items()}
        values.update(self.extras)
        return values


# ---------------------------------------------------------------------------
# Acquisition outcome (exactly one per attempt)
# ---------------------------------------------------------------------------


class AcquisitionSuccess(BaseModel):
    kind: Literal["success"] = "success"
    record: MeasurementRecord


class _Failure(BaseModel):
    message: str
    hint: str | None = None


class AuthFailure(_Failure):
    """Missing or rejected credential; needs a cookie refresh."""

    kind: Literal["authentication"] = "authentication"


class NoDataFailure(_Failure):
    """Every candidate answered, none with usable data."""

    kind: Literal["no_data"] = "no_data"
    endpoints_tried: list[str] = Field(default_factory=list)


class TransientFailure(_Failure):
    """Network trouble, server errors or cancellation."""

    kind: Literal["transient"] = "transient"
    reason: str


AcquisitionFailure = Annotated[
    AuthFailure | NoDataFailure | TransientFailure,
    Field(discriminator="kind"),
]

AcquisitionOutcome = Annotated[
    AcquisitionSuccess | AuthFailure | NoDataFailure | TransientFailure,
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Historical production
# ---------------------------------------------------------------------------

HistoryPeriod = Literal["day", "month", "year", "total"]


class SeriesPoint(BaseModel):
    timestamp: datetime
    value: float


class ProductionSeries(BaseModel):
    """Short time series for one period, as returned by the portal.

    Attributes:
        period: ``day``, ``month``, ``year`` or ``total``.
        plant_id: Portal identifier of the plant the series belongs to.
        resolution: Resolution requested from the portal (e.g. ``15min``).
        points: Time-ordered ``(timestamp, value)`` points.
    """

    period: HistoryPeriod
    plant_id: str
    resolution: str
    points: list[SeriesPoint] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Widget display state
# ---------------------------------------------------------------------------


class DisplayState(BaseModel):
    """What the widget should render right now.

    The last good record keeps being shown while failures persist; the
    widget only blocks rendering when it has never received a record.
    """

    record: MeasurementRecord | None = None
    last_success_ts: datetime | None = None
    error: AcquisitionFailure | None = None
    retry_count: int = 0
    max_retries: int = 0
    history: dict[str, ProductionSeries] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def blocked(self) -> bool:
        return self.record is None and self.error is not None
