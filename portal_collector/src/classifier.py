"""
Field classifier: maps raw extracted values onto a MeasurementRecord.

Each raw key is reduced to its *context* (the last meaningful path segment
and its parent, e.g. ``json.powerflow.pv.voltage`` -> ``pv.voltage``),
split into lower-case tokens and routed:

1. Unit tokens win: ``kw`` -> power x1000, ``w`` -> power, ``kwh`` ->
   energy, ``wh`` -> energy /1000, ``v`` -> voltage, ``a`` -> current,
   ``%`` -> efficiency. Single-letter units only count as the last token.
2. Otherwise keywords: power/watt, energy/yield/production/generation,
   voltage, efficiency, current/amp.
3. Energy goes to daily/monthly/yearly/total by period word; no period
   word means daily.

When several candidates land on one field the **maximum** wins. This is a
heuristic (the largest reading is taken to be the live one, not a partial
or stale one); it is documented, tested behaviour, not a proof.

Derived values are added only when nothing was measured, and always
flagged:

- ``estimatedFromVI``: current power = voltage x current.
- ``estimatedDaily``: daily energy = power/1000 x sun hours, monthly = x30,
  yearly = total = x365.

``classify`` is a pure function apart from the default timestamp.

CHANGELOG:
- 2026-10-12: Use path context instead of the full key for keyword routing
- 2026-10-08: Add estimated daily/monthly/yearly energy
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from portal_collector.src.models import (
    METADATA_KEYS,
    MeasurementRecord,
    ProvenanceFlag,
    RawExtractionRecord,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_SUN_HOURS: float = 6.0
"""Effective full-power hours per day assumed for estimated energy."""

DAYS_PER_MONTH: int = 30
DAYS_PER_YEAR: int = 365

_ENERGY_FIELDS = ("daily_energy", "monthly_energy", "yearly_energy", "total_energy")

_UNIT_RULES: dict[str, tuple[str, float]] = {
    "mw": ("power", 1_000_000.0),
    "kw": ("power", 1_000.0),
    "w": ("power", 1.0),
    "mwh": ("energy", 1_000.0),
    "kwh": ("energy", 1.0),
    "wh": ("energy", 0.001),
    "v": ("voltage", 1.0),
    "a": ("current", 1.0),
    "%": ("efficiency", 1.0),
    "pct": ("efficiency", 1.0),
    "percent": ("efficiency", 1.0),
}
"""Unit token -> (quantity, factor to W / kWh / V / A / %)."""

_SINGLE_LETTER_UNITS = frozenset({"w", "v", "a"})

_PERIOD_WORDS: tuple[tuple[str, frozenset[str]], ...] = (
    ("daily_energy", frozenset({"day", "daily", "today"})),
    ("monthly_energy", frozenset({"month", "monthly"})),
    ("yearly_energy", frozenset({"year", "yearly", "annual"})),
    ("total_energy", frozenset({"total", "lifetime", "accumulated", "all"})),
)

_GENERIC_SEGMENTS = frozenset({"value", "val", "amount", "json", "script", "attr"})

_CAMEL = re.compile(r"([a-z0-9])([A-Z])")
_SPLIT = re.compile(r"[\s._\-/:()\[\]]+")

# ---------------------------------------------------------------------------
# Key analysis
# ---------------------------------------------------------------------------


def tokenize(text: str) -> list[str]:
    """Split a key into lower-case tokens (``"totalKWh"`` -> total, kwh)."""
    tokens: list[str] = []
    for part in _SPLIT.split(_CAMEL.sub(r"\1_\2", text).lower()):
        if not part:
            continue
        if part.endswith("%") and part != "%":
            tokens.extend((part[:-1], "%"))
        else:
            tokens.append(part)
    return tokens


def key_context(key: str) -> str:
    """Return the part of a dotted key that describes the value.

    That is the last segment that is not a generic wrapper (``value``,
    array index ...) together with its parent segment. A unit suffix on a
    generic last segment (``value_kw``) is carried over.
    """
    segments = [s for s in key.split(".") if s]
    if not segments:
        return key
    kept: list[str] = []
    unit_suffix = ""
    for idx, segment in enumerate(segments):
        tokens = tokenize(segment)
        if not tokens:
            continue
        if tokens[0] in _GENERIC_SEGMENTS or tokens[0].isdigit():
            if idx == len(segments) - 1 and len(tokens) > 1 and tokens[-1] in _UNIT_RULES:
                unit_suffix = "_" + tokens[-1]
            continue
        kept.append(segment)
    if not kept:
        return segments[-1]
    return ".".join(kept[-2:]) + unit_suffix


def _unit_of(tokens: list[str]) -> str | None:
    if tokens and tokens[-1] in _UNIT_RULES:
        return tokens[-1]
    for token in reversed(tokens):
        if token in _UNIT_RULES and token not in _SINGLE_LETTER_UNITS:
            return token
    # Units glued to a word, e.g. "pvkw" or "yieldkwh".
    for token in reversed(tokens):
        for unit in ("mwh", "kwh", "kw"):
            if token.endswith(unit) and token != unit:
                return unit
    return None


def _quantity_by_keyword(context: str) -> str | None:
    lowered = context.lower()
    tokens = set(tokenize(context))
    if "power" in lowered or "watt" in lowered:
        return "power"
    if any(word in lowered for word in ("energy", "yield", "production", "generation")):
        return "energy"
    if "voltage" in lowered or tokens & {"volt", "volts"}:
        return "voltage"
    if "efficiency" in lowered or "eff" in tokens:
        return "efficiency"
    if "current" in lowered or tokens & {"amp", "amps", "ampere", "amperes"}:
        return "current"
    return None


def _energy_field(tokens: list[str]) -> str:
    found = set(tokens)
    for field_name, words in _PERIOD_WORDS:
        if found & words:
            return field_name
    return "daily_energy"


def route_key(key: str) -> tuple[str, float] | None:
    """Return ``(canonical_field, factor)`` for *key*, or ``None``.

    >>> route_key("value_3_kwh")
    ('daily_energy', 1.0)
    >>> route_key("json.plant.pvPowerKw")
    ('current_power', 1000.0)
    """
    context = key_context(key)
    tokens = tokenize(context)
    unit = _unit_of(tokens)
    if unit is not None:
        quantity, factor = _UNIT_RULES[unit]
    else:
        quantity, factor = _quantity_by_keyword(context), 1.0
        if quantity is None:
            return None

    if quantity == "power":
        return "current_power", factor
    if quantity == "energy":
        return _energy_field(tokens), factor
    return quantity, factor


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def classify(
    raw: RawExtractionRecord | Mapping[str, Any],
    *,
    endpoint: str | None = None,
    ts: datetime | None = None,
    sun_hours: float = DEFAULT_SUN_HOURS,
    degraded: bool = False,
) -> MeasurementRecord:
    """Build a canonical MeasurementRecord from raw extracted values.

    Args:
        raw: A RawExtractionRecord, or a plain mapping such as a previous
            record's ``as_raw_values()`` (``_``-prefixed metadata keys and
            non-numeric values are ignored).
        endpoint: Provenance endpoint; defaults to the record's endpoint or
            the mapping's ``_endpoint``.
        ts: Record timestamp; defaults to now (UTC).
        sun_hours: Effective sun hours for estimated daily energy.
        degraded: Mark the record as a last-resort fallback.

    Returns:
        A new, immutable MeasurementRecord.
    """
    if isinstance(raw, RawExtractionRecord):
        values: Mapping[str, Any] = raw.values
        endpoint = endpoint or raw.endpoint
    else:
        values = raw
        endpoint = endpoint or str(raw.get("_endpoint", "unknown"))

    candidates: dict[str, list[float]] = {}
    extras: dict[str, float] = {}

    for key, value in values.items():
        if key in METADATA_KEYS or key.startswith("_") or not _is_number(value):
            continue
        route = route_key(key)
        if route is None:
            extras[key] = float(value)
            continue
        field_name, factor = route
        scaled = float(value) * factor
        if scaled < 0:
            logger.debug("Dropping negative %s candidate %s=%s", field_name, key, value)
            extras[key] = float(value)
            continue
        candidates.setdefault(field_name, []).append(scaled)

    fields: dict[str, float] = {name: max(vals) for name, vals in candidates.items()}
    flags: list[ProvenanceFlag] = []
    estimated: list[str] = []

    if "current_power" not in fields and "voltage" in fields and "current" in fields:
        fields["current_power"] = fields["voltage"] * fields["current"]
        flags.append(ProvenanceFlag.ESTIMATED_FROM_VI)
        estimated.append("current_power")

    has_energy = any(name in candidates for name in _ENERGY_FIELDS)
    if not has_energy and fields.get("current_power", 0.0) > 0:
        daily = (fields["current_power"] / 1000) * sun_hours
        fields["daily_energy"] = daily
        fields["monthly_energy"] = daily * DAYS_PER_MONTH
        fields["yearly_energy"] = daily * DAYS_PER_YEAR
        fields["total_energy"] = daily * DAYS_PER_YEAR
        flags.append(ProvenanceFlag.ESTIMATED_DAILY)
        estimated.extend(_ENERGY_FIELDS)

    if degraded:
        flags.append(ProvenanceFlag.DEGRADED)

    return MeasurementRecord(
        **fields,
        extras=extras,
        endpoint=endpoint,
        timestamp=ts or datetime.now(tz=UTC),
        status="degraded" if degraded else "success",
        flags=tuple(flags),
        estimated_fields=tuple(estimated),
    )


def is_meaningful(data: MeasurementRecord | RawExtractionRecord | Mapping[str, Any] | None) -> bool:
    """Return True if *data* carries at least one real measurement.

    - MeasurementRecord: positive power/voltage/current/efficiency, any
      populated energy field, or at least one surviving raw extra.
    - RawExtractionRecord: at least one extracted value.
    - Mapping: at least one numeric value outside the ``_endpoint``,
      ``_timestamp``, ``_status`` bookkeeping keys.
    """
    if data is None:
        return False
    if isinstance(data, MeasurementRecord):
        positive = ("current_power", "voltage", "current", "efficiency")
        if any((getattr(data, name) or 0) > 0 for name in positive):
            return True
        if any(getattr(data, name) is not None for name in _ENERGY_FIELDS):
            return True
        return bool(data.extras)
    if isinstance(data, RawExtractionRecord):
        return not data.is_empty()
    return any(
        key not in METADATA_KEYS and _is_number(value) for key, value in data.items()
    )
