"""
Response extractor: turns one portal response into a RawExtractionRecord.

The portal answers with whatever its current front end happens to use, so
the response shape is decided once, from the content type (with a sniff of
the body when the header is missing or generic), and then dispatched to
one of the variants:

- **JSON**: depth-bounded walk of the object graph collecting numeric
  leaves whose key matches a solar keyword.
- **HTML**: the body is tried as JSON first (mislabelled responses), then
  embedded script objects and ``data-*`` attributes, then ``<table>``
  cells, and finally free text. Text matches supplement the structured
  matches, they never replace them.
- **TEXT**: plain text scanned with the unit-anchored pattern.

Every variant only ever produces ``{key: float}`` plus provenance; it never
decides what a value *means* (that is the classifier's job). Parse errors
are logged at DEBUG and the variant contributes nothing.

CHANGELOG:
- 2026-10-19: Markup the HTML parser rejects is scanned as plain text
- 2026-10-12: Use column headers / row labels to name table values
- 2026-10-10: Pick up {"value": .., "unit": ..} leaves under relevant keys
- 2026-10-07: Add data-* attribute and table variants
- 2026-10-06: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable, Iterable
from enum import StrEnum
from typing import Any

from bs4 import BeautifulSoup

from portal_collector.src.models import ExtractionMethod, RawExtractionRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MAX_DEPTH: int = 5
"""Maximum nesting depth visited by the JSON walker."""

SOLAR_KEYWORDS: tuple[str, ...] = (
    "power",
    "energy",
    "production",
    "current",
    "voltage",
    "plant",
    "solar",
    "pv",
    "inverter",
    "generation",
    "yield",
    "kwh",
    "kw",
    "watt",
    "live",
    "total",
    "today",
    "daily",
    "monthly",
    "yearly",
    "accumulated",
    "feed",
    "efficiency",
)
"""Substrings that make a JSON key worth keeping (matched case-insensitively)."""

_GENERIC_LEAF_KEYS = frozenset({"value", "val", "amount"})
"""Leaf keys that inherit relevance from their parent key."""

_KNOWN_UNITS = frozenset({"mwh", "kwh", "wh", "mw", "kw", "w", "v", "a", "%"})

_GLOBAL_NAMES: tuple[str, ...] = (
    "data",
    "initialData",
    "__INITIAL_STATE__",
    "plantData",
    "liveData",
)
"""Script globals the portal front end has used for its bootstrap data."""

_NUMBER = r"[-+]?(?:\d{1,3}(?:[.,]\d{3})+(?:[.,]\d+)?|\d+(?:[.,]\d+)?)"
_UNIT = r"[MmKk]?[Ww][Hh]|[MmKk]?[Ww]|V|A|%"

UNIT_PATTERN = re.compile(
    rf"(?<![\w.])(?P<number>{_NUMBER})\s*(?P<unit>{_UNIT})(?![A-Za-z])"
)
"""A number immediately followed by a power/energy/voltage/current/% unit."""

_QUANTITY_PATTERN = re.compile(rf"^\s*(?P<number>{_NUMBER})\s*(?P<unit>{_UNIT})?\s*$")

_ASSIGNMENT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"window\.(?:" + "|".join(re.escape(n) for n in _GLOBAL_NAMES) + r")\s*=\s*(?=\{)"
    ),
    re.compile(
        r"\b(?:var|let|const)\s+(?:" + "|".join(re.escape(n) for n in _GLOBAL_NAMES) + r")\s*=\s*(?=\{)"
    ),
    re.compile(r"[\"']data[\"']\s*:\s*(?=\{)"),
)


class ResponseKind(StrEnum):
    """Response shapes the extractor dispatches on."""

    JSON = "json"
    HTML = "html"
    TEXT = "text"


# ---------------------------------------------------------------------------
# Number helpers
# ---------------------------------------------------------------------------


def parse_number(text: str) -> float | None:
    """Parse a number written with ``.`` or ``,`` separators.

    ``"1.234,5"`` and ``"1,234.5"`` both give 1234.5; a lone comma is a
    decimal comma unless it groups exactly three digits (``"1,234"``).
    Returns ``None`` for anything that is not a finite number.
    """
    s = text.strip().replace(" ", "")
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        if re.fullmatch(r"[-+]?\d{1,3}(?:,\d{3})+", s):
            s = s.replace(",", "")
        else:
            s = s.replace(",", ".")
    try:
        value = float(s)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def normalize_unit(unit: str | None) -> str | None:
    """Lower-case a unit token (``"kWh"`` -> ``"kwh"``)."""
    return unit.lower() if unit else None


def parse_quantity(text: str) -> tuple[float, str | None] | None:
    """Parse ``"12.5"``, ``"3,2 kW"`` or ``"98 %"`` into ``(number, unit)``.

    Strings with anything besides a number and an optional unit are not
    numeric-looking and give ``None``.
    """
    match = _QUANTITY_PATTERN.match(text)
    if match is None:
        return None
    number = parse_number(match.group("number"))
    if number is None:
        return None
    return number, normalize_unit(match.group("unit"))


def _coerce_leaf(value: Any) -> tuple[float, str | None] | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None
        return float(value), None
    if isinstance(value, str):
        return parse_quantity(value)
    return None


def _with_unit(key: str, unit: str | None) -> str:
    if not unit or key.lower().endswith("_" + unit):
        return key
    return f"{key}_{unit}"


def _slug(text: str, limit: int = 40) -> str:
    return re.sub(r"[^0-9a-z]+", "_", text.lower()).strip("_")[:limit].rstrip("_")


# ---------------------------------------------------------------------------
# Shape detection
# ---------------------------------------------------------------------------


def detect_kind(content_type: str | None, body: str) -> ResponseKind:
    """Decide the response shape once, before any extraction happens."""
    ctype = (content_type or "").lower()
    if "json" in ctype:
        return ResponseKind.JSON
    if "html" in ctype or "xml" in ctype:
        return ResponseKind.HTML
    if "text/plain" in ctype:
        return ResponseKind.TEXT

    head = body.lstrip()[:1]
    if head in ("{", "["):
        return ResponseKind.JSON
    if head == "<":
        return ResponseKind.HTML
    return ResponseKind.TEXT


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class ResponseExtractor:
    """Extracts candidate numeric values from a portal response.

    Args:
        keywords: Substrings that make a JSON key relevant.
        max_depth: Depth bound for the JSON walker.
    """

    def __init__(
        self,
        *,
        keywords: Iterable[str] = SOLAR_KEYWORDS,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._keywords = tuple(k.lower() for k in keywords)
        self._max_depth = max_depth

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(
        self,
        endpoint: str,
        body: str,
        content_type: str | None = None,
    ) -> RawExtractionRecord:
        """Extract every candidate value from *body*.

        Args:
            endpoint: Endpoint path, recorded as provenance.
            body: Decoded response body.
            content_type: Value of the ``Content-Type`` header, if any.

        Returns:
            A RawExtractionRecord, possibly empty. Never raises.
        """
        kind = detect_kind(content_type, body)
        values: dict[str, float] = {}
        methods: dict[str, ExtractionMethod] = {}

        def merge(found: dict[str, float], method: ExtractionMethod) -> None:
            for key, value in found.items():
                if key not in values:
                    values[key] = value
                    methods[key] = method

        if kind is ResponseKind.JSON:
            merge(self._run(self.extract_json_text, body), ExtractionMethod.JSON)
        elif kind is ResponseKind.HTML:
            self._extract_html(body, merge)
        else:
            merge(self._run(self.extract_text, body), ExtractionMethod.HTML_TEXT)

        logger.debug(
            "Extracted %d value(s) from %s (%s response)", len(values), endpoint, kind
        )
        return RawExtractionRecord(endpoint=endpoint, values=values, methods=methods)

    def extract_json(self, data: Any, prefix: str = "json") -> dict[str, float]:
        """Walk a parsed JSON document and collect relevant numeric leaves."""
        out: dict[str, float] = {}
        self._walk(data, prefix, 0, parent_relevant=False, out=out)
        return out

    def extract_json_text(self, body: str) -> dict[str, float]:
        return self.extract_json(json.loads(body))

    def extract_embedded_json(self, html: str, soup: BeautifulSoup | None = None) -> dict[str, float]:
        """Find bootstrap objects in scripts and ``data-*`` attributes."""
        out: dict[str, float] = {}
        for pattern in _ASSIGNMENT_PATTERNS:
            for match in pattern.finditer(html):
                span = _balanced_object(html, match.end())
                if span is None:
                    continue
                try:
                    data = json.loads(span)
                except ValueError:
                    logger.debug("Embedded object at offset %d is not JSON", match.end())
                    continue
                for key, value in self.extract_json(data, prefix="script").items():
                    out.setdefault(key, value)

        soup = soup if soup is not None else BeautifulSoup(html, "html.parser")
        for tag in soup.find_all(True):
            for attr, raw in tag.attrs.items():
                if not attr.startswith("data-") or not self._is_relevant(attr[5:]):
                    continue
                if isinstance(raw, list):
                    raw = " ".join(raw)
                key = f"attr.{attr}"
                raw = raw.strip()
                if raw.startswith("{"):
                    try:
                        found = self.extract_json(json.loads(raw), prefix=key)
                    except ValueError:
                        found = {}
                    for k, v in found.items():
                        out.setdefault(k, v)
                    continue
                quantity = parse_quantity(raw) or parse_quantity(tag.get_text(" ", strip=True))
                if quantity is not None:
                    number, unit = quantity
                    out.setdefault(_with_unit(key, unit), number)
        return out

    def extract_tables(self, html: str, soup: BeautifulSoup | None = None) -> dict[str, float]:
        """Apply the unit pattern to every table cell.

        Values are named after the row label (first cell, when it is not a
        number) or the column header, falling back to ``r<row>c<col>``.
        """
        out: dict[str, float] = {}
        soup = soup if soup is not None else BeautifulSoup(html, "html.parser")
        for t_idx, table in enumerate(soup.find_all("table")):
            headers: list[str] = []
            for r_idx, row in enumerate(table.find_all("tr")):
                cells = row.find_all(["td", "th"])
                texts = [cell.get_text(" ", strip=True) for cell in cells]
                if cells and all(cell.name == "th" for cell in cells):
                    headers = [_slug(t) for t in texts]
                    continue
                row_label = ""
                if texts and not UNIT_PATTERN.search(texts[0]) and parse_quantity(texts[0]) is None:
                    row_label = _slug(texts[0])
                for c_idx, text in enumerate(texts):
                    label = row_label or (headers[c_idx] if c_idx < len(headers) else "")
                    base = f"table{t_idx}.{label}" if label else f"table{t_idx}.r{r_idx}c{c_idx}"
                    for m_idx, match in enumerate(UNIT_PATTERN.finditer(text)):
                        number = parse_number(match.group("number"))
                        if number is None:
                            continue
                        key = _with_unit(base, normalize_unit(match.group("unit")))
                        if m_idx or key in out:
                            key = f"{key}_{r_idx}_{c_idx}_{m_idx}"
                        out[key] = number
        return out

    def extract_text(self, text: str) -> dict[str, float]:
        """Scan free text; keys are ``value_<n>_<unit>`` in discovery order."""
        out: dict[str, float] = {}
        for idx, match in enumerate(UNIT_PATTERN.finditer(text), start=1):
            number = parse_number(match.group("number"))
            if number is None:
                continue
            out[f"value_{idx}_{normalize_unit(match.group('unit'))}"] = number
        return out

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _extract_html(
        self, body: str, merge: Callable[[dict[str, float], ExtractionMethod], None]
    ) -> None:
        try:
            document = json.loads(body)
        except ValueError:
            document = None
        if document is not None:
            merge(self._run(self.extract_json, document), ExtractionMethod.JSON)
            return

        try:
            soup = BeautifulSoup(body, "html.parser")
        except Exception:
            logger.debug("HTML parse failed, scanning raw markup as text", exc_info=True)
            merge(self._run(self.extract_text, body), ExtractionMethod.HTML_TEXT)
            return

        merge(self._run(self.extract_embedded_json, body, soup), ExtractionMethod.HTML_SCRIPT)
        merge(self._run(self.extract_tables, body, soup), ExtractionMethod.HTML_TABLE)

        for tag in soup(["script", "style"]):
            tag.decompose()
        merge(
            self._run(self.extract_text, soup.get_text(" ", strip=True)),
            ExtractionMethod.HTML_TEXT,
        )

    def _run(self, variant: Callable[..., dict[str, float]], *args: Any) -> dict[str, float]:
        try:
            return variant(*args)
        except Exception:
            logger.debug("Extraction variant %s failed", variant.__name__, exc_info=True)
            return {}

    def _is_relevant(self, key: str) -> bool:
        lowered = key.lower()
        return any(term in lowered for term in self._keywords)

    def _walk(
        self,
        node: Any,
        prefix: str,
        depth: int,
        *,
        parent_relevant: bool,
        out: dict[str, float],
    ) -> None:
        if depth > self._max_depth:
            return
        if isinstance(node, dict):
            items: Iterable[tuple[Any, Any]] = node.items()
        elif isinstance(node, list):
            items = enumerate(node)
        else:
            return

        sibling_unit = None
        if isinstance(node, dict) and isinstance(node.get("unit"), str):
            sibling_unit = normalize_unit(node["unit"].strip())

        for raw_key, value in items:
            key = str(raw_key)
            full_key = f"{prefix}.{key}" if prefix else key
            generic = key.lower() in _GENERIC_LEAF_KEYS or key.isdigit()
            relevant = self._is_relevant(key) or (parent_relevant and generic)

            if relevant:
                leaf = _coerce_leaf(value)
                if leaf is not None:
                    number, unit = leaf
                    if unit is None and generic and sibling_unit in _KNOWN_UNITS:
                        unit = sibling_unit
                    out[_with_unit(full_key, unit)] = number

            if isinstance(value, dict | list):
                self._walk(
                    value,
                    full_key,
                    depth + 1,
                    parent_relevant=relevant,
                    out=out,
                )


def _balanced_object(text: str, start: int) -> str | None:
    """Return the ``{...}`` span opening at *start*, honouring nesting and strings."""
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string: str | None = None
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == in_string:
                in_string = None
            continue
        if char in ('"', "'"):
            in_string = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None
