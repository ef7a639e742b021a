"""
Pure text transforms for address search.

Everything here is side-effect free: strip noise segments from queries,
expand colloquial street names into provider-friendly variants, and turn raw
reverse-geocode placemarks into short display labels.
"""
from __future__ import annotations

import re
from typing import List, Optional, Tuple

from domain.models import Placemark, SearchQuery
from services.address_tables import (
    ADMIN_TOKENS,
    LOCALITY_FIELDS,
    STREET_ABBREVIATIONS,
    STREET_TYPE_VARIANTS,
    STREET_TYPE_WORDS,
    SYNONYMS,
)

DEFAULT_LOCALITY = "Santiago"
SENTINEL_LABEL = "Mi ubicación"

_POSTAL_CODE_RE = re.compile(r"^\d{3,}$")
_TOKEN_SPLIT_RE = re.compile(r"[\s,]+")
_NAME_NUMBER_RE = re.compile(r"^(.+?)\s+(\d+)(?:\s*,\s*(.+))?$")
_TRAILING_NUMBER_RE = re.compile(r"(\d+)$")
_STREET_WITH_NUMBER_RE = re.compile(r"^(.*?)[,\s]+(\d+)\s*$")
_STREET_TYPE_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(w) for w in STREET_TYPE_WORDS) + r")\b",
    re.IGNORECASE,
)
_ABBREVIATION_RES = [
    (re.compile(r"^\s*" + re.escape(abbr) + r"(?:\.\s*|\s+)", re.IGNORECASE), full + " ")
    for abbr, full in STREET_ABBREVIATIONS
]
_SYNONYM_RES = [
    (re.compile(r"^\s*" + re.escape(short) + r"\b", re.IGNORECASE), canonical)
    for short, canonical in SYNONYMS
]


def _is_noise_segment(segment: str) -> bool:
    if _POSTAL_CODE_RE.match(segment):
        return True
    lower = segment.lower()
    return any(token in lower for token in ADMIN_TOKENS)


def sanitize_short(raw: Optional[str]) -> str:
    """
    Reduce a free-text address to at most two meaningful comma segments.

    Postal codes (purely numeric segments of 3+ digits) and any segment naming
    a region, province or country are dropped; duplicates are removed.
    Returns "" when nothing survives.
    """
    if not raw:
        return ""
    kept: List[str] = []
    for part in raw.split(","):
        segment = " ".join(part.split())
        if not segment or _is_noise_segment(segment):
            continue
        if segment not in kept:
            kept.append(segment)
    return ", ".join(kept[:2])


def has_street_type(text: str) -> bool:
    return bool(_STREET_TYPE_RE.search(text))


def apply_synonyms(query: str) -> List[str]:
    """
    Expand a query into the variants that should all be sent to providers.

    The base query always comes first. Known colloquial names add their
    canonical long form; a bare "<name> <number>" without a street-type word
    adds one variant per street type.
    """
    base = " ".join((query or "").split())
    if not base:
        return []
    out: List[str] = [base]

    def _add(variant: str) -> None:
        if variant not in out:
            out.append(variant)

    lower = base.lower()
    for pattern, canonical in _SYNONYM_RES:
        if canonical.lower() in lower:
            continue
        if pattern.match(base):
            _add(pattern.sub(canonical, base, count=1))

    m = _NAME_NUMBER_RE.match(base)
    if m and not has_street_type(base):
        name = m.group(1).strip()
        number = m.group(2).strip()
        tail = (m.group(3) or "").strip()
        for street_type in STREET_TYPE_VARIANTS:
            variant = f"{street_type} {name} {number}"
            if tail:
                variant = f"{variant}, {tail}"
            _add(variant)
    return out


def canonicalize_street_type(street: Optional[str]) -> str:
    """Replace a leading abbreviated street type with its full word ("Av." -> "Avenida")."""
    value = (street or "").strip()
    for pattern, replacement in _ABBREVIATION_RES:
        if pattern.match(value):
            return pattern.sub(replacement, value, count=1).strip()
    return value


def split_street_number(placemark: Placemark) -> Tuple[str, str]:
    """
    Work out (street, house number) from raw placemark fields.

    The number can arrive as an explicit street_number, as a purely numeric
    `name`, as a trailing number on `name`, or glued to the end of the street.
    """
    street = (placemark.street or "").strip()
    name = (placemark.name or "").strip()
    explicit = (placemark.street_number or "").strip()

    if explicit and street:
        return street, explicit
    if name.isdigit():
        return street, name
    m = _TRAILING_NUMBER_RE.search(name)
    if m and street:
        return street, m.group(1)

    street_raw = street or name
    m = _STREET_WITH_NUMBER_RE.match(street_raw)
    if m:
        return m.group(1).strip(), m.group(2)
    return street_raw, explicit


def pick_locality(placemark: Placemark, default_locality: str = DEFAULT_LOCALITY) -> str:
    for attr in LOCALITY_FIELDS:
        value = (getattr(placemark, attr, None) or "").strip()
        if value and not _is_noise_segment(value):
            return value
    return default_locality


def format_reverse_address(
    placemark: Optional[Placemark],
    default_locality: str = DEFAULT_LOCALITY,
    sentinel: str = SENTINEL_LABEL,
) -> str:
    """
    Format a reverse-geocode placemark as "<Street> <number>, <locality>".

    Postal code, province, region and country are never part of the output.
    """
    if placemark is None:
        return sentinel
    street, number = split_street_number(placemark)
    street = canonicalize_street_type(street)
    street_part = f"{street} {number}".strip() if street else ""
    locality = pick_locality(placemark, default_locality)
    label = sanitize_short(", ".join(p for p in (street_part, locality) if p))
    return label or sentinel


def ensure_locality(label: str, locality: Optional[str] = None) -> str:
    """Append a locality to labels that carry none."""
    if "," in label:
        return label
    return f"{label}, {locality or DEFAULT_LOCALITY}"


def tokenize(text: str) -> Tuple[str, ...]:
    tokens: List[str] = []
    for token in _TOKEN_SPLIT_RE.split((text or "").lower()):
        if len(token) > 1 and token not in tokens:
            tokens.append(token)
    return tuple(tokens)


def build_search_query(raw: str) -> SearchQuery:
    normalized = sanitize_short(raw)
    return SearchQuery(raw=raw or "", normalized=normalized, tokens=tokenize(normalized))
