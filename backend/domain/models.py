"""
Core domain models for the address search engine.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple
import time


class ProviderTag(str, Enum):
    """Which geocoding backend produced a candidate."""
    PRIMARY = "primary"  # commercial Places API
    FALLBACK = "fallback"  # open geocoding service

    @property
    def priority(self) -> int:
        """Lower sorts first when scores tie."""
        return 0 if self is ProviderTag.PRIMARY else 1


class HandoffStatus(str, Enum):
    """How a visit to the location-edit screen ended."""
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ReferencePoint:
    """Current map center, used only for proximity scoring."""
    lat: float
    lon: float


@dataclass(frozen=True)
class SearchQuery:
    """One debounce-settled keystroke or explicit submit."""
    raw: str
    normalized: str
    tokens: Tuple[str, ...] = ()
    issued_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class Candidate:
    """One address suggestion."""
    label: str
    source: ProviderTag
    lat: Optional[float] = None
    lon: Optional[float] = None
    score: Optional[float] = None
    external_id: Optional[str] = None  # provider place id, needed for a details lookup

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


@dataclass(frozen=True)
class GeocodeResult:
    """Exact coordinates from a details lookup or reverse resolve."""
    lat: float
    lon: float
    formatted: str
    external_id: Optional[str] = None


@dataclass
class Placemark:
    """
    Raw reverse-geocode fields.

    Provider adapters map their payloads into this shape so the formatter
    never sees provider-specific keys. `name` may hold a building name, the
    street itself, or just the house number.
    """
    street: Optional[str] = None
    name: Optional[str] = None
    street_number: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None
    town: Optional[str] = None
    village: Optional[str] = None
    municipality: Optional[str] = None
    county: Optional[str] = None
    postal_code: Optional[str] = None
    region: Optional[str] = None
    subregion: Optional[str] = None
    country: Optional[str] = None


@dataclass(frozen=True)
class ConfirmedLocation:
    """Location handed back to the report-creation flow."""
    label: str
    lat: Optional[float] = None
    lon: Optional[float] = None


@dataclass(frozen=True)
class HandoffOutcome:
    status: HandoffStatus
    location: Optional[ConfirmedLocation] = None
