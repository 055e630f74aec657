"""Core data models shared by the discovery and enrichment pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class BusinessStatus(str, Enum):
    """Outreach workflow status, changed manually by the user."""

    DISCOVERED = "Discovered"
    EMAILED = "Emailed"
    REPLIED = "Replied"


class EnrichmentState(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    DONE = "Done"
    FAILED = "Failed"


_TRANSITIONS = {
    EnrichmentState.PENDING: {EnrichmentState.IN_PROGRESS},
    EnrichmentState.IN_PROGRESS: {EnrichmentState.DONE, EnrichmentState.FAILED},
    EnrichmentState.DONE: set(),
    EnrichmentState.FAILED: set(),
}
_RETRY_SOURCES = {EnrichmentState.PENDING, EnrichmentState.DONE, EnrichmentState.FAILED}


def can_transition(current: EnrichmentState, target: EnrichmentState, *, retry: bool = False) -> bool:
    """Return True when ``current -> target`` is a legal enrichment transition.

    Finished records only go back to InProgress through an explicit retry.
    """
    if retry and target is EnrichmentState.IN_PROGRESS:
        return current in _RETRY_SOURCES
    return target in _TRANSITIONS[current]


# Fields filled in by enrichment; merge never blanks any of them.
ENRICHED_FIELDS: Tuple[str, ...] = (
    "company_name",
    "contact_name",
    "address",
    "phone",
    "email",
    "description",
    "website",
)

DedupeKey = Tuple[str, ...]


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class SearchArea:
    """Circle (center + radius in meters) or rectangle (low/high corners)."""

    kind: str
    center: Optional[GeoPoint] = None
    radius_m: Optional[float] = None
    low: Optional[GeoPoint] = None
    high: Optional[GeoPoint] = None

    @classmethod
    def circle(cls, latitude: float, longitude: float, radius_m: float) -> "SearchArea":
        if radius_m <= 0:
            raise ValueError("radius must be positive")
        return cls(kind="circle", center=GeoPoint(latitude, longitude), radius_m=float(radius_m))

    @classmethod
    def rectangle(cls, low_lat: float, low_lng: float, high_lat: float, high_lng: float) -> "SearchArea":
        return cls(kind="rectangle", low=GeoPoint(low_lat, low_lng), high=GeoPoint(high_lat, high_lng))

    def describe(self) -> str:
        if self.kind == "circle" and self.center is not None:
            return f"{self.center.latitude:.5f},{self.center.longitude:.5f} (r={self.radius_m:.0f}m)"
        if self.low is not None and self.high is not None:
            return (
                f"{self.low.latitude:.5f},{self.low.longitude:.5f} to "
                f"{self.high.latitude:.5f},{self.high.longitude:.5f}"
            )
        return self.kind


@dataclass(frozen=True)
class DiscoveryQuery:
    """What the user asked for: a location or an area, a category and a result count."""

    business_type: str
    location: Optional[str] = None
    area: Optional[SearchArea] = None
    results: Union[int, str] = 10

    def __post_init__(self) -> None:
        if not (self.business_type or "").strip():
            raise ValueError("business_type must be provided")
        if not (self.location or "").strip() and self.area is None:
            raise ValueError("either a location or a search area is required")
        if not self.wants_all:
            try:
                count = int(self.results)
            except (TypeError, ValueError):
                raise ValueError("results must be a positive number or 'all'") from None
            if count <= 0:
                raise ValueError("results must be a positive number or 'all'")

    @property
    def wants_all(self) -> bool:
        return isinstance(self.results, str) and self.results.strip().lower() == "all"

    def resolve_limit(self, max_all: int) -> int:
        """Result cap for this query.

        "all" means the configured maximum, and an explicit count above that
        maximum is lowered to it.
        """
        if self.wants_all:
            return max_all
        requested = int(self.results)
        if requested > max_all:
            logger.warning("Requested %d results; capping at MAX_RESULTS_ALL=%d", requested, max_all)
            return max_all
        return requested

    @property
    def area_label(self) -> str:
        if self.location and self.location.strip():
            return self.location.strip()
        return self.area.describe() if self.area else ""


@dataclass(slots=True)
class Discovery:
    """Lightweight record yielded by a discovery source."""

    name: str
    website: str = ""
    place_id: Optional[str] = None
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    primary_type: str = ""


@dataclass(slots=True)
class ResearchResult:
    """Generative research output with "Not Found" markers already cleared."""

    company_name: str = ""
    contact_name: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    description: str = ""


@dataclass(slots=True)
class PlaceDetails:
    """Structured place-details lookup result."""

    place_id: str
    name: str = ""
    website: str = ""
    phone: str = ""
    address: str = ""
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    opening_hours: Optional[Dict[str, Any]] = field(default=None, repr=False)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    primary_type: str = ""


@dataclass(slots=True)
class Candidate:
    """One discovered business, enriched or not."""

    id: str
    discovery_name: str
    discovery_website: str = ""
    discovery_address: str = ""
    place_id: Optional[str] = None
    company_name: str = ""
    contact_name: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    description: str = ""
    website: str = ""
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    opening_hours: Optional[Dict[str, Any]] = field(default=None, repr=False)
    primary_type: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: BusinessStatus = BusinessStatus.DISCOVERED
    enrichment_state: EnrichmentState = EnrichmentState.PENDING
    generation: int = 0
    error: str = ""
    email_thread_id: str = "N/A"
    area_searched: str = ""
    business_type: str = ""
    date_found: str = ""

    @property
    def is_researching(self) -> bool:
        return self.enrichment_state is EnrichmentState.IN_PROGRESS

    @property
    def best_website(self) -> str:
        return self.discovery_website or self.website

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "discovery_name": self.discovery_name,
            "discovery_website": self.discovery_website,
            "discovery_address": self.discovery_address,
            "place_id": self.place_id,
            "company_name": self.company_name,
            "contact_name": self.contact_name,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "description": self.description,
            "website": self.website,
            "rating": self.rating,
            "rating_count": self.rating_count,
            "opening_hours": self.opening_hours,
            "primary_type": self.primary_type,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "status": self.status.value,
            "enrichment_state": self.enrichment_state.value,
            "is_researching": self.is_researching,
            "error": self.error,
            "email_thread_id": self.email_thread_id,
            "area_searched": self.area_searched,
            "business_type": self.business_type,
            "date_found": self.date_found,
        }
