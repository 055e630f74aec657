"""Utilities for turning upstream payloads into pipeline records."""

import hashlib
import logging
from typing import Any, Dict, Iterable, Mapping, Optional
from urllib.parse import urlparse, urlunparse

from leadfinder.core.errors import MalformedUpstreamRecord
from leadfinder.models import DedupeKey, Discovery, PlaceDetails, ResearchResult

logger = logging.getLogger(__name__)

_IGNORE_TYPES = {"point_of_interest", "establishment", "political", "premise"}
_EMPTY_MARKERS = {"not found", "n/a", "none", "null", "unknown"}
_GENERATIVE_FIRST = {"company_name"}


def clean(value: Any) -> str:
    """Strip a value to text, mapping "Not Found" style markers to ''."""
    if value is None:
        return ""
    text = str(value).strip()
    if text.lower().rstrip(".") in _EMPTY_MARKERS:
        return ""
    return text


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            return int(digits)
    return None


def _extract_primary_type(types: Iterable[str]) -> Optional[str]:
    for type_name in types or []:
        if type_name not in _IGNORE_TYPES:
            return type_name
    return None


def _display_name(place: Mapping[str, Any]) -> str:
    display = place.get("displayName")
    if isinstance(display, dict):
        return clean(display.get("text"))
    return clean(display or place.get("name"))


def normalize_website(raw_url: Optional[str]) -> str:
    """Canonical form of a website used for dedupe: host + path, no scheme noise."""
    if not raw_url:
        return ""
    url = raw_url.strip()
    if not url:
        return ""

    parsed = urlparse(url, scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{url}")
    if not parsed.netloc:
        return ""

    host = parsed.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    path = parsed.path.rstrip("/")
    return urlunparse(("", host, path, "", "", "")).lstrip("/")


def dedupe_key(discovery: Discovery) -> DedupeKey:
    if discovery.place_id:
        return ("place", discovery.place_id)
    return ("site", normalize_website(discovery.website), discovery.name.strip().casefold())


def synthesize_id(key: DedupeKey, discovered_at_ms: int) -> str:
    """Fallback identifier for records whose source has no stable id."""
    digest = hashlib.sha1("|".join(key).encode("utf-8")).hexdigest()[:10]
    return f"{discovered_at_ms}-{digest}"


def place_to_discovery(place: Mapping[str, Any]) -> Optional[Discovery]:
    """Map a Places API (New) search hit to a Discovery; None when it has no name."""
    if not isinstance(place, Mapping):
        logger.debug("Skipping non-object place entry: %r", place)
        return None

    name = _display_name(place)
    if not name:
        logger.debug("Skipping place without display name: %s", place.get("id"))
        return None

    location = place.get("location") or {}
    return Discovery(
        name=name,
        website=clean(place.get("websiteUri")),
        place_id=clean(place.get("id")) or None,
        address=clean(place.get("formattedAddress")),
        latitude=_safe_float(location.get("latitude")),
        longitude=_safe_float(location.get("longitude")),
        primary_type=clean(place.get("primaryType")) or (_extract_primary_type(place.get("types", [])) or ""),
    )


def to_place_details(place_id: str, payload: Mapping[str, Any]) -> PlaceDetails:
    if not isinstance(payload, Mapping):
        raise MalformedUpstreamRecord(f"place details for {place_id} is not an object")

    location = payload.get("location") or {}
    hours = payload.get("currentOpeningHours")
    return PlaceDetails(
        place_id=place_id,
        name=_display_name(payload),
        website=clean(payload.get("websiteUri")),
        phone=clean(payload.get("nationalPhoneNumber") or payload.get("internationalPhoneNumber")),
        address=clean(payload.get("formattedAddress")),
        rating=_safe_float(payload.get("rating")),
        rating_count=_safe_int(payload.get("userRatingCount")),
        opening_hours=hours if isinstance(hours, dict) else None,
        latitude=_safe_float(location.get("latitude")),
        longitude=_safe_float(location.get("longitude")),
        primary_type=clean(payload.get("primaryType")),
    )


def to_research_result(payload: Any) -> ResearchResult:
    """Build a ResearchResult; missing keys become empty strings."""
    if not isinstance(payload, Mapping):
        raise MalformedUpstreamRecord("research response is not a JSON object")

    missing = [key for key in ("companyName", "description") if key not in payload]
    if missing:
        logger.debug("Research payload missing keys: %s", ", ".join(missing))

    return ResearchResult(
        company_name=clean(payload.get("companyName")),
        contact_name=clean(payload.get("contactName")),
        address=clean(payload.get("address")),
        phone=clean(payload.get("phone")),
        email=clean(payload.get("email")),
        description=clean(payload.get("description")),
    )


def serp_result_to_discovery(raw: Mapping[str, Any]) -> Optional[Discovery]:
    """Map a SerpAPI Google Maps local result to a Discovery."""
    if not isinstance(raw, Mapping):
        return None

    name = clean(raw.get("title") or raw.get("name"))
    if not name:
        return None

    gps = raw.get("gps_coordinates") or {}
    return Discovery(
        name=name,
        website=clean(raw.get("website")),
        place_id=clean(raw.get("place_id")) or None,
        address=clean(raw.get("address")),
        latitude=_safe_float(gps.get("latitude")),
        longitude=_safe_float(gps.get("longitude")),
        primary_type=clean(raw.get("type")),
    )


def details_fields(details: PlaceDetails) -> Dict[str, Any]:
    """Fields a place-details lookup contributes to a candidate merge."""
    fields: Dict[str, Any] = {
        "address": clean(details.address),
        "phone": clean(details.phone),
        "website": clean(details.website),
        "rating": details.rating,
        "rating_count": details.rating_count,
        "opening_hours": details.opening_hours,
        "primary_type": details.primary_type,
        "latitude": details.latitude,
        "longitude": details.longitude,
    }
    name = clean(details.name)
    if name:
        fields["company_name"] = name
    return fields


def research_fields(result: ResearchResult) -> Dict[str, Any]:
    # Any research source may hand back "Not Found" style markers.
    return {
        "company_name": clean(result.company_name),
        "contact_name": clean(result.contact_name),
        "address": clean(result.address),
        "phone": clean(result.phone),
        "email": clean(result.email),
        "description": clean(result.description),
    }


def combine_fields(structured: Mapping[str, Any], generative: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay generative fields under structured ones.

    Structured values win for any attribute they actually carry; generative
    values only fill the gaps. The company name is the exception: the research
    pass asks for the legal name, the places index only has a display name.
    """
    combined = {key: value for key, value in generative.items() if value not in ("", None)}
    for key, value in structured.items():
        if value in ("", None):
            continue
        if key in _GENERATIVE_FIRST and combined.get(key):
            continue
        combined[key] = value
    return combined
