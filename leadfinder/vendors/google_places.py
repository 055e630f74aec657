"""Client utilities for the Google Places API (New) and the Geocoding API."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from leadfinder.core.errors import ConfigMissing
from leadfinder.etl.transform import place_to_discovery, to_place_details
from leadfinder.models import Discovery, DiscoveryQuery, GeoPoint, PlaceDetails, SearchArea

logger = logging.getLogger(__name__)

_BASE_URL = "https://places.googleapis.com/v1"
_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
REQUEST_TIMEOUT = 10
PAGE_SIZE_LIMIT = 20
MAX_TEXT_PAGES = 3

SEARCH_FIELD_MASK = "places.id,places.displayName,places.location,places.primaryType,places.formattedAddress"
TEXT_SEARCH_FIELD_MASK = f"{SEARCH_FIELD_MASK},nextPageToken"
DETAILS_FIELD_MASK = (
    "displayName,formattedAddress,websiteUri,nationalPhoneNumber,rating,"
    "userRatingCount,currentOpeningHours,location,primaryType"
)

# Business type -> official Google place types.
PLACE_TYPES: Dict[str, List[str]] = {
    "coffee shop": ["cafe"],
    "coffee shops": ["cafe"],
    "coffee": ["cafe"],
    "cafe": ["cafe"],
    "restaurant": ["restaurant"],
    "restaurants": ["restaurant"],
    "food": ["restaurant", "meal_takeaway", "meal_delivery"],
    "gym": ["gym"],
    "fitness": ["gym"],
    "bar": ["bar"],
    "pub": ["bar"],
    "hotel": ["lodging"],
    "retail": ["store"],
    "shop": ["store"],
    "pharmacy": ["pharmacy"],
    "bank": ["bank"],
    "gas station": ["gas_station"],
    "hospital": ["hospital"],
    "clinic": ["hospital"],
    "school": ["school"],
    "university": ["university"],
    "library": ["library"],
    "park": ["park"],
    "museum": ["museum"],
    "theater": ["movie_theater"],
    "cinema": ["movie_theater"],
    "beauty salon": ["beauty_salon"],
    "hair salon": ["beauty_salon"],
    "salon": ["beauty_salon"],
    "salons": ["beauty_salon"],
    "spa": ["spa"],
    "car repair": ["car_repair"],
    "auto repair": ["car_repair"],
    "dentist": ["dentist"],
    "doctor": ["doctor"],
    "lawyer": ["lawyer"],
    "accountant": ["accountant"],
    "real estate": ["real_estate_agency"],
    "insurance": ["insurance_agency"],
    "bakery": ["bakery"],
    "book store": ["book_store"],
    "clothing store": ["clothing_store"],
    "electronics store": ["electronics_store"],
    "furniture store": ["furniture_store"],
    "hardware store": ["hardware_store"],
    "jewelry store": ["jewelry_store"],
    "shoe store": ["shoe_store"],
    "sporting goods store": ["sporting_goods_store"],
    "supermarket": ["supermarket"],
    "department store": ["department_store"],
    "convenience store": ["convenience_store"],
    "florist": ["florist"],
    "pet store": ["pet_store"],
    "toy store": ["toy_store"],
    "travel agency": ["travel_agency"],
    "veterinary care": ["veterinary_care"],
}


class GooglePlacesError(RuntimeError):
    """Raised when a Google Maps Platform API returns a non-successful response."""


def _build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=("POST", "GET"),
    )
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


_SESSION = _build_session()


def get_place_types(business_type: str) -> List[str]:
    types = PLACE_TYPES.get((business_type or "").strip().lower())
    if types:
        return list(types)
    logger.warning("No place type mapping for business type %r; using generic search.", business_type)
    return []


def _require_key(api_key: str) -> None:
    if not api_key:
        raise ConfigMissing("GOOGLE_MAPS_API_KEY is not configured")


def _headers(api_key: str, field_mask: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Goog-Api-Key": api_key,
        "X-Goog-FieldMask": field_mask,
    }


def _check(response: requests.Response, label: str) -> Dict[str, Any]:
    if not response.ok:
        logger.error("%s failed: status=%s body=%s", label, response.status_code, response.text[:500])
        raise GooglePlacesError(f"{label} error: {response.status_code} - {response.text[:200]}")
    return response.json()


def search_nearby(
    business_type: str,
    area: SearchArea,
    api_key: str,
    max_results: int = PAGE_SIZE_LIMIT,
) -> Dict[str, Any]:
    """Nearby search restricted to a circle; requires a mapped place type."""
    _require_key(api_key)
    if area.kind != "circle" or area.center is None:
        raise ValueError("search_nearby requires a circle search area")

    place_types = get_place_types(business_type)
    if not place_types:
        raise GooglePlacesError(
            f'Business type "{business_type}" is not supported. '
            'Please use a supported business type like "coffee shop", "restaurant", "gym", etc.'
        )

    body = {
        "includedTypes": place_types,
        "locationRestriction": {
            "circle": {
                "center": {"latitude": area.center.latitude, "longitude": area.center.longitude},
                "radius": area.radius_m,
            }
        },
        "maxResultCount": min(max_results, PAGE_SIZE_LIMIT),
    }
    logger.info("Places searchNearby types=%s area=%s", place_types, area.describe())
    response = _SESSION.post(
        f"{_BASE_URL}/places:searchNearby",
        json=body,
        headers=_headers(api_key, SEARCH_FIELD_MASK),
        timeout=REQUEST_TIMEOUT,
    )
    return _check(response, "Places searchNearby")


def search_text(
    text_query: str,
    api_key: str,
    *,
    business_type: Optional[str] = None,
    area: Optional[SearchArea] = None,
    page_size: int = PAGE_SIZE_LIMIT,
    page_token: Optional[str] = None,
) -> Dict[str, Any]:
    """One page of text search, optionally restricted to a rectangle."""
    _require_key(api_key)
    body: Dict[str, Any] = {"textQuery": text_query, "pageSize": min(page_size, PAGE_SIZE_LIMIT)}
    if area is not None and area.kind == "rectangle" and area.low and area.high:
        body["locationRestriction"] = {
            "rectangle": {
                "low": {"latitude": area.low.latitude, "longitude": area.low.longitude},
                "high": {"latitude": area.high.latitude, "longitude": area.high.longitude},
            }
        }
    if business_type:
        place_types = get_place_types(business_type)
        if place_types:
            body["includedType"] = place_types[0]
            body["strictTypeFiltering"] = True
    if page_token:
        body["pageToken"] = page_token

    logger.info("Places searchText query=%s page_token=%s", text_query, bool(page_token))
    response = _SESSION.post(
        f"{_BASE_URL}/places:searchText",
        json=body,
        headers=_headers(api_key, TEXT_SEARCH_FIELD_MASK),
        timeout=REQUEST_TIMEOUT,
    )
    return _check(response, "Places searchText")


def place_details(place_id: str, api_key: str) -> Dict[str, Any]:
    _require_key(api_key)
    response = _SESSION.get(
        f"{_BASE_URL}/places/{place_id}",
        headers={"X-Goog-Api-Key": api_key, "X-Goog-FieldMask": DETAILS_FIELD_MASK},
        timeout=REQUEST_TIMEOUT,
    )
    return _check(response, "Place Details")


def geocode(address: str, api_key: str) -> Optional[GeoPoint]:
    """Resolve an address to coordinates; None when the API finds nothing."""
    _require_key(api_key)
    response = _SESSION.get(_GEOCODE_URL, params={"address": address, "key": api_key}, timeout=REQUEST_TIMEOUT)
    response.raise_for_status()
    payload = response.json()
    status = payload.get("status")
    results = payload.get("results") or []
    if status != "OK" or not results:
        logger.warning("Geocoding failed for address %r: %s", address, status)
        return None
    location = (results[0].get("geometry") or {}).get("location") or {}
    try:
        return GeoPoint(float(location["lat"]), float(location["lng"]))
    except (KeyError, TypeError, ValueError):
        logger.warning("Geocoding returned no usable location for %r", address)
        return None


def collect_places(query: DiscoveryQuery, api_key: str, limit: int) -> List[Discovery]:
    """Run the search that fits the query shape and map hits to Discovery records."""
    places: List[Dict[str, Any]] = []
    area = query.area

    if area is not None and area.kind == "circle":
        payload = search_nearby(query.business_type, area, api_key, max_results=limit)
        places.extend(payload.get("places") or [])
    else:
        if area is not None:
            text_query = query.business_type
        else:
            text_query = f"{query.business_type} in {query.location.strip()}"
        page_token = None
        pages = 0
        while len(places) < limit and pages < MAX_TEXT_PAGES:
            payload = search_text(
                text_query,
                api_key,
                business_type=query.business_type if area is not None else None,
                area=area,
                page_size=limit - len(places),
                page_token=page_token,
            )
            places.extend(payload.get("places") or [])
            pages += 1
            page_token = payload.get("nextPageToken")
            if not page_token:
                break

    discoveries = []
    for place in places[:limit]:
        discovery = place_to_discovery(place)
        if discovery is not None:
            discoveries.append(discovery)
    logger.info("Places returned %d usable results (limit=%d)", len(discoveries), limit)
    return discoveries


class PlacesDiscoverySource:
    """Batch discovery through the Places index."""

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    async def search(self, query: DiscoveryQuery, limit: int) -> List[Discovery]:
        return await asyncio.to_thread(collect_places, query, self.api_key, limit)


class PlacesDetailsSource:
    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    async def details(self, place_id: str) -> PlaceDetails:
        payload = await asyncio.to_thread(place_details, place_id, self.api_key)
        return to_place_details(place_id, payload)


class GoogleGeocoder:
    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    async def geocode(self, address: str) -> Optional[GeoPoint]:
        return await asyncio.to_thread(geocode, address, self.api_key)
