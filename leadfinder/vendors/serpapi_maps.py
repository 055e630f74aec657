"""SerpAPI Google Maps discovery for free-text location queries."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Dict, Iterable, List, Optional

from serpapi import GoogleSearch

from leadfinder.core.errors import ConfigMissing
from leadfinder.etl.transform import serp_result_to_discovery
from leadfinder.models import Discovery, DiscoveryQuery

logger = logging.getLogger(__name__)

RETRY_LIMIT = 2
RETRY_DELAY_SECONDS = 1.2


class SerpApiError(RuntimeError):
    """Raised when SerpAPI answers with an error payload."""


def build_serpapi_params(query: str, api_key: str, ll: Optional[str] = None) -> Dict[str, Any]:
    """Construct SerpAPI request parameters for the Google Maps engine."""
    if not query or not query.strip():
        raise ValueError("Query must be provided for SerpAPI lookups.")
    if not api_key:
        raise ConfigMissing("SERPAPI_API_KEY is not configured")

    params: Dict[str, Any] = {
        "engine": "google_maps",
        "q": query.strip(),
        "api_key": api_key,
        "type": "search",
    }
    if ll:
        params["ll"] = ll
    return params


def fetch_from_serpapi(query: str, api_key: str, ll: Optional[str] = None) -> Dict[str, Any]:
    """Call SerpAPI Google Maps and return the raw JSON response with retry logic.

    SerpAPI bills per request, so attempts are logged for usage audits.
    """
    params = build_serpapi_params(query, api_key, ll)

    attempt = 0
    while True:
        attempt += 1
        try:
            logger.info("Calling SerpAPI (attempt %s) for query=%s ll=%s", attempt, query, ll)
            data = GoogleSearch(params).get_dict()
            if not data:
                raise SerpApiError("SerpAPI returned an empty payload.")
            if "error" in data:
                raise SerpApiError(f"SerpAPI returned an error response: {data.get('error') or data}")
            return data
        except Exception as exc:  # pragma: no cover - network calls hard to test
            logger.warning("SerpAPI request failed (attempt %s/%s): %s", attempt, RETRY_LIMIT + 1, exc)
            if attempt > RETRY_LIMIT:
                logger.error("SerpAPI request exhausted retries for query=%s", query)
                raise
            time.sleep(RETRY_DELAY_SECONDS + random.uniform(0, 0.8))


def _extract_items(data: Dict[str, Any]) -> Iterable[Any]:
    """SerpAPI sometimes returns local_results as a list or nested dict."""
    local_results = data.get("local_results")
    if isinstance(local_results, list):
        return local_results
    if isinstance(local_results, dict):
        for maybe in (local_results.get("places"), local_results.get("results"), local_results.get("local_results")):
            if isinstance(maybe, list):
                return maybe

    place_results = data.get("place_results")
    if isinstance(place_results, list):
        return place_results
    if isinstance(place_results, dict):
        return [place_results]
    return []


def parse_serpapi_maps(data: Optional[Dict[str, Any]]) -> List[Discovery]:
    """Extract SerpAPI local/place results into Discovery records."""
    if not data:
        return []

    items = list(_extract_items(data))
    if not items:
        logger.warning("SerpAPI response has no local or place results. keys=%s", list(data.keys())[:10])

    discoveries = []
    for raw in items:
        discovery = serp_result_to_discovery(raw)
        if discovery is not None:
            discoveries.append(discovery)
    return discoveries


class SerpMapsDiscoverySource:
    """Batch discovery through SerpAPI's Google Maps engine."""

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    def _run(self, query: DiscoveryQuery, limit: int) -> List[Discovery]:
        text = f"{query.business_type} in {query.area_label}"
        discoveries = parse_serpapi_maps(fetch_from_serpapi(text, self.api_key))
        logger.info("Parsed %s discoveries from SerpAPI response.", len(discoveries))
        return discoveries[:limit]

    async def search(self, query: DiscoveryQuery, limit: int) -> List[Discovery]:
        return await asyncio.to_thread(self._run, query, limit)
