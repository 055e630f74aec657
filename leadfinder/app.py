"""Wire configured vendor clients into a ReconciliationEngine."""

import logging
from typing import Dict, Optional

from leadfinder.core.config import Settings, get_settings
from leadfinder.core.engine import ReconciliationEngine
from leadfinder.core.ports import BatchDiscoverySource
from leadfinder.core.store import CandidateStore
from leadfinder.vendors.gemini import GeminiClient
from leadfinder.vendors.google_places import GoogleGeocoder, PlacesDetailsSource, PlacesDiscoverySource
from leadfinder.vendors.serpapi_maps import SerpMapsDiscoverySource

logger = logging.getLogger(__name__)


def build_engine(settings: Optional[Settings] = None, store: Optional[CandidateStore] = None) -> ReconciliationEngine:
    """Build an engine with every source whose key is configured.

    Sources without a key are left out, which switches the matching feature
    off instead of failing.
    """
    settings = settings or get_settings()

    gemini = None
    if settings.research_enabled:
        gemini = GeminiClient(settings.gemini_api_key, model=settings.gemini_model)

    batch_sources: Dict[str, BatchDiscoverySource] = {}
    details_source = None
    geocoder = None
    if settings.maps_enabled:
        batch_sources["places"] = PlacesDiscoverySource(settings.google_maps_api_key)
        details_source = PlacesDetailsSource(settings.google_maps_api_key)
        geocoder = GoogleGeocoder(settings.google_maps_api_key)
    if settings.serpapi_enabled:
        batch_sources["serpapi"] = SerpMapsDiscoverySource(settings.serpapi_api_key)

    logger.info(
        "Engine sources: stream=%s batch=%s research=%s details=%s geocoder=%s",
        gemini is not None,
        sorted(batch_sources),
        gemini is not None,
        details_source is not None,
        geocoder is not None,
    )
    return ReconciliationEngine(
        store,
        settings=settings,
        stream_source=gemini,
        batch_sources=batch_sources,
        research_source=gemini,
        details_source=details_source,
        geocoder=geocoder,
    )
