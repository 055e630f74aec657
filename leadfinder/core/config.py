"""Application configuration helpers.

API keys come from the environment (or a local ``.env``). A missing key never
stops the process: the features that depend on it are switched off and a
warning is logged once when settings are first loaded.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DISCOVERY_MODES = ("stream", "places", "serpapi")


@dataclass(frozen=True)
class Settings:
    google_maps_api_key: str = ""
    gemini_api_key: str = ""
    serpapi_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    discovery_mode: str = "stream"
    max_results_all: int = 60
    enrichment_concurrency: int = 4
    request_timeout: float = 30.0
    worker_port: int = 8080
    default_output: Optional[str] = None

    @property
    def maps_enabled(self) -> bool:
        return bool(self.google_maps_api_key)

    @property
    def research_enabled(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def serpapi_enabled(self) -> bool:
        return bool(self.serpapi_api_key)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive; using %s", name, default)
        return default
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number; using %s", name, raw, default)
        return default
    return value if value > 0 else default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_maps_api_key = os.getenv("GOOGLE_MAPS_API_KEY", "")
    gemini_api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY", "")
    serpapi_api_key = os.getenv("SERPAPI_API_KEY", "")
    gemini_model = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

    discovery_mode = os.getenv("DISCOVERY_MODE", "stream").strip().lower()
    if discovery_mode not in DISCOVERY_MODES:
        logger.warning("Unknown DISCOVERY_MODE=%s; falling back to stream", discovery_mode)
        discovery_mode = "stream"

    if not google_maps_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY is not configured; map search, place details and geocoding are disabled.")
    if not gemini_api_key:
        logger.warning("GEMINI_API_KEY is not configured; streaming discovery and research are disabled.")

    return Settings(
        google_maps_api_key=google_maps_api_key,
        gemini_api_key=gemini_api_key,
        serpapi_api_key=serpapi_api_key,
        gemini_model=gemini_model,
        discovery_mode=discovery_mode,
        max_results_all=_int_env("MAX_RESULTS_ALL", 60),
        enrichment_concurrency=_int_env("ENRICHMENT_CONCURRENCY", 4),
        request_timeout=_float_env("REQUEST_TIMEOUT", 30.0),
        worker_port=_int_env("WORKER_PORT", 8080),
        default_output=os.getenv("LEADS_OUTPUT") or None,
    )
