"""Capability interfaces the reconciliation engine talks to.

Vendor modules provide implementations; tests provide fakes. The engine never
imports an SDK directly.
"""

from __future__ import annotations

from typing import AsyncIterator, List, Optional, Protocol, runtime_checkable

from leadfinder.models import Discovery, DiscoveryQuery, GeoPoint, PlaceDetails, ResearchResult


@runtime_checkable
class StreamingDiscoverySource(Protocol):
    """Yields raw text chunks holding one ``name | url`` line per business."""

    def stream_text(self, query: DiscoveryQuery, limit: int) -> AsyncIterator[str]:
        ...


@runtime_checkable
class BatchDiscoverySource(Protocol):
    """Returns a complete result set in one call."""

    async def search(self, query: DiscoveryQuery, limit: int) -> List[Discovery]:
        ...


@runtime_checkable
class EnrichmentSource(Protocol):
    async def research(self, name: str, website: str) -> ResearchResult:
        ...


@runtime_checkable
class PlaceDetailsSource(Protocol):
    async def details(self, place_id: str) -> PlaceDetails:
        ...


@runtime_checkable
class Geocoder(Protocol):
    async def geocode(self, address: str) -> Optional[GeoPoint]:
        ...


__all__ = [
    "BatchDiscoverySource",
    "EnrichmentSource",
    "Geocoder",
    "PlaceDetailsSource",
    "StreamingDiscoverySource",
]
