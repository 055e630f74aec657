"""Reconciliation engine: discovery, dedupe, admission and enrichment merge-back.

Everything runs on one asyncio event loop. Store mutations never await, so an
admission or a merge is applied in one step and readers never see a
half-merged record. Enrichment attempts carry a per-candidate generation; a
completion from an older generation is dropped by the store.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple

from leadfinder.core.config import DISCOVERY_MODES, Settings
from leadfinder.core.errors import ConfigMissing, DiscoveryFailed, EnrichmentFailed
from leadfinder.core.ports import (
    BatchDiscoverySource,
    EnrichmentSource,
    Geocoder,
    PlaceDetailsSource,
    StreamingDiscoverySource,
)
from leadfinder.core.store import CandidateStore
from leadfinder.etl.stream import LineStreamParser
from leadfinder.etl.transform import combine_fields, dedupe_key, details_fields, research_fields, synthesize_id
from leadfinder.models import (
    BusinessStatus,
    Candidate,
    DedupeKey,
    Discovery,
    DiscoveryQuery,
    EnrichmentState,
)

logger = logging.getLogger(__name__)

INTERRUPTED = "Enrichment attempt was interrupted."


@dataclass
class DiscoveryRun:
    """Bookkeeping for one discover() call."""

    query: DiscoveryQuery
    mode: str
    limit: int
    started_at: datetime
    seen: Set[DedupeKey] = field(default_factory=set)
    admitted: int = 0
    duplicates: int = 0
    finished: bool = False
    error: Optional[str] = None

    @property
    def message(self) -> str:
        if self.error:
            return self.error
        if self.finished:
            return f"Discovery complete: {self.admitted} new businesses. Research may still be in progress."
        return "Discovering businesses..."


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "Request timed out."
    text = str(exc).strip()
    return text or exc.__class__.__name__


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    def __init__(
        self,
        store: Optional[CandidateStore] = None,
        *,
        settings: Optional[Settings] = None,
        stream_source: Optional[StreamingDiscoverySource] = None,
        batch_sources: Optional[Mapping[str, BatchDiscoverySource]] = None,
        research_source: Optional[EnrichmentSource] = None,
        details_source: Optional[PlaceDetailsSource] = None,
        geocoder: Optional[Geocoder] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store if store is not None else CandidateStore()
        self.settings = settings or Settings()
        self.stream_source = stream_source
        self.batch_sources: Dict[str, BatchDiscoverySource] = dict(batch_sources or {})
        self.research_source = research_source
        self.details_source = details_source
        self.geocoder = geocoder
        self._clock = clock
        self._semaphore = asyncio.Semaphore(self.settings.enrichment_concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self.last_run: Optional[DiscoveryRun] = None

    # ---------- Reads ----------

    def snapshot(self) -> List[Candidate]:
        return self.store.snapshot()

    def get(self, candidate_id: str) -> Optional[Candidate]:
        return self.store.get(candidate_id)

    @property
    def pending_enrichments(self) -> int:
        return len(self._tasks)

    # ---------- Discovery ----------

    def _select_source(self, query: DiscoveryQuery) -> Tuple[str, Any]:
        if query.area is not None:
            source = self.batch_sources.get("places")
            if source is None:
                raise ConfigMissing("Area search needs GOOGLE_MAPS_API_KEY to be configured.")
            return "places", source

        preferred = self.settings.discovery_mode
        order = [preferred] + [mode for mode in DISCOVERY_MODES if mode != preferred]
        for mode in order:
            if mode == "stream" and self.stream_source is not None:
                return mode, self.stream_source
            if mode in self.batch_sources:
                return mode, self.batch_sources[mode]
        raise ConfigMissing("No discovery source is configured.")

    async def _iter_discoveries(self, mode: str, source: Any, query: DiscoveryQuery, limit: int) -> AsyncIterator[Discovery]:
        timeout = self.settings.request_timeout
        if mode != "stream":
            for discovery in await asyncio.wait_for(source.search(query, limit), timeout):
                yield discovery
            return

        parser = LineStreamParser()
        async with aclosing(source.stream_text(query, limit)) as chunks:
            iterator = chunks.__aiter__()
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout)
                except StopAsyncIteration:
                    break
                for discovery in parser.feed(chunk):
                    yield discovery
        for discovery in parser.close():
            yield discovery
        if parser.discarded:
            logger.info("Discarded %d malformed discovery lines", parser.discarded)

    def _admit(self, run: DiscoveryRun, discovery: Discovery) -> Optional[Candidate]:
        """Dedupe and insert one discovery; None when it is a duplicate."""
        key = dedupe_key(discovery)
        if key in run.seen or self.store.has_key(key):
            run.duplicates += 1
            logger.debug("Skipping duplicate discovery %s", discovery.name)
            return None

        now = self._clock()
        candidate = Candidate(
            id=discovery.place_id or synthesize_id(key, int(now.timestamp() * 1000)),
            discovery_name=discovery.name,
            discovery_website=discovery.website,
            discovery_address=discovery.address,
            place_id=discovery.place_id,
            primary_type=discovery.primary_type,
            latitude=discovery.latitude,
            longitude=discovery.longitude,
            area_searched=run.query.area_label,
            business_type=run.query.business_type.strip(),
            date_found=now.date().isoformat(),
        )
        if not self.store.admit(candidate, key):
            run.duplicates += 1
            return None
        run.seen.add(key)
        run.admitted += 1
        return self.store.get(candidate.id)

    async def discover(self, query: DiscoveryQuery, *, auto_enrich: bool = False) -> AsyncIterator[Candidate]:
        """Yield each newly admitted candidate as soon as its source produces it.

        Raises DiscoveryFailed when the source rejects the query or cannot be
        reached. Candidates admitted before the failure stay in the store.
        """
        limit = query.resolve_limit(self.settings.max_results_all)
        try:
            mode, source = self._select_source(query)
        except ConfigMissing as exc:
            raise DiscoveryFailed(str(exc)) from exc

        run = DiscoveryRun(query=query, mode=mode, limit=limit, started_at=self._clock())
        self.last_run = run
        logger.info(
            "Discovering %s in %s via %s (limit=%d)", query.business_type, query.area_label, mode, limit
        )

        try:
            async with aclosing(self._iter_discoveries(mode, source, query, limit)) as discoveries:
                async for discovery in discoveries:
                    candidate = self._admit(run, discovery)
                    if candidate is None:
                        continue
                    if auto_enrich:
                        self.start_enrichment(candidate.id)
                    yield candidate
                    if run.admitted >= limit:
                        break
        except asyncio.TimeoutError as exc:
            run.error = "Discovery timed out."
            logger.error("Discovery via %s timed out after %d admissions", mode, run.admitted)
            raise DiscoveryFailed(run.error) from exc
        except Exception as exc:  # noqa: BLE001
            run.error = f"Discovery failed: {_describe(exc)}"
            logger.error("Discovery via %s failed after %d admissions: %s", mode, run.admitted, exc)
            raise DiscoveryFailed(run.error) from exc

        run.finished = True
        logger.info("Discovery finished: admitted=%d duplicates=%d", run.admitted, run.duplicates)

    async def search(self, query: DiscoveryQuery, *, auto_enrich: bool = False) -> List[Candidate]:
        """Run discover() to completion and return the admitted candidates."""
        return [candidate async for candidate in self.discover(query, auto_enrich=auto_enrich)]

    # ---------- Enrichment ----------

    def start_enrichment(self, candidate_id: str, *, retry: bool = False) -> Optional[asyncio.Task]:
        """Start one enrichment attempt; None when the candidate is unknown or busy."""
        generation = self.store.begin_attempt(
            candidate_id, retry=retry, today=self._clock().date().isoformat()
        )
        if generation is None:
            return None
        task = asyncio.get_running_loop().create_task(
            self._run_attempt(candidate_id, generation, retry),
            name=f"enrich-{candidate_id}-{generation}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def enrich(self, candidate_id: str) -> Optional[Candidate]:
        task = self.start_enrichment(candidate_id)
        if task is None:
            return None
        await task
        return self.store.get(candidate_id)

    async def retry(self, candidate_id: str) -> Optional[Candidate]:
        """Re-run enrichment for one candidate; prior fields stay until replaced."""
        task = self.start_enrichment(candidate_id, retry=True)
        if task is None:
            return None
        await task
        return self.store.get(candidate_id)

    async def research_all(self, *, wait: bool = True) -> List[str]:
        """Start enrichment for every candidate that has never been enriched."""
        started = []
        tasks = []
        for candidate_id in self.store.ids_in_state(EnrichmentState.PENDING):
            task = self.start_enrichment(candidate_id)
            if task is not None:
                started.append(candidate_id)
                tasks.append(task)
        logger.info("Research-all started %d enrichments", len(started))
        if wait and tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return started

    async def drain(self) -> None:
        """Wait until no enrichment attempt is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(awaitable, self.settings.request_timeout)

    async def _run_attempt(self, candidate_id: str, generation: int, retry: bool) -> None:
        try:
            async with self._semaphore:
                await self._enrich(candidate_id, generation)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Enrichment failed for %s (generation %d): %s", candidate_id, generation, exc)
            self.store.fail(candidate_id, generation, _describe(exc), retry=retry)
        finally:
            # No-op unless the attempt ended without recording anything.
            self.store.fail(candidate_id, generation, INTERRUPTED, retry=retry)

    async def _enrich(self, candidate_id: str, generation: int) -> None:
        candidate = self.store.get(candidate_id)
        if candidate is None:
            return

        structured: Dict[str, Any] = {}
        details_error: Optional[BaseException] = None
        if candidate.place_id and self.details_source is not None:
            try:
                details = await self._call(self.details_source.details(candidate.place_id))
                structured = details_fields(details)
            except Exception as exc:  # noqa: BLE001
                details_error = exc
                logger.warning("Place details failed for %s: %s", candidate_id, exc)

        generative: Dict[str, Any] = {}
        research_error: Optional[BaseException] = None
        if self.research_source is not None:
            website = structured.get("website") or candidate.best_website
            try:
                result = await self._call(self.research_source.research(candidate.discovery_name, website))
                generative = research_fields(result)
            except Exception as exc:  # noqa: BLE001
                research_error = exc
        elif not structured:
            if details_error is not None:
                raise EnrichmentFailed(_describe(details_error)) from details_error
            raise EnrichmentFailed("Research is not configured.")

        fields = combine_fields(structured, generative)
        await self._geocode_into(candidate, fields)

        if research_error is not None:
            # Keep whatever the structured lookup found, then record the failure.
            self.store.merge(candidate_id, generation, fields, finish=False)
            raise EnrichmentFailed(_describe(research_error)) from research_error

        if self.store.merge(candidate_id, generation, fields):
            logger.info("Enriched %s (generation %d)", candidate_id, generation)

    async def _geocode_into(self, candidate: Candidate, fields: Dict[str, Any]) -> None:
        if self.geocoder is None:
            return
        if fields.get("latitude") is not None or candidate.latitude is not None:
            return
        address = fields.get("address") or candidate.address or candidate.discovery_address
        if not address:
            return
        try:
            point = await self._call(self.geocoder.geocode(address))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Geocoding failed for %s: %s", candidate.id, exc)
            return
        if point is not None:
            fields["latitude"] = point.latitude
            fields["longitude"] = point.longitude

    # ---------- Workflow status ----------

    def update_status(
        self,
        candidate_id: str,
        status: BusinessStatus,
        email_thread_id: Optional[str] = None,
    ) -> Optional[Candidate]:
        return self.store.set_status(candidate_id, status, email_thread_id)
