"""HTTP entrypoint exposing the lead pipeline as a JSON API."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from concurrent.futures import Future
from typing import Any, Callable, Coroutine, Dict, Optional

from flask import Flask, Response, jsonify, request

from leadfinder.app import build_engine
from leadfinder.core.config import get_settings
from leadfinder.core.engine import ReconciliationEngine
from leadfinder.core.errors import DiscoveryFailed
from leadfinder.etl.export import to_csv
from leadfinder.jobs.run_search import run_search_job
from leadfinder.models import BusinessStatus, DiscoveryQuery, EnrichmentState, SearchArea

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & engine host ----------
app = Flask(__name__)


class EngineHost:
    """Owns the event loop thread; every engine call is marshalled onto it."""

    def __init__(self, engine_factory: Callable[[], ReconciliationEngine]) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="engine-loop", daemon=True)
        self._thread.start()
        self.engine = self.call(engine_factory)
        self.search_future: Optional[Future] = None

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future:
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def run(self, coro: Coroutine[Any, Any, Any], timeout: Optional[float] = None) -> Any:
        return self.submit(coro).result(timeout)

    def call(self, fn: Callable[..., Any], *args: Any) -> Any:
        async def _invoke() -> Any:
            return fn(*args)

        return self.run(_invoke())

    @property
    def searching(self) -> bool:
        return self.search_future is not None and not self.search_future.done()

    def stop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)


_host: Optional[EngineHost] = None
_host_lock = threading.Lock()


def get_host() -> EngineHost:
    global _host
    with _host_lock:
        if _host is None:
            _host = EngineHost(build_engine)
        return _host


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "maps_enabled": settings.maps_enabled,
                "research_enabled": settings.research_enabled,
                "discovery_mode": settings.discovery_mode,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/search")
def start_search() -> Any:
    """
    Start a discovery run.
    Required JSON fields: business_type and either location or area.
    Optional: results (int or "all"), research (bool), wait (bool)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    try:
        query = _query_from_payload(payload)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    host = get_host()
    if host.searching:
        return jsonify({"error": "a search is already running"}), 409

    research = bool(payload.get("research", True))
    logger.info("Starting search: type=%s where=%s results=%s", query.business_type, query.area_label, query.results)

    if payload.get("wait"):
        host.search_future = host.submit(run_search_job(host.engine, query, research=research))
        try:
            candidates = host.search_future.result()
        except DiscoveryFailed as exc:
            return jsonify({"error": str(exc)}), 502
        return jsonify({"data": [c.to_dict() for c in candidates]}), 200

    host.search_future = host.submit(_run_search_safe(host.engine, query, research))
    return jsonify({"data": {"status": "started"}}), 202


@app.get("/status")
def search_status() -> Any:
    host = get_host()
    engine = host.engine
    run, snapshot = host.call(lambda: (engine.last_run, engine.snapshot()))
    return jsonify(
        {
            "data": {
                "searching": host.searching,
                "message": run.message if run else "",
                "error": run.error if run else None,
                "candidates": len(snapshot),
                "researching": sum(1 for c in snapshot if c.is_researching),
            }
        }
    )


@app.get("/candidates")
def list_candidates() -> Any:
    host = get_host()
    snapshot = host.call(host.engine.snapshot)
    return jsonify({"data": [c.to_dict() for c in snapshot]})


@app.get("/candidates/<candidate_id>")
def get_candidate(candidate_id: str) -> Any:
    host = get_host()
    candidate = host.call(host.engine.get, candidate_id)
    if candidate is None:
        return jsonify({"error": "candidate not found"}), 404
    return jsonify({"data": candidate.to_dict()})


@app.patch("/candidates/<candidate_id>")
def update_candidate(candidate_id: str) -> Any:
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    raw_status = payload.get("status")
    try:
        status = BusinessStatus(raw_status)
    except ValueError:
        allowed = ", ".join(s.value for s in BusinessStatus)
        return jsonify({"error": f"status must be one of: {allowed}"}), 400

    thread_id = payload.get("email_thread_id")
    host = get_host()
    updated = host.call(host.engine.update_status, candidate_id, status, None if thread_id is None else str(thread_id))
    if updated is None:
        return jsonify({"error": "candidate not found"}), 404
    return jsonify({"data": updated.to_dict()})


@app.post("/candidates/<candidate_id>/retry")
def retry_candidate(candidate_id: str) -> Any:
    host = get_host()
    engine = host.engine

    async def _start() -> bool:
        return engine.start_enrichment(candidate_id, retry=True) is not None

    if host.call(engine.get, candidate_id) is None:
        return jsonify({"error": "candidate not found"}), 404
    if not host.run(_start()):
        return jsonify({"error": "research already in progress"}), 409
    return jsonify({"data": host.call(engine.get, candidate_id).to_dict()}), 202


@app.post("/research-all")
def research_all() -> Any:
    host = get_host()
    started = host.run(host.engine.research_all(wait=False))
    return jsonify({"data": {"started": started}}), 202


@app.get("/export.csv")
def export_csv() -> Any:
    host = get_host()
    snapshot = host.call(host.engine.snapshot)
    if not snapshot:
        return jsonify({"error": "nothing to export"}), 404
    researching = sum(1 for c in snapshot if c.enrichment_state is EnrichmentState.IN_PROGRESS)
    return Response(
        to_csv(snapshot),
        mimetype="text/csv",
        headers={
            "Content-Disposition": "attachment; filename=business_leads.csv",
            "X-Researching": str(researching),
        },
    )


# ---------- Internals ----------


def _point(raw: Any, label: str) -> Dict[str, float]:
    if not isinstance(raw, dict):
        raise ValueError(f"{label} must be an object with latitude and longitude")
    try:
        return {"latitude": float(raw["latitude"]), "longitude": float(raw["longitude"])}
    except (KeyError, TypeError, ValueError):
        raise ValueError(f"{label} must have numeric latitude and longitude") from None


def _area_from_payload(raw: Any) -> SearchArea:
    if not isinstance(raw, dict):
        raise ValueError("area must be an object")
    kind = raw.get("type")
    if kind == "circle":
        center = _point(raw.get("center"), "area.center")
        try:
            radius = float(raw.get("radius"))
        except (TypeError, ValueError):
            raise ValueError("area.radius must be numeric") from None
        return SearchArea.circle(center["latitude"], center["longitude"], radius)
    if kind == "rectangle":
        low = _point(raw.get("low"), "area.low")
        high = _point(raw.get("high"), "area.high")
        return SearchArea.rectangle(low["latitude"], low["longitude"], high["latitude"], high["longitude"])
    raise ValueError("area.type must be 'circle' or 'rectangle'")


def _query_from_payload(payload: Dict[str, Any]) -> DiscoveryQuery:
    business_type = str(payload.get("business_type") or "").strip()
    if not business_type:
        raise ValueError("missing fields: business_type")

    location = str(payload.get("location") or "").strip() or None
    area = _area_from_payload(payload["area"]) if payload.get("area") is not None else None
    if location is None and area is None:
        raise ValueError("missing fields: location or area")

    return DiscoveryQuery(
        business_type=business_type,
        location=location,
        area=area,
        results=payload.get("results", 10),
    )


async def _run_search_safe(engine: ReconciliationEngine, query: DiscoveryQuery, research: bool) -> None:
    try:
        await run_search_job(engine, query, research=research)
    except DiscoveryFailed as exc:
        logger.error("Search failed: %s", exc)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Search job crashed: %s", exc)


def main() -> None:
    port = int(os.getenv("PORT") or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
