import asyncio
import threading
import time

import pytest

from fakes import FakeBatchSource, FakeResearchSource, coffee_shops
from leadfinder.core.config import Settings
from leadfinder.core.engine import ReconciliationEngine
from leadfinder.jobs import server


@pytest.fixture
def make_host(monkeypatch):
    hosts = []
    monkeypatch.setattr(server, "get_settings", lambda: Settings(google_maps_api_key="k"))

    def _make(research_delay=0.0, discoveries=None, error=None, batch_source=None):
        def factory():
            return ReconciliationEngine(
                settings=Settings(discovery_mode="places", request_timeout=2.0),
                batch_sources={"places": batch_source or FakeBatchSource(coffee_shops(3) if discoveries is None else discoveries, error=error)},
                research_source=FakeResearchSource(delay=research_delay),
            )

        host = server.EngineHost(factory)
        hosts.append(host)
        monkeypatch.setattr(server, "_host", host)
        return host

    yield _make
    for host in hosts:
        host.stop()


@pytest.fixture
def client():
    return server.app.test_client()


SEARCH = {"business_type": "Coffee Shops", "location": "Austin, TX", "results": 3}


def test_health_endpoint(client, make_host):
    response = client.get("/healthz")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["maps_enabled"] is True
    assert body["research_enabled"] is False


def test_search_validates_payload(client, make_host):
    make_host()
    assert client.post("/search", json={}).status_code == 400
    assert client.post("/search", json={"business_type": "cafe"}).status_code == 400
    assert client.post("/search", json={"business_type": "cafe", "location": "Austin", "results": "lots"}).status_code == 400
    assert client.post("/search", json={"business_type": "cafe", "area": {"type": "hexagon"}}).status_code == 400
    bad_circle = {"business_type": "cafe", "area": {"type": "circle", "center": {"latitude": 1}, "radius": 10}}
    assert client.post("/search", json=bad_circle).status_code == 400


def test_search_wait_returns_researched_candidates(client, make_host):
    make_host()
    response = client.post("/search", json={**SEARCH, "wait": True})

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert [c["id"] for c in data] == ["place-0", "place-1", "place-2"]
    assert all(c["enrichment_state"] == "Done" for c in data)
    assert all(c["description"] for c in data)


def test_search_in_background_then_list(client, make_host):
    host = make_host()
    area = {"type": "circle", "center": {"latitude": 30.26, "longitude": -97.74}, "radius": 1500}
    response = client.post("/search", json={"business_type": "cafe", "area": area, "research": False})

    assert response.status_code == 202
    host.search_future.result(timeout=5)

    listed = client.get("/candidates").get_json()["data"]
    assert len(listed) == 3
    assert all(c["enrichment_state"] == "Pending" for c in listed)

    status = client.get("/status").get_json()["data"]
    assert status["searching"] is False
    assert status["candidates"] == 3
    assert status["error"] is None


def test_search_failure_maps_to_502(client, make_host):
    make_host(discoveries=[], error=RuntimeError("unsupported category"))
    response = client.post("/search", json={**SEARCH, "wait": True})
    assert response.status_code == 502
    assert "unsupported category" in response.get_json()["error"]


class SlowBatchSource(FakeBatchSource):
    async def search(self, query, limit):
        await asyncio.sleep(0.5)
        return await super().search(query, limit)


def test_search_is_rejected_while_a_waited_search_runs(make_host):
    host = make_host(batch_source=SlowBatchSource(coffee_shops(2)))
    responses = {}

    def waited_search():
        responses["first"] = server.app.test_client().post("/search", json={**SEARCH, "wait": True, "research": False})

    worker = threading.Thread(target=waited_search)
    worker.start()
    deadline = time.monotonic() + 5
    while not host.searching and time.monotonic() < deadline:
        time.sleep(0.01)

    second = server.app.test_client().post("/search", json=SEARCH)
    worker.join(timeout=5)

    assert second.status_code == 409
    assert responses["first"].status_code == 200
    assert len(responses["first"].get_json()["data"]) == 2


def test_candidate_lookup_and_status_update(client, make_host):
    make_host()
    client.post("/search", json={**SEARCH, "wait": True, "research": False})

    assert client.get("/candidates/nope").status_code == 404
    assert client.get("/candidates/place-1").get_json()["data"]["discovery_name"] == "Cafe 1"

    response = client.patch("/candidates/place-1", json={"status": "Emailed", "email_thread_id": "thr-1"})
    assert response.status_code == 200
    assert response.get_json()["data"]["status"] == "Emailed"
    assert response.get_json()["data"]["email_thread_id"] == "thr-1"

    assert client.patch("/candidates/place-1", json={"status": "Ghosted"}).status_code == 400
    assert client.patch("/candidates/nope", json={"status": "Replied"}).status_code == 404


def test_retry_rejects_concurrent_attempts(client, make_host):
    host = make_host(research_delay=0.3)
    client.post("/search", json={**SEARCH, "wait": True, "research": False})

    assert client.post("/candidates/nope/retry").status_code == 404
    first = client.post("/candidates/place-0/retry")
    assert first.status_code == 202
    assert first.get_json()["data"]["enrichment_state"] == "InProgress"
    assert client.post("/candidates/place-0/retry").status_code == 409

    host.run(host.engine.drain(), timeout=5)
    assert client.get("/candidates/place-0").get_json()["data"]["enrichment_state"] == "Done"


def test_research_all_and_export(client, make_host):
    host = make_host()
    assert client.get("/export.csv").status_code == 404

    client.post("/search", json={**SEARCH, "wait": True, "research": False})
    response = client.post("/research-all")
    assert response.status_code == 202
    assert response.get_json()["data"]["started"] == ["place-0", "place-1", "place-2"]
    host.run(host.engine.drain(), timeout=5)

    export = client.get("/export.csv")
    assert export.status_code == 200
    assert export.mimetype == "text/csv"
    assert "business_leads.csv" in export.headers["Content-Disposition"]
    lines = export.get_data(as_text=True).split("\r\n")
    assert lines[0].startswith('"Company Name","Contact Name"')
    assert lines[1].startswith('"Cafe 0 LLC"')
