"""Tests for SerpAPI Google Maps parsing and the batch source wrapper."""

import asyncio

import pytest

from leadfinder.core.errors import ConfigMissing
from leadfinder.models import DiscoveryQuery
from leadfinder.vendors import serpapi_maps


def test_build_params_validates_inputs():
    with pytest.raises(ValueError):
        serpapi_maps.build_serpapi_params("  ", "key")
    with pytest.raises(ConfigMissing):
        serpapi_maps.build_serpapi_params("coffee", "")

    params = serpapi_maps.build_serpapi_params(" coffee in Austin ", "key", ll="@30.2,-97.7,13z")
    assert params == {
        "engine": "google_maps",
        "q": "coffee in Austin",
        "api_key": "key",
        "type": "search",
        "ll": "@30.2,-97.7,13z",
    }


def test_parse_local_results_list():
    data = {
        "local_results": [
            {"title": "Acme", "website": "https://acme.test", "place_id": "p1"},
            {"title": ""},
            "junk",
            {"name": "Beta", "gps_coordinates": {"latitude": 1, "longitude": 2}},
        ]
    }
    discoveries = serpapi_maps.parse_serpapi_maps(data)
    assert [d.name for d in discoveries] == ["Acme", "Beta"]
    assert discoveries[0].place_id == "p1"
    assert discoveries[1].longitude == 2.0


def test_parse_nested_and_place_results():
    nested = {"local_results": {"places": [{"title": "Nested"}]}}
    single = {"place_results": {"title": "Single"}}
    assert [d.name for d in serpapi_maps.parse_serpapi_maps(nested)] == ["Nested"]
    assert [d.name for d in serpapi_maps.parse_serpapi_maps(single)] == ["Single"]
    assert serpapi_maps.parse_serpapi_maps({}) == []
    assert serpapi_maps.parse_serpapi_maps({"search_metadata": {}}) == []


def test_source_builds_query_and_limits(monkeypatch):
    seen = {}

    def fake_fetch(query, api_key, ll=None):
        seen["query"] = query
        return {"local_results": [{"title": f"Shop {i}"} for i in range(5)]}

    monkeypatch.setattr(serpapi_maps, "fetch_from_serpapi", fake_fetch)
    source = serpapi_maps.SerpMapsDiscoverySource("key")
    query = DiscoveryQuery(business_type="bakery", location="Yogyakarta", results=2)

    discoveries = asyncio.run(source.search(query, 2))

    assert seen["query"] == "bakery in Yogyakarta"
    assert [d.name for d in discoveries] == ["Shop 0", "Shop 1"]
