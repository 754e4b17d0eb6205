from __future__ import annotations

import json

import pytest
import yaml
from fastapi.testclient import TestClient

from api.search_endpoint import get_index, reset_index
from engine.factory import make_index
from main import app
from settings.registry import clear_settings_cache, get_settings

ROOT = {"north": 32.0, "south": 16.0, "east": -84.0, "west": -100.0}
WHOLE = {"viewport": {"bounds": ROOT, "zoom": 5}}


@pytest.fixture
def configured(tmp_path, monkeypatch):
    cfg = tmp_path / "search.yaml"
    cfg.write_text(
        yaml.safe_dump({"index": {"rootBounds": ROOT, "maxLevel": 8}, "limits": {"maxPageSize": 50}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("MAPSEARCH_CONFIG", str(cfg))
    clear_settings_cache()
    yield get_settings()
    clear_settings_cache()
    reset_index()
    app.dependency_overrides.clear()


@pytest.fixture
def client(configured, make_record):
    idx = make_index(configured, engine="in_memory")
    idx.publish(
        [
            make_record("a", 20.0, -96.0, minutes=1),
            make_record("b", 20.5, -95.0, minutes=2, listing_type="rent", price=20_000.0),
            make_record("c", 28.0, -88.0, minutes=3, property_type="land"),
        ]
    )
    app.dependency_overrides[get_index] = lambda: idx
    return TestClient(app)


def test_search_returns_unified_payload(client):
    res = client.post("/search", json=WHOLE)
    assert res.status_code == 200
    body = res.json()
    assert body["mode"] == "clusters"
    assert body["total"] == 3
    assert body["totalPages"] == 1
    assert body["pageSize"] == 20
    assert [i["id"] for i in body["listItems"]] == ["c", "b", "a"]
    assert sum(c["count"] for c in body["mapData"]) == 3
    assert body["meta"]["level"] == 1
    assert body["meta"]["clusterSource"] == "spatial_tree"
    assert body["meta"]["indexVersion"]


def test_search_filters_and_items_mode(client):
    req = {
        "viewport": {"bounds": {"north": 21.0, "south": 19.0, "east": -94.0, "west": -97.0}, "zoom": 15},
        "filters": {"listingType": "rent"},
    }
    body = client.post("/search", json=req).json()
    assert body["mode"] == "individual-items"
    assert [m["id"] for m in body["mapData"]] == ["b"]
    assert body["mapData"][0]["listingType"] == "rent"
    assert body["total"] == 1

    req["filters"] = {"maxPrice": 50_000}
    req["viewport"]["zoom"] = 5
    body = client.post("/search", json=req).json()
    assert body["meta"]["clusterSource"] == "point_scan"
    assert [c["count"] for c in body["mapData"]] == [1]

    # No fixture record states its area.
    req["filters"] = {"minArea": 10}
    body = client.post("/search", json=req).json()
    assert (body["total"], body["meta"]["clusterSource"]) == (0, "point_scan")


@pytest.mark.parametrize(
    "payload,code",
    [
        ({"viewport": {"bounds": {**ROOT, "north": 10.0}, "zoom": 5}}, "invalid_viewport"),
        ({"viewport": {"bounds": ROOT, "zoom": 99}}, "invalid_viewport"),
        ({**WHOLE, "filters": {"listingType": "auction"}}, "invalid_filter"),
        ({**WHOLE, "filters": {"minPrice": 10, "maxPrice": 1}}, "invalid_filter"),
        ({**WHOLE, "filters": {"minArea": 10, "maxArea": 1}}, "invalid_filter"),
        ({**WHOLE, "pageSize": 51}, "invalid_filter"),
        ({**WHOLE, "page": 0}, "invalid_filter"),
        ({"viewport": {"bounds": ROOT}}, "invalid_request"),
        ({**WHOLE, "sort": "random"}, "invalid_request"),
    ],
)
def test_search_rejects_bad_input(client, payload, code):
    res = client.post("/search", json=payload)
    assert res.status_code == 422
    err = res.json()["error"]
    assert err["code"] == code
    assert err["transient"] is False


def test_nodes(client):
    root = client.get("/nodes/0").json()
    assert root["totalCount"] == 3
    assert root["parentId"] is None
    assert root["countsBySubcategory"]["rent/*"] == 1

    kids = client.get("/nodes/0/children").json()
    assert kids["nodeId"] == "0"
    assert [(c["id"], c["count"]) for c in kids["children"]] == [("0.SW", 2), ("0.NE", 1)]

    rent = client.get("/nodes/0/children", params={"listingType": "rent"}).json()
    assert [(c["id"], c["count"]) for c in rent["children"]] == [("0.SW", 1)]
    assert "avgPrice" not in rent["children"][0]

    missing = client.get("/nodes/0.SE")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "node_not_found"
    assert client.get("/nodes/0.SE/children").status_code == 404
    assert client.get("/nodes/0/children", params={"propertyType": "castle"}).status_code == 422


def test_index_info_and_rebuild(client, tmp_path, monkeypatch):
    info = client.get("/index").json()
    assert (info["engine"], info["maxLevel"], info["pointCount"]) == ("in_memory", 8, 3)
    assert info["root"] == ROOT

    dataset = tmp_path / "listings.geojson"
    dataset.write_text(
        json.dumps(
            {
                "type": "FeatureCollection",
                "features": [
                    {
                        "type": "Feature",
                        "id": "g1",
                        "geometry": {"type": "Point", "coordinates": [-90.0, 25.0]},
                        "properties": {"price": 1000, "listingType": "sale", "propertyType": "house"},
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("MAPSEARCH_DATASET", str(dataset))
    rebuilt = client.post("/index/rebuild").json()
    assert rebuilt["pointCount"] == 1
    assert rebuilt["version"] != info["version"]

    body = client.post("/search", json=WHOLE).json()
    assert [i["id"] for i in body["listItems"]] == ["g1"]


def test_unpublished_index_is_503(configured):
    idx = make_index(configured, engine="in_memory")
    app.dependency_overrides[get_index] = lambda: idx
    res = TestClient(app).post("/search", json=WHOLE)
    assert res.status_code == 503
    err = res.json()["error"]
    assert (err["code"], err["transient"]) == ("index_unavailable", True)


def test_autoload_builds_synthetic_index(configured, monkeypatch):
    monkeypatch.setenv("MAPSEARCH_AUTOLOAD", "1")
    monkeypatch.setenv("MAPSEARCH_SYNTHETIC_COUNT", "300")
    monkeypatch.setenv("MAPSEARCH_ENGINE", "duckdb")
    reset_index()
    info = TestClient(app).get("/index").json()
    assert info["engine"] == "duckdb"
    assert info["pointCount"] == 300


def test_telemetry_endpoints_when_disabled(client):
    assert client.get("/telemetry/summary").json() == {"enabled": False, "rows": []}
    assert client.get("/telemetry/slowest").json() == {"enabled": False, "rows": []}
