from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import pytest

from listings.loaders import load_records
from listings.synthetic import MAX_SYNTHETIC_COUNT, generate_properties, synthetic_count


def _feature(fid, coords, **props):
    return {"type": "Feature", "id": fid, "geometry": {"type": "Point", "coordinates": coords}, "properties": props}


def test_geojson_loader_skips_unusable_features(tmp_path, caplog):
    path = tmp_path / "listings.geojson"
    path.write_text(
        json.dumps(
            {
                "type": "FeatureCollection",
                "features": [
                    _feature("ok", [-99.1, 19.4], price=2_500_000, listingType="sale", propertyType="apartment",
                             bedrooms=2, createdAt="2024-03-01T10:00:00Z", colonia="Roma Norte"),
                    _feature("no-price", [-99.1, 19.4]),
                    _feature("bad-lat", [-99.1, 119.4], price=10),
                    {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]}},
                ],
            }
        ),
        encoding="utf-8",
    )
    with caplog.at_level(logging.WARNING, logger="listings.loaders"):
        records = load_records(path)

    assert [r.id for r in records] == ["ok"]
    r = records[0]
    assert (r.lat, r.lng, r.price, r.currency) == (19.4, -99.1, 2_500_000.0, "MXN")
    assert (r.listing_type, r.property_type, r.bedrooms, r.neighborhood) == ("sale", "apartment", 2, "Roma Norte")
    assert r.created_at == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    assert "skipped 3" in caplog.text


def test_json_loader_accepts_snake_and_camel_case(tmp_path):
    path = tmp_path / "listings.json"
    path.write_text(
        json.dumps(
            [
                {"id": 1, "lat": 20.0, "lng": -100.0, "price": 9000, "listing_type": "rent", "created_at": 1_700_000_000_000},
                {"id": "b", "latitude": 21.0, "longitude": -101.0, "price": "1e6", "propertyType": "land", "currency": "USD"},
                {"id": "neg", "lat": 20.0, "lng": -100.0, "price": -5},
                "not-a-record",
            ]
        ),
        encoding="utf-8",
    )
    records = load_records(path, default_currency="MXN")
    assert [r.id for r in records] == ["1", "b"]
    assert records[0].listing_type == "rent"
    assert records[0].created_ms == 1_700_000_000_000
    assert (records[1].property_type, records[1].price, records[1].currency) == ("land", 1e6, "USD")


def test_missing_dataset_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_records(tmp_path / "nope.json")


def test_synthetic_dataset_is_deterministic():
    a = generate_properties(500, seed=9)
    b = generate_properties(500, seed=9)
    assert a == b
    assert len({r.id for r in a}) == 500
    assert generate_properties(500, seed=10) != a
    assert {r.listing_type for r in a} == {"sale", "rent"}
    assert all(14.0 <= r.lat <= 33.0 and -118.5 <= r.lng <= -86.0 for r in a)


def test_synthetic_count_from_env(monkeypatch):
    monkeypatch.delenv("MAPSEARCH_SYNTHETIC_COUNT", raising=False)
    assert synthetic_count() == 5_000
    monkeypatch.setenv("MAPSEARCH_SYNTHETIC_COUNT", "123")
    assert synthetic_count() == 123
    monkeypatch.setenv("MAPSEARCH_SYNTHETIC_COUNT", str(MAX_SYNTHETIC_COUNT * 10))
    assert synthetic_count() == MAX_SYNTHETIC_COUNT
