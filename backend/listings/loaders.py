from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any

from listings.types import PropertyRecord, record_from_mapping

logger = logging.getLogger(__name__)


def load_geojson_points(path: Path, *, default_currency: str = "MXN") -> list[PropertyRecord]:
    """
    Input: GeoJSON FeatureCollection of Point features; listing fields live in `properties`.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    features = data.get("features") or []

    out: list[PropertyRecord] = []
    skipped = 0
    for i, feature in enumerate(features):
        geom = (feature or {}).get("geometry") or {}
        props = dict((feature or {}).get("properties") or {})
        coords = geom.get("coordinates")
        if geom.get("type") != "Point" or not coords or len(coords) < 2:
            skipped += 1
            continue

        props.setdefault("id", (feature or {}).get("id") or f"property-{i}")
        props["lng"] = coords[0]
        props["lat"] = coords[1]
        rec = _to_record(props, default_currency=default_currency)
        if rec is None:
            skipped += 1
            continue
        out.append(rec)

    if skipped:
        logger.warning("skipped %d unusable features in %s", skipped, path)
    return out


def load_json_records(path: Path, *, default_currency: str = "MXN") -> list[PropertyRecord]:
    """
    Input: a JSON array of flat records (`{"id", "lat", "lng", "price", ...}`).
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array of records: {path}")

    out: list[PropertyRecord] = []
    skipped = 0
    for row in data:
        rec = _to_record(row, default_currency=default_currency) if isinstance(row, dict) else None
        if rec is None:
            skipped += 1
            continue
        out.append(rec)

    if skipped:
        logger.warning("skipped %d unusable rows in %s", skipped, path)
    return out


def load_records(path: Path, *, default_currency: str = "MXN") -> list[PropertyRecord]:
    if not path.exists():
        raise FileNotFoundError(f"Dataset not found: {path}")
    head = path.read_text(encoding="utf-8").lstrip()[:1]
    if head == "[":
        return load_json_records(path, default_currency=default_currency)
    return load_geojson_points(path, default_currency=default_currency)


def _to_record(row: dict[str, Any], *, default_currency: str) -> PropertyRecord | None:
    try:
        rec = record_from_mapping(row, default_currency=default_currency)
    except (KeyError, TypeError, ValueError):
        return None
    if not (math.isfinite(rec.lat) and math.isfinite(rec.lng) and math.isfinite(rec.price)):
        return None
    if not (-90.0 <= rec.lat <= 90.0 and -180.0 <= rec.lng <= 180.0) or rec.price < 0:
        return None
    return rec
