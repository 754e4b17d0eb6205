from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any

from api.schemas import ApiSearchRequest
from engine.factory import engine_name, make_index
from engine.types import IndexInfo, SpatialIndex
from listings.loaders import load_records
from listings.synthetic import generate_properties, synthetic_count
from listings.types import PropertyRecord
from lod.clusters import cluster_from_node
from search.codec import encode_cluster, encode_index_info, encode_node, encode_result
from search.errors import NodeNotFound
from search.types import Filters
from search.unified import search
from search.validate import validate_filters
from settings.registry import get_settings, resolve_repo_path
from telemetry.singleton import get_store

logger = logging.getLogger(__name__)

_INDEX: SpatialIndex | None = None
_INDEX_LOCK = threading.RLock()


def autoload_enabled() -> bool:
    v = (os.getenv("MAPSEARCH_AUTOLOAD") or "1").strip().lower()
    return v not in {"0", "false", "no", "off"}


def load_dataset() -> list[PropertyRecord]:
    """
    Records to index: `MAPSEARCH_DATASET` (GeoJSON / JSON array) or a synthetic dataset.
    """
    cfg = get_settings()
    raw = (os.getenv("MAPSEARCH_DATASET") or "").strip()
    if raw:
        records = load_records(resolve_repo_path(raw), default_currency=cfg.catalog.currency)
        logger.info("loaded %d records from %s", len(records), raw)
        return records
    return generate_properties(synthetic_count(), currency=cfg.catalog.currency)


def get_index() -> SpatialIndex:
    """
    Process-wide index (FastAPI dependency). Built and published on first use when
    autoload is on; otherwise searches fail with `index_unavailable` until a rebuild.
    """
    global _INDEX
    with _INDEX_LOCK:
        if _INDEX is None:
            idx = make_index(get_settings())
            if autoload_enabled():
                idx.publish(load_dataset())
            _INDEX = idx
        return _INDEX


def rebuild_index(index: SpatialIndex) -> IndexInfo:
    with _INDEX_LOCK:
        return index.publish(load_dataset())


def reset_index() -> None:
    global _INDEX
    with _INDEX_LOCK:
        _INDEX = None


def handle_search(body: ApiSearchRequest, index: SpatialIndex) -> dict[str, Any]:
    t0 = time.perf_counter()
    viewport = body.viewport.to_domain()
    result = search(
        index,
        viewport,
        body.filters.to_domain(),
        page=body.page,
        page_size=body.pageSize,
        sort=body.sort,
        settings=get_settings(),
    )
    t_search_ms = (time.perf_counter() - t0) * 1000.0

    t1 = time.perf_counter()
    payload = encode_result(result)
    t_encode_ms = (time.perf_counter() - t1) * 1000.0

    # Persist telemetry for later analysis (best-effort).
    try:
        store = get_store()
        if store is not None:
            store.record(
                endpoint="/search",
                engine=getattr(index, "name", engine_name()),
                mode=result.mode,
                level=result.meta.level,
                view_zoom=viewport.zoom,
                bounds=viewport.bounds.to_bounds(),
                total=result.total,
                stats={
                    "clusterSource": result.meta.cluster_source,
                    "mapTruncated": result.meta.map_truncated,
                    "mapItems": len(result.map_data),
                    "listItems": len(result.list_items),
                    "timingsMs": {
                        "search": round(t_search_ms, 2),
                        "encode": round(t_encode_ms, 2),
                        "total": round((time.perf_counter() - t0) * 1000.0, 2),
                    },
                },
            )
    except Exception:
        logger.debug("telemetry record failed", exc_info=True)
    return payload


def handle_get_node(node_id: str, index: SpatialIndex) -> dict[str, Any]:
    with index.snapshot() as reader:
        node = reader.get_node(node_id)
    if node is None:
        raise NodeNotFound(f"unknown node {node_id!r}")
    return encode_node(node)


def handle_node_children(
    node_id: str,
    index: SpatialIndex,
    *,
    listing_type: str | None = None,
    property_type: str | None = None,
) -> dict[str, Any]:
    filters = Filters(listing_type=listing_type, property_type=property_type)
    validate_filters(filters, get_settings().catalog)
    key = filters.category_key()
    with index.snapshot() as reader:
        if reader.get_node(node_id) is None:
            raise NodeNotFound(f"unknown node {node_id!r}")
        children = reader.node_children(node_id)
    clusters = [cluster_from_node(c, key=key) for c in children]
    clusters = sorted((c for c in clusters if c.count > 0), key=lambda c: (-c.count, c.id))
    return {"nodeId": node_id, "children": [encode_cluster(c) for c in clusters]}


def handle_index_info(index: SpatialIndex) -> dict[str, Any]:
    with index.snapshot() as reader:
        return encode_index_info(reader.info)
