from __future__ import annotations

from typing import Any

from engine.types import IndexInfo, SpatialIndexNode
from geo.bbox import BBox
from search.types import (
    Cluster,
    Filters,
    ListItem,
    SearchMeta,
    SearchResult,
    Viewport,
)

# Filters field <-> wire key.
_FILTER_KEYS: dict[str, str] = {
    "listing_type": "listingType",
    "property_type": "propertyType",
    "min_price": "minPrice",
    "max_price": "maxPrice",
    "min_bedrooms": "minBedrooms",
    "max_bedrooms": "maxBedrooms",
    "min_bathrooms": "minBathrooms",
    "min_area": "minArea",
    "max_area": "maxArea",
    "region": "region",
}


def _drop_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def encode_bbox(b: BBox) -> dict[str, float]:
    return b.to_bounds()


def decode_bbox(d: dict[str, Any]) -> BBox:
    return BBox.from_bounds(
        north=float(d["north"]),
        south=float(d["south"]),
        east=float(d["east"]),
        west=float(d["west"]),
    )


def encode_viewport(v: Viewport) -> dict[str, Any]:
    return {"bounds": encode_bbox(v.bounds), "zoom": float(v.zoom), "center": v.center_point()}


def encode_filters(f: Filters) -> dict[str, Any]:
    return _drop_none({wire: getattr(f, attr) for attr, wire in _FILTER_KEYS.items()})


def encode_cluster(c: Cluster) -> dict[str, Any]:
    return _drop_none(
        {
            "id": c.id,
            "lat": c.lat,
            "lng": c.lng,
            "count": c.count,
            "avgPrice": c.avg_price,
            "minPrice": c.min_price,
            "maxPrice": c.max_price,
            "bounds": encode_bbox(c.bounds) if c.bounds is not None else None,
        }
    )


def decode_cluster(d: dict[str, Any]) -> Cluster:
    return Cluster(
        id=str(d["id"]),
        lat=float(d["lat"]),
        lng=float(d["lng"]),
        count=int(d["count"]),
        avg_price=d.get("avgPrice"),
        min_price=d.get("minPrice"),
        max_price=d.get("maxPrice"),
        bounds=decode_bbox(d["bounds"]) if d.get("bounds") else None,
    )


def encode_list_item(i: ListItem) -> dict[str, Any]:
    return {
        "id": i.id,
        "lat": i.lat,
        "lng": i.lng,
        "price": i.price,
        "currency": i.currency,
        "listingType": i.listing_type,
        "propertyType": i.property_type,
        "title": i.title,
        "bedrooms": i.bedrooms,
        "bathrooms": i.bathrooms,
        "address": i.address,
        "neighborhood": i.neighborhood,
        "city": i.city,
        "region": i.region,
    }


def decode_list_item(d: dict[str, Any]) -> ListItem:
    return ListItem(
        id=str(d["id"]),
        lat=float(d["lat"]),
        lng=float(d["lng"]),
        price=float(d["price"]),
        currency=str(d.get("currency") or ""),
        listing_type=str(d["listingType"]),
        property_type=str(d["propertyType"]),
        title=str(d.get("title") or ""),
        bedrooms=d.get("bedrooms"),
        bathrooms=d.get("bathrooms"),
        address=d.get("address"),
        neighborhood=d.get("neighborhood"),
        city=d.get("city"),
        region=d.get("region"),
    )


def encode_result(r: SearchResult) -> dict[str, Any]:
    if r.mode == "clusters":
        map_data = [encode_cluster(c) for c in r.clusters]
    else:
        map_data = [encode_list_item(i) for i in r.markers]
    return {
        "mode": r.mode,
        "mapData": map_data,
        "listItems": [encode_list_item(i) for i in r.list_items],
        "total": r.total,
        "page": r.page,
        "pageSize": r.page_size,
        "totalPages": r.total_pages,
        "meta": {
            "durationMs": r.meta.duration_ms,
            "level": r.meta.level,
            "clusterSource": r.meta.cluster_source,
            "indexVersion": r.meta.index_version,
            "mapTruncated": r.meta.map_truncated,
        },
    }


def decode_result(d: dict[str, Any]) -> SearchResult:
    mode = d["mode"]
    if mode == "clusters":
        map_data: tuple = tuple(decode_cluster(c) for c in d.get("mapData") or [])
    else:
        map_data = tuple(decode_list_item(i) for i in d.get("mapData") or [])
    meta = d.get("meta") or {}
    return SearchResult(
        mode=mode,
        map_data=map_data,
        list_items=tuple(decode_list_item(i) for i in d.get("listItems") or []),
        total=int(d["total"]),
        page=int(d["page"]),
        page_size=int(d["pageSize"]),
        total_pages=int(d["totalPages"]),
        meta=SearchMeta(
            duration_ms=float(meta.get("durationMs") or 0.0),
            level=int(meta.get("level") or 0),
            cluster_source=meta.get("clusterSource") or "none",
            index_version=str(meta.get("indexVersion") or ""),
            map_truncated=bool(meta.get("mapTruncated")),
        ),
    )


def encode_request(
    viewport: Viewport,
    filters: Filters,
    *,
    page: int = 1,
    page_size: int | None = None,
    sort: str = "newest",
) -> dict[str, Any]:
    return _drop_none(
        {
            "viewport": encode_viewport(viewport),
            "filters": encode_filters(filters),
            "page": page,
            "pageSize": page_size,
            "sort": sort,
        }
    )


def encode_node(n: SpatialIndexNode) -> dict[str, Any]:
    return {
        "id": n.id,
        "level": n.level,
        "parentId": n.parent_id,
        "bounds": encode_bbox(n.bounds),
        "center": {"lat": n.center_lat, "lng": n.center_lng},
        "totalCount": n.total_count,
        "countsBySubcategory": dict(n.counts_by_subcategory),
        "minPrice": n.min_price,
        "maxPrice": n.max_price,
        "avgPrice": n.avg_price,
        "updatedAt": n.updated_at.isoformat() if n.updated_at is not None else None,
    }


def encode_index_info(info: IndexInfo) -> dict[str, Any]:
    return {
        "version": info.version,
        "builtAt": info.built_at.isoformat(),
        "engine": info.engine,
        "maxLevel": info.max_level,
        "root": encode_bbox(info.root),
        "pointCount": info.point_count,
        "nodeCount": info.node_count,
    }
