from __future__ import annotations

import json
from typing import Any

import duckdb

from engine.types import CellAggregate, SpatialIndexNode
from geo.bbox import BBox
from geo.quadtree import CellRange
from listings.types import PropertyRecord, datetime_to_ms, ms_to_datetime
from search.types import Filters, SortOrder


PROPERTY_COLUMNS = (
    "id, lat, lng, price, currency, listing_type, property_type, title, bedrooms, bathrooms, "
    "area_m2, address, neighborhood, city, region, created_ms"
)

NODE_COLUMNS = (
    "id, level, x, y, min_lon, min_lat, max_lon, max_lat, center_lat, center_lng, parent_id, "
    "total_count, counts_json, min_price, max_price, avg_price, updated_ms"
)

_ORDER_BY: dict[str, str] = {
    "newest": "created_ms DESC, id ASC",
    "price_asc": "price ASC, id ASC",
    "price_desc": "price DESC, id ASC",
}


def init_schema(conn: duckdb.DuckDBPyConnection) -> None:
    # No PRIMARY KEYs: a publish deletes and reinserts every row in one transaction.
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS properties (
          id TEXT,
          lat DOUBLE,
          lng DOUBLE,
          price DOUBLE,
          currency TEXT,
          listing_type TEXT,
          property_type TEXT,
          title TEXT,
          bedrooms INTEGER,
          bathrooms DOUBLE,
          area_m2 DOUBLE,
          address TEXT,
          neighborhood TEXT,
          city TEXT,
          region TEXT,
          created_ms BIGINT,
          leaf_x INTEGER,
          leaf_y INTEGER
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS spatial_tree_nodes (
          id TEXT,
          level INTEGER,
          x INTEGER,
          y INTEGER,
          min_lon DOUBLE,
          min_lat DOUBLE,
          max_lon DOUBLE,
          max_lat DOUBLE,
          center_lat DOUBLE,
          center_lng DOUBLE,
          parent_id TEXT,
          total_count BIGINT,
          counts_json TEXT,
          min_price DOUBLE,
          max_price DOUBLE,
          avg_price DOUBLE,
          updated_ms BIGINT
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS index_meta (
          version TEXT,
          built_ms BIGINT,
          max_level INTEGER,
          root_min_lon DOUBLE,
          root_min_lat DOUBLE,
          root_max_lon DOUBLE,
          root_max_lat DOUBLE,
          point_count BIGINT,
          node_count BIGINT
        );
        """
    )


def property_row(r: PropertyRecord, leaf: tuple[int, int] | None) -> tuple:
    return (
        r.id,
        r.lat,
        r.lng,
        r.price,
        r.currency,
        r.listing_type,
        r.property_type,
        r.title,
        r.bedrooms,
        r.bathrooms,
        r.area_m2,
        r.address,
        r.neighborhood,
        r.city,
        r.region,
        r.created_ms,
        leaf[0] if leaf else None,
        leaf[1] if leaf else None,
    )


def node_row(n: SpatialIndexNode) -> tuple:
    return (
        n.id,
        n.level,
        n.x,
        n.y,
        n.bounds.min_lon,
        n.bounds.min_lat,
        n.bounds.max_lon,
        n.bounds.max_lat,
        n.center_lat,
        n.center_lng,
        n.parent_id,
        n.total_count,
        json.dumps(n.counts_by_subcategory, sort_keys=True),
        n.min_price,
        n.max_price,
        n.avg_price,
        datetime_to_ms(n.updated_at) if n.updated_at is not None else None,
    )


def decode_property(row: tuple) -> PropertyRecord:
    (rid, lat, lng, price, currency, lt, pt, title, beds, baths, area, address, hood, city, region, created_ms) = row
    return PropertyRecord(
        id=str(rid),
        lat=float(lat),
        lng=float(lng),
        price=float(price),
        currency=str(currency),
        listing_type=str(lt),
        property_type=str(pt),
        title=str(title or ""),
        created_at=ms_to_datetime(int(created_ms)),
        bedrooms=int(beds) if beds is not None else None,
        bathrooms=float(baths) if baths is not None else None,
        area_m2=float(area) if area is not None else None,
        address=address,
        neighborhood=hood,
        city=city,
        region=region,
    )


def decode_node(row: tuple) -> SpatialIndexNode:
    (
        nid,
        level,
        x,
        y,
        min_lon,
        min_lat,
        max_lon,
        max_lat,
        center_lat,
        center_lng,
        parent_id,
        total,
        counts_json,
        min_price,
        max_price,
        avg_price,
        updated_ms,
    ) = row
    return SpatialIndexNode(
        id=str(nid),
        level=int(level),
        x=int(x),
        y=int(y),
        bounds=BBox(min_lon=float(min_lon), min_lat=float(min_lat), max_lon=float(max_lon), max_lat=float(max_lat)),
        center_lat=float(center_lat),
        center_lng=float(center_lng),
        total_count=int(total),
        counts_by_subcategory={str(k): int(v) for k, v in json.loads(counts_json or "{}").items()},
        min_price=float(min_price) if min_price is not None else None,
        max_price=float(max_price) if max_price is not None else None,
        avg_price=float(avg_price) if avg_price is not None else None,
        parent_id=str(parent_id) if parent_id is not None else None,
        updated_at=ms_to_datetime(int(updated_ms)) if updated_ms is not None else None,
    )


def points_where(bbox: BBox, filters: Filters) -> tuple[str, list[Any]]:
    """
    WHERE clause (closed bbox + filters) and its positional params.
    """
    b = bbox.normalized()
    clauses = ["lng >= ?", "lng <= ?", "lat >= ?", "lat <= ?"]
    params: list[Any] = [b.min_lon, b.max_lon, b.min_lat, b.max_lat]

    def add(sql: str, value: Any) -> None:
        clauses.append(sql)
        params.append(value)

    if filters.listing_type is not None:
        add("listing_type = ?", filters.listing_type)
    if filters.property_type is not None:
        add("property_type = ?", filters.property_type)
    if filters.min_price is not None:
        add("price >= ?", float(filters.min_price))
    if filters.max_price is not None:
        add("price <= ?", float(filters.max_price))
    # NULL bedrooms/bathrooms/area never satisfy a comparison.
    if filters.min_bedrooms is not None:
        add("bedrooms >= ?", int(filters.min_bedrooms))
    if filters.max_bedrooms is not None:
        add("bedrooms <= ?", int(filters.max_bedrooms))
    if filters.min_bathrooms is not None:
        add("bathrooms >= ?", float(filters.min_bathrooms))
    if filters.min_area is not None:
        add("area_m2 >= ?", float(filters.min_area))
    if filters.max_area is not None:
        add("area_m2 <= ?", float(filters.max_area))
    if filters.region is not None:
        add("region = ?", filters.region)
    return " AND ".join(clauses), params


def query_points_rows(
    conn: duckdb.DuckDBPyConnection,
    *,
    bbox: BBox,
    filters: Filters,
    sort: SortOrder,
    limit: int | None,
    offset: int,
) -> list[tuple]:
    where_sql, params = points_where(bbox, filters)
    limit_sql = f"LIMIT {int(limit)}" if limit is not None else ""
    return conn.execute(
        f"""
        SELECT {PROPERTY_COLUMNS}
          FROM properties
         WHERE {where_sql}
         ORDER BY {_ORDER_BY.get(sort, _ORDER_BY['newest'])}
         {limit_sql}
         OFFSET {max(0, int(offset))}
        """,
        params,
    ).fetchall()


def count_points(conn: duckdb.DuckDBPyConnection, *, bbox: BBox, filters: Filters) -> int:
    where_sql, params = points_where(bbox, filters)
    row = conn.execute(f"SELECT COUNT(*) FROM properties WHERE {where_sql}", params).fetchone()
    return int(row[0] or 0) if row else 0


def aggregate_cells_rows(
    conn: duckdb.DuckDBPyConnection,
    *,
    level: int,
    shift: int,
    bbox: BBox,
    filters: Filters,
    exclude: CellRange | None,
) -> list[CellAggregate]:
    where_sql, params = points_where(bbox, filters)
    cx = f"(leaf_x >> {int(shift)})"
    cy = f"(leaf_y >> {int(shift)})"
    exclude_sql = ""
    if exclude is not None:
        exclude_sql = f"AND NOT ({cx} BETWEEN ? AND ? AND {cy} BETWEEN ? AND ?)"
        params = [*params, exclude.x0, exclude.x1, exclude.y0, exclude.y1]
    rows = conn.execute(
        f"""
        SELECT {cx} AS cx,
               {cy} AS cy,
               COUNT(*) AS n,
               SUM(lat) AS sum_lat,
               SUM(lng) AS sum_lng,
               MIN(price) AS min_price,
               MAX(price) AS max_price,
               SUM(price) AS sum_price
          FROM properties
         WHERE leaf_x IS NOT NULL
           AND {where_sql}
           {exclude_sql}
         GROUP BY 1, 2
         ORDER BY 1, 2
        """,
        params,
    ).fetchall()
    return [
        CellAggregate(
            level=int(level),
            x=int(x),
            y=int(y),
            count=int(n),
            sum_lat=float(sum_lat),
            sum_lng=float(sum_lng),
            min_price=float(min_price) if min_price is not None else None,
            max_price=float(max_price) if max_price is not None else None,
            sum_price=float(sum_price or 0.0),
        )
        for x, y, n, sum_lat, sum_lng, min_price, max_price, sum_price in rows
    ]


def query_nodes_rows(
    conn: duckdb.DuckDBPyConnection,
    *,
    level: int,
    bbox: BBox,
    limit: int | None,
) -> list[tuple]:
    b = bbox.normalized()
    limit_sql = f"LIMIT {max(0, int(limit))}" if limit is not None else ""
    return conn.execute(
        f"""
        SELECT {NODE_COLUMNS}
          FROM spatial_tree_nodes
         WHERE level = ?
           AND total_count > 0
           AND max_lon >= ? AND min_lon <= ? AND max_lat >= ? AND min_lat <= ?
         ORDER BY total_count DESC, id ASC
         {limit_sql}
        """,
        [int(level), b.min_lon, b.max_lon, b.min_lat, b.max_lat],
    ).fetchall()
