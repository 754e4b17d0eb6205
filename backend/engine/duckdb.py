from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import duckdb

from engine.build import build_tree
from engine.common import dedupe_records, duckdb_threads
from engine.duckdb_sql import (
    NODE_COLUMNS,
    aggregate_cells_rows,
    count_points,
    decode_node,
    decode_property,
    init_schema,
    node_row,
    property_row,
    query_nodes_rows,
    query_points_rows,
)
from engine.types import CellAggregate, IndexInfo, SpatialIndexNode
from geo.bbox import BBox
from geo.quadtree import CellRange
from listings.types import PropertyRecord, datetime_to_ms, ms_to_datetime
from search.errors import IndexUnavailable
from search.types import Filters, SortOrder

logger = logging.getLogger(__name__)


class _DuckDBReader:
    """
    Reader bound to one cursor with an open transaction (one MVCC snapshot).
    """

    def __init__(self, cur: duckdb.DuckDBPyConnection, info: IndexInfo):
        self._cur = cur
        self.info = info

    def levels(self) -> list[int]:
        rows = self._run(
            "SELECT DISTINCT level FROM spatial_tree_nodes WHERE total_count > 0 ORDER BY level",
            [],
        )
        return [int(r[0]) for r in rows]

    def query_nodes(self, level: int, bbox: BBox, *, limit: int | None = None) -> list[SpatialIndexNode]:
        try:
            rows = query_nodes_rows(self._cur, level=level, bbox=bbox, limit=limit)
        except duckdb.Error as e:
            raise IndexUnavailable(f"node query failed: {e}") from e
        return [decode_node(r) for r in rows]

    def get_node(self, node_id: str) -> SpatialIndexNode | None:
        rows = self._run(f"SELECT {NODE_COLUMNS} FROM spatial_tree_nodes WHERE id = ?", [str(node_id)])
        return decode_node(rows[0]) if rows else None

    def node_children(self, node_id: str) -> list[SpatialIndexNode]:
        rows = self._run(
            f"""
            SELECT {NODE_COLUMNS}
              FROM spatial_tree_nodes
             WHERE parent_id = ? AND total_count > 0
             ORDER BY total_count DESC, id ASC
            """,
            [str(node_id)],
        )
        return [decode_node(r) for r in rows]

    def query_points(
        self,
        bbox: BBox,
        filters: Filters,
        *,
        sort: SortOrder = "newest",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PropertyRecord]:
        try:
            rows = query_points_rows(self._cur, bbox=bbox, filters=filters, sort=sort, limit=limit, offset=offset)
        except duckdb.Error as e:
            raise IndexUnavailable(f"point query failed: {e}") from e
        return [decode_property(r) for r in rows]

    def count_points(self, bbox: BBox, filters: Filters) -> int:
        try:
            return count_points(self._cur, bbox=bbox, filters=filters)
        except duckdb.Error as e:
            raise IndexUnavailable(f"count query failed: {e}") from e

    def aggregate_cells(
        self,
        level: int,
        bbox: BBox,
        filters: Filters,
        *,
        exclude: CellRange | None = None,
    ) -> list[CellAggregate]:
        try:
            return aggregate_cells_rows(
                self._cur,
                level=level,
                shift=self.info.max_level - int(level),
                bbox=bbox,
                filters=filters,
                exclude=exclude,
            )
        except duckdb.Error as e:
            raise IndexUnavailable(f"cell aggregation failed: {e}") from e

    def _run(self, sql: str, params: list) -> list[tuple]:
        try:
            return self._cur.execute(sql, params).fetchall()
        except duckdb.Error as e:
            raise IndexUnavailable(f"index query failed: {e}") from e


class DuckDBSpatialIndex:
    """
    DuckDB-backed spatial index.

    - `publish` builds the tree in Python and replaces all three tables in one transaction.
    - Each `snapshot()` opens a transaction on a per-thread cursor, so a reader never sees
      a half-published index.
    """

    name = "duckdb"

    def __init__(self, *, root: BBox, max_level: int, path: str | None = None, threads: int | None = None):
        self.root = root
        self.max_level = int(max_level)
        self.path = path or duckdb_path()
        self.threads = int(threads or duckdb_threads())
        self._conn = _connect(self.path, threads=self.threads)
        init_schema(self._conn)
        self._write_lock = threading.Lock()
        self._local = threading.local()

    def close(self) -> None:
        self._conn.close()

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        c = getattr(self._local, "cur", None)
        if c is None:
            c = self._conn.cursor()
            self._local.cur = c
        return c

    def publish(self, records: list[PropertyRecord]) -> IndexInfo:
        t0 = time.perf_counter()
        result = build_tree(dedupe_records(records), root=self.root, max_level=self.max_level)
        info = IndexInfo(
            version=result.version,
            built_at=result.built_at,
            max_level=result.max_level,
            root=result.root,
            point_count=result.point_count,
            node_count=len(result.nodes),
            engine=self.name,
        )

        prop_rows = [property_row(r, result.leaf_cells.get(r.id)) for r in result.records]
        node_rows = [node_row(n) for n in result.nodes]
        with self._write_lock:
            cur = self._conn.cursor()
            try:
                cur.begin()
                cur.execute("DELETE FROM properties")
                cur.execute("DELETE FROM spatial_tree_nodes")
                cur.execute("DELETE FROM index_meta")
                if prop_rows:
                    cur.executemany(
                        "INSERT INTO properties VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        prop_rows,
                    )
                if node_rows:
                    cur.executemany(
                        "INSERT INTO spatial_tree_nodes VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        node_rows,
                    )
                cur.execute(
                    "INSERT INTO index_meta VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        info.version,
                        datetime_to_ms(info.built_at),
                        info.max_level,
                        info.root.min_lon,
                        info.root.min_lat,
                        info.root.max_lon,
                        info.root.max_lat,
                        info.point_count,
                        info.node_count,
                    ],
                )
                cur.commit()
            except duckdb.Error:
                cur.rollback()
                raise
            finally:
                cur.close()

        logger.info(
            "published duckdb index version=%s points=%d nodes=%d in %.1f ms (%s)",
            info.version,
            info.point_count,
            info.node_count,
            (time.perf_counter() - t0) * 1000.0,
            self.path,
        )
        return info

    @contextmanager
    def snapshot(self) -> Iterator[_DuckDBReader]:
        cur = self._cursor()
        depth = int(getattr(self._local, "depth", 0))
        if depth == 0:
            try:
                cur.begin()
            except duckdb.Error as e:
                raise IndexUnavailable(f"cannot open index snapshot: {e}") from e
        self._local.depth = depth + 1
        try:
            yield _DuckDBReader(cur, _read_info(cur, engine=self.name))
        finally:
            self._local.depth = depth
            if depth == 0:
                # Read-only transaction; rollback just releases the snapshot.
                cur.rollback()


def _read_info(cur: duckdb.DuckDBPyConnection, *, engine: str) -> IndexInfo:
    try:
        row = cur.execute(
            """
            SELECT version, built_ms, max_level, root_min_lon, root_min_lat, root_max_lon, root_max_lat,
                   point_count, node_count
              FROM index_meta
             LIMIT 1
            """
        ).fetchone()
    except duckdb.Error as e:
        raise IndexUnavailable(f"index metadata unreadable: {e}") from e
    if row is None:
        raise IndexUnavailable("spatial index has not been published yet")
    version, built_ms, max_level, min_lon, min_lat, max_lon, max_lat, point_count, node_count = row
    return IndexInfo(
        version=str(version),
        built_at=ms_to_datetime(int(built_ms)),
        max_level=int(max_level),
        root=BBox(min_lon=float(min_lon), min_lat=float(min_lat), max_lon=float(max_lon), max_lat=float(max_lat)),
        point_count=int(point_count),
        node_count=int(node_count),
        engine=engine,
    )


def duckdb_path() -> str:
    raw = (os.getenv("MAPSEARCH_DUCKDB_PATH") or "").strip()
    return raw or ":memory:"


def _connect(path: str, *, threads: int) -> duckdb.DuckDBPyConnection:
    if path != ":memory:":
        p = Path(path)
        if p.parent and str(p.parent) not in {".", ""}:
            p.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(database=str(path), read_only=False, config={"threads": int(threads)})
