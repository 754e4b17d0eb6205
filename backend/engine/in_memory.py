from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from shapely.geometry import Point
from shapely.geometry import box as shapely_box
from shapely.strtree import STRtree

from engine.build import BuildResult, build_tree
from engine.common import bounded_cache_put, dedupe_records, record_sort_key, top_nodes
from engine.types import CellAggregate, IndexInfo, SpatialIndexNode
from geo.bbox import BBox
from geo.quadtree import CellRange, ancestor_cell, child_cells, node_id, parse_node_id
from listings.types import PropertyRecord
from search.errors import IndexUnavailable
from search.types import Filters, SortOrder

logger = logging.getLogger(__name__)


@dataclass
class _Snapshot:
    """
    One immutable published index: records, STRtree over their points, and tree nodes.

    Readers hold a reference to a snapshot; a rebuild swaps in a new one and never
    mutates an old one (only the match cache is written, under its own lock).
    """

    info: IndexInfo
    records: tuple[PropertyRecord, ...]
    leaf_cells: dict[str, tuple[int, int]]
    nodes_by_level: dict[int, list[SpatialIndexNode]]
    nodes_by_id: dict[str, SpatialIndexNode]
    _tree: STRtree = field(repr=False)
    _match_cache: dict[tuple[Any, ...], tuple[int, ...]] = field(default_factory=dict, repr=False)
    _cache_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def levels(self) -> list[int]:
        return sorted(self.nodes_by_level.keys())

    def query_nodes(self, level: int, bbox: BBox, *, limit: int | None = None) -> list[SpatialIndexNode]:
        b = bbox.normalized()
        hits = [n for n in self.nodes_by_level.get(int(level), []) if n.bounds.intersects(b)]
        return top_nodes(hits, limit)

    def get_node(self, node_id_: str) -> SpatialIndexNode | None:
        return self.nodes_by_id.get(node_id_)

    def node_children(self, node_id_: str) -> list[SpatialIndexNode]:
        level, x, y = parse_node_id(node_id_)
        out = []
        for cx, cy in child_cells(x, y):
            child = self.nodes_by_id.get(node_id(level + 1, cx, cy))
            if child is not None:
                out.append(child)
        return top_nodes(out, None)

    def _matching(self, bbox: BBox, filters: Filters) -> tuple[int, ...]:
        b = bbox.normalized()
        key = (b.min_lon, b.min_lat, b.max_lon, b.max_lat, filters)
        with self._cache_lock:
            cached = self._match_cache.get(key)
        if cached is not None:
            return cached

        idxs = [int(i) for i in self._tree.query(shapely_box(b.min_lon, b.min_lat, b.max_lon, b.max_lat))]
        out = tuple(
            sorted(
                i
                for i in idxs
                if b.contains_point(self.records[i].lng, self.records[i].lat) and filters.matches(self.records[i])
            )
        )
        with self._cache_lock:
            bounded_cache_put(self._match_cache, key, out, max_items=64)
        return out

    def query_points(
        self,
        bbox: BBox,
        filters: Filters,
        *,
        sort: SortOrder = "newest",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PropertyRecord]:
        recs = sorted((self.records[i] for i in self._matching(bbox, filters)), key=record_sort_key(sort))
        start = max(0, int(offset))
        end = None if limit is None else start + max(0, int(limit))
        return recs[start:end]

    def count_points(self, bbox: BBox, filters: Filters) -> int:
        return len(self._matching(bbox, filters))

    def aggregate_cells(
        self,
        level: int,
        bbox: BBox,
        filters: Filters,
        *,
        exclude: CellRange | None = None,
    ) -> list[CellAggregate]:
        shift = self.info.max_level - int(level)
        acc: dict[tuple[int, int], list[Any]] = {}
        for i in self._matching(bbox, filters):
            r = self.records[i]
            leaf = self.leaf_cells.get(r.id)
            if leaf is None:
                continue
            cell = ancestor_cell(leaf[0], leaf[1], levels_up=shift)
            if exclude is not None and exclude.contains(*cell):
                continue
            a = acc.get(cell)
            if a is None:
                # count, sum_lat, sum_lng, min_price, max_price, sum_price
                acc[cell] = [1, r.lat, r.lng, r.price, r.price, r.price]
                continue
            a[0] += 1
            a[1] += r.lat
            a[2] += r.lng
            a[3] = min(a[3], r.price)
            a[4] = max(a[4], r.price)
            a[5] += r.price
        return [
            CellAggregate(
                level=int(level),
                x=x,
                y=y,
                count=a[0],
                sum_lat=a[1],
                sum_lng=a[2],
                min_price=a[3],
                max_price=a[4],
                sum_price=a[5],
            )
            for (x, y), a in sorted(acc.items())
        ]


class InMemorySpatialIndex:
    """
    Builds the tree in process and serves reads from an immutable snapshot.

    `publish` builds the complete snapshot first, then swaps the reference under a lock;
    readers that already hold the old snapshot keep reading it.
    """

    name = "in_memory"

    def __init__(self, *, root: BBox, max_level: int):
        self.root = root
        self.max_level = int(max_level)
        self._lock = threading.Lock()
        self._current: _Snapshot | None = None

    def publish(self, records: list[PropertyRecord]) -> IndexInfo:
        snap = _snapshot_from_build(
            build_tree(dedupe_records(records), root=self.root, max_level=self.max_level),
            engine=self.name,
        )
        with self._lock:
            self._current = snap
        logger.info("published in-memory index version=%s points=%d", snap.info.version, snap.info.point_count)
        return snap.info

    @contextmanager
    def snapshot(self) -> Iterator[_Snapshot]:
        with self._lock:
            snap = self._current
        if snap is None:
            raise IndexUnavailable("spatial index has not been published yet")
        yield snap


def _snapshot_from_build(result: BuildResult, *, engine: str) -> _Snapshot:
    records = tuple(sorted(result.records, key=lambda r: r.id))
    by_level: dict[int, list[SpatialIndexNode]] = {}
    for n in result.nodes:
        by_level.setdefault(n.level, []).append(n)
    info = IndexInfo(
        version=result.version,
        built_at=result.built_at,
        max_level=result.max_level,
        root=result.root,
        point_count=result.point_count,
        node_count=len(result.nodes),
        engine=engine,
    )
    return _Snapshot(
        info=info,
        records=records,
        leaf_cells=dict(result.leaf_cells),
        nodes_by_level=by_level,
        nodes_by_id={n.id: n for n in result.nodes},
        _tree=STRtree([Point(r.lng, r.lat) for r in records]),
    )