from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from geo.bbox import BBox
from geo.quadtree import CellRange
from listings.types import PropertyRecord
from search.types import Filters, SortOrder


@dataclass(frozen=True)
class SpatialIndexNode:
    """
    One materialized quadtree node with pre-aggregated counts.

    `counts_by_subcategory` is keyed by `listings.types.subcategory_key`; the node
    total lives in `total_count`. Price stats cover every point in the node.
    """

    id: str
    level: int
    x: int
    y: int
    bounds: BBox
    # Mean position of member points; (lat, lng).
    center_lat: float
    center_lng: float
    total_count: int
    counts_by_subcategory: dict[str, int] = field(default_factory=dict)
    min_price: float | None = None
    max_price: float | None = None
    avg_price: float | None = None
    parent_id: str | None = None
    updated_at: datetime | None = None

    def count_for(self, key: str | None) -> int:
        if key is None:
            return int(self.total_count)
        return int(self.counts_by_subcategory.get(key, 0))


@dataclass(frozen=True)
class CellAggregate:
    """
    Matching points grouped by quadtree cell (computed per query, exact).
    """

    level: int
    x: int
    y: int
    count: int
    sum_lat: float
    sum_lng: float
    min_price: float | None
    max_price: float | None
    sum_price: float


@dataclass(frozen=True)
class IndexInfo:
    version: str
    built_at: datetime
    max_level: int
    root: BBox
    point_count: int
    node_count: int = 0
    engine: str = ""


class IndexReader(Protocol):
    """
    Read-only view over one published index snapshot.

    Every call on a reader sees the same data, even if a rebuild publishes meanwhile.
    """

    @property
    def info(self) -> IndexInfo: ...

    def levels(self) -> list[int]: ...

    def query_nodes(self, level: int, bbox: BBox, *, limit: int | None = None) -> list[SpatialIndexNode]: ...

    def get_node(self, node_id: str) -> SpatialIndexNode | None: ...

    def node_children(self, node_id: str) -> list[SpatialIndexNode]: ...

    def query_points(
        self,
        bbox: BBox,
        filters: Filters,
        *,
        sort: SortOrder = "newest",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PropertyRecord]: ...

    def count_points(self, bbox: BBox, filters: Filters) -> int: ...

    def aggregate_cells(
        self,
        level: int,
        bbox: BBox,
        filters: Filters,
        *,
        exclude: CellRange | None = None,
    ) -> list[CellAggregate]: ...


class SpatialIndex(Protocol):
    """
    Index backend interface.

    - InMemorySpatialIndex: immutable snapshot + shapely STRtree
    - DuckDBSpatialIndex: tables in a DuckDB file, MVCC snapshots per reader
    """

    name: str

    def publish(self, records: list[PropertyRecord]) -> IndexInfo: ...

    def snapshot(self) -> AbstractContextManager[IndexReader]: ...
