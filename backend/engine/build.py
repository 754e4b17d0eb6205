from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from engine.types import SpatialIndexNode
from geo.bbox import BBox
from geo.quadtree import ancestor_cell, cell_bbox, cell_for_point, node_id, parent_cell
from listings.types import PropertyRecord, record_subcategory_keys

logger = logging.getLogger(__name__)


@dataclass
class _Acc:
    count: int = 0
    sum_lat: float = 0.0
    sum_lng: float = 0.0
    sum_price: float = 0.0
    min_price: float | None = None
    max_price: float | None = None
    sub: dict[str, int] = field(default_factory=dict)

    def add_record(self, r: PropertyRecord) -> None:
        self.count += 1
        self.sum_lat += r.lat
        self.sum_lng += r.lng
        self.sum_price += r.price
        self.min_price = r.price if self.min_price is None else min(self.min_price, r.price)
        self.max_price = r.price if self.max_price is None else max(self.max_price, r.price)
        for k in record_subcategory_keys(r):
            self.sub[k] = self.sub.get(k, 0) + 1

    def merge(self, other: "_Acc") -> None:
        self.count += other.count
        self.sum_lat += other.sum_lat
        self.sum_lng += other.sum_lng
        self.sum_price += other.sum_price
        if other.min_price is not None:
            self.min_price = other.min_price if self.min_price is None else min(self.min_price, other.min_price)
        if other.max_price is not None:
            self.max_price = other.max_price if self.max_price is None else max(self.max_price, other.max_price)
        for k, v in other.sub.items():
            self.sub[k] = self.sub.get(k, 0) + v


@dataclass(frozen=True)
class BuildResult:
    version: str
    built_at: datetime
    max_level: int
    root: BBox
    nodes: list[SpatialIndexNode]
    records: list[PropertyRecord]
    # record id -> (x, y) at max_level, for records inside the root.
    leaf_cells: dict[str, tuple[int, int]]
    point_count: int
    outside_root: int


def build_tree(records: list[PropertyRecord], *, root: BBox, max_level: int) -> BuildResult:
    """
    Build every non-empty quadtree node bottom-up.

    Leaf cells are accumulated once, then each level is the merge of the level below,
    so a parent's counts equal the sum of its children's by construction.
    """
    t0 = time.perf_counter()
    built_at = datetime.now(timezone.utc)

    leaf: dict[tuple[int, int], _Acc] = {}
    leaf_cells: dict[str, tuple[int, int]] = {}
    outside = 0
    for r in records:
        cell = cell_for_point(max_level, r.lng, r.lat, root)
        if cell is None:
            outside += 1
            continue
        leaf_cells[r.id] = cell
        acc = leaf.get(cell)
        if acc is None:
            acc = _Acc()
            leaf[cell] = acc
        acc.add_record(r)

    by_level: dict[int, dict[tuple[int, int], _Acc]] = {int(max_level): leaf}
    for level in range(int(max_level), 0, -1):
        parents: dict[tuple[int, int], _Acc] = {}
        for (x, y), acc in by_level[level].items():
            p = parent_cell(x, y)
            pacc = parents.get(p)
            if pacc is None:
                pacc = _Acc()
                parents[p] = pacc
            pacc.merge(acc)
        by_level[level - 1] = parents

    nodes: list[SpatialIndexNode] = []
    for level in sorted(by_level.keys()):
        for (x, y), acc in sorted(by_level[level].items()):
            if acc.count <= 0:
                continue
            px, py = ancestor_cell(x, y, levels_up=1)
            nodes.append(
                SpatialIndexNode(
                    id=node_id(level, x, y),
                    level=level,
                    x=x,
                    y=y,
                    bounds=cell_bbox(level, x, y, root),
                    center_lat=acc.sum_lat / acc.count,
                    center_lng=acc.sum_lng / acc.count,
                    total_count=acc.count,
                    counts_by_subcategory=dict(sorted(acc.sub.items())),
                    min_price=acc.min_price,
                    max_price=acc.max_price,
                    avg_price=acc.sum_price / acc.count,
                    parent_id=node_id(level - 1, px, py) if level > 0 else None,
                    updated_at=built_at,
                )
            )

    if outside:
        logger.warning("%d of %d records lie outside the index root and won't be clustered", outside, len(records))
    logger.info(
        "built spatial tree: %d records, %d nodes, levels 0..%d in %.1f ms",
        len(records),
        len(nodes),
        max_level,
        (time.perf_counter() - t0) * 1000.0,
    )
    return BuildResult(
        version=uuid.uuid4().hex[:12],
        built_at=built_at,
        max_level=int(max_level),
        root=root,
        nodes=nodes,
        records=list(records),
        leaf_cells=leaf_cells,
        point_count=len(records),
        outside_root=outside,
    )
