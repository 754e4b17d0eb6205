from __future__ import annotations

import math
from dataclasses import dataclass

from geo.bbox import BBox


ROOT_NODE_ID = "0"


@dataclass(frozen=True)
class CellRange:
    """
    Inclusive rectangle of quadtree cells at one level.
    """

    level: int
    x0: int
    x1: int
    y0: int
    y1: int

    def contains(self, x: int, y: int) -> bool:
        return self.x0 <= x <= self.x1 and self.y0 <= y <= self.y1

    def cell_count(self) -> int:
        return (self.x1 - self.x0 + 1) * (self.y1 - self.y0 + 1)


def cells_per_side(level: int) -> int:
    return 2 ** int(level)


def _axis_index(value: float, lo: float, hi: float, n: int) -> int:
    i = int(math.floor((value - lo) / (hi - lo) * n))
    # The root's max edge belongs to the last cell.
    return max(0, min(n - 1, i))


def cell_for_point(level: int, lon: float, lat: float, root: BBox) -> tuple[int, int] | None:
    """
    Quadtree cell (x, y) at `level` containing the point, or None outside the root.

    x grows eastwards from the root's west edge, y grows northwards from its south edge.
    Cells are half-open [min, max) except along the root's east/north edges.
    """
    if not root.contains_point(lon, lat):
        return None
    n = cells_per_side(level)
    x = _axis_index(float(lon), root.min_lon, root.max_lon, n)
    y = _axis_index(float(lat), root.min_lat, root.max_lat, n)
    # Float rounding can put a point one cell past its true [min, max) cell.
    b = cell_bbox(level, x, y, root)
    if lon < b.min_lon and x > 0:
        x -= 1
    elif lon >= b.max_lon and x < n - 1:
        x += 1
    if lat < b.min_lat and y > 0:
        y -= 1
    elif lat >= b.max_lat and y < n - 1:
        y += 1
    return x, y


def cell_bbox(level: int, x: int, y: int, root: BBox) -> BBox:
    n = cells_per_side(level)
    dlon = (root.max_lon - root.min_lon) / n
    dlat = (root.max_lat - root.min_lat) / n
    return BBox(
        min_lon=root.min_lon + int(x) * dlon,
        min_lat=root.min_lat + int(y) * dlat,
        max_lon=root.max_lon if int(x) == n - 1 else root.min_lon + (int(x) + 1) * dlon,
        max_lat=root.max_lat if int(y) == n - 1 else root.min_lat + (int(y) + 1) * dlat,
    )


def parent_cell(x: int, y: int) -> tuple[int, int]:
    return int(x) >> 1, int(y) >> 1


def ancestor_cell(x: int, y: int, *, levels_up: int) -> tuple[int, int]:
    return int(x) >> int(levels_up), int(y) >> int(levels_up)


def child_cells(x: int, y: int) -> list[tuple[int, int]]:
    bx, by = int(x) << 1, int(y) << 1
    return [(bx, by + 1), (bx + 1, by + 1), (bx, by), (bx + 1, by)]


def node_id(level: int, x: int, y: int) -> str:
    """
    Quadrant path id: "0" for the root, then one of NW/NE/SW/SE per level.
    """
    parts = [ROOT_NODE_ID]
    for depth in range(int(level) - 1, -1, -1):
        ns = "N" if (int(y) >> depth) & 1 else "S"
        ew = "E" if (int(x) >> depth) & 1 else "W"
        parts.append(ns + ew)
    return ".".join(parts)


def parse_node_id(value: str) -> tuple[int, int, int]:
    """
    Inverse of `node_id`: returns (level, x, y). Raises ValueError on malformed ids.
    """
    parts = (value or "").strip().split(".")
    if not parts or parts[0] != ROOT_NODE_ID:
        raise ValueError(f"Invalid node id: {value!r}")
    x = 0
    y = 0
    for seg in parts[1:]:
        if len(seg) != 2 or seg[0] not in "NS" or seg[1] not in "EW":
            raise ValueError(f"Invalid node id segment {seg!r} in {value!r}")
        x = (x << 1) | (1 if seg[1] == "E" else 0)
        y = (y << 1) | (1 if seg[0] == "N" else 0)
    return len(parts) - 1, x, y


def cells_for_bbox(level: int, aoi: BBox, root: BBox) -> CellRange | None:
    """
    Range of cells at `level` intersecting the AOI, or None when disjoint from the root.
    """
    b = aoi.normalized()
    if not root.intersects(b):
        return None
    clipped = BBox(
        min_lon=max(b.min_lon, root.min_lon),
        min_lat=max(b.min_lat, root.min_lat),
        max_lon=min(b.max_lon, root.max_lon),
        max_lat=min(b.max_lat, root.max_lat),
    )
    sw = cell_for_point(level, clipped.min_lon, clipped.min_lat, root)
    ne = cell_for_point(level, clipped.max_lon, clipped.max_lat, root)
    if sw is None or ne is None:
        return None
    return CellRange(level=int(level), x0=sw[0], x1=ne[0], y0=sw[1], y1=ne[1])


def interior_cells(level: int, aoi: BBox, root: BBox) -> CellRange | None:
    """
    Range of cells at `level` fully inside the AOI, or None when there are none.

    Fully-contained cells form a rectangle, so one range describes them all.
    """
    touching = cells_for_bbox(level, aoi, root)
    if touching is None:
        return None
    b = aoi.normalized()
    xs = [
        x
        for x in range(touching.x0, touching.x1 + 1)
        if b.min_lon <= cell_bbox(level, x, touching.y0, root).min_lon
        and cell_bbox(level, x, touching.y0, root).max_lon <= b.max_lon
    ]
    ys = [
        y
        for y in range(touching.y0, touching.y1 + 1)
        if b.min_lat <= cell_bbox(level, touching.x0, y, root).min_lat
        and cell_bbox(level, touching.x0, y, root).max_lat <= b.max_lat
    ]
    if not xs or not ys:
        return None
    return CellRange(level=int(level), x0=min(xs), x1=max(xs), y0=min(ys), y1=max(ys))
