from __future__ import annotations

from typing import Iterable

from engine.types import CellAggregate, IndexReader, SpatialIndexNode
from geo.bbox import BBox
from geo.quadtree import cell_bbox, interior_cells, node_id
from search.types import Cluster, Filters


def cluster_from_node(node: SpatialIndexNode, *, key: str | None = None) -> Cluster:
    """
    Precomputed node -> cluster. Price stats only when the count is the node total.
    """
    exact_prices = key is None
    return Cluster(
        id=node.id,
        lat=node.center_lat,
        lng=node.center_lng,
        count=node.count_for(key),
        avg_price=node.avg_price if exact_prices else None,
        min_price=node.min_price if exact_prices else None,
        max_price=node.max_price if exact_prices else None,
        bounds=node.bounds,
    )


def cluster_from_cells(agg: CellAggregate, *, root: BBox) -> Cluster:
    return Cluster(
        id=node_id(agg.level, agg.x, agg.y),
        lat=agg.sum_lat / agg.count,
        lng=agg.sum_lng / agg.count,
        count=agg.count,
        avg_price=agg.sum_price / agg.count,
        min_price=agg.min_price,
        max_price=agg.max_price,
        bounds=cell_bbox(agg.level, agg.x, agg.y, root),
    )


def cap_clusters(clusters: Iterable[Cluster], max_clusters: int) -> tuple[list[Cluster], bool]:
    """
    Drop empty clusters, keep the top `max_clusters` by count (id breaks ties).
    Returns (clusters, truncated).
    """
    ordered = sorted((c for c in clusters if c.count > 0), key=lambda c: (-c.count, c.id))
    cap = max(0, int(max_clusters))
    return ordered[:cap], len(ordered) > cap


def spatial_tree_clusters(
    reader: IndexReader,
    *,
    level: int,
    bbox: BBox,
    filters: Filters,
    max_clusters: int,
) -> tuple[list[Cluster], bool]:
    """
    Clusters from precomputed node counts (category filters only).

    Nodes entirely inside the viewport contribute their stored counts. Nodes cut by the
    viewport edge are recounted from the points actually visible, so no cluster counts
    points the list can't show.
    """
    root = reader.info.root
    interior = interior_cells(level, bbox, root)
    key = filters.category_key()

    out: list[Cluster] = []
    if interior is not None:
        for n in reader.query_nodes(level, bbox):
            if interior.contains(n.x, n.y):
                out.append(cluster_from_node(n, key=key))

    for agg in reader.aggregate_cells(level, bbox, filters, exclude=interior):
        out.append(cluster_from_cells(agg, root=root))
    return cap_clusters(out, max_clusters)


def point_scan_clusters(
    reader: IndexReader,
    *,
    level: int,
    bbox: BBox,
    filters: Filters,
    max_clusters: int,
) -> tuple[list[Cluster], bool]:
    """
    Clusters aggregated from every matching point (numeric/region filters).
    """
    root = reader.info.root
    return cap_clusters(
        (cluster_from_cells(agg, root=root) for agg in reader.aggregate_cells(level, bbox, filters)),
        max_clusters,
    )
