from __future__ import annotations

import logging
import math
import time

from engine.types import SpatialIndex
from lod.clusters import point_scan_clusters, spatial_tree_clusters
from lod.zoom import resolve_zoom
from search.types import (
    ClusterSource,
    Filters,
    ListItem,
    SearchMeta,
    SearchResult,
    SortOrder,
    Viewport,
)
from search.validate import validate_filters, validate_paging, validate_sort, validate_viewport
from settings.registry import get_settings
from settings.types import SearchSettings

logger = logging.getLogger(__name__)


def total_pages_for(total: int, page_size: int) -> int:
    if total <= 0:
        return 0
    return int(math.ceil(total / float(page_size)))


def search(
    index: SpatialIndex,
    viewport: Viewport,
    filters: Filters | None = None,
    *,
    page: int = 1,
    page_size: int | None = None,
    sort: SortOrder = "newest",
    settings: SearchSettings | None = None,
) -> SearchResult:
    """
    Unified viewport search: map data + one page of the list, against one index snapshot.

    `total` is computed once and is the count both the list pagination and the map
    summarize. Raises InvalidViewport / InvalidFilter / IndexUnavailable.
    """
    t0 = time.perf_counter()
    cfg = settings or get_settings()
    f = filters or Filters()

    validate_viewport(viewport, cfg.zoom)
    validate_filters(f, cfg.catalog)
    validate_sort(sort)
    size = validate_paging(page, page_size, cfg.limits)
    bbox = viewport.bounds

    with index.snapshot() as reader:
        res = resolve_zoom(viewport.zoom, cfg.zoom, reader.levels())
        total = reader.count_points(bbox, f)

        cluster_source: ClusterSource
        if res.mode == "individual-items":
            cluster_source = "none"
            limit = cfg.limits.maxVisibleItems
            markers = reader.query_points(bbox, f, sort="newest", limit=limit)
            map_data = tuple(ListItem.from_record(r) for r in markers)
            truncated = total > limit
        elif f.is_category_only():
            cluster_source = "spatial_tree"
            clusters, truncated = spatial_tree_clusters(
                reader, level=res.level, bbox=bbox, filters=f, max_clusters=cfg.limits.maxClusters
            )
            map_data = tuple(clusters)
        else:
            cluster_source = "point_scan"
            clusters, truncated = point_scan_clusters(
                reader, level=res.level, bbox=bbox, filters=f, max_clusters=cfg.limits.maxClusters
            )
            map_data = tuple(clusters)

        rows = reader.query_points(bbox, f, sort=sort, limit=size, offset=(page - 1) * size)
        version = reader.info.version

    duration_ms = (time.perf_counter() - t0) * 1000.0
    logger.debug(
        "search mode=%s level=%d source=%s total=%d page=%d in %.1f ms",
        res.mode,
        res.level,
        cluster_source,
        total,
        page,
        duration_ms,
    )
    return SearchResult(
        mode=res.mode,
        map_data=map_data,
        list_items=tuple(ListItem.from_record(r) for r in rows),
        total=total,
        page=page,
        page_size=size,
        total_pages=total_pages_for(total, size),
        meta=SearchMeta(
            duration_ms=round(duration_ms, 2),
            level=res.level,
            cluster_source=cluster_source,
            index_version=version,
            map_truncated=bool(truncated),
        ),
    )
