from __future__ import annotations

import os
from typing import Iterable

from engine.types import SpatialIndexNode
from listings.types import PropertyRecord
from search.types import SortOrder


def duckdb_threads() -> int:
    raw = (os.getenv("MAPSEARCH_DUCKDB_THREADS") or "").strip()
    if raw:
        try:
            return max(1, int(raw))
        except ValueError:
            pass
    return max(1, int(os.cpu_count() or 1))


def bounded_cache_put(cache: dict, key, value, *, max_items: int) -> None:
    cache[key] = value
    if len(cache) > max_items:
        oldest = next(iter(cache.keys()))
        if oldest != key:
            cache.pop(oldest, None)


def dedupe_records(records: Iterable[PropertyRecord]) -> list[PropertyRecord]:
    # Last record wins for a repeated id.
    by_id: dict[str, PropertyRecord] = {}
    for r in records:
        by_id[r.id] = r
    return list(by_id.values())


def record_sort_key(sort: SortOrder):
    """
    Total order over records for `sort`; ties always break on id ascending.
    """
    if sort == "price_asc":
        return lambda r: (r.price, r.id)
    if sort == "price_desc":
        return lambda r: (-r.price, r.id)
    return lambda r: (-r.created_ms, r.id)


def top_nodes(nodes: Iterable[SpatialIndexNode], limit: int | None) -> list[SpatialIndexNode]:
    """
    Order by count desc then id; keep the first `limit`.
    """
    ordered = sorted((n for n in nodes if n.total_count > 0), key=lambda n: (-n.total_count, n.id))
    if limit is not None:
        ordered = ordered[: max(0, int(limit))]
    return ordered
