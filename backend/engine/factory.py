from __future__ import annotations

import os

from engine.types import SpatialIndex
from settings.registry import root_bbox
from settings.types import SearchSettings


def engine_name() -> str:
    raw = (os.getenv("MAPSEARCH_ENGINE") or "").strip().lower()
    if raw in {"duckdb", "in_memory"}:
        return raw
    return "in_memory"


def make_index(settings: SearchSettings, *, engine: str | None = None) -> SpatialIndex:
    name = (engine or engine_name()).strip().lower()
    root = root_bbox(settings)
    if name == "duckdb":
        from engine.duckdb import DuckDBSpatialIndex

        return DuckDBSpatialIndex(root=root, max_level=settings.index.maxLevel)
    if name == "in_memory":
        from engine.in_memory import InMemorySpatialIndex

        return InMemorySpatialIndex(root=root, max_level=settings.index.maxLevel)
    raise ValueError(f"Unknown engine: {engine!r}")
