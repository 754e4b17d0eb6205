from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml

from geo.bbox import BBox
from settings.types import SearchSettings


def _repo_root() -> Path:
    # .../backend/settings/registry.py -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


def config_path() -> Path:
    raw = (os.getenv("MAPSEARCH_CONFIG") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return _repo_root() / "config" / "search.yaml"


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid settings yaml root: {path}")
    return data


def load_settings(path: Path | None = None) -> SearchSettings:
    p = path or config_path()
    if not p.exists():
        # No file: built-in defaults.
        return SearchSettings()
    return SearchSettings.model_validate(_load_yaml(p))


@lru_cache(maxsize=1)
def get_settings() -> SearchSettings:
    return load_settings()


def root_bbox(settings: SearchSettings) -> BBox:
    rb = settings.index.rootBounds
    return BBox.from_bounds(north=rb.north, south=rb.south, east=rb.east, west=rb.west)


def resolve_repo_path(repo_relative: str) -> Path:
    # Allow both "data/..." and "/data/..." inputs (normalize to repo-relative).
    p = Path(repo_relative).expanduser()
    if p.is_absolute() and p.exists():
        return p
    return _repo_root() / (repo_relative or "").lstrip("/")


def clear_settings_cache() -> None:
    """
    Drop the cached settings so YAML/env changes are picked up without a restart.
    """
    get_settings.cache_clear()
