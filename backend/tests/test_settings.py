from __future__ import annotations

import pytest
import yaml
from pydantic import ValidationError

from geo.bbox import BBox
from settings.registry import clear_settings_cache, config_path, get_settings, load_settings, root_bbox


def test_repo_config_loads():
    cfg = load_settings(config_path())
    assert cfg.index.maxLevel == 8
    assert cfg.zoom.individualItemsZoom == 14
    assert cfg.limits.maxClusters == 500
    assert "rent" in cfg.catalog.listingTypes
    assert root_bbox(cfg) == BBox(min_lon=-118.5, min_lat=14.0, max_lon=-86.0, max_lat=33.0)


def test_missing_file_falls_back_to_defaults(tmp_path):
    cfg = load_settings(tmp_path / "missing.yaml")
    assert cfg.limits.defaultPageSize == 20
    assert cfg.client.debounceMs == 300


def test_env_override_and_cache(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text(yaml.safe_dump({"limits": {"maxPageSize": 10, "defaultPageSize": 5}}), encoding="utf-8")
    monkeypatch.setenv("MAPSEARCH_CONFIG", str(path))
    clear_settings_cache()
    try:
        assert get_settings().limits.maxPageSize == 10
        path.write_text(yaml.safe_dump({"limits": {"maxPageSize": 30}}), encoding="utf-8")
        # Cached until cleared.
        assert get_settings().limits.maxPageSize == 10
        clear_settings_cache()
        assert get_settings().limits.maxPageSize == 30
    finally:
        clear_settings_cache()


def test_invalid_yaml_is_rejected(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path)

    path.write_text(yaml.safe_dump({"limits": {"maxClusters": 0}}), encoding="utf-8")
    with pytest.raises(ValidationError):
        load_settings(path)
