from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from lod.zoom import resolve_zoom
from search.errors import InvalidViewport
from settings.types import SearchSettings, ZoomPolicy


@pytest.mark.parametrize(
    "zoom,level",
    [
        (0, 1),
        (5.9, 1),
        (6, 2),
        (7.5, 2),
        (8, 3),
        (11, 4),
        (12, 5),
        (13.99, 5),
        (14, 6),
        (15, 6),
        (16, 7),
        (22, 7),
    ],
)
def test_default_zoom_to_level_table(zoom, level):
    assert resolve_zoom(zoom, ZoomPolicy()).level == level


def test_level_is_monotone_and_mode_switches_once():
    policy = ZoomPolicy()
    zooms = [z / 4.0 for z in range(0, 24 * 4 + 1)]
    resolved = [resolve_zoom(z, policy) for z in zooms]

    levels = [r.level for r in resolved]
    assert levels == sorted(levels)

    modes = [r.mode for r in resolved]
    switches = sum(1 for a, b in zip(modes, modes[1:]) if a != b)
    assert switches == 1
    assert modes[0] == "clusters"
    assert modes[-1] == "individual-items"
    assert resolve_zoom(13.9, policy).mode == "clusters"
    assert resolve_zoom(14, policy).mode == "individual-items"


@pytest.mark.parametrize("zoom", [float("nan"), float("inf"), -1, 25, "abc"])
def test_invalid_zoom_is_rejected(zoom):
    with pytest.raises(InvalidViewport):
        resolve_zoom(zoom, ZoomPolicy())


def test_missing_level_is_clamped_to_nearest(caplog):
    policy = ZoomPolicy()
    with caplog.at_level(logging.WARNING, logger="lod.zoom"):
        r = resolve_zoom(12, policy, available_levels=[0, 1, 2, 3])
    assert (r.level, r.clamped) == (3, True)
    assert "lacks" in caplog.text

    # Equidistant: the coarser level wins.
    r = resolve_zoom(10, policy, available_levels=[3, 5])
    assert (r.level, r.clamped) == (3, True)

    r = resolve_zoom(10, policy, available_levels=range(0, 9))
    assert (r.level, r.clamped) == (4, False)


def test_settings_reject_levels_beyond_index_depth():
    with pytest.raises(ValidationError):
        SearchSettings.model_validate({"index": {"maxLevel": 5}})
    with pytest.raises(ValidationError):
        ZoomPolicy.model_validate({"levelBreaks": [6, 6, 8]})
    cfg = SearchSettings.model_validate({"index": {"maxLevel": 5}, "zoom": {"levelBreaks": [6, 9, 12]}})
    assert cfg.zoom.highest_level() == 4
