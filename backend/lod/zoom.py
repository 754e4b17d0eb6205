from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable

from search.errors import InvalidViewport
from search.types import Mode
from settings.types import ZoomPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZoomResolution:
    level: int
    mode: Mode
    # True when the computed level wasn't in the index and a neighbour was used.
    clamped: bool = False


def level_for_zoom(zoom: float, policy: ZoomPolicy) -> int:
    z = float(zoom)
    return int(policy.baseLevel) + sum(1 for b in policy.levelBreaks if z >= float(b))


def mode_for_zoom(zoom: float, policy: ZoomPolicy) -> Mode:
    return "individual-items" if float(zoom) >= float(policy.individualItemsZoom) else "clusters"


def resolve_zoom(
    zoom: float,
    policy: ZoomPolicy,
    available_levels: Iterable[int] | None = None,
) -> ZoomResolution:
    """
    Map zoom -> (tree level, display mode).

    Pure and monotone: a higher zoom never yields a coarser level. If the index lacks
    the computed level, the nearest available one is used (ties go to the coarser level).
    """
    try:
        z = float(zoom)
    except (TypeError, ValueError) as e:
        raise InvalidViewport(f"zoom must be a number, got {zoom!r}") from e
    if not math.isfinite(z):
        raise InvalidViewport("zoom must be finite")
    if z < float(policy.minZoom) or z > float(policy.maxZoom):
        raise InvalidViewport(f"zoom {z} outside [{policy.minZoom}, {policy.maxZoom}]")

    level = level_for_zoom(z, policy)
    mode = mode_for_zoom(z, policy)

    levels = sorted(set(int(v) for v in available_levels)) if available_levels is not None else []
    if not levels or level in levels:
        return ZoomResolution(level=level, mode=mode)

    nearest = min(levels, key=lambda lv: (abs(lv - level), lv))
    logger.warning("zoom %.2f resolved to level %d which the index lacks; using level %d", z, level, nearest)
    return ZoomResolution(level=nearest, mode=mode, clamped=True)
