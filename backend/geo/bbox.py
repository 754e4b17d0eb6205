from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    Convention used throughout this repo:
    - minLon, minLat, maxLon, maxLat
    - the map surface speaks north/south/east/west; use `from_bounds` / `to_bounds`
      at the edges and BBox everywhere inside.

    Containment is closed on all four edges (a point on the viewport edge is visible).
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def from_bounds(
        cls, *, north: float, south: float, east: float, west: float
    ) -> "BBox":
        return cls(
            min_lon=float(west),
            min_lat=float(south),
            max_lon=float(east),
            max_lat=float(north),
        )

    @property
    def north(self) -> float:
        return self.max_lat

    @property
    def south(self) -> float:
        return self.min_lat

    @property
    def east(self) -> float:
        return self.max_lon

    @property
    def west(self) -> float:
        return self.min_lon

    def to_bounds(self) -> dict[str, float]:
        return {
            "north": self.max_lat,
            "south": self.min_lat,
            "east": self.max_lon,
            "west": self.min_lon,
        }

    def normalized(self) -> "BBox":
        min_lon = min(self.min_lon, self.max_lon)
        max_lon = max(self.min_lon, self.max_lon)
        min_lat = min(self.min_lat, self.max_lat)
        max_lat = max(self.min_lat, self.max_lat)
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def is_finite(self) -> bool:
        return all(
            math.isfinite(v)
            for v in (self.min_lon, self.min_lat, self.max_lon, self.max_lat)
        )

    def is_degenerate(self) -> bool:
        """
        True when the box has no area (or is inverted).

        Antimeridian-crossing boxes (west > east) are treated as degenerate; the map
        surface is expected to split them.
        """
        return not (self.max_lon > self.min_lon and self.max_lat > self.min_lat)

    def center(self) -> tuple[float, float]:
        # (lat, lon)
        return (
            (self.min_lat + self.max_lat) / 2.0,
            (self.min_lon + self.max_lon) / 2.0,
        )

    def contains_point(self, lon: float, lat: float) -> bool:
        return (
            self.min_lon <= lon <= self.max_lon and self.min_lat <= lat <= self.max_lat
        )

    def contains(self, other: "BBox") -> bool:
        return (
            self.min_lon <= other.min_lon
            and other.max_lon <= self.max_lon
            and self.min_lat <= other.min_lat
            and other.max_lat <= self.max_lat
        )

    def intersects(self, other: "BBox") -> bool:
        return (
            other.max_lon >= self.min_lon
            and other.min_lon <= self.max_lon
            and other.max_lat >= self.min_lat
            and other.min_lat <= self.max_lat
        )
