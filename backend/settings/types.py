from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class RootBounds(BaseModel):
    north: float = Field(ge=-90.0, le=90.0)
    south: float = Field(ge=-90.0, le=90.0)
    east: float = Field(ge=-180.0, le=180.0)
    west: float = Field(ge=-180.0, le=180.0)

    @model_validator(mode="after")
    def _check_extent(self) -> "RootBounds":
        if not (self.north > self.south and self.east > self.west):
            raise ValueError("rootBounds must have north > south and east > west")
        return self


class IndexSettings(BaseModel):
    # Default covers Mexico.
    rootBounds: RootBounds = Field(
        default_factory=lambda: RootBounds(north=33.0, south=14.0, east=-86.0, west=-118.5)
    )
    maxLevel: int = Field(default=8, ge=1, le=24)


class ZoomPolicy(BaseModel):
    """
    Map zoom -> tree level / display mode.

    level = baseLevel + number of breaks <= zoom.
    """

    baseLevel: int = Field(default=1, ge=0)
    levelBreaks: list[float] = Field(default_factory=lambda: [6.0, 8.0, 10.0, 12.0, 14.0, 16.0])
    individualItemsZoom: float = 14.0
    minZoom: float = 0.0
    maxZoom: float = 24.0

    @model_validator(mode="after")
    def _check_breaks(self) -> "ZoomPolicy":
        if any(b2 <= b1 for b1, b2 in zip(self.levelBreaks, self.levelBreaks[1:])):
            raise ValueError("levelBreaks must be strictly increasing")
        if self.maxZoom <= self.minZoom:
            raise ValueError("maxZoom must be greater than minZoom")
        return self

    def highest_level(self) -> int:
        return self.baseLevel + len(self.levelBreaks)


class SearchLimits(BaseModel):
    maxClusters: int = Field(default=500, ge=1, le=50_000)
    maxVisibleItems: int = Field(default=500, ge=1, le=50_000)
    defaultPageSize: int = Field(default=20, ge=1)
    maxPageSize: int = Field(default=100, ge=1, le=10_000)

    @model_validator(mode="after")
    def _check_page_sizes(self) -> "SearchLimits":
        if self.defaultPageSize > self.maxPageSize:
            raise ValueError("defaultPageSize must not exceed maxPageSize")
        return self


class Catalog(BaseModel):
    listingTypes: list[str] = Field(default_factory=lambda: ["sale", "rent"])
    propertyTypes: list[str] = Field(
        default_factory=lambda: ["house", "apartment", "land", "office", "commercial", "other"]
    )
    currency: str = "MXN"


class ClientSettings(BaseModel):
    debounceMs: int = Field(default=300, ge=0)
    timeoutMs: int | None = Field(default=10_000, ge=1)


class SearchSettings(BaseModel):
    """
    Shared by the index builder, the zoom resolver and the search operation, so the
    level constants can't drift apart.
    """

    index: IndexSettings = Field(default_factory=IndexSettings)
    zoom: ZoomPolicy = Field(default_factory=ZoomPolicy)
    limits: SearchLimits = Field(default_factory=SearchLimits)
    catalog: Catalog = Field(default_factory=Catalog)
    client: ClientSettings = Field(default_factory=ClientSettings)

    @model_validator(mode="after")
    def _check_levels(self) -> "SearchSettings":
        top = self.zoom.highest_level()
        if top > self.index.maxLevel:
            raise ValueError(
                f"zoom policy resolves up to level {top} but index.maxLevel is {self.index.maxLevel}"
            )
        return self
