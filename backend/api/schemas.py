from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from geo.bbox import BBox
from search.types import Filters, Viewport


class ApiBounds(BaseModel):
    north: float
    south: float
    east: float
    west: float


class ApiCenter(BaseModel):
    lat: float
    lng: float


class ApiViewport(BaseModel):
    bounds: ApiBounds
    zoom: float
    center: ApiCenter | None = None

    def to_domain(self) -> Viewport:
        b = self.bounds
        return Viewport(
            bounds=BBox.from_bounds(north=b.north, south=b.south, east=b.east, west=b.west),
            zoom=self.zoom,
            center={"lat": self.center.lat, "lng": self.center.lng} if self.center is not None else None,
        )


class ApiFilters(BaseModel):
    # Range checks live in search.validate so they surface as `invalid_filter`.
    listingType: str | None = None
    propertyType: str | None = None
    minPrice: float | None = None
    maxPrice: float | None = None
    minBedrooms: int | None = None
    maxBedrooms: int | None = None
    minBathrooms: float | None = None
    minArea: float | None = None
    maxArea: float | None = None
    region: str | None = None

    def to_domain(self) -> Filters:
        return Filters(
            listing_type=self.listingType,
            property_type=self.propertyType,
            min_price=self.minPrice,
            max_price=self.maxPrice,
            min_bedrooms=self.minBedrooms,
            max_bedrooms=self.maxBedrooms,
            min_bathrooms=self.minBathrooms,
            min_area=self.minArea,
            max_area=self.maxArea,
            region=self.region,
        )


class ApiSearchRequest(BaseModel):
    viewport: ApiViewport
    filters: ApiFilters = Field(default_factory=ApiFilters)
    page: int = 1
    pageSize: int | None = None
    sort: Literal["newest", "price_asc", "price_desc"] = "newest"
