from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Literal

from geo.bbox import BBox
from listings.types import PropertyRecord, subcategory_key


Mode = Literal["clusters", "individual-items"]
SortOrder = Literal["newest", "price_asc", "price_desc"]
ClusterSource = Literal["spatial_tree", "point_scan", "none"]

SORT_ORDERS: tuple[str, ...] = ("newest", "price_asc", "price_desc")


@dataclass(frozen=True)
class Viewport:
    """
    Visible map rectangle plus zoom. Replaced wholesale on every pan/zoom.
    """

    bounds: BBox
    zoom: float
    # {"lat": ..., "lng": ...}; defaults to the bounds center.
    center: dict[str, float] | None = None

    def center_point(self) -> dict[str, float]:
        if self.center is not None:
            return dict(self.center)
        lat, lng = self.bounds.center()
        return {"lat": lat, "lng": lng}


@dataclass(frozen=True)
class Filters:
    """
    Search predicates. `None` means "no constraint".
    """

    listing_type: str | None = None
    property_type: str | None = None
    min_price: float | None = None
    max_price: float | None = None
    min_bedrooms: int | None = None
    max_bedrooms: int | None = None
    min_bathrooms: float | None = None
    min_area: float | None = None
    max_area: float | None = None
    region: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def has_category(self) -> bool:
        return self.listing_type is not None or self.property_type is not None

    def is_category_only(self) -> bool:
        """
        True when only listing/property type are set (these have precomputed node counts).
        """
        return (
            self.min_price is None
            and self.max_price is None
            and self.min_bedrooms is None
            and self.max_bedrooms is None
            and self.min_bathrooms is None
            and self.min_area is None
            and self.max_area is None
            and self.region is None
        )

    def category_key(self) -> str | None:
        if not self.has_category():
            return None
        return subcategory_key(self.listing_type, self.property_type)

    def matches(self, r: PropertyRecord) -> bool:
        if self.listing_type is not None and r.listing_type != self.listing_type:
            return False
        if self.property_type is not None and r.property_type != self.property_type:
            return False
        if self.min_price is not None and r.price < self.min_price:
            return False
        if self.max_price is not None and r.price > self.max_price:
            return False
        # A bedroom/bathroom/area bound excludes records that don't state the value.
        if self.min_bedrooms is not None and (r.bedrooms is None or r.bedrooms < self.min_bedrooms):
            return False
        if self.max_bedrooms is not None and (r.bedrooms is None or r.bedrooms > self.max_bedrooms):
            return False
        if self.min_bathrooms is not None and (r.bathrooms is None or r.bathrooms < self.min_bathrooms):
            return False
        if self.min_area is not None and (r.area_m2 is None or r.area_m2 < self.min_area):
            return False
        if self.max_area is not None and (r.area_m2 is None or r.area_m2 > self.max_area):
            return False
        if self.region is not None and r.region != self.region:
            return False
        return True

    def with_changes(self, **changes) -> "Filters":
        return replace(self, **changes)


@dataclass(frozen=True)
class Cluster:
    id: str
    lat: float
    lng: float
    count: int
    avg_price: float | None = None
    min_price: float | None = None
    max_price: float | None = None
    bounds: BBox | None = None


@dataclass(frozen=True)
class ListItem:
    id: str
    lat: float
    lng: float
    price: float
    currency: str
    listing_type: str
    property_type: str
    title: str
    bedrooms: int | None = None
    bathrooms: float | None = None
    address: str | None = None
    neighborhood: str | None = None
    city: str | None = None
    region: str | None = None

    @classmethod
    def from_record(cls, r: PropertyRecord) -> "ListItem":
        return cls(
            id=r.id,
            lat=r.lat,
            lng=r.lng,
            price=r.price,
            currency=r.currency,
            listing_type=r.listing_type,
            property_type=r.property_type,
            title=r.title,
            bedrooms=r.bedrooms,
            bathrooms=r.bathrooms,
            address=r.address,
            neighborhood=r.neighborhood,
            city=r.city,
            region=r.region,
        )


@dataclass(frozen=True)
class SearchMeta:
    duration_ms: float
    level: int
    cluster_source: ClusterSource
    index_version: str
    map_truncated: bool = False


@dataclass(frozen=True)
class SearchResult:
    """
    One unified answer: map and list are views over the same result set and `total`.

    `map_data` holds `Cluster`s in cluster mode and `ListItem`s in individual-items mode.
    """

    mode: Mode
    map_data: tuple[Cluster, ...] | tuple[ListItem, ...]
    list_items: tuple[ListItem, ...]
    total: int
    page: int
    page_size: int
    total_pages: int
    meta: SearchMeta

    @property
    def clusters(self) -> tuple[Cluster, ...]:
        return self.map_data if self.mode == "clusters" else ()  # type: ignore[return-value]

    @property
    def markers(self) -> tuple[ListItem, ...]:
        return self.map_data if self.mode == "individual-items" else ()  # type: ignore[return-value]
