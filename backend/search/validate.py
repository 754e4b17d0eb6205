from __future__ import annotations

import math

from search.errors import InvalidFilter, InvalidViewport
from search.types import SORT_ORDERS, Filters, Viewport
from settings.types import Catalog, SearchLimits, ZoomPolicy


def validate_viewport(viewport: Viewport, policy: ZoomPolicy) -> None:
    b = viewport.bounds
    if not b.is_finite():
        raise InvalidViewport("viewport bounds must be finite numbers")
    if not (-90.0 <= b.south <= 90.0 and -90.0 <= b.north <= 90.0):
        raise InvalidViewport("latitudes must be within [-90, 90]")
    if not (-180.0 <= b.west <= 180.0 and -180.0 <= b.east <= 180.0):
        raise InvalidViewport("longitudes must be within [-180, 180]")
    if b.is_degenerate():
        raise InvalidViewport("viewport must have north > south and east > west")
    z = viewport.zoom
    if not isinstance(z, (int, float)) or not math.isfinite(float(z)):
        raise InvalidViewport("zoom must be a finite number")
    if not (policy.minZoom <= float(z) <= policy.maxZoom):
        raise InvalidViewport(f"zoom {z} outside [{policy.minZoom}, {policy.maxZoom}]")


def _non_negative(name: str, value: float | None) -> None:
    if value is None:
        return
    if not math.isfinite(float(value)) or float(value) < 0:
        raise InvalidFilter(f"{name} must be a non-negative number")


def _whole(name: str, value: float | None) -> None:
    # Bedroom counts are whole numbers.
    if value is None:
        return
    if isinstance(value, bool) or float(value) != int(value):
        raise InvalidFilter(f"{name} must be a whole number")


def validate_filters(filters: Filters, catalog: Catalog) -> None:
    if filters.listing_type is not None and filters.listing_type not in catalog.listingTypes:
        raise InvalidFilter(f"unknown listing type {filters.listing_type!r}")
    if filters.property_type is not None and filters.property_type not in catalog.propertyTypes:
        raise InvalidFilter(f"unknown property type {filters.property_type!r}")

    _non_negative("minPrice", filters.min_price)
    _non_negative("maxPrice", filters.max_price)
    _non_negative("minBedrooms", filters.min_bedrooms)
    _non_negative("maxBedrooms", filters.max_bedrooms)
    _non_negative("minBathrooms", filters.min_bathrooms)
    _non_negative("minArea", filters.min_area)
    _non_negative("maxArea", filters.max_area)
    _whole("minBedrooms", filters.min_bedrooms)
    _whole("maxBedrooms", filters.max_bedrooms)

    if filters.min_price is not None and filters.max_price is not None and filters.min_price > filters.max_price:
        raise InvalidFilter("minPrice must not exceed maxPrice")
    if (
        filters.min_bedrooms is not None
        and filters.max_bedrooms is not None
        and filters.min_bedrooms > filters.max_bedrooms
    ):
        raise InvalidFilter("minBedrooms must not exceed maxBedrooms")
    if filters.min_area is not None and filters.max_area is not None and filters.min_area > filters.max_area:
        raise InvalidFilter("minArea must not exceed maxArea")
    if filters.region is not None and not filters.region.strip():
        raise InvalidFilter("region must not be blank")


def validate_paging(page: int, page_size: int | None, limits: SearchLimits) -> int:
    """
    Returns the effective page size.
    """
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise InvalidFilter("page must be an integer >= 1")
    size = limits.defaultPageSize if page_size is None else page_size
    if isinstance(size, bool) or not isinstance(size, int) or not (1 <= size <= limits.maxPageSize):
        raise InvalidFilter(f"pageSize must be within 1..{limits.maxPageSize}")
    return size


def validate_sort(sort: str) -> None:
    if sort not in SORT_ORDERS:
        raise InvalidFilter(f"unknown sort {sort!r}; expected one of {', '.join(SORT_ORDERS)}")
