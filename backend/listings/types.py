from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


ANY_CATEGORY = "*"


@dataclass(frozen=True)
class PropertyRecord:
    """
    One indexed property (a point on the map).

    This is the ingestion-side record. Search results expose the `ListItem`
    projection instead; the engine never mutates records.
    """

    id: str
    lat: float
    lng: float
    price: float
    listing_type: str
    property_type: str
    title: str
    created_at: datetime
    currency: str = "MXN"
    bedrooms: int | None = None
    bathrooms: float | None = None
    area_m2: float | None = None
    address: str | None = None
    neighborhood: str | None = None
    city: str | None = None
    region: str | None = None

    @property
    def created_ms(self) -> int:
        return datetime_to_ms(self.created_at)


def subcategory_key(listing_type: str | None, property_type: str | None) -> str:
    """
    Key into a node's `counts_by_subcategory`.

    "sale/*" counts every sale, "*/house" every house, "sale/house" the cross.
    "*/*" is the node total and is not stored in the mapping.
    """
    return f"{listing_type or ANY_CATEGORY}/{property_type or ANY_CATEGORY}"


def record_subcategory_keys(record: PropertyRecord) -> tuple[str, str, str]:
    return (
        subcategory_key(record.listing_type, None),
        subcategory_key(None, record.property_type),
        subcategory_key(record.listing_type, record.property_type),
    )


def datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def ms_to_datetime(value: int | float) -> datetime:
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)


def record_from_mapping(row: dict[str, Any], *, default_currency: str = "MXN") -> PropertyRecord:
    """
    Build a record from a loosely-typed mapping (JSON row, GeoJSON properties).

    Accepts camelCase or snake_case keys. Raises ValueError/TypeError/KeyError on
    rows that cannot be indexed (missing id, coordinates or price).
    """

    def pick(*keys: str) -> Any:
        for k in keys:
            if k in row and row[k] is not None and row[k] != "":
                return row[k]
        return None

    rid = pick("id")
    lat = pick("lat", "latitude")
    lng = pick("lng", "lon", "longitude")
    price = pick("price")
    if rid is None or lat is None or lng is None or price is None:
        raise KeyError("record needs id, lat, lng and price")

    created_raw = pick("createdAt", "created_at")
    if created_raw is None:
        created_at = datetime(1970, 1, 1, tzinfo=timezone.utc)
    elif isinstance(created_raw, (int, float)):
        created_at = ms_to_datetime(created_raw)
    else:
        created_at = datetime.fromisoformat(str(created_raw).replace("Z", "+00:00"))
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

    bedrooms = pick("bedrooms")
    bathrooms = pick("bathrooms")
    area = pick("areaM2", "area_m2", "sqft")
    return PropertyRecord(
        id=str(rid),
        lat=float(lat),
        lng=float(lng),
        price=float(price),
        currency=str(pick("currency") or default_currency),
        listing_type=str(pick("listingType", "listing_type") or "sale"),
        property_type=str(pick("propertyType", "property_type", "type") or "other"),
        title=str(pick("title") or ""),
        created_at=created_at,
        bedrooms=int(bedrooms) if bedrooms is not None else None,
        bathrooms=float(bathrooms) if bathrooms is not None else None,
        area_m2=float(area) if area is not None else None,
        address=pick("address"),
        neighborhood=pick("neighborhood", "colonia"),
        city=pick("city", "municipality"),
        region=pick("region", "state"),
    )
