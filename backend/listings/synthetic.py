from __future__ import annotations

import logging
import os
import random
from datetime import datetime, timedelta, timezone

from listings.types import PropertyRecord

logger = logging.getLogger(__name__)


MAX_SYNTHETIC_COUNT = 100_000

# (city, region, lat, lng, weight)
_CITIES: tuple[tuple[str, str, float, float, float], ...] = (
    ("Ciudad de México", "CDMX", 19.4326, -99.1332, 0.30),
    ("Guadalajara", "Jalisco", 20.6597, -103.3496, 0.15),
    ("Monterrey", "Nuevo León", 25.6866, -100.3161, 0.15),
    ("Puebla", "Puebla", 19.0414, -98.2063, 0.08),
    ("Querétaro", "Querétaro", 20.5888, -100.3899, 0.07),
    ("Mérida", "Yucatán", 20.9674, -89.5926, 0.07),
    ("Cancún", "Quintana Roo", 21.1619, -86.8515, 0.06),
    ("Tijuana", "Baja California", 32.5149, -117.0382, 0.06),
    ("León", "Guanajuato", 21.1250, -101.6860, 0.06),
)

_PROPERTY_TYPES: tuple[tuple[str, float], ...] = (
    ("house", 0.40),
    ("apartment", 0.30),
    ("land", 0.12),
    ("office", 0.06),
    ("commercial", 0.07),
    ("other", 0.05),
)

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def synthetic_count() -> int:
    raw = (os.getenv("MAPSEARCH_SYNTHETIC_COUNT") or "").strip()
    if raw:
        try:
            return max(0, min(MAX_SYNTHETIC_COUNT, int(raw)))
        except ValueError:
            pass
    return 5_000


def generate_properties(count: int, *, seed: int = 42, currency: str = "MXN") -> list[PropertyRecord]:
    """
    Deterministic fake listings clustered around large Mexican cities.

    The same (count, seed) always yields the same records, ids and timestamps included.
    """
    n = max(0, min(MAX_SYNTHETIC_COUNT, int(count)))
    rng = random.Random(seed)
    cities = list(_CITIES)
    city_weights = [c[4] for c in _CITIES]
    types = [t for t, _ in _PROPERTY_TYPES]
    type_weights = [w for _, w in _PROPERTY_TYPES]

    out: list[PropertyRecord] = []
    for i in range(n):
        city, region, clat, clng, _w = rng.choices(cities, weights=city_weights)[0]
        ptype = rng.choices(types, weights=type_weights)[0]
        listing = "rent" if rng.random() < 0.35 else "sale"

        lat = round(clat + rng.gauss(0.0, 0.08), 6)
        lng = round(clng + rng.gauss(0.0, 0.08), 6)

        if listing == "rent":
            price = round(rng.uniform(6_000, 80_000), -2)
        else:
            price = round(rng.uniform(600_000, 15_000_000), -3)

        has_rooms = ptype in {"house", "apartment"}
        bedrooms = rng.randint(1, 5) if has_rooms else None
        bathrooms = float(rng.choice([1, 1.5, 2, 2.5, 3, 4])) if has_rooms else None

        out.append(
            PropertyRecord(
                id=f"prop-{seed}-{i:06d}",
                lat=lat,
                lng=lng,
                price=float(price),
                currency=currency,
                listing_type=listing,
                property_type=ptype,
                title=f"{ptype.capitalize()} en {'renta' if listing == 'rent' else 'venta'} - {city}",
                created_at=_EPOCH + timedelta(minutes=rng.randint(0, 60 * 24 * 600)),
                bedrooms=bedrooms,
                bathrooms=bathrooms,
                area_m2=round(rng.uniform(40, 600), 1),
                city=city,
                region=region,
            )
        )

    logger.info("generated %d synthetic properties (seed=%d)", len(out), seed)
    return out
