import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `geo.*`, `search.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

from listings.types import PropertyRecord  # noqa: E402
from settings.types import SearchSettings  # noqa: E402

# 16 x 16 degree root: level-1 cells are 8 degrees, level-2 cells 4 degrees.
TEST_ROOT = {"north": 32.0, "south": 16.0, "east": -84.0, "west": -100.0}
BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _telemetry_off(monkeypatch):
    # Telemetry tests opt back in explicitly.
    monkeypatch.setenv("MAPSEARCH_TELEMETRY", "0")


@pytest.fixture
def settings() -> SearchSettings:
    return SearchSettings.model_validate({"index": {"rootBounds": TEST_ROOT, "maxLevel": 8}})


@pytest.fixture
def make_record():
    def _make(
        rid: str,
        lat: float,
        lng: float,
        *,
        price: float = 1_000_000.0,
        listing_type: str = "sale",
        property_type: str = "house",
        minutes: int = 0,
        bedrooms: int | None = None,
        bathrooms: float | None = None,
        area_m2: float | None = None,
        region: str | None = None,
    ) -> PropertyRecord:
        return PropertyRecord(
            id=rid,
            lat=lat,
            lng=lng,
            price=price,
            listing_type=listing_type,
            property_type=property_type,
            title=f"{property_type} {rid}",
            created_at=BASE_TIME + timedelta(minutes=minutes),
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            area_m2=area_m2,
            region=region,
        )

    return _make


@pytest.fixture(params=["in_memory", "duckdb"])
def index_factory(request, settings):
    """
    Builds + publishes an index on each backend.
    """
    from engine.factory import make_index

    created = []

    def _build(records):
        idx = make_index(settings, engine=request.param)
        idx.publish(list(records))
        created.append(idx)
        return idx

    yield _build
    for idx in created:
        close = getattr(idx, "close", None)
        if close is not None:
            close()
