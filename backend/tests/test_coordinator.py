from __future__ import annotations

import asyncio

from geo.bbox import BBox
from mapclient.coordinator import ViewportChangeCoordinator
from mapclient.store import ClientResultStore
from search.errors import IndexUnavailable, InvalidFilter, SearchCanceled
from search.types import Cluster, SearchMeta, SearchResult, Viewport
from settings.types import SearchSettings


def _viewport(west: float) -> Viewport:
    return Viewport(bounds=BBox(west, 16.0, west + 10.0, 26.0), zoom=8)


def _result_for(viewport: Viewport, page: int) -> SearchResult:
    # Encodes the viewport west edge in the total so tests can tell responses apart.
    total = int(viewport.bounds.west * -1)
    return SearchResult(
        mode="clusters",
        map_data=(Cluster(id="0", lat=20.0, lng=viewport.bounds.west, count=total),),
        list_items=(),
        total=total,
        page=page,
        page_size=20,
        total_pages=1,
        meta=SearchMeta(duration_ms=0.0, level=3, cluster_source="spatial_tree", index_version="v"),
    )


class FakeSearch:
    def __init__(self, delays: dict[float, float] | None = None, errors: dict[float, Exception] | None = None):
        self.delays = delays or {}
        self.errors = errors or {}
        self.calls: list[tuple[float, object, int]] = []
        self.cancelled = 0

    async def __call__(self, viewport, filters, page, page_size):
        west = viewport.bounds.west
        self.calls.append((west, filters, page))
        try:
            await asyncio.sleep(self.delays.get(west, 0.0))
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if west in self.errors:
            raise self.errors[west]
        return _result_for(viewport, page)


def test_burst_of_pans_issues_one_search():
    async def run():
        store = ClientResultStore()
        fake = FakeSearch()
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.05)

        coord.on_viewport_settled(_viewport(-100.0))
        await asyncio.sleep(0.02)
        coord.on_viewport_settled(_viewport(-95.0))
        assert coord.state == "debouncing"
        await coord.wait_idle()

        assert [c[0] for c in fake.calls] == [-95.0]
        assert coord.searches_started == 1
        assert store.total == 95
        assert coord.state == "idle"

    asyncio.run(run())


def test_stale_response_never_overwrites_newer_one():
    async def run():
        store = ClientResultStore()
        # The first request is slow; the second returns first.
        fake = FakeSearch(delays={-100.0: 0.2, -90.0: 0.0})
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.0, abort_in_flight=False)
        committed = []
        store.subscribe(lambda new, old: new.result is not old.result and committed.append(new.result.total))

        coord.on_viewport_settled(_viewport(-100.0))
        await asyncio.sleep(0.05)
        assert coord.state == "in_flight"
        coord.on_viewport_settled(_viewport(-90.0))
        await coord.wait_idle()
        # Let the slow, superseded request finish too.
        await asyncio.sleep(0.25)

        assert len(fake.calls) == 2
        assert committed == [90]
        assert store.total == 90
        assert not store.loading

    asyncio.run(run())


def test_superseded_request_is_cancelled():
    async def run():
        store = ClientResultStore()
        fake = FakeSearch(delays={-100.0: 1.0})
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.0)

        coord.on_viewport_settled(_viewport(-100.0))
        await asyncio.sleep(0.02)
        coord.on_viewport_settled(_viewport(-80.0))
        await coord.wait_idle()

        assert fake.cancelled == 1
        assert store.total == 80
        assert store.error is None

    asyncio.run(run())


def test_error_keeps_previous_result_visible():
    async def run():
        store = ClientResultStore()
        fake = FakeSearch(errors={-70.0: IndexUnavailable("rebuilding")})
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.0)

        coord.on_viewport_settled(_viewport(-100.0))
        await coord.wait_idle()
        assert store.total == 100

        coord.on_viewport_settled(_viewport(-70.0))
        await coord.wait_idle()
        assert store.total == 100
        assert store.map_data[0].lng == -100.0
        assert store.error.code == "index_unavailable"
        assert store.error.transient
        assert not store.loading

        # Retry dismisses the error and searches again.
        fake.errors.clear()
        coord.retry()
        assert store.error is None
        await coord.wait_idle()
        assert store.total == 70

    asyncio.run(run())


def test_timeout_surfaces_as_transient_error():
    async def run():
        store = ClientResultStore()
        fake = FakeSearch(delays={-100.0: 1.0})
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.0, timeout_s=0.05)

        coord.on_viewport_settled(_viewport(-100.0))
        await coord.wait_idle()
        assert store.error.code == "timeout"
        assert store.error.transient
        assert store.result is None

    asyncio.run(run())


def test_unexpected_exception_becomes_search_error():
    async def run():
        store = ClientResultStore()
        fake = FakeSearch(errors={-100.0: RuntimeError("boom")})
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.0)

        coord.on_viewport_settled(_viewport(-100.0))
        await coord.wait_idle()
        assert store.error.code == "search_error"
        assert "boom" in store.error.message

    asyncio.run(run())


def test_filter_change_resets_page_and_researches():
    async def run():
        store = ClientResultStore()
        fake = FakeSearch()
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.0)

        coord.on_viewport_settled(_viewport(-100.0))
        await coord.wait_idle()
        coord.on_page_requested(3)
        await coord.wait_idle()
        assert store.page == 3

        coord.on_filters_changed(listing_type="rent")
        await coord.wait_idle()
        assert store.page == 1
        west, filters, page = fake.calls[-1]
        assert (filters.listing_type, page) == ("rent", 1)
        assert len(fake.calls) == 3

    asyncio.run(run())


def test_persistent_error_until_input_changes():
    async def run():
        store = ClientResultStore()
        fake = FakeSearch(errors={-100.0: InvalidFilter("bad")})
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.0)

        coord.on_viewport_settled(_viewport(-100.0))
        await coord.wait_idle()
        assert store.error.code == "invalid_filter"
        assert not store.error.transient

        coord.on_viewport_settled(_viewport(-90.0))
        await coord.wait_idle()
        assert store.error is None
        assert store.total == 90

    asyncio.run(run())


def test_no_search_without_viewport_and_close_resets():
    async def run():
        store = ClientResultStore()
        fake = FakeSearch(delays={-100.0: 1.0})
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.0)

        coord.on_page_requested(2)
        await coord.wait_idle()
        assert fake.calls == []

        coord.on_viewport_settled(_viewport(-100.0))
        await asyncio.sleep(0.02)
        assert coord.state == "in_flight"
        await coord.close()

        assert fake.cancelled == 1
        assert coord.state == "idle"
        assert store.viewport is None
        assert store.result is None and not store.loading

    asyncio.run(run())


def test_from_settings_uses_client_timings():
    async def run():
        cfg = SearchSettings.model_validate({"client": {"debounceMs": 20, "timeoutMs": 50}, "limits": {"defaultPageSize": 7}})
        store = ClientResultStore()
        fake = FakeSearch(delays={-100.0: 1.0})
        coord = ViewportChangeCoordinator.from_settings(store, fake, cfg)
        assert (coord.debounce_s, coord.timeout_s, coord.page_size) == (0.02, 0.05, 7)

        coord.on_viewport_settled(_viewport(-100.0))
        await coord.wait_idle()
        assert store.error.code == "timeout"

        no_timeout = SearchSettings.model_validate({"client": {"timeoutMs": None}})
        assert ViewportChangeCoordinator.from_settings(store, fake, no_timeout).timeout_s is None

    asyncio.run(run())


def test_canceled_search_is_never_surfaced():
    async def run():
        store = ClientResultStore()
        fake = FakeSearch(errors={-100.0: SearchCanceled()})
        coord = ViewportChangeCoordinator(store, fake, debounce_s=0.0)

        coord.on_viewport_settled(_viewport(-100.0))
        await coord.wait_idle()
        assert store.error is None
        assert not store.loading
        assert store.result is None

    asyncio.run(run())
