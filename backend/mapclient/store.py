from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Callable

from search.errors import SearchCanceled, SearchError
from search.types import Cluster, Filters, ListItem, Mode, SearchResult, Viewport


@dataclass(frozen=True)
class ClientResultState:
    """
    Everything a map + list view renders from. Replaced wholesale on every change.
    """

    viewport: Viewport | None = None
    filters: Filters = Filters()
    page: int = 1
    result: SearchResult | None = None
    loading: bool = False
    error: SearchError | None = None
    # Last issued request sequence number; only a response carrying it may commit.
    seq: int = 0
    selected_id: str | None = None
    hovered_id: str | None = None


Listener = Callable[[ClientResultState, ClientResultState], None]


class ClientResultStore:
    """
    Single-writer store for one map instance.

    `set_unified_result` is the only way map data, list items and total change, and they
    always change together.
    """

    def __init__(self, *, initial: ClientResultState | None = None):
        self._initial = initial or ClientResultState()
        self._state = self._initial
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> ClientResultState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _swap(self, fn: Callable[[ClientResultState], ClientResultState]) -> ClientResultState:
        with self._lock:
            old = self._state
            new = fn(old)
            self._state = new
        if new != old:
            for listener in list(self._listeners):
                listener(new, old)
        return new

    def _commit(self, **changes) -> ClientResultState:
        return self._swap(lambda s: replace(s, **changes))

    # -- request lifecycle --

    def begin_request(self) -> int:
        """
        Issue the next sequence number and mark loading. Returns the new seq.
        """
        return self._swap(lambda s: replace(s, seq=s.seq + 1, loading=True)).seq

    def cancel_in_flight(self) -> None:
        # Bumping seq makes any pending response stale.
        self._swap(lambda s: replace(s, seq=s.seq + 1, loading=False))

    def set_unified_result(self, result: SearchResult, seq: int) -> bool:
        """
        Commit a search result if `seq` is still the latest issued. Returns whether it committed.
        """
        committed = False

        def apply(s: ClientResultState) -> ClientResultState:
            nonlocal committed
            if seq != s.seq:
                return s
            committed = True
            return replace(s, result=result, loading=False, error=None, page=result.page)

        self._swap(apply)
        return committed

    def fail_request(self, seq: int, error: SearchError) -> bool:
        # The previous result stays visible.
        if isinstance(error, SearchCanceled):
            return False
        committed = False

        def apply(s: ClientResultState) -> ClientResultState:
            nonlocal committed
            if seq != s.seq:
                return s
            committed = True
            return replace(s, loading=False, error=error)

        self._swap(apply)
        return committed

    def dismiss_error(self) -> None:
        self._commit(error=None)

    # -- inputs --

    def set_viewport(self, viewport: Viewport) -> None:
        old = self._state.viewport
        if old is not None and old.bounds == viewport.bounds:
            self._commit(viewport=viewport)
            return
        self._commit(viewport=viewport, page=1)

    def set_filters(self, filters: Filters) -> None:
        self._commit(filters=filters, page=1)

    def update_filter(self, **changes) -> None:
        self._commit(filters=self._state.filters.with_changes(**changes), page=1)

    def reset_filters(self) -> None:
        self._commit(filters=Filters(), page=1)

    def set_page(self, page: int) -> None:
        self._commit(page=max(1, int(page)))

    def set_selected_id(self, value: str | None) -> None:
        self._commit(selected_id=value)

    def set_hovered_id(self, value: str | None) -> None:
        self._commit(hovered_id=value)

    def reset(self) -> None:
        # seq keeps growing so responses issued before the reset stay stale.
        self._swap(lambda s: replace(self._initial, seq=s.seq + 1))

    # -- read accessors --

    @property
    def viewport(self) -> Viewport | None:
        return self._state.viewport

    @property
    def filters(self) -> Filters:
        return self._state.filters

    @property
    def page(self) -> int:
        return self._state.page

    @property
    def result(self) -> SearchResult | None:
        return self._state.result

    @property
    def mode(self) -> Mode | None:
        return self._state.result.mode if self._state.result is not None else None

    @property
    def map_data(self) -> tuple[Cluster, ...] | tuple[ListItem, ...]:
        return self._state.result.map_data if self._state.result is not None else ()

    @property
    def list_items(self) -> tuple[ListItem, ...]:
        return self._state.result.list_items if self._state.result is not None else ()

    @property
    def total(self) -> int:
        return self._state.result.total if self._state.result is not None else 0

    @property
    def total_pages(self) -> int:
        return self._state.result.total_pages if self._state.result is not None else 0

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def error(self) -> SearchError | None:
        return self._state.error

    @property
    def seq(self) -> int:
        return self._state.seq

    @property
    def selected_id(self) -> str | None:
        return self._state.selected_id

    @property
    def hovered_id(self) -> str | None:
        return self._state.hovered_id

    @property
    def has_active_filters(self) -> bool:
        return not self._state.filters.is_empty()
