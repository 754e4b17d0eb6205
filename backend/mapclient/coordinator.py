from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Literal

from mapclient.store import ClientResultStore
from search.errors import SearchCanceled, SearchError, SearchTimeout
from search.types import Filters, SearchResult, Viewport
from settings.registry import get_settings
from settings.types import SearchSettings

logger = logging.getLogger(__name__)


SearchFn = Callable[[Viewport, Filters, int, "int | None"], Awaitable[SearchResult]]
CoordinatorState = Literal["idle", "debouncing", "in_flight"]


class ViewportChangeCoordinator:
    """
    Turns bursts of map/filter/page events into one search and commits it to the store.

    idle -> debouncing -> in_flight -> idle; any new event while debouncing restarts the
    timer, and while in flight supersedes the running request (its seq goes stale and,
    with `abort_in_flight`, its task is cancelled).

    All methods must be called from the event loop that runs the searches.
    """

    def __init__(
        self,
        store: ClientResultStore,
        search_fn: SearchFn,
        *,
        debounce_s: float = 0.3,
        timeout_s: float | None = None,
        abort_in_flight: bool = True,
        page_size: int | None = None,
    ):
        self.store = store
        self.search_fn = search_fn
        self.debounce_s = max(0.0, float(debounce_s))
        self.timeout_s = timeout_s
        self.abort_in_flight = bool(abort_in_flight)
        self.page_size = page_size
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.searches_started = 0

    @classmethod
    def from_settings(
        cls,
        store: ClientResultStore,
        search_fn: SearchFn,
        settings: SearchSettings | None = None,
        *,
        abort_in_flight: bool = True,
    ) -> "ViewportChangeCoordinator":
        """
        Debounce delay, timeout and page size taken from `client` / `limits` settings.
        """
        cfg = settings or get_settings()
        timeout_ms = cfg.client.timeoutMs
        return cls(
            store,
            search_fn,
            debounce_s=cfg.client.debounceMs / 1000.0,
            timeout_s=timeout_ms / 1000.0 if timeout_ms is not None else None,
            abort_in_flight=abort_in_flight,
            page_size=cfg.limits.defaultPageSize,
        )

    @property
    def state(self) -> CoordinatorState:
        if self._timer is not None:
            return "debouncing"
        if self._task is not None and not self._task.done():
            return "in_flight"
        return "idle"

    # -- events --

    def on_viewport_settled(self, viewport: Viewport) -> None:
        self.store.set_viewport(viewport)
        self._schedule()

    def on_filters_changed(self, filters: Filters | None = None, **changes) -> None:
        if filters is not None:
            self.store.set_filters(filters)
        else:
            self.store.update_filter(**changes)
        self._schedule()

    def on_page_requested(self, page: int) -> None:
        self.store.set_page(page)
        self._schedule()

    def retry(self) -> None:
        self.store.dismiss_error()
        self._schedule()

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def close(self) -> None:
        """
        Unmount: drop pending work and reset the store.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self.store.reset()
        self._idle.set()

    # -- internals --

    def _supersede(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        self.store.cancel_in_flight()
        if self.abort_in_flight:
            task.cancel()

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._supersede()
        if self._timer is not None:
            self._timer.cancel()
        self._idle.clear()
        self._timer = loop.call_later(self.debounce_s, self._fire)

    def _fire(self) -> None:
        self._timer = None
        state = self.store.state
        if state.viewport is None:
            self._maybe_idle()
            return
        seq = self.store.begin_request()
        self.searches_started += 1
        self._task = asyncio.get_running_loop().create_task(
            self._run(seq, state.viewport, state.filters, state.page)
        )

    async def _run(self, seq: int, viewport: Viewport, filters: Filters, page: int) -> None:
        try:
            call = self.search_fn(viewport, filters, page, self.page_size)
            if self.timeout_s is not None:
                result = await asyncio.wait_for(call, timeout=self.timeout_s)
            else:
                result = await call
        except asyncio.TimeoutError:
            self._fail(seq, SearchTimeout(f"search took longer than {self.timeout_s:.1f}s"))
        except SearchCanceled:
            # Never surfaced; only release the loading flag if nothing newer was issued.
            logger.debug("search seq=%d canceled", seq)
            if seq == self.store.seq:
                self.store.cancel_in_flight()
        except SearchError as e:
            self._fail(seq, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("search seq=%d failed unexpectedly", seq)
            self._fail(seq, SearchError(f"{type(e).__name__}: {e}"))
        else:
            if not self.store.set_unified_result(result, seq):
                logger.debug("discarding stale search response seq=%d (latest=%d)", seq, self.store.seq)
        finally:
            if self._task is asyncio.current_task():
                self._task = None
            self._maybe_idle()

    def _fail(self, seq: int, error: SearchError) -> None:
        if self.store.fail_request(seq, error):
            logger.warning("search seq=%d failed: %s (%s)", seq, error.message, error.code)
        else:
            logger.debug("ignoring failure of stale search seq=%d: %s", seq, error.code)

    def _maybe_idle(self) -> None:
        if self._timer is None and (self._task is None or self._task.done()):
            self._idle.set()
