from __future__ import annotations

import asyncio
import logging

import httpx

from engine.types import SpatialIndex
from search.codec import decode_result, encode_request
from search.errors import IndexUnavailable, SearchError, SearchTimeout, error_from_dict
from search.types import Filters, SearchResult, SortOrder, Viewport
from search.unified import search
from settings.types import SearchSettings

logger = logging.getLogger(__name__)


class LocalSearchTransport:
    """
    In-process search: runs the unified search in a worker thread.
    """

    def __init__(self, index: SpatialIndex, *, settings: SearchSettings | None = None, sort: SortOrder = "newest"):
        self.index = index
        self.settings = settings
        self.sort = sort

    async def __call__(
        self, viewport: Viewport, filters: Filters, page: int, page_size: int | None
    ) -> SearchResult:
        return await asyncio.to_thread(
            search,
            self.index,
            viewport,
            filters,
            page=page,
            page_size=page_size,
            sort=self.sort,
            settings=self.settings,
        )


class HttpSearchTransport:
    """
    Calls `POST /search` on the search service and decodes the unified result.

    Non-2xx responses are mapped back to the typed errors the service raised.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        path: str = "/search",
        sort: SortOrder = "newest",
    ):
        self.client = client
        self.path = path
        self.sort = sort

    async def __call__(
        self, viewport: Viewport, filters: Filters, page: int, page_size: int | None
    ) -> SearchResult:
        body = encode_request(viewport, filters, page=page, page_size=page_size, sort=self.sort)
        try:
            resp = await self.client.post(self.path, json=body)
        except httpx.TimeoutException as e:
            raise SearchTimeout(f"search request timed out: {e}") from e
        except httpx.TransportError as e:
            raise IndexUnavailable(f"search service unreachable: {e}") from e

        if resp.status_code >= 400:
            raise _error_from_response(resp)
        return decode_result(resp.json())


def _error_from_response(resp: httpx.Response) -> SearchError:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return error_from_dict(payload["error"])
    if resp.status_code == 504:
        return SearchTimeout(f"HTTP {resp.status_code}")
    if resp.status_code >= 500:
        return IndexUnavailable(f"HTTP {resp.status_code}")
    logger.warning("unexpected search response %d: %s", resp.status_code, resp.text[:200])
    return SearchError(f"HTTP {resp.status_code}")
