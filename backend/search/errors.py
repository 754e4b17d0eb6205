from __future__ import annotations


class SearchError(Exception):
    """
    Base class for search failures.

    `transient` errors (index unavailable, timeout) may succeed on retry and are
    dismissible in the client; persistent ones stay until the input is corrected.
    """

    code = "search_error"
    transient = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "transient": self.transient}


class InvalidViewport(SearchError):
    code = "invalid_viewport"


class InvalidFilter(SearchError):
    code = "invalid_filter"


class IndexUnavailable(SearchError):
    code = "index_unavailable"
    transient = True


class SearchTimeout(SearchError):
    code = "timeout"
    transient = True


class SearchCanceled(SearchError):
    # Never surfaced to the store.
    code = "canceled"
    transient = True


class NodeNotFound(SearchError):
    code = "node_not_found"


_BY_CODE: dict[str, type[SearchError]] = {
    c.code: c
    for c in (InvalidViewport, InvalidFilter, IndexUnavailable, SearchTimeout, SearchCanceled, NodeNotFound)
}


def error_from_dict(data: dict) -> SearchError:
    """
    Rebuild a typed error from its wire form (`{"code", "message", "transient"}`).
    """
    code = str((data or {}).get("code") or "")
    cls = _BY_CODE.get(code, SearchError)
    err = cls(str((data or {}).get("message") or ""))
    if cls is SearchError:
        err.transient = bool((data or {}).get("transient"))
    return err
