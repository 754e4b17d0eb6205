import logging
import os

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.schemas import ApiSearchRequest
from api.search_endpoint import (
    get_index,
    handle_get_node,
    handle_index_info,
    handle_node_children,
    handle_search,
    rebuild_index,
)
from engine.types import SpatialIndex
from search.codec import encode_index_info
from search.errors import (
    IndexUnavailable,
    InvalidFilter,
    InvalidViewport,
    NodeNotFound,
    SearchError,
    SearchTimeout,
)
from telemetry.singleton import get_store, reset_store

logging.basicConfig(
    level=(os.getenv("MAPSEARCH_LOG_LEVEL") or "INFO").strip().upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Map search")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_STATUS_BY_ERROR: tuple[tuple[type[SearchError], int], ...] = (
    (InvalidViewport, 422),
    (InvalidFilter, 422),
    (NodeNotFound, 404),
    (IndexUnavailable, 503),
    (SearchTimeout, 504),
)


def _status_for(exc: SearchError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return 500


@app.exception_handler(SearchError)
async def search_error_handler(_request: Request, exc: SearchError):
    status = _status_for(exc)
    if status >= 500:
        logger.warning("search failed: %s (%s)", exc.message, exc.code)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, exc: RequestValidationError):
    first = (exc.errors() or [{}])[0]
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "invalid_request",
                "message": f"{where}: {first.get('msg', 'invalid request')}",
                "transient": False,
            }
        },
    )


@app.post("/search")
def post_search(body: ApiSearchRequest, index: SpatialIndex = Depends(get_index)):
    return handle_search(body, index)


@app.get("/nodes/{node_id}")
def get_node(node_id: str, index: SpatialIndex = Depends(get_index)):
    return handle_get_node(node_id, index)


@app.get("/nodes/{node_id}/children")
def get_node_children(
    node_id: str,
    listingType: str | None = None,
    propertyType: str | None = None,
    index: SpatialIndex = Depends(get_index),
):
    return handle_node_children(node_id, index, listing_type=listingType, property_type=propertyType)


@app.get("/index")
def get_index_info(index: SpatialIndex = Depends(get_index)):
    return handle_index_info(index)


@app.post("/index/rebuild")
def post_index_rebuild(index: SpatialIndex = Depends(get_index)):
    return encode_index_info(rebuild_index(index))


@app.get("/telemetry/summary")
def telemetry_summary(engine: str | None = None, endpoint: str | None = None, sinceMs: int | None = None):
    store = get_store()
    if store is None:
        return {"enabled": False, "rows": []}
    return {"enabled": True, "rows": store.summary(engine=engine, endpoint=endpoint, since_ms=sinceMs)}


@app.get("/telemetry/slowest")
def telemetry_slowest(engine: str | None = None, endpoint: str | None = None, limit: int = 25):
    store = get_store()
    if store is None:
        return {"enabled": False, "rows": []}
    return {"enabled": True, "rows": store.slowest(engine=engine, endpoint=endpoint, limit=limit)}


@app.post("/telemetry/reset")
def telemetry_reset():
    reset_store()
    return {"ok": True}
