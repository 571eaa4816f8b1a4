"""
Cache maintenance endpoints.

- GET /cache/stats: entry counts per source and expired-but-unswept
- DELETE /cache: invalidate by source, key, both, or everything
- POST /cache/sweep: delete expired entries now
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from costwise.api.deps import get_cache_store, to_response
from costwise.core.aggregator import render_error
from costwise.core.api_errors import APIError
from costwise.core.cache_store import CacheStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache", tags=["cache"])


def _ok(data) -> JSONResponse:
    return JSONResponse(status_code=200, content={"success": True, "data": data})


@router.get("/stats")
def cache_stats(cache: CacheStore = Depends(get_cache_store)) -> JSONResponse:
    try:
        return _ok(cache.stats())
    except APIError as e:
        return to_response(render_error(e))


@router.delete("")
def invalidate_cache(
    source: Optional[str] = Query(None, description="hud, bea, bls, eia or census"),
    location_key: Optional[str] = Query(None, description="Exact cache key"),
    cache: CacheStore = Depends(get_cache_store),
) -> JSONResponse:
    """Invalidate cache entries; with no filters every entry is removed."""
    try:
        deleted = cache.invalidate(source=source, key=location_key)
    except APIError as e:
        return to_response(render_error(e))
    return _ok({"deleted": deleted, "source": source, "location_key": location_key})


@router.post("/sweep")
def sweep_cache(cache: CacheStore = Depends(get_cache_store)) -> JSONResponse:
    try:
        deleted = cache.sweep()
    except APIError as e:
        return to_response(render_error(e))
    logger.info(f"Manual cache sweep removed {deleted} entries")
    return _ok({"deleted": deleted})
