"""
Location search endpoint.

ZIP prefixes and metro names from the crosswalk table, rate limited with
the search preset.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from costwise.api.deps import client_identifier, get_aggregator, to_response
from costwise.core.aggregator import Aggregator

router = APIRouter(prefix="/location", tags=["location"])


@router.get("/search")
async def search_locations(
    request: Request,
    q: Optional[str] = Query(None, description="ZIP prefix or metro name (at least 2 characters)"),
    limit: Optional[str] = Query(None, description="Max results, 1-20 (default 10)"),
    aggregator: Aggregator = Depends(get_aggregator),
) -> JSONResponse:
    result = await aggregator.dispatch(
        "location", client_identifier(request), "search", {"q": q, "limit": limit}
    )
    return to_response(result)
