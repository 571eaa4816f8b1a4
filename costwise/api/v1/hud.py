"""
HUD Fair Market Rent endpoints.

Query types:
- zip: FMR for the metro containing a ZIP (optionally with nearby metros)
- state: FMRs for every area in a state
- batch: FMRs for up to hud_batch_max_size comma-separated ZIPs
- metro: crosswalk lookup only (ZIP -> primary CBSA)
- nearby: other metros in the same state(s) as the ZIP's metro
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from costwise.api.deps import client_identifier, get_aggregator, to_response
from costwise.core.aggregator import Aggregator

router = APIRouter(tags=["hud"])


@router.get("/hud")
async def get_fair_market_rents(
    request: Request,
    type: Optional[str] = Query(None, description="zip, state, batch, metro or nearby"),
    zip: Optional[str] = Query(None, description="5-digit ZIP code"),
    zips: Optional[str] = Query(None, description="Comma-separated ZIP codes (type=batch)"),
    state: Optional[str] = Query(None, description="2-letter state code (type=state)"),
    include_nearby: Optional[str] = Query(None, description="Attach nearby metros (type=zip)"),
    limit: Optional[str] = Query(None, description="Max nearby metros (type=nearby)"),
    aggregator: Aggregator = Depends(get_aggregator),
) -> JSONResponse:
    result = await aggregator.dispatch(
        "hud",
        client_identifier(request),
        type,
        {
            "zip": zip,
            "zips": zips,
            "state": state,
            "include_nearby": include_nearby,
            "limit": limit,
        },
    )
    return to_response(result)
