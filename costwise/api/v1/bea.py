"""
BEA Regional Price Parity endpoints.

Query types:
- states: RPPs for every state, ranked by overall
- metros: RPPs for every metro area, ranked by overall
- state: one state by FIPS (or 2-letter code)
- metro: one metro by CBSA code
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from costwise.api.deps import client_identifier, get_aggregator, to_response
from costwise.core.aggregator import Aggregator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bea"])


@router.get("/bea")
async def get_price_parities(
    request: Request,
    type: Optional[str] = Query(None, description="states, metros, state or metro"),
    fips: Optional[str] = Query(None, description="State FIPS code (type=state)"),
    state: Optional[str] = Query(None, description="2-letter state code (type=state)"),
    cbsa: Optional[str] = Query(None, description="5-digit CBSA code (type=metro)"),
    year: Optional[str] = Query(None, description="Data year; defaults to two years ago"),
    aggregator: Aggregator = Depends(get_aggregator),
) -> JSONResponse:
    """Regional Price Parities (national = 100)."""
    result = await aggregator.dispatch(
        "bea",
        client_identifier(request),
        type,
        {"fips": fips, "state": state, "cbsa": cbsa, "year": year},
    )
    return to_response(result)
