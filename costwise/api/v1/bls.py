"""
BLS Consumer Price Index endpoints.

Query types: national, state, region, timeseries, regions.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from costwise.api.deps import client_identifier, get_aggregator, to_response
from costwise.core.aggregator import Aggregator

router = APIRouter(tags=["bls"])


@router.get("/bls")
async def get_price_indexes(
    request: Request,
    type: Optional[str] = Query(None, description="national, state, region, timeseries or regions"),
    state: Optional[str] = Query(None, description="2-letter state code (type=state)"),
    region: Optional[str] = Query(None, description="national, northeast, midwest, south or west"),
    category: Optional[str] = Query(None, description="food, transportation, medical, housing or all"),
    years: Optional[str] = Query(None, description="Timeseries span in years (1-20)"),
    aggregator: Aggregator = Depends(get_aggregator),
) -> JSONResponse:
    """CPI-U category indices relative to national (national = 100)."""
    result = await aggregator.dispatch(
        "bls",
        client_identifier(request),
        type,
        {"state": state, "region": region, "category": category, "years": years},
    )
    return to_response(result)
