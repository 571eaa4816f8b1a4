"""
EIA energy price endpoints.

Query types:
- all: prices and indices for every state
- state: prices and indices for one state
- utility: monthly utility estimates for every state
- utility-state: prices plus the utility estimate for one state
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from costwise.api.deps import client_identifier, get_aggregator, to_response
from costwise.core.aggregator import Aggregator

router = APIRouter(tags=["eia"])


@router.get("/eia")
async def get_energy_prices(
    request: Request,
    type: Optional[str] = Query(None, description="all, state, utility or utility-state"),
    state: Optional[str] = Query(None, description="2-letter state code"),
    electricity_kwh: Optional[str] = Query(None, description="Monthly kWh override (default 886)"),
    natural_gas_mcf: Optional[str] = Query(None, description="Monthly Mcf override (default 5.5)"),
    aggregator: Aggregator = Depends(get_aggregator),
) -> JSONResponse:
    result = await aggregator.dispatch(
        "eia",
        client_identifier(request),
        type,
        {
            "state": state,
            "electricity_kwh": electricity_kwh,
            "natural_gas_mcf": natural_gas_mcf,
        },
    )
    return to_response(result)
