"""
EIA (Energy Information Administration) API v2 client.

Official documentation: https://www.eia.gov/opendata/documentation.php

Routes used:
- electricity/retail-sales: residential electricity price by state (cents/kWh)
- natural-gas/pri/sum: residential natural gas price by state ($/Mcf)
- petroleum/pri/gnd: retail gasoline price by PADD region ($/gal)

Rate limits: 5,000 requests per hour with API key (required).
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from costwise.core.http_client import BaseAPIClient
from costwise.core.api_errors import UpstreamError
from costwise.core.api_registry import get_api_config

logger = logging.getLogger(__name__)


class EIAClient(BaseAPIClient):
    """HTTP client for EIA API v2."""

    SOURCE_NAME = "eia"
    BASE_URL = "https://api.eia.gov/v2"

    # Maximum rows per request allowed by EIA v2
    MAX_LENGTH = 5000

    def __init__(
        self,
        api_key: str,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize EIA API client.

        Args:
            api_key: EIA API key (required)
            max_concurrency: Maximum concurrent requests, capped at the registry limit
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport

        Raises:
            ValueError: If api_key is not provided
        """
        config = get_api_config("eia")
        config.require_key(api_key)
        super().__init__(
            api_key=api_key,
            max_concurrency=config.concurrency_limit(max_concurrency),
            timeout=timeout or config.timeout_seconds,
            connect_timeout=config.connect_timeout_seconds,
            rate_limit_interval=config.pacing_interval(),
            transport=transport,
        )

    def _add_auth_to_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Add API key to request parameters."""
        params["api_key"] = self.api_key
        return params

    def _check_api_error(self, data: Any, resource_id: str) -> Optional[Exception]:
        """EIA returns {"error": ...} on failures and {"response": {...}} on success."""
        error = super()._check_api_error(data, resource_id)
        if error:
            return error
        if not isinstance(data, dict) or "response" not in data:
            return UpstreamError(
                message=f"EIA response missing 'response' section for {resource_id}",
                source=self.SOURCE_NAME,
            )
        return None

    async def get_data(
        self,
        route: str,
        frequency: str,
        data_column: str,
        facets: Optional[Dict[str, List[str]]] = None,
        length: int = 500,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Fetch rows from a v2 data route, newest period first.

        Args:
            route: Route path without the trailing /data (e.g., "electricity/retail-sales")
            frequency: monthly, weekly, annual, ...
            data_column: Value column to return (e.g., "price", "value")
            facets: Facet filters, e.g. {"sectorid": ["RES"]}
            length: Number of rows to return (max 5000)
            offset: Pagination offset
        """
        params: Dict[str, Any] = {
            "frequency": frequency,
            "data[0]": data_column,
            "sort[0][column]": "period",
            "sort[0][direction]": "desc",
            "offset": offset,
            "length": min(length, self.MAX_LENGTH),
        }
        for facet, values in (facets or {}).items():
            params[f"facets[{facet}][]"] = values

        return await self.get(f"{route}/data/", params=params, resource_id=route)

    async def get_residential_electricity_prices(self) -> Dict[str, Any]:
        """Monthly residential retail electricity price by state."""
        return await self.get_data(
            "electricity/retail-sales",
            frequency="monthly",
            data_column="price",
            facets={"sectorid": ["RES"]},
            length=500,
        )

    async def get_residential_natural_gas_prices(self) -> Dict[str, Any]:
        """Monthly residential natural gas price by state."""
        return await self.get_data(
            "natural-gas/pri/sum",
            frequency="monthly",
            data_column="value",
            facets={"process": ["PRS"]},
            length=500,
        )

    async def get_retail_gasoline_prices(self) -> Dict[str, Any]:
        """Weekly retail gasoline (all grades) price by area."""
        return await self.get_data(
            "petroleum/pri/gnd",
            frequency="weekly",
            data_column="value",
            facets={"product": ["EPM0"], "process": ["PTE"]},
            length=self.MAX_LENGTH,
        )
