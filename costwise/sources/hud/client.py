"""
HUD Fair Market Rent client.

HUD publishes FMRs through a public ArcGIS feature service:
https://services.arcgis.com/VTyQ9soqVukalItT/arcgis/rest/services/Fair_Market_Rents/FeatureServer/0

Features are keyed by FMR_CODE (which embeds the CBSA code for metro
areas) and carry FMR_0BDR .. FMR_4BDR monthly rents. No API key needed.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from costwise.core.http_client import BaseAPIClient
from costwise.core.api_errors import UpstreamError
from costwise.core.api_registry import get_api_config

logger = logging.getLogger(__name__)


def _quote(value: str) -> str:
    """Escape a value for an ArcGIS where clause literal."""
    return value.replace("'", "''")


class HUDClient(BaseAPIClient):
    """HTTP client for the HUD FMR feature service."""

    SOURCE_NAME = "hud"
    BASE_URL = get_api_config("hud").base_url

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = get_api_config("hud")
        super().__init__(
            api_key=None,
            max_concurrency=config.concurrency_limit(max_concurrency),
            timeout=timeout or config.timeout_seconds,
            connect_timeout=config.connect_timeout_seconds,
            rate_limit_interval=config.pacing_interval(),
            transport=transport,
        )

    def _check_api_error(self, data: Any, resource_id: str) -> Optional[Exception]:
        """ArcGIS reports errors with HTTP 200 and an "error" object."""
        if not isinstance(data, dict):
            return UpstreamError(
                message=f"Unexpected HUD response shape for {resource_id}",
                source=self.SOURCE_NAME,
            )
        return super()._check_api_error(data, resource_id)

    async def query(self, where: str, record_count: int = 1) -> Dict[str, Any]:
        """
        Run a feature query.

        Args:
            where: ArcGIS SQL where clause
            record_count: Maximum features to return
        """
        params = {
            "where": where,
            "outFields": "*",
            "returnGeometry": "false",
            "f": "json",
            "resultRecordCount": str(record_count),
        }
        return await self.get("query", params=params, resource_id=f"fmr:{where}")

    async def get_fmr_by_cbsa(self, cbsa_code: str) -> Dict[str, Any]:
        """FMR feature for the area whose FMR_CODE contains the CBSA code."""
        return await self.query(f"FMR_CODE LIKE '%{_quote(cbsa_code)}%'", record_count=1)

    async def get_fmr_by_state(self, state_code: str, limit: int = 100) -> Dict[str, Any]:
        """FMR features whose area name lists the state."""
        return await self.query(
            f"FMR_AREANAME LIKE '%, %{_quote(state_code)}%'", record_count=limit
        )
