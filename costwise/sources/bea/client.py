"""
BEA API client for Regional Price Parities.

Official BEA API documentation:
https://apps.bea.gov/api/_pdf/bea_web_service_api_user_guide.pdf

Regional Price Parities live in the Regional dataset:
- SARPP: RPP by state
- MARPP: RPP by metropolitan statistical area

Rate limits:
- 100 requests per minute per UserID
- 100 MB data volume per minute
- API key required (free registration)
"""

import logging
from typing import Dict, Optional, Any

import httpx

from costwise.core.http_client import BaseAPIClient
from costwise.core.api_errors import UpstreamError
from costwise.core.api_registry import get_api_config

logger = logging.getLogger(__name__)


class BEAClient(BaseAPIClient):
    """
    HTTP client for the BEA Regional dataset.

    Inherits timeout, pacing and error handling from BaseAPIClient.
    """

    SOURCE_NAME = "bea"
    BASE_URL = "https://apps.bea.gov/api/data"

    def __init__(
        self,
        api_key: str,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize BEA API client.

        Args:
            api_key: BEA API key (UserID) - required
            max_concurrency: Maximum concurrent requests, capped at the registry limit
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport
        """
        config = get_api_config("bea")
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
        params["UserID"] = self.api_key
        params["ResultFormat"] = "JSON"
        return params

    def _check_api_error(
        self, data: Any, resource_id: str
    ) -> Optional[Exception]:
        """Check for BEA-specific API errors."""
        if not isinstance(data, dict) or "BEAAPI" not in data:
            return UpstreamError(
                message=f"Unexpected BEA response shape for {resource_id}",
                source=self.SOURCE_NAME,
            )

        beaapi = data["BEAAPI"] or {}
        results = beaapi.get("Results") or {}
        error = results.get("Error") if isinstance(results, dict) else None
        error = error or beaapi.get("Error")

        if error:
            detail = error.get("ErrorDetail", {}) if isinstance(error, dict) else {}
            error_msg = (
                detail.get("Description")
                or (error.get("APIErrorDescription") if isinstance(error, dict) else None)
                or str(error)
            )

            # An empty year is not a failure; the caller decides about fallback
            if "no data" in error_msg.lower():
                logger.info(f"BEA has no data for {resource_id}")
                return None

            logger.warning(f"BEA API error: {error_msg}")
            return UpstreamError(
                message=f"BEA API error: {error_msg}",
                source=self.SOURCE_NAME,
                response_data=data,
            )

        return None

    async def get_regional_data(
        self,
        table_name: str,
        line_code: str = "1",
        geo_fips: str = "STATE",
        year: str = "LAST5",
    ) -> Dict[str, Any]:
        """
        Fetch Regional Economic Accounts data.

        Args:
            table_name: Regional table name (e.g., "SARPP" for RPP by state)
            line_code: Line code for specific measure
            geo_fips: Geographic area - "STATE", "MSA", or specific FIPS
            year: Year(s) to retrieve
        """
        params = {
            "method": "GetData",
            "DataSetName": "Regional",
            "TableName": table_name,
            "LineCode": line_code,
            "GeoFips": geo_fips,
            "Year": year,
        }
        return await self.get(
            "", params=params, resource_id=f"Regional:{table_name}:{line_code}:{year}"
        )
