"""
BLS (Bureau of Labor Statistics) API client for CPI-U series.

Official BLS API documentation:
https://www.bls.gov/developers/api_signature_v2.htm

Rate limits:
- Without API key: 25 queries/day, 10 years per query, 25 series per query
- With API key (free): 500 queries/day, 20 years per query, 50 series per query
- API key available at: https://data.bls.gov/registrationEngine/
"""

import logging
from typing import Dict, List, Optional, Any

import httpx

from costwise.core.http_client import BaseAPIClient
from costwise.core.api_errors import InvalidParamsError, UpstreamError
from costwise.core.api_registry import get_api_config

logger = logging.getLogger(__name__)


class BLSClient(BaseAPIClient):
    """
    HTTP client for BLS API v2.

    Note: BLS API uses POST for data requests.
    """

    SOURCE_NAME = "bls"
    BASE_URL = "https://api.bls.gov/publicAPI/v2/timeseries/data/"

    # Series limits based on API key presence
    MAX_SERIES_WITH_KEY = 50
    MAX_SERIES_WITHOUT_KEY = 25
    MAX_YEARS_WITH_KEY = 20
    MAX_YEARS_WITHOUT_KEY = 10

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize BLS API client.

        Args:
            api_key: Optional BLS API key (recommended for production)
            max_concurrency: Maximum concurrent requests, capped at the registry limit
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport
        """
        config = get_api_config("bls")
        config.require_key(api_key)

        super().__init__(
            api_key=api_key,
            max_concurrency=config.concurrency_limit(max_concurrency),
            timeout=timeout or config.timeout_seconds,
            connect_timeout=config.connect_timeout_seconds,
            rate_limit_interval=config.pacing_interval(),
            transport=transport,
        )

        self.max_series_per_request = (
            self.MAX_SERIES_WITH_KEY if api_key else self.MAX_SERIES_WITHOUT_KEY
        )
        self.max_years = (
            self.MAX_YEARS_WITH_KEY if api_key else self.MAX_YEARS_WITHOUT_KEY
        )

        if not api_key:
            logger.warning(
                "BLS API key not provided. Limited to 25 queries/day, 10 years per query. "
                f"Get a free key at: {config.signup_url}"
            )

    def _check_api_error(
        self, data: Any, resource_id: str
    ) -> Optional[Exception]:
        """Check for BLS-specific API errors."""
        if not isinstance(data, dict):
            return UpstreamError(
                message=f"Unexpected BLS response shape for {resource_id}",
                source=self.SOURCE_NAME,
            )

        status = data.get("status")
        if status == "REQUEST_SUCCEEDED":
            return None

        message = data.get("message", [])
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)

        return UpstreamError(
            message=f"BLS API error ({status}): {message or 'request did not succeed'}",
            source=self.SOURCE_NAME,
            response_data=data,
        )

    async def fetch_series(
        self,
        series_ids: List[str],
        start_year: int,
        end_year: int,
    ) -> Dict[str, Any]:
        """
        Fetch time series data for one or more BLS series.

        Args:
            series_ids: List of BLS series IDs (e.g., ["CUUR0000SA0"])
            start_year: Start year (e.g., 2023)
            end_year: End year (e.g., 2024)

        Returns:
            Dict containing API response with series data

        Raises:
            InvalidParamsError: If series count or year range exceeds limits
        """
        if len(series_ids) > self.max_series_per_request:
            raise InvalidParamsError(
                f"Too many series ({len(series_ids)}). "
                f"Max is {self.max_series_per_request} per request "
                f"({'with' if self.api_key else 'without'} API key)",
                source=self.SOURCE_NAME,
            )

        year_span = end_year - start_year + 1
        if year_span > self.max_years:
            raise InvalidParamsError(
                f"Year range too large ({year_span} years). "
                f"Max is {self.max_years} years {'with' if self.api_key else 'without'} API key",
                source=self.SOURCE_NAME,
                invalid_params={"years": str(year_span)},
            )

        payload: Dict[str, Any] = {
            "seriesid": series_ids,
            "startyear": str(start_year),
            "endyear": str(end_year),
        }
        if self.api_key:
            payload["registrationkey"] = self.api_key

        series_list = ", ".join(series_ids[:3])
        if len(series_ids) > 3:
            series_list += f"... ({len(series_ids)} total)"

        return await self.post(
            self.BASE_URL, json_body=payload, resource_id=f"series:[{series_list}]"
        )
