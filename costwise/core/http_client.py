"""
Base HTTP client with fixed timeouts, polite pacing, and error handling.

Provides the shared foundation for the upstream data source clients.
Every call is a single attempt bounded by a fixed timeout: failures surface
immediately as UpstreamError and the caller decides what to do with them.
"""
import asyncio
import logging
from abc import ABC
from typing import Dict, Optional, Any

import httpx

from costwise.core.api_errors import APIError, UpstreamError, classify_http_error

logger = logging.getLogger(__name__)


class BaseAPIClient(ABC):
    """
    Base class for all upstream API clients.

    Provides unified:
    - HTTP request handling with a fixed per-call timeout
    - Bounded concurrency via semaphore
    - Minimum spacing between requests (optional)
    - Vendor error detection and classification
    - Connection pooling

    Subclasses should:
    - Set SOURCE_NAME and BASE_URL class attributes
    - Implement API-specific methods that call get() / post()
    - Override _check_api_error() for API-specific error detection
    """

    # Override in subclass
    SOURCE_NAME: str = "unknown"
    BASE_URL: str = ""

    # Default settings
    DEFAULT_MAX_CONCURRENCY: int = 4
    DEFAULT_TIMEOUT: float = 10.0
    DEFAULT_CONNECT_TIMEOUT: float = 5.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        rate_limit_interval: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the API client.

        Args:
            api_key: Optional API key for authentication
            max_concurrency: Maximum concurrent requests (semaphore size)
            timeout: Request timeout in seconds
            connect_timeout: Connection timeout in seconds
            rate_limit_interval: Minimum seconds between requests (None = no limit)
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.api_key = api_key
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self.connect_timeout = min(connect_timeout, timeout)
        self.rate_limit_interval = rate_limit_interval
        self._transport = transport

        self.semaphore = asyncio.Semaphore(max_concurrency)

        self._last_request_time: float = 0
        self._rate_limit_lock = asyncio.Lock()

        # HTTP client (lazy initialization)
        self._client: Optional[httpx.AsyncClient] = None

        logger.debug(
            f"Initialized {self.SOURCE_NAME} client: "
            f"api_key_present={api_key is not None}, "
            f"max_concurrency={max_concurrency}, "
            f"timeout={timeout}s"
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
                follow_redirects=True,
                limits=httpx.Limits(
                    max_connections=self.max_concurrency * 2,
                    max_keepalive_connections=self.max_concurrency
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug(f"{self.SOURCE_NAME} client closed")

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit - ensures cleanup."""
        await self.close()

    async def _enforce_rate_limit(self) -> None:
        """Enforce minimum interval between requests."""
        if self.rate_limit_interval is None:
            return

        async with self._rate_limit_lock:
            loop = asyncio.get_running_loop()
            elapsed = loop.time() - self._last_request_time
            if elapsed < self.rate_limit_interval:
                wait_time = self.rate_limit_interval - elapsed
                logger.debug(f"Pacing {self.SOURCE_NAME}: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
            self._last_request_time = loop.time()

    def _check_api_error(
        self,
        data: Any,
        resource_id: str
    ) -> Optional[APIError]:
        """
        Check a parsed response for source-specific errors.

        Override in subclass to handle API-specific error formats.

        Args:
            data: Parsed JSON response
            resource_id: Resource being requested (for logging)

        Returns:
            APIError if error detected, None otherwise
        """
        if isinstance(data, dict) and "error" in data:
            error_msg = data.get("error")
            if isinstance(error_msg, dict):
                error_msg = error_msg.get("message", str(error_msg))
            return UpstreamError(
                message=str(error_msg),
                source=self.SOURCE_NAME,
                response_data=data
            )
        return None

    def _build_headers(self) -> Dict[str, str]:
        """
        Build request headers.

        Override to add API-specific headers.
        """
        return {
            "Accept": "application/json",
            "User-Agent": f"CostWise/{self.SOURCE_NAME}-client"
        }

    def _add_auth_to_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add authentication to request parameters.

        Override to add API-specific auth (e.g., api_key param).
        """
        return params

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        resource_id: str = "unknown",
    ) -> Any:
        """
        Make a single HTTP request.

        Args:
            method: HTTP method (GET, POST)
            url: Full URL or path (if path, BASE_URL is prepended)
            params: Query parameters
            json_body: JSON body for POST requests
            resource_id: Identifier for logging

        Returns:
            Parsed JSON response

        Raises:
            UpstreamError: On timeout, transport failure, non-2xx status,
                unparseable body, or vendor-level error payload
        """
        if not url.startswith("http"):
            url = f"{self.BASE_URL.rstrip('/')}/{url.lstrip('/')}" if url else self.BASE_URL

        params = self._add_auth_to_params(dict(params or {}))
        headers = self._build_headers()

        async with self.semaphore:
            await self._enforce_rate_limit()
            client = await self._get_client()

            logger.debug(f"[{self.SOURCE_NAME}] {method} {resource_id}")

            try:
                if method.upper() == "POST":
                    response = await client.post(
                        url,
                        params=params,
                        json=json_body,
                        headers={**headers, "Content-Type": "application/json"}
                    )
                else:
                    response = await client.request(
                        method, url, params=params, headers=headers
                    )
                response.raise_for_status()

            except httpx.TimeoutException as e:
                logger.warning(f"[{self.SOURCE_NAME}] Timeout fetching {resource_id}")
                raise UpstreamError(
                    message=f"Request timed out after {self.timeout}s",
                    source=self.SOURCE_NAME,
                ) from e

            except httpx.HTTPStatusError as e:
                error = classify_http_error(
                    e.response.status_code,
                    e.response.text[:500],
                    self.SOURCE_NAME
                )
                logger.warning(f"[{self.SOURCE_NAME}] HTTP error for {resource_id}: {error}")
                raise error from e

            except httpx.RequestError as e:
                logger.warning(f"[{self.SOURCE_NAME}] Request error for {resource_id}: {e}")
                raise UpstreamError(
                    message=f"Request failed: {e}",
                    source=self.SOURCE_NAME,
                ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(
                message=f"Unparseable response body for {resource_id}",
                source=self.SOURCE_NAME,
                status_code=response.status_code,
            ) from e

        api_error = self._check_api_error(data, resource_id)
        if api_error:
            raise api_error

        logger.debug(f"[{self.SOURCE_NAME}] Successfully fetched {resource_id}")
        return data

    async def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        resource_id: str = "unknown"
    ) -> Any:
        """
        Make GET request.

        Args:
            url: URL or path
            params: Query parameters
            resource_id: Identifier for logging

        Returns:
            Parsed JSON response
        """
        return await self._request("GET", url, params=params, resource_id=resource_id)

    async def post(
        self,
        url: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        resource_id: str = "unknown"
    ) -> Any:
        """
        Make POST request.

        Args:
            url: URL or path
            json_body: JSON body
            params: Query parameters
            resource_id: Identifier for logging

        Returns:
            Parsed JSON response
        """
        return await self._request(
            "POST",
            url,
            params=params,
            json_body=json_body,
            resource_id=resource_id
        )
