"""
Standardized error classification system.

Provides a single error hierarchy shared by the source fetchers, the cache
store and the aggregator. Every error carries a closed error code and the
HTTP status the aggregator responds with:

- INVALID_PARAMS  -> 400
- NOT_FOUND       -> 404
- RATE_LIMITED    -> 429 (carries retry_after seconds)
- UPSTREAM_ERROR  -> 502
- CACHE_ERROR     -> 503
- INTERNAL_ERROR  -> 500
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Error codes exposed in the response envelope - ONLY these values allowed."""

    INVALID_PARAMS = "INVALID_PARAMS"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    CACHE_ERROR = "CACHE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class APIError(Exception):
    """
    Base exception for all service errors.

    Attributes:
        message: Human-readable error description
        source: Data source name (e.g., 'bea', 'hud', 'bls', 'eia')
        status_code: Upstream HTTP status code if applicable
        response_data: Raw upstream response data for debugging
        details: Extra context surfaced in the error envelope
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    http_status: int = 500

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.source = source
        self.status_code = status_code
        self.response_data = response_data
        self.details = details

    def __str__(self) -> str:
        parts = [self.message]
        if self.source:
            parts.insert(0, f"[{self.source}]")
        if self.status_code:
            parts.append(f"(HTTP {self.status_code})")
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "source": self.source,
            "status_code": self.status_code,
            "details": self.details,
        }


class InvalidParamsError(APIError):
    """
    Request validation failed - missing or malformed parameters.

    Raised synchronously before any cache or network access.
    """

    code = ErrorCode.INVALID_PARAMS
    http_status = 400

    def __init__(
        self,
        message: str = "Invalid request parameters",
        source: Optional[str] = None,
        invalid_params: Optional[Dict[str, str]] = None,
    ):
        super().__init__(
            message=message,
            source=source,
            details={"invalid_params": invalid_params} if invalid_params else None,
        )
        self.invalid_params = invalid_params or {}


class NotFoundError(APIError):
    """
    Requested location or dataset not found.

    Unmapped ZIP, unknown geography, or no data for a state.
    """

    code = ErrorCode.NOT_FOUND
    http_status = 404

    def __init__(
        self,
        message: str = "Resource not found",
        source: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        if resource_id:
            message = f"{message}: {resource_id}"
        super().__init__(message=message, source=source)
        self.resource_id = resource_id


class RateLimitedError(APIError):
    """
    Request-level rate limit exceeded for a client identifier.

    The retry_after attribute indicates how many seconds to wait.
    """

    code = ErrorCode.RATE_LIMITED
    http_status = 429

    def __init__(
        self,
        message: str = "Too many requests. Please try again later.",
        source: Optional[str] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(
            message=message,
            source=source,
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after or 1


class UpstreamError(APIError):
    """
    An external API failed: non-2xx response, timeout, transport error,
    vendor-level error payload, or an unparseable body.

    Never retried automatically.
    """

    code = ErrorCode.UPSTREAM_ERROR
    http_status = 502


class CacheError(APIError):
    """The cache store is unreachable for an explicit cache operation."""

    code = ErrorCode.CACHE_ERROR
    http_status = 503


class InternalError(APIError):
    """Unexpected failure inside the service."""

    code = ErrorCode.INTERNAL_ERROR
    http_status = 500


class ConfigurationError(InternalError):
    """
    Configuration error - missing required settings.

    Raised when a required API key is not configured. Only the affected
    source degrades; the rest of the service keeps running.
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        missing_config: Optional[str] = None,
    ):
        super().__init__(message=message, source=source)
        self.missing_config = missing_config


def classify_http_error(
    status_code: int, response_text: str = "", source: Optional[str] = None
) -> APIError:
    """
    Classify an upstream HTTP error.

    Every non-2xx upstream status is an UpstreamError; the message keeps
    enough of the status family to tell auth problems from outages.

    Args:
        status_code: HTTP status code
        response_text: Response body text
        source: API source name

    Returns:
        UpstreamError instance
    """
    snippet = response_text[:200]
    if status_code == 429:
        message = f"Upstream rate limited: {snippet}"
    elif status_code in (401, 403):
        message = f"Upstream rejected credentials: {snippet}"
    elif status_code == 404:
        message = f"Upstream resource not found: {snippet}"
    elif status_code == 400:
        message = f"Upstream rejected request: {snippet}"
    elif 500 <= status_code < 600:
        message = f"Upstream server error: {snippet}"
    else:
        message = f"Upstream HTTP error {status_code}: {snippet}"

    return UpstreamError(message=message, source=source, status_code=status_code)
