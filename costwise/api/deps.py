"""
Request-scoped helpers shared by the v1 routers.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from costwise.core.aggregator import AggregatedResponse, Aggregator
from costwise.core.cache_store import CacheStore


def client_identifier(request: Request) -> str:
    """
    Client identity used for rate limiting.

    First X-Forwarded-For entry, then X-Real-IP, then the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_aggregator(request: Request) -> Aggregator:
    return request.app.state.aggregator


def get_cache_store(request: Request) -> CacheStore:
    return request.app.state.cache


def to_response(result: AggregatedResponse) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body, headers=result.headers)
