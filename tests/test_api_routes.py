"""
Tests for the FastAPI surface: route wiring, client identification,
rate-limit headers and the cache maintenance endpoints.

Aggregator-backed routes use a mocked aggregator through dependency
overrides; the lifespan test runs the real wiring against a temporary
SQLite file with the scheduler disabled.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from costwise.api.deps import get_aggregator, get_cache_store
from costwise.core.aggregator import AggregatedResponse
from costwise.core.api_errors import CacheError
from costwise.core.database import reset_database
from costwise.main import app

OK_RESPONSE = AggregatedResponse(
    status_code=200,
    body={"success": True, "data": [], "meta": {"cached": False, "source": "x", "count": 0}},
    headers={"X-RateLimit-Remaining": "29", "X-RateLimit-Reset": "1700000060"},
)


@pytest.fixture
def aggregator():
    mock = MagicMock()
    mock.dispatch = AsyncMock(return_value=OK_RESPONSE)
    return mock


@pytest.fixture
def client(aggregator, cache_store):
    app.dependency_overrides[get_aggregator] = lambda: aggregator
    app.dependency_overrides[get_cache_store] = lambda: cache_store
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# Source routes
# =============================================================================


@pytest.mark.unit
class TestSourceRoutes:

    def test_hud_passes_query_params(self, client, aggregator):
        response = client.get("/api/v1/hud", params={"type": "zip", "zip": "78701", "include_nearby": "true"})

        assert response.status_code == 200
        source, _identifier, query_type, params = aggregator.dispatch.await_args.args
        assert (source, query_type) == ("hud", "zip")
        assert params["zip"] == "78701"
        assert params["include_nearby"] == "true"
        assert params["zips"] is None

    @pytest.mark.parametrize("path,source", [
        ("/api/v1/bea", "bea"),
        ("/api/v1/bls", "bls"),
        ("/api/v1/eia", "eia"),
    ])
    def test_each_source_routed(self, client, aggregator, path, source):
        client.get(path, params={"type": "x"})
        assert aggregator.dispatch.await_args.args[0] == source

    def test_location_search_routed(self, client, aggregator):
        response = client.get("/api/v1/location/search", params={"q": "austin", "limit": "5"})

        assert response.status_code == 200
        source, _identifier, query_type, params = aggregator.dispatch.await_args.args
        assert (source, query_type) == ("location", "search")
        assert params == {"q": "austin", "limit": "5"}

    def test_rate_limit_headers_forwarded(self, client):
        response = client.get("/api/v1/bea", params={"type": "states"})
        assert response.headers["x-ratelimit-remaining"] == "29"
        assert response.headers["x-ratelimit-reset"] == "1700000060"

    def test_error_status_forwarded(self, client, aggregator):
        aggregator.dispatch.return_value = AggregatedResponse(
            status_code=429,
            body={"success": False, "error": {"code": "RATE_LIMITED", "message": "slow down",
                                              "details": {"retry_after": 12}}},
            headers={"Retry-After": "12"},
        )
        response = client.get("/api/v1/eia", params={"type": "all"})

        assert response.status_code == 429
        assert response.headers["retry-after"] == "12"
        assert response.json()["error"]["code"] == "RATE_LIMITED"


@pytest.mark.unit
class TestClientIdentifier:

    def _identifier(self, client, aggregator, headers):
        client.get("/api/v1/bls", params={"type": "regions"}, headers=headers)
        return aggregator.dispatch.await_args.args[1]

    def test_first_forwarded_for_entry(self, client, aggregator):
        headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
        assert self._identifier(client, aggregator, headers) == "203.0.113.7"

    def test_real_ip_fallback(self, client, aggregator):
        assert self._identifier(client, aggregator, {"X-Real-IP": "198.51.100.2"}) == "198.51.100.2"

    def test_socket_peer_fallback(self, client, aggregator):
        assert self._identifier(client, aggregator, {}) == "testclient"


# =============================================================================
# Cache maintenance
# =============================================================================


@pytest.mark.unit
class TestCacheRoutes:

    def test_stats(self, client, cache_store):
        cache_store.set("hud", "zip:78701", {"rent": 1})
        cache_store.set("bea", "states:2023", [1, 2])

        response = client.get("/api/v1/cache/stats")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 2
        assert data["by_source"] == {"hud": 1, "bea": 1}
        assert data["expired"] == 0

    def test_invalidate_by_source(self, client, cache_store):
        cache_store.set("hud", "zip:78701", {"rent": 1})
        cache_store.set("bea", "states:2023", [1, 2])

        response = client.delete("/api/v1/cache", params={"source": "hud"})

        assert response.json() == {
            "success": True,
            "data": {"deleted": 1, "source": "hud", "location_key": None},
        }
        assert cache_store.get("hud", "zip:78701") is None
        assert cache_store.get("bea", "states:2023") is not None

    def test_invalidate_unknown_source(self, client):
        response = client.delete("/api/v1/cache", params={"source": "zillow"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PARAMS"

    def test_sweep(self, client, cache_store, clock):
        cache_store.set("hud", "zip:78701", {"rent": 1}, ttl_seconds=60)
        clock.advance(seconds=61)

        response = client.post("/api/v1/cache/sweep")

        assert response.json()["data"] == {"deleted": 1}

    def test_cache_unavailable(self, aggregator):
        broken = MagicMock()
        broken.stats.side_effect = CacheError("Cache stats unavailable")
        app.dependency_overrides[get_aggregator] = lambda: aggregator
        app.dependency_overrides[get_cache_store] = lambda: broken
        try:
            response = TestClient(app).get("/api/v1/cache/stats")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503
        assert response.json() == {
            "success": False,
            "error": {"code": "CACHE_ERROR", "message": "Cache stats unavailable"},
        }


# =============================================================================
# Application lifespan
# =============================================================================


@pytest.fixture
def live_env(clean_env, monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'costwise.db'}")
    monkeypatch.setenv("ENABLE_SCHEDULER", "false")
    reset_database()
    yield
    reset_database()


@pytest.mark.unit
class TestLifespan:

    def test_root(self, live_env):
        with TestClient(app) as client:
            body = client.get("/").json()
        assert body["sources"] == ["bea", "hud", "bls", "eia"]

    def test_health(self, live_env):
        with TestClient(app) as client:
            body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["scheduler"] == {"running": False, "jobs": []}

    def test_health_hides_database_error(self, live_env):
        broken = MagicMock()
        broken.connect.side_effect = OperationalError("SELECT 1", {}, Exception("secret dsn detail"))
        with TestClient(app) as client:
            with patch("costwise.main.get_engine", return_value=broken):
                body = client.get("/health").json()

        assert body["status"] == "degraded"
        assert body["database"] == "error"
        assert "secret" not in str(body)

    def test_location_search_uses_search_preset(self, live_env):
        with TestClient(app) as client:
            response = client.get("/api/v1/location/search", params={"q": "78"})

        assert response.status_code == 200
        assert response.json()["data"] == []
        assert response.headers["x-ratelimit-remaining"] == "59"

    def test_unmapped_zip_is_not_found(self, live_env):
        with TestClient(app) as client:
            response = client.get("/api/v1/hud", params={"type": "metro", "zip": "78701"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
        assert "x-ratelimit-remaining" in response.headers

    def test_invalid_params_before_network(self, live_env):
        with TestClient(app) as client:
            response = client.get("/api/v1/bls", params={"type": "timeseries", "years": "99"})

        assert response.status_code == 400
        assert response.json()["success"] is False
