"""
Tests for BaseAPIClient request handling.

Uses httpx.MockTransport so no network is touched.
"""
import httpx
import pytest

from costwise.core.api_errors import UpstreamError
from costwise.core.api_registry import get_api_config
from costwise.core.http_client import BaseAPIClient
from costwise.sources.bls.client import BLSClient
from costwise.sources.eia.client import EIAClient
from costwise.sources.hud.client import HUDClient


class ExampleClient(BaseAPIClient):
    SOURCE_NAME = "example"
    BASE_URL = "https://example.test/api/"

    def _add_auth_to_params(self, params):
        params["key"] = "secret"
        return params


def make_client(handler, **kwargs):
    return ExampleClient(transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.unit
class TestSuccessfulRequests:

    @pytest.mark.asyncio
    async def test_get_joins_base_url_and_adds_auth(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["agent"] = request.headers["user-agent"]
            return httpx.Response(200, json={"rows": [1, 2]})

        client = make_client(handler)
        data = await client.get("/series", params={"id": "X"}, resource_id="series:X")
        await client.close()

        assert data == {"rows": [1, 2]}
        assert seen["url"].startswith("https://example.test/api/series?")
        assert "id=X" in seen["url"]
        assert "key=secret" in seen["url"]
        assert seen["agent"] == "CostWise/example-client"

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self):
        def handler(request):
            assert request.method == "POST"
            assert request.headers["content-type"] == "application/json"
            return httpx.Response(200, content=request.content)

        async with make_client(handler) as client:
            data = await client.post("timeseries", json_body={"seriesid": ["A", "B"]})

        assert data == {"seriesid": ["A", "B"]}


@pytest.mark.unit
class TestFailures:

    @pytest.mark.asyncio
    async def test_timeout_is_upstream_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = make_client(handler, timeout=2.0)
        with pytest.raises(UpstreamError) as exc_info:
            await client.get("slow")
        await client.close()

        assert "timed out after 2.0s" in exc_info.value.message
        assert exc_info.value.source == "example"

    @pytest.mark.asyncio
    async def test_connect_error_is_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        with pytest.raises(UpstreamError, match="Request failed"):
            await client.get("down")
        await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,fragment", [
        (500, "Upstream server error"),
        (503, "Upstream server error"),
        (403, "rejected credentials"),
        (429, "Upstream rate limited"),
        (404, "resource not found"),
    ])
    async def test_http_status_is_upstream_error(self, status, fragment):
        client = make_client(lambda request: httpx.Response(status, text="nope"))
        with pytest.raises(UpstreamError) as exc_info:
            await client.get("thing")
        await client.close()

        assert exc_info.value.status_code == status
        assert fragment in exc_info.value.message
        assert exc_info.value.http_status == 502

    @pytest.mark.asyncio
    async def test_unparseable_body(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(UpstreamError, match="Unparseable"):
            await client.get("thing", resource_id="thing")
        await client.close()

    @pytest.mark.asyncio
    async def test_vendor_error_payload(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"error": {"message": "invalid api_key"}})
        )
        with pytest.raises(UpstreamError, match="invalid api_key"):
            await client.get("thing")
        await client.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        await client.get("thing")
        await client.close()
        await client.close()
        assert client._client is None


@pytest.mark.unit
class TestApiRegistry:

    def test_concurrency_capped_at_registry_limit(self):
        eia = get_api_config("eia")
        assert eia.concurrency_limit() == 3
        assert eia.concurrency_limit(10) == 3
        assert eia.concurrency_limit(2) == 2
        assert eia.concurrency_limit(0) == 1

    def test_clients_use_registry_concurrency(self):
        assert HUDClient().max_concurrency == 5
        assert BLSClient(max_concurrency=4).max_concurrency == 2
        assert EIAClient(api_key="test-eia-key", max_concurrency=1).max_concurrency == 1

    def test_key_required_from_registry(self):
        with pytest.raises(ValueError, match="EIA_API_KEY is required"):
            get_api_config("eia").require_key(None)
        with pytest.raises(ValueError, match="BEA_API_KEY is required"):
            get_api_config("bea").require_key("")
        get_api_config("bls").require_key(None)
        get_api_config("hud").require_key(None)

    def test_unknown_source(self):
        with pytest.raises(KeyError):
            get_api_config("zillow")
