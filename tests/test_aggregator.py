"""
Tests for the request aggregator: rate limiting first, synchronous parameter
validation, error to status mapping and the response envelope.

Fetchers are mocked; no DB or network access.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from costwise.core.aggregator import Aggregator, render_error
from costwise.core.api_errors import (
    CacheError,
    ConfigurationError,
    InvalidParamsError,
    NotFoundError,
    RateLimitedError,
    UpstreamError,
)
from costwise.core.config import Settings
from costwise.core.fetch_base import FetchResult
from costwise.core.rate_limiter import FixedWindowRateLimiter
from costwise.core.schemas import (
    CPIRegion,
    ErrorBody,
    FairMarketRent,
    LocationMatch,
    MetroMatch,
    NormalizedPriceParity,
    RentBatchItem,
)

TX_RPP = NormalizedPriceParity(
    geo_id="48000", geo_name="Texas", state_code="TX", year=2023,
    overall=95.0, percent_above_national=-5.0, rank=3,
)

AUSTIN_FMR = FairMarketRent(
    zip_code="78701", metro_code="12420", metro_name="Austin-Round Rock-Georgetown, TX",
    state_code="TX", area_name="Austin", rents_by_bedroom=[1200, 1400, 1700, 2200, 2600], year=2024,
)


@pytest.fixture
def agg_settings(clean_env):
    return Settings(_env_file=None, rate_limit_max_requests=3, rate_limit_window_ms=60_000)


@pytest.fixture
def fetchers():
    price_parity = MagicMock()
    price_parity.fetch_states = AsyncMock(
        return_value=FetchResult(data=[TX_RPP], cached=True, cache_age=120, data_year=2023)
    )
    price_parity.fetch_state = AsyncMock(return_value=FetchResult(data=TX_RPP, data_year=2023))
    price_parity.close = AsyncMock()

    rents = MagicMock()
    rents.fetch_zip = AsyncMock(return_value=FetchResult(data=AUSTIN_FMR, data_year=2024))
    rents.fetch_batch = AsyncMock(return_value=FetchResult(data=[
        RentBatchItem(zip_code="78701", data=AUSTIN_FMR),
        RentBatchItem(zip_code="abc", error=ErrorBody(code="INVALID_PARAMS", message="bad zip")),
    ]))
    rents.metro_info = MagicMock(return_value=MetroMatch(
        metro_code="12420", metro_name="Austin-Round Rock-Georgetown, TX",
        state_code="TX", residential_ratio=1.0, is_split_zip=False,
    ))
    rents.close = AsyncMock()

    price_index = MagicMock()
    price_index.regions = MagicMock(return_value=[
        CPIRegion(region="west", region_name="West", area_code="0400", states=["CA"]),
    ])
    price_index.fetch_timeseries = AsyncMock()
    price_index.close = AsyncMock()

    energy = MagicMock()
    energy.fetch_state = AsyncMock()
    energy.utility = AsyncMock(return_value=FetchResult(data=[]))
    energy.close = AsyncMock()

    return {"price_parity": price_parity, "rents": rents, "price_index": price_index, "energy": energy}


@pytest.fixture
def limiter():
    return FixedWindowRateLimiter(clock=lambda: 1_700_000_000.0)


@pytest.fixture
def resolver():
    resolver = MagicMock()
    resolver.search = MagicMock(return_value=[
        LocationMatch(id="metro-12420", type="metro", name="Austin-Round Rock-Georgetown, TX",
                      state_code="TX", metro_code="12420"),
    ])
    return resolver


@pytest.fixture
def aggregator(fetchers, resolver, limiter, agg_settings):
    return Aggregator(rate_limiter=limiter, settings=agg_settings, resolver=resolver, **fetchers)


# =============================================================================
# Success envelope
# =============================================================================


@pytest.mark.unit
class TestSuccess:

    @pytest.mark.asyncio
    async def test_list_response_meta(self, aggregator):
        response = await aggregator.dispatch("bea", "1.2.3.4", "states", {})

        assert response.status_code == 200
        body = response.body
        assert body["success"] is True
        assert "error" not in body
        assert body["data"][0]["geo_id"] == "48000"
        assert body["meta"] == {
            "cached": True,
            "cache_age": 120,
            "source": "BEA Regional Price Parities",
            "data_year": 2023,
            "count": 1,
        }

    @pytest.mark.asyncio
    async def test_rate_limit_headers_on_success(self, aggregator):
        response = await aggregator.dispatch("bea", "1.2.3.4", "states", {})
        assert response.headers["X-RateLimit-Remaining"] == "2"
        assert "X-RateLimit-Reset" in response.headers
        assert "Retry-After" not in response.headers

    @pytest.mark.asyncio
    async def test_single_object_has_no_count(self, aggregator, fetchers):
        response = await aggregator.dispatch("hud", "ip", "zip", {"zip": " 78701 "})

        assert response.body["data"]["rents_by_bedroom"] == [1200.0, 1400.0, 1700.0, 2200.0, 2600.0]
        assert "count" not in response.body["meta"]
        fetchers["rents"].fetch_zip.assert_awaited_once_with("78701", include_nearby=False)

    @pytest.mark.asyncio
    async def test_include_nearby_flag(self, aggregator, fetchers):
        await aggregator.dispatch("hud", "ip", "zip", {"zip": "78701", "include_nearby": "true"})
        fetchers["rents"].fetch_zip.assert_awaited_once_with("78701", include_nearby=True)

    @pytest.mark.asyncio
    async def test_batch_counts(self, aggregator, fetchers):
        response = await aggregator.dispatch("hud", "ip", "batch", {"zips": "78701, abc"})

        meta = response.body["meta"]
        assert meta["count"] == 2
        assert meta["success_count"] == 1
        assert meta["error_count"] == 1
        fetchers["rents"].fetch_batch.assert_awaited_once_with(["78701", "abc"])

    @pytest.mark.asyncio
    async def test_sync_lookups(self, aggregator):
        metro = await aggregator.dispatch("hud", "ip", "metro", {"zip": "78701"})
        assert metro.body["data"]["metro_code"] == "12420"
        assert metro.body["meta"]["cached"] is False

        regions = await aggregator.dispatch("bls", "ip", "regions", {})
        assert regions.body["data"][0]["region"] == "west"

    @pytest.mark.asyncio
    async def test_state_code_accepted_for_bea_state(self, aggregator, fetchers):
        await aggregator.dispatch("bea", "ip", "state", {"state": "tx", "year": "2023"})
        fetchers["price_parity"].fetch_state.assert_awaited_once_with("48000", 2023)

    @pytest.mark.asyncio
    async def test_utility_defaults(self, aggregator, fetchers):
        await aggregator.dispatch("eia", "ip", "utility", {})
        fetchers["energy"].utility.assert_awaited_once_with(886.0, 5.5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query_type", ["all", "state"])
    async def test_consumption_overrides_ignored_outside_utility(self, aggregator, fetchers, query_type):
        fetchers["energy"].fetch_all = AsyncMock(return_value=FetchResult(data=[]))
        fetchers["energy"].fetch_state.return_value = FetchResult(data=[])

        response = await aggregator.dispatch(
            "eia", "ip", query_type, {"state": "CA", "electricity_kwh": "-5", "natural_gas_mcf": "lots"}
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_location_search(self, aggregator, resolver):
        response = await aggregator.dispatch("location", "ip", "search", {"q": " austin ", "limit": "5"})

        assert response.status_code == 200
        assert response.body["data"][0]["id"] == "metro-12420"
        assert response.body["meta"]["source"] == "ZIP/CBSA Crosswalk"
        assert response.body["meta"]["count"] == 1
        resolver.search.assert_called_once_with("austin", 5)

    @pytest.mark.asyncio
    async def test_location_search_default_limit(self, aggregator, resolver):
        await aggregator.dispatch("location", "ip", None, {"q": "78"})
        resolver.search.assert_called_once_with("78", 10)

    @pytest.mark.asyncio
    async def test_bls_twenty_years_with_key(self, fetchers, resolver, limiter, clean_env):
        fetchers["price_index"].fetch_timeseries.return_value = FetchResult(data=[])
        keyed = Settings(_env_file=None, bls_api_key="test-bls-key")
        aggregator = Aggregator(rate_limiter=limiter, settings=keyed, resolver=resolver, **fetchers)

        response = await aggregator.dispatch("bls", "ip", "timeseries", {"years": "20"})

        assert response.status_code == 200
        fetchers["price_index"].fetch_timeseries.assert_awaited_once_with("all", "national", 20)


# =============================================================================
# Rate limiting
# =============================================================================


@pytest.mark.unit
class TestRateLimiting:

    @pytest.mark.asyncio
    async def test_request_over_limit_rejected(self, aggregator, fetchers):
        for _ in range(3):
            assert (await aggregator.dispatch("bea", "1.2.3.4", "states", {})).status_code == 200

        response = await aggregator.dispatch("bea", "1.2.3.4", "states", {})

        assert response.status_code == 429
        assert response.body["success"] is False
        assert response.body["error"]["code"] == "RATE_LIMITED"
        assert response.body["error"]["message"] == "Too many requests. Please try again later."
        assert response.body["error"]["details"]["retry_after"] == 60
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert fetchers["price_parity"].fetch_states.await_count == 3

    @pytest.mark.asyncio
    async def test_limit_is_per_source_and_client(self, aggregator):
        for _ in range(3):
            await aggregator.dispatch("bea", "1.2.3.4", "states", {})

        assert (await aggregator.dispatch("bea", "5.6.7.8", "states", {})).status_code == 200
        assert (await aggregator.dispatch("bls", "1.2.3.4", "regions", {})).status_code == 200

    @pytest.mark.asyncio
    async def test_invalid_requests_count_against_limit(self, aggregator):
        for _ in range(3):
            await aggregator.dispatch("hud", "ip", "zip", {"zip": "bad"})
        assert (await aggregator.dispatch("hud", "ip", "zip", {"zip": "78701"})).status_code == 429

    @pytest.mark.asyncio
    async def test_location_search_uses_search_preset(self, aggregator):
        for _ in range(4):
            response = await aggregator.dispatch("location", "ip", "search", {"q": "austin"})
            assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "56"

    @pytest.mark.asyncio
    async def test_upstream_sources_use_configured_limit(self, aggregator):
        response = await aggregator.dispatch("eia", "ip", "utility", {})
        assert response.headers["X-RateLimit-Remaining"] == "2"


# =============================================================================
# Errors
# =============================================================================


@pytest.mark.unit
class TestErrors:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,status,code", [
        (InvalidParamsError("bad"), 400, "INVALID_PARAMS"),
        (NotFoundError("missing", resource_id="48000"), 404, "NOT_FOUND"),
        (RateLimitedError(retry_after=5), 429, "RATE_LIMITED"),
        (UpstreamError("BEA timed out"), 502, "UPSTREAM_ERROR"),
        (CacheError("db down"), 503, "CACHE_ERROR"),
        (ConfigurationError("BEA_API_KEY is required"), 500, "INTERNAL_ERROR"),
    ])
    async def test_error_status_mapping(self, aggregator, fetchers, error, status, code):
        fetchers["price_parity"].fetch_states.side_effect = error

        response = await aggregator.dispatch("bea", "ip", "states", {})

        assert response.status_code == status
        assert response.body["success"] is False
        assert response.body["error"]["code"] == code
        assert "data" not in response.body

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_generic(self, aggregator, fetchers):
        fetchers["price_parity"].fetch_states.side_effect = KeyError("secret internals")

        response = await aggregator.dispatch("bea", "ip", "states", {})

        assert response.status_code == 500
        assert response.body["error"] == {
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
        }

    @pytest.mark.asyncio
    async def test_unknown_type(self, aggregator):
        response = await aggregator.dispatch("bea", "ip", "counties", {})
        assert response.status_code == 400
        assert "states, metros, state, metro" in response.body["error"]["message"]

    @pytest.mark.asyncio
    async def test_missing_type(self, aggregator):
        response = await aggregator.dispatch("eia", "ip", None, {})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_source(self, aggregator):
        response = await aggregator.dispatch("zillow", "ip", "zip", {})
        assert response.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source,query_type,params", [
        ("hud", "zip", {}),
        ("hud", "zip", {"zip": "7870"}),
        ("hud", "state", {"state": "Texas"}),
        ("hud", "batch", {"zips": " , "}),
        ("hud", "batch", {"zips": ",".join(["78701"] * 21)}),
        ("hud", "nearby", {"zip": "78701", "limit": "0"}),
        ("bea", "states", {"year": "twenty"}),
        ("bea", "metro", {"cbsa": "124"}),
        ("bls", "timeseries", {"years": "25"}),
        ("bls", "timeseries", {"years": "11"}),
        ("location", "search", {"q": "a"}),
        ("location", "search", {"q": "austin", "limit": "21"}),
        ("bls", "region", {"region": "pacific"}),
        ("eia", "utility", {"electricity_kwh": "-5"}),
        ("eia", "utility", {"natural_gas_mcf": "lots"}),
        ("eia", "state", {"state": "California"}),
    ])
    async def test_invalid_params_fail_before_fetch(
        self, aggregator, fetchers, resolver, source, query_type, params
    ):
        response = await aggregator.dispatch(source, "ip", query_type, params)

        assert response.status_code == 400
        assert response.body["error"]["code"] == "INVALID_PARAMS"
        fetchers["rents"].fetch_zip.assert_not_awaited()
        fetchers["rents"].fetch_batch.assert_not_awaited()
        fetchers["price_parity"].fetch_states.assert_not_awaited()
        fetchers["price_index"].fetch_timeseries.assert_not_awaited()
        fetchers["energy"].utility.assert_not_awaited()
        fetchers["energy"].fetch_state.assert_not_awaited()
        resolver.search.assert_not_called()

    def test_render_error_internal_drops_details(self):
        response = render_error(ConfigurationError("EIA_API_KEY is required", missing_config="eia_api_key"))
        assert response.status_code == 500
        assert "details" not in response.body["error"]

    @pytest.mark.asyncio
    async def test_close_releases_fetchers(self, aggregator, fetchers):
        await aggregator.close()
        for fetcher in fetchers.values():
            fetcher.close.assert_awaited_once()
