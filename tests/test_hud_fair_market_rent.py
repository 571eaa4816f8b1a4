"""
Tests for the HUD Fair Market Rent source: feature parsing, ZIP/state/batch
lookups and caching. Upstream calls are mocked; no network access.
"""
from unittest.mock import AsyncMock

import httpx
import pytest

from costwise.core.api_errors import ErrorCode, InvalidParamsError, NotFoundError, UpstreamError
from costwise.core.schemas import FairMarketRent
from costwise.sources.hud.client import HUDClient
from costwise.sources.hud.fetcher import RentFetcher
from costwise.sources.hud.metadata import normalize_fmr, parse_fmr_features


def fmr_feature(code, name, rents=(1200, 1400, 1700, 2200, 2600), year="2024", safmr="N"):
    attrs = {"FMR_CODE": code, "FMR_AREANAME": name, "FMR_YEAR": year, "SAFMR_FLAG": safmr}
    for size, rent in enumerate(rents):
        attrs[f"FMR_{size}BDR"] = rent
    return {"attributes": attrs}


AUSTIN = fmr_feature("METRO12420M12420", "Austin-Round Rock-Georgetown, TX HUD Metro FMR Area")
NEW_YORK = fmr_feature(
    "METRO35620M35620", "New York, NY HUD Metro FMR Area", rents=(2300, 2400, 2700, 3400, 3600), safmr="Y"
)
DALLAS = fmr_feature("METRO19100M19100", "Dallas, TX HUD Metro FMR Area")
TEXARKANA = fmr_feature("METRO45500M45500", "Texarkana, TX-AR HUD Metro FMR Area")
SHREVEPORT = fmr_feature("METRO43340M43340", "Shreveport-Bossier City, LA HUD Metro FMR Area")

FEATURES_BY_CBSA = {"12420": AUSTIN, "35620": NEW_YORK}


def mock_client():
    client = AsyncMock()

    async def by_cbsa(cbsa_code):
        feature = FEATURES_BY_CBSA.get(cbsa_code)
        return {"features": [feature] if feature else []}

    async def by_state(state_code, limit=100):
        return {"features": [AUSTIN, DALLAS, TEXARKANA, SHREVEPORT]}

    client.get_fmr_by_cbsa = AsyncMock(side_effect=by_cbsa)
    client.get_fmr_by_state = AsyncMock(side_effect=by_state)
    return client


@pytest.fixture
def client():
    return mock_client()


@pytest.fixture
def fetcher(cache_store, resolver, client, settings):
    return RentFetcher(cache_store, resolver, client=client, settings=settings)


# =============================================================================
# Parsing
# =============================================================================


@pytest.mark.unit
class TestParsing:

    def test_parse_features(self):
        features = parse_fmr_features({"features": [AUSTIN, NEW_YORK, {"attributes": {}}]})
        assert len(features) == 2
        assert features[0].rents == [1200.0, 1400.0, 1700.0, 2200.0, 2600.0]
        assert features[0].year == 2024
        assert features[1].is_small_area is True

    def test_missing_bedroom_sizes_are_zero(self):
        feature = {"attributes": {"FMR_CODE": "X", "FMR_AREANAME": "X, TX", "FMR_2BDR": 1500}}
        parsed = parse_fmr_features({"features": [feature]})[0]
        assert parsed.rents == [0.0, 0.0, 1500.0, 0.0, 0.0]
        assert parsed.year is None

    def test_default_year_used_when_absent(self):
        feature = parse_fmr_features({"features": [{"attributes": {"FMR_CODE": "X", "FMR_AREANAME": "X, TX"}}]})[0]
        assert normalize_fmr(feature, default_year=2024).year == 2024

    def test_rents_always_five_entries(self):
        fmr = FairMarketRent(
            metro_code="1", metro_name="m", area_name="a", year=2024, rents_by_bedroom=[900, None]
        )
        assert fmr.rents_by_bedroom == [900.0, 0.0, 0.0, 0.0, 0.0]


# =============================================================================
# ZIP lookups
# =============================================================================


@pytest.mark.unit
class TestZipLookup:

    @pytest.mark.asyncio
    async def test_fetch_zip(self, fetcher, client):
        result = await fetcher.fetch_zip("78701")

        assert result.cached is False
        assert result.data_year == 2024
        fmr = result.data
        assert fmr.zip_code == "78701"
        assert fmr.metro_code == "12420"
        assert fmr.metro_name == "Austin-Round Rock-Georgetown, TX"
        assert fmr.state_code == "TX"
        assert fmr.rents_by_bedroom[2] == 1700.0
        client.get_fmr_by_cbsa.assert_awaited_once_with("12420")

    @pytest.mark.asyncio
    async def test_second_lookup_is_cached(self, fetcher, client):
        await fetcher.fetch_zip("78701")
        result = await fetcher.fetch_zip("78701")

        assert result.cached is True
        assert client.get_fmr_by_cbsa.await_count == 1

    @pytest.mark.asyncio
    async def test_split_zip_uses_majority_metro(self, fetcher):
        result = await fetcher.fetch_zip("10001")
        assert result.data.metro_code == "35620"
        assert result.data.is_small_area_fmr is True

    @pytest.mark.asyncio
    async def test_include_nearby(self, fetcher):
        result = await fetcher.fetch_zip("78701", include_nearby=True)
        assert [m.metro_code for m in result.data.nearby_metros] == ["19100", "26420", "45500"]

    @pytest.mark.asyncio
    async def test_malformed_zip(self, fetcher, client):
        with pytest.raises(InvalidParamsError):
            await fetcher.fetch_zip("7870")
        client.get_fmr_by_cbsa.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unmapped_zip(self, fetcher, client):
        with pytest.raises(NotFoundError):
            await fetcher.fetch_zip("99501")
        client.get_fmr_by_cbsa.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_metro_without_fmr(self, fetcher):
        with pytest.raises(NotFoundError):
            await fetcher.fetch_zip("75201")

    def test_metro_info(self, fetcher):
        match = fetcher.metro_info("10001")
        assert match.metro_code == "35620"
        assert match.is_split_zip is True

    def test_nearby_for_unmapped_zip(self, fetcher):
        with pytest.raises(NotFoundError):
            fetcher.nearby("99501")


# =============================================================================
# State and batch lookups
# =============================================================================


@pytest.mark.unit
class TestStateLookup:

    @pytest.mark.asyncio
    async def test_state_filters_by_parsed_state(self, fetcher):
        result = await fetcher.fetch_state("tx")
        names = [fmr.area_name for fmr in result.data]
        assert len(names) == 3
        assert all("TX" in name for name in names)
        assert all(fmr.state_code == "TX" for fmr in result.data)

    @pytest.mark.asyncio
    async def test_state_is_cached(self, fetcher, client):
        await fetcher.fetch_state("TX")
        assert (await fetcher.fetch_state("TX")).cached is True
        assert client.get_fmr_by_state.await_count == 1

    @pytest.mark.asyncio
    async def test_state_without_areas(self, fetcher, client):
        client.get_fmr_by_state = AsyncMock(return_value={"features": []})
        with pytest.raises(NotFoundError):
            await fetcher.fetch_state("WY")

    @pytest.mark.asyncio
    async def test_invalid_state(self, fetcher):
        with pytest.raises(InvalidParamsError):
            await fetcher.fetch_state("Texas")


@pytest.mark.unit
class TestBatchLookup:

    @pytest.mark.asyncio
    async def test_batch_with_malformed_zip(self, fetcher):
        result = await fetcher.fetch_batch(["78701", "10001", "abc"])

        assert [item.zip_code for item in result.data] == ["78701", "10001", "abc"]
        assert result.data[0].data.metro_code == "12420"
        assert result.data[1].data.metro_code == "35620"
        assert result.data[2].data is None
        assert result.data[2].error.code == ErrorCode.INVALID_PARAMS.value
        assert result.cached is False

    @pytest.mark.asyncio
    async def test_batch_cached_only_when_every_item_cached(self, fetcher):
        await fetcher.fetch_batch(["78701", "10001"])
        result = await fetcher.fetch_batch(["78701", "10001"])
        assert result.cached is True

    @pytest.mark.asyncio
    async def test_upstream_failure_reported_per_item(self, fetcher, client):
        async def flaky(cbsa_code):
            if cbsa_code == "35620":
                raise UpstreamError("HUD timed out", source="hud")
            return {"features": [AUSTIN]}

        client.get_fmr_by_cbsa = AsyncMock(side_effect=flaky)
        result = await fetcher.fetch_batch(["78701", "10001"])

        assert result.data[0].error is None
        assert result.data[1].error.code == ErrorCode.UPSTREAM_ERROR.value

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_generic(self, fetcher, client):
        client.get_fmr_by_cbsa = AsyncMock(side_effect=RuntimeError("boom"))
        result = await fetcher.fetch_batch(["78701"])

        error = result.data[0].error
        assert error.code == ErrorCode.INTERNAL_ERROR.value
        assert error.message == "An unexpected error occurred"

    @pytest.mark.asyncio
    async def test_empty_batch(self, fetcher):
        with pytest.raises(InvalidParamsError):
            await fetcher.fetch_batch([])

    @pytest.mark.asyncio
    async def test_oversized_batch(self, fetcher):
        with pytest.raises(InvalidParamsError):
            await fetcher.fetch_batch(["78701"] * 21)


# =============================================================================
# Client
# =============================================================================


@pytest.mark.unit
class TestHUDClient:

    @pytest.mark.asyncio
    async def test_query_params(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={"features": [AUSTIN]})

        async with HUDClient(transport=httpx.MockTransport(handler)) as client:
            data = await client.get_fmr_by_cbsa("12420")

        assert data["features"][0]["attributes"]["FMR_CODE"] == "METRO12420M12420"
        assert seen["path"].endswith("/FeatureServer/0/query")
        assert seen["where"] == "FMR_CODE LIKE '%12420%'"
        assert seen["f"] == "json"
        assert seen["returnGeometry"] == "false"

    @pytest.mark.asyncio
    async def test_arcgis_error_payload(self):
        body = {"error": {"code": 400, "message": "Invalid query"}}
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))

        async with HUDClient(transport=transport) as client:
            with pytest.raises(UpstreamError):
                await client.get_fmr_by_state("TX")
