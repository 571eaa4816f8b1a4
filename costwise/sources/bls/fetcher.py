"""
Cache-aware CPI fetcher.

Regional and national series are requested together in one BLS call so the
indices always compare points from the same response.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import TypeAdapter

from costwise.core.api_errors import InvalidParamsError, NotFoundError
from costwise.core.cache_store import CacheStore
from costwise.core.config import Settings
from costwise.core.fetch_base import BaseSourceFetcher, FetchResult
from costwise.core.models import DataSource
from costwise.core.schemas import CPIIndexes, CPIRegion, CPITimeseries
from costwise.sources.bls.client import BLSClient
from costwise.sources.bls.metadata import (
    CPI_AREAS,
    CPI_CATEGORIES,
    NATIONAL,
    compute_indexes,
    list_regions,
    parse_series_response,
    region_for_state,
    series_id,
    to_data_points,
)

logger = logging.getLogger(__name__)

CPI_INDEXES = TypeAdapter(CPIIndexes)
CPI_TIMESERIES = TypeAdapter(CPITimeseries)

MIN_TIMESERIES_YEARS = 1
MAX_TIMESERIES_YEARS = 20
DEFAULT_TIMESERIES_YEARS = 5


def validate_region(region: str) -> str:
    region = (region or "").strip().lower()
    if region not in CPI_AREAS:
        raise InvalidParamsError(
            f"Unknown CPI region '{region}'. Valid regions: {', '.join(CPI_AREAS)}",
            source="bls",
            invalid_params={"region": region},
        )
    return region


def validate_category(category: str) -> str:
    category = (category or "").strip().lower()
    if category not in CPI_CATEGORIES:
        raise InvalidParamsError(
            f"Unknown CPI category '{category}'. Valid categories: {', '.join(CPI_CATEGORIES)}",
            source="bls",
            invalid_params={"category": category},
        )
    return category


def max_timeseries_years(api_key: Optional[str]) -> int:
    """Longest year span one BLS request may cover for this key state."""
    return BLSClient.MAX_YEARS_WITH_KEY if api_key else BLSClient.MAX_YEARS_WITHOUT_KEY


def validate_years(years: int, maximum: int = MAX_TIMESERIES_YEARS) -> int:
    if not MIN_TIMESERIES_YEARS <= years <= maximum:
        raise InvalidParamsError(
            f"years must be between {MIN_TIMESERIES_YEARS} and {maximum}",
            source="bls",
            invalid_params={"years": str(years)},
        )
    return years


class PriceIndexFetcher(BaseSourceFetcher[BLSClient]):
    """CPI-U indices by census region, state, or nationally."""

    SOURCE = DataSource.BLS

    def __init__(
        self,
        cache: CacheStore,
        client: Optional[BLSClient] = None,
        settings: Optional[Settings] = None,
        current_year: Optional[Callable[[], int]] = None,
    ):
        super().__init__(cache, client=client, settings=settings)
        self._current_year = current_year or (lambda: datetime.now().year)

    def _create_client(self) -> BLSClient:
        return BLSClient(
            api_key=self.settings.get_bls_api_key(),
            max_concurrency=self.settings.max_concurrency,
            timeout=self.settings.request_timeout_seconds,
        )

    async def _load_region(self, region: str, start_year: int, end_year: int) -> CPIIndexes:
        regions = [region] if region == NATIONAL else [region, NATIONAL]
        series_ids = [series_id(r, c) for r in regions for c in CPI_CATEGORIES]

        observations = parse_series_response(
            await self.client.fetch_series(series_ids, start_year, end_year)
        )

        regional_ids = [series_id(region, c) for c in CPI_CATEGORIES]
        if not any(observations.get(sid) for sid in regional_ids):
            raise NotFoundError(
                f"No CPI observations for {start_year}-{end_year}",
                source=self.SOURCE.value,
                resource_id=region,
            )

        return compute_indexes(region, observations)

    async def fetch_region(self, region: str) -> FetchResult[CPIIndexes]:
        """Latest CPI values and indices for a census region (or national)."""
        region = validate_region(region)
        end_year = self._current_year()
        start_year = end_year - self.settings.cpi_lookback_years + 1

        return await self._cached(
            f"cpi:{region}:{end_year}",
            lambda: self._load_region(region, start_year, end_year),
            CPI_INDEXES,
            data_year=lambda indexes: indexes.latest_year,
        )

    async def fetch_national(self) -> FetchResult[CPIIndexes]:
        """National CPI; every index is 100 by construction."""
        return await self.fetch_region(NATIONAL)

    async def fetch_state(self, state_code: str) -> FetchResult[CPIIndexes]:
        """CPI for the state's census region; unmapped states get national."""
        state_code = (state_code or "").strip().upper()
        if len(state_code) != 2 or not state_code.isalpha():
            raise InvalidParamsError(
                f"Invalid state code: '{state_code}'. Expected a 2-letter code.",
                source=self.SOURCE.value,
                invalid_params={"state": state_code},
            )

        region = region_for_state(state_code)
        if region == NATIONAL:
            logger.info(f"State {state_code} has no CPI region, using national")

        result = await self.fetch_region(region)
        result.data = result.data.model_copy(update={"state_code": state_code})
        return result

    async def _load_timeseries(
        self, category: str, region: str, start_year: int, end_year: int
    ) -> CPITimeseries:
        sid = series_id(region, category)
        observations = parse_series_response(
            await self.client.fetch_series([sid], start_year, end_year)
        ).get(sid, [])

        if not observations:
            raise NotFoundError(
                f"No CPI observations for {start_year}-{end_year}",
                source=self.SOURCE.value,
                resource_id=sid,
            )

        return CPITimeseries(
            series_id=sid,
            category=category,
            region=region,
            points=to_data_points(observations, category, region),
        )

    async def fetch_timeseries(
        self,
        category: str = "all",
        region: str = NATIONAL,
        years: int = DEFAULT_TIMESERIES_YEARS,
    ) -> FetchResult[CPITimeseries]:
        """Monthly points for one category and region over the last N years."""
        category = validate_category(category)
        region = validate_region(region)
        years = validate_years(years, max_timeseries_years(self.settings.get_bls_api_key()))

        end_year = self._current_year()
        start_year = end_year - years + 1

        return await self._cached(
            f"timeseries:{category}:{region}:{start_year}-{end_year}",
            lambda: self._load_timeseries(category, region, start_year, end_year),
            CPI_TIMESERIES,
            data_year=lambda ts: ts.points[-1].year if ts.points else None,
        )

    def regions(self) -> List[CPIRegion]:
        """Static region catalog; no network access."""
        return list_regions()
