"""
Cache-aware Regional Price Parity fetcher.

Each batch (all states or all metros for a year) is fetched as one query per
RPP line code, issued concurrently, then normalized and ranked as a whole.
Single-geography lookups select from the ranked batch so ranks stay
meaningful.

RPP publication lags 1-2 years: when the requested year has no rows, exactly
one prior year is tried before giving up.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import TypeAdapter

from costwise.core.api_errors import InvalidParamsError, NotFoundError
from costwise.core.fetch_base import BaseSourceFetcher, FetchResult
from costwise.core.models import DataSource
from costwise.core.schemas import NormalizedPriceParity
from costwise.sources.bea.client import BEAClient
from costwise.sources.bea.metadata import (
    RPP_LINE_CODES,
    RPP_TABLES,
    BEARegionalRow,
    normalize_price_parity,
    parse_regional_response,
)

logger = logging.getLogger(__name__)

PRICE_PARITY_LIST = TypeAdapter(List[NormalizedPriceParity])


def default_rpp_year() -> int:
    """Most recent year RPP data is normally available for."""
    return datetime.now().year - 2


def normalize_state_fips(fips: str) -> str:
    """Accept "06" or "06000"; return the 5-digit GeoFips."""
    fips = (fips or "").strip()
    if len(fips) == 2 and fips.isdigit():
        return f"{fips}000"
    if len(fips) == 5 and fips.isdigit():
        return fips
    raise InvalidParamsError(
        f"Invalid state FIPS code: '{fips}'. Expected 2 or 5 digits.",
        source="bea",
        invalid_params={"fips": fips},
    )


def normalize_metro_code(code: str) -> str:
    """CBSA codes are 5 digits."""
    code = (code or "").strip()
    if len(code) == 5 and code.isdigit():
        return code
    raise InvalidParamsError(
        f"Invalid metro (CBSA) code: '{code}'. Expected 5 digits.",
        source="bea",
        invalid_params={"cbsa": code},
    )


def _batch_year(items: List[NormalizedPriceParity]) -> Optional[int]:
    return items[0].year if items else None


class PriceParityFetcher(BaseSourceFetcher[BEAClient]):
    """Regional Price Parities by state and metro area."""

    SOURCE = DataSource.BEA

    def _create_client(self) -> BEAClient:
        return BEAClient(
            api_key=self.settings.require_bea_api_key(),
            max_concurrency=self.settings.max_concurrency,
            timeout=self.settings.request_timeout_seconds,
        )

    # =========================================================================
    # Upstream
    # =========================================================================

    async def _fetch_rows(self, level: str, year: int) -> List[BEARegionalRow]:
        table = RPP_TABLES[level]
        responses = await asyncio.gather(*[
            self.client.get_regional_data(
                table_name=table["table"],
                line_code=line_code,
                geo_fips=table["geo_fips"],
                year=str(year),
            )
            for line_code in RPP_LINE_CODES
        ])

        rows: List[BEARegionalRow] = []
        for line_code, response in zip(RPP_LINE_CODES, responses):
            rows.extend(parse_regional_response(response, line_code, year))
        return rows

    async def _load_batch(self, level: str, year: int) -> List[NormalizedPriceParity]:
        for candidate in (year, year - 1):
            items = normalize_price_parity(await self._fetch_rows(level, candidate), level)
            if items:
                if candidate != year:
                    logger.info(
                        f"No {level} RPP data for {year}; using {candidate} instead"
                    )
                return items

        raise NotFoundError(
            f"No regional price parity data for {year} or {year - 1}",
            source=self.SOURCE.value,
            resource_id=level,
        )

    async def _batch(self, level: str, year: Optional[int]) -> FetchResult[List[NormalizedPriceParity]]:
        year = year or default_rpp_year()
        return await self._cached(
            f"rpp:{level}s:{year}",
            lambda: self._load_batch(level, year),
            PRICE_PARITY_LIST,
            data_year=_batch_year,
        )

    # =========================================================================
    # Public operations
    # =========================================================================

    async def fetch_states(self, year: Optional[int] = None) -> FetchResult[List[NormalizedPriceParity]]:
        """Ranked RPP for every state."""
        return await self._batch("state", year)

    async def fetch_metros(self, year: Optional[int] = None) -> FetchResult[List[NormalizedPriceParity]]:
        """Ranked RPP for every metro area."""
        return await self._batch("metro", year)

    async def fetch_state(self, fips: str, year: Optional[int] = None) -> FetchResult[NormalizedPriceParity]:
        """RPP for one state, ranked against all states."""
        return await self._select("state", normalize_state_fips(fips), year)

    async def fetch_metro(self, cbsa: str, year: Optional[int] = None) -> FetchResult[NormalizedPriceParity]:
        """RPP for one metro area, ranked against all metros."""
        return await self._select("metro", normalize_metro_code(cbsa), year)

    async def _select(self, level: str, geo_id: str, year: Optional[int]) -> FetchResult[NormalizedPriceParity]:
        batch = await self._batch(level, year)
        for item in batch.data:
            if item.geo_id == geo_id:
                return FetchResult(
                    data=item,
                    cached=batch.cached,
                    cache_age=batch.cache_age,
                    data_year=item.year,
                )
        raise NotFoundError(
            f"No price parity data for {level}",
            source=self.SOURCE.value,
            resource_id=geo_id,
        )
