"""
Cache-aware Fair Market Rent fetcher.

ZIP lookups go ZIP -> primary metro (crosswalk) -> FMR area feature.
Batch lookups run every ZIP independently; one bad ZIP never fails the batch.
"""

import asyncio
import logging
from typing import List, Optional

from pydantic import TypeAdapter

from costwise.core.api_errors import APIError, ErrorCode, InvalidParamsError, NotFoundError
from costwise.core.cache_store import CacheStore
from costwise.core.config import Settings
from costwise.core.fetch_base import BaseSourceFetcher, FetchResult
from costwise.core.location_resolver import LocationResolver, is_valid_zip
from costwise.core.models import DataSource
from costwise.core.schemas import (
    CrosswalkRecord,
    ErrorBody,
    FairMarketRent,
    MetroMatch,
    RentBatchItem,
)
from costwise.sources.hud.client import HUDClient
from costwise.sources.hud.metadata import feature_in_state, normalize_fmr, parse_fmr_features

logger = logging.getLogger(__name__)

FAIR_MARKET_RENT = TypeAdapter(FairMarketRent)
FAIR_MARKET_RENT_LIST = TypeAdapter(List[FairMarketRent])

DEFAULT_NEARBY_LIMIT = 5


def validate_zip(zip_code: str) -> str:
    """Strip and check a ZIP code, raising InvalidParamsError when malformed."""
    zip_code = (zip_code or "").strip()
    if not is_valid_zip(zip_code):
        raise InvalidParamsError(
            f"Invalid ZIP code format: '{zip_code}'. ZIP codes must be 5 digits.",
            source="hud",
            invalid_params={"zip": zip_code},
        )
    return zip_code


def validate_state_code(state_code: str) -> str:
    """Two-letter state code, upper-cased."""
    state_code = (state_code or "").strip().upper()
    if len(state_code) != 2 or not state_code.isalpha():
        raise InvalidParamsError(
            f"Invalid state code: '{state_code}'. Expected a 2-letter code.",
            invalid_params={"state": state_code},
        )
    return state_code


class RentFetcher(BaseSourceFetcher[HUDClient]):
    """HUD Fair Market Rents by ZIP code, state, or ZIP batch."""

    SOURCE = DataSource.HUD

    def __init__(
        self,
        cache: CacheStore,
        resolver: LocationResolver,
        client: Optional[HUDClient] = None,
        settings: Optional[Settings] = None,
    ):
        super().__init__(cache, client=client, settings=settings)
        self.resolver = resolver

    def _create_client(self) -> HUDClient:
        return HUDClient(
            max_concurrency=self.settings.max_concurrency,
            timeout=self.settings.request_timeout_seconds,
        )

    # =========================================================================
    # Crosswalk-only lookups
    # =========================================================================

    def metro_info(self, zip_code: str) -> MetroMatch:
        """Primary metro for a ZIP, without rent data."""
        zip_code = validate_zip(zip_code)
        match = self.resolver.resolve_metro(zip_code)
        if match is None:
            raise NotFoundError(
                "ZIP code not found in crosswalk", source=self.SOURCE.value, resource_id=zip_code
            )
        return match

    def nearby(self, zip_code: str, limit: int = DEFAULT_NEARBY_LIMIT) -> List[CrosswalkRecord]:
        """Other metros in the same state as the ZIP's primary metro."""
        self.metro_info(zip_code)
        return self.resolver.nearby_metros(zip_code.strip(), limit)

    # =========================================================================
    # Rent lookups
    # =========================================================================

    async def _load_zip(self, zip_code: str) -> FairMarketRent:
        match = self.metro_info(zip_code)

        features = parse_fmr_features(await self.client.get_fmr_by_cbsa(match.metro_code))
        if not features:
            raise NotFoundError(
                f"No Fair Market Rent data for metro {match.metro_name}",
                source=self.SOURCE.value,
                resource_id=zip_code,
            )

        return normalize_fmr(
            features[0],
            default_year=self.settings.hud_fmr_year,
            match=match,
            zip_code=zip_code,
        )

    async def fetch_zip(
        self, zip_code: str, include_nearby: bool = False
    ) -> FetchResult[FairMarketRent]:
        """
        Fair Market Rent for the ZIP's primary metro.

        Raises:
            InvalidParamsError: Malformed ZIP
            NotFoundError: ZIP not in crosswalk, or metro without FMR data
        """
        zip_code = validate_zip(zip_code)
        result = await self._cached(
            f"zip:{zip_code}",
            lambda: self._load_zip(zip_code),
            FAIR_MARKET_RENT,
            data_year=lambda fmr: fmr.year,
        )

        if include_nearby:
            nearby = self.resolver.nearby_metros(zip_code, DEFAULT_NEARBY_LIMIT)
            result.data = result.data.model_copy(update={"nearby_metros": nearby})

        return result

    async def _load_state(self, state_code: str) -> List[FairMarketRent]:
        limit = 100
        features = parse_fmr_features(await self.client.get_fmr_by_state(state_code, limit))
        areas = [
            normalize_fmr(f, default_year=self.settings.hud_fmr_year, fallback_state=state_code)
            for f in features
            if feature_in_state(f, state_code)
        ]
        if not areas:
            raise NotFoundError(
                "No Fair Market Rent data for state",
                source=self.SOURCE.value,
                resource_id=state_code,
            )
        return areas

    async def fetch_state(self, state_code: str) -> FetchResult[List[FairMarketRent]]:
        """Fair Market Rents for every FMR area in a state."""
        state_code = validate_state_code(state_code)
        return await self._cached(
            f"state:{state_code}",
            lambda: self._load_state(state_code),
            FAIR_MARKET_RENT_LIST,
            data_year=lambda areas: areas[0].year if areas else None,
        )

    async def fetch_batch(self, zip_codes: List[str]) -> FetchResult[List[RentBatchItem]]:
        """
        Look up several ZIP codes concurrently and independently.

        Raises:
            InvalidParamsError: Empty batch or more than hud_batch_max_size ZIPs
        """
        max_size = self.settings.hud_batch_max_size
        if not zip_codes:
            raise InvalidParamsError("At least one ZIP code is required", source=self.SOURCE.value)
        if len(zip_codes) > max_size:
            raise InvalidParamsError(
                f"Maximum {max_size} ZIP codes per request, got {len(zip_codes)}",
                source=self.SOURCE.value,
                invalid_params={"zips": str(len(zip_codes))},
            )

        outcomes = await asyncio.gather(
            *[self.fetch_zip(zip_code) for zip_code in zip_codes],
            return_exceptions=True,
        )

        items: List[RentBatchItem] = []
        all_cached = True
        for zip_code, outcome in zip(zip_codes, outcomes):
            if isinstance(outcome, FetchResult):
                items.append(RentBatchItem(zip_code=zip_code, data=outcome.data))
                all_cached = all_cached and outcome.cached
                continue

            all_cached = False
            if isinstance(outcome, APIError):
                error = ErrorBody(code=outcome.code.value, message=outcome.message)
            else:
                logger.error(f"Unexpected error for ZIP {zip_code} in batch", exc_info=outcome)
                error = ErrorBody(
                    code=ErrorCode.INTERNAL_ERROR.value,
                    message="An unexpected error occurred",
                )
            items.append(RentBatchItem(zip_code=zip_code, error=error))

        return FetchResult(data=items, cached=all_cached)
