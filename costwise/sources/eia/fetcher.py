"""
Cache-aware energy price fetcher.

The three EIA series are cached independently and resolved concurrently on
every request. Each resolution becomes a SeriesSuccess or SeriesFailure;
composition over those outcomes is pure. Composed records are not cached, so
national averages always reflect the series values in hand.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import TypeAdapter

from costwise.core.api_errors import (
    APIError,
    ConfigurationError,
    InternalError,
    InvalidParamsError,
    NotFoundError,
    UpstreamError,
)
from costwise.core.fetch_base import BaseSourceFetcher, FetchResult
from costwise.core.models import DataSource
from costwise.core.schemas import EnergyPriceRecord, StateEnergyCost, UtilityCostEstimate
from costwise.sources.eia.client import EIAClient
from costwise.sources.eia.metadata import (
    AVG_MONTHLY_ELECTRICITY_KWH,
    AVG_MONTHLY_NATURAL_GAS_MCF,
    SERIES_ELECTRICITY,
    SERIES_GASOLINE,
    SERIES_NAMES,
    SERIES_NATURAL_GAS,
    SeriesFailure,
    SeriesOutcome,
    SeriesSuccess,
    calculate_utility_cost,
    compose_all_records,
    compose_energy_record,
    parse_electricity,
    parse_gasoline,
    parse_natural_gas,
)

logger = logging.getLogger(__name__)

PRICE_MAP = TypeAdapter(Dict[str, float])


def validate_state_code(state_code: str) -> str:
    state_code = (state_code or "").strip().upper()
    if len(state_code) != 2 or not state_code.isalpha():
        raise InvalidParamsError(
            "Invalid state code. Must be 2 letter abbreviation.",
            source="eia",
            invalid_params={"state": state_code},
        )
    return state_code


def validate_consumption(value: Optional[float], name: str, default: float) -> float:
    """Positive monthly consumption override, or the national default."""
    if value is None:
        return default
    if value <= 0:
        raise InvalidParamsError(
            f"{name} must be greater than 0",
            source="eia",
            invalid_params={name: str(value)},
        )
    return float(value)


class EnergyFetcher(BaseSourceFetcher[EIAClient]):
    """Residential electricity, natural gas, and retail gasoline prices by state."""

    SOURCE = DataSource.EIA

    def _create_client(self) -> EIAClient:
        return EIAClient(
            api_key=self.settings.require_eia_api_key(),
            max_concurrency=self.settings.max_concurrency,
            timeout=self.settings.request_timeout_seconds,
        )

    # =========================================================================
    # Series
    # =========================================================================

    def _series_loader(self, name: str) -> Callable[[], Awaitable[Dict[str, float]]]:
        async def load() -> Dict[str, float]:
            if name == SERIES_ELECTRICITY:
                values = parse_electricity(await self.client.get_residential_electricity_prices())
            elif name == SERIES_NATURAL_GAS:
                values = parse_natural_gas(await self.client.get_residential_natural_gas_prices())
            else:
                values = parse_gasoline(await self.client.get_retail_gasoline_prices())

            if not values:
                raise UpstreamError(
                    f"EIA returned no usable {name} rows", source=self.SOURCE.value
                )
            return values

        return load

    async def _resolve_series(self, name: str) -> SeriesOutcome:
        result = await self._cached(f"series:{name}", self._series_loader(name), PRICE_MAP)
        return SeriesSuccess(
            name=name,
            values=result.data,
            cached=result.cached,
            cache_age=result.cache_age,
        )

    async def resolve_all_series(self) -> List[SeriesOutcome]:
        """Resolve every series concurrently; failures become SeriesFailure."""
        settled = await asyncio.gather(
            *[self._resolve_series(name) for name in SERIES_NAMES],
            return_exceptions=True,
        )

        outcomes: List[SeriesOutcome] = []
        for name, outcome in zip(SERIES_NAMES, settled):
            if isinstance(outcome, SeriesSuccess):
                outcomes.append(outcome)
            elif isinstance(outcome, APIError):
                logger.warning(f"EIA {name} series unavailable: {outcome}")
                outcomes.append(SeriesFailure(name=name, error=outcome))
            elif isinstance(outcome, Exception):
                logger.error(f"Unexpected error resolving EIA {name} series", exc_info=outcome)
                outcomes.append(SeriesFailure(
                    name=name, error=InternalError(f"Failed to resolve {name} series")
                ))
            else:
                raise outcome
        return outcomes

    def _result(self, data, outcomes: List[SeriesOutcome]) -> FetchResult:
        hits = [o for o in outcomes if isinstance(o, SeriesSuccess) and o.cached]
        all_cached = len(hits) == len(outcomes)
        return FetchResult(
            data=data,
            cached=all_cached,
            cache_age=max(o.cache_age or 0 for o in hits) if all_cached else None,
        )

    def _raise_if_unusable(self, outcomes: List[SeriesOutcome]) -> None:
        """
        Records need electricity or gasoline; when both failed nothing can
        be composed and the outage is reported instead of an empty result.
        """
        failures = {o.name: o for o in outcomes if isinstance(o, SeriesFailure)}
        if SERIES_ELECTRICITY not in failures or SERIES_GASOLINE not in failures:
            return
        for failure in failures.values():
            if isinstance(failure.error, ConfigurationError):
                raise failure.error
        raise UpstreamError(
            "EIA electricity and gasoline series both failed",
            source=self.SOURCE.value,
            details={name: f.error.message for name, f in failures.items()},
        )

    # =========================================================================
    # Public operations
    # =========================================================================

    async def fetch_state(self, state_code: str) -> FetchResult[EnergyPriceRecord]:
        """
        Energy prices and indices for one state.

        Raises:
            UpstreamError: Electricity and gasoline series both failed
            NotFoundError: Series resolved but the state has no electricity
                or gasoline price
        """
        state_code = validate_state_code(state_code)
        outcomes = await self.resolve_all_series()
        self._raise_if_unusable(outcomes)

        record = compose_energy_record(state_code, outcomes)
        if record is None:
            raise NotFoundError(
                "No energy price data for state", source=self.SOURCE.value, resource_id=state_code
            )
        return self._result(record, outcomes)

    async def fetch_all(self) -> FetchResult[List[EnergyPriceRecord]]:
        """Energy prices and indices for every state with data."""
        outcomes = await self.resolve_all_series()
        self._raise_if_unusable(outcomes)
        return self._result(compose_all_records(outcomes), outcomes)

    async def utility(
        self,
        electricity_kwh: Optional[float] = None,
        natural_gas_mcf: Optional[float] = None,
    ) -> FetchResult[List[UtilityCostEstimate]]:
        """Monthly utility estimates for every state."""
        kwh = validate_consumption(electricity_kwh, "electricity_kwh", AVG_MONTHLY_ELECTRICITY_KWH)
        mcf = validate_consumption(natural_gas_mcf, "natural_gas_mcf", AVG_MONTHLY_NATURAL_GAS_MCF)

        result = await self.fetch_all()
        result.data = [calculate_utility_cost(record, kwh, mcf) for record in result.data]
        return result

    async def utility_state(
        self,
        state_code: str,
        electricity_kwh: Optional[float] = None,
        natural_gas_mcf: Optional[float] = None,
    ) -> FetchResult[StateEnergyCost]:
        """Energy prices plus the utility estimate for one state."""
        kwh = validate_consumption(electricity_kwh, "electricity_kwh", AVG_MONTHLY_ELECTRICITY_KWH)
        mcf = validate_consumption(natural_gas_mcf, "natural_gas_mcf", AVG_MONTHLY_NATURAL_GAS_MCF)

        result = await self.fetch_state(state_code)
        result.data = StateEnergyCost(
            energy=result.data,
            utility=calculate_utility_cost(result.data, kwh, mcf),
        )
        return result
