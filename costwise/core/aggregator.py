"""
Request aggregator: the single entry point callers use.

For every request:
1. Apply the per-identifier rate limit before any cache or network access
2. Validate query parameters synchronously (fail fast with INVALID_PARAMS)
3. Run the source operation (cache, then upstream fetcher)
4. Wrap the outcome in the uniform envelope with rate-limit headers

No exception escapes dispatch(): typed errors map to their code and HTTP
status, anything else becomes a generic INTERNAL_ERROR.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from costwise.core.api_errors import APIError, InternalError, InvalidParamsError, RateLimitedError
from costwise.core.cache_store import CacheStore
from costwise.core.config import Settings, get_settings
from costwise.core.fetch_base import FetchResult
from costwise.core.location_resolver import (
    DEFAULT_SEARCH_LIMIT,
    MAX_SEARCH_LIMIT,
    LocationResolver,
    validate_search_query,
)
from costwise.core.rate_limiter import RATE_LIMITS, FixedWindowRateLimiter, RateLimitConfig, get_rate_limiter
from costwise.core.schemas import ApiResponse, ErrorBody, ResponseMeta, RentBatchItem
from costwise.sources.bea.fetcher import PriceParityFetcher, normalize_metro_code, normalize_state_fips
from costwise.sources.bea.metadata import STATE_FIPS_TO_CODE
from costwise.sources.bls.fetcher import (
    DEFAULT_TIMESERIES_YEARS,
    PriceIndexFetcher,
    max_timeseries_years,
    validate_category,
    validate_region,
    validate_years,
)
from costwise.sources.eia.fetcher import EnergyFetcher, validate_consumption
from costwise.sources.eia.fetcher import validate_state_code as validate_energy_state
from costwise.sources.eia.metadata import AVG_MONTHLY_ELECTRICITY_KWH, AVG_MONTHLY_NATURAL_GAS_MCF
from costwise.sources.hud.fetcher import (
    DEFAULT_NEARBY_LIMIT,
    RentFetcher,
    validate_state_code,
    validate_zip,
)

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"

SOURCE_LABELS: Dict[str, str] = {
    "bea": "BEA Regional Price Parities",
    "hud": "HUD Fair Market Rents",
    "bls": "BLS Consumer Price Index",
    "eia": "EIA Energy Prices",
    "location": "ZIP/CBSA Crosswalk",
}

# Rate-limit preset per source; unknown sources fall back to heavy
SOURCE_PRESETS: Dict[str, str] = {
    "bea": "heavy",
    "hud": "heavy",
    "bls": "heavy",
    "eia": "heavy",
    "location": "search",
}

Operation = Callable[[], Awaitable[FetchResult]]

STATE_CODE_TO_FIPS = {code: fips for fips, code in STATE_FIPS_TO_CODE.items()}


@dataclass
class AggregatedResponse:
    """Envelope body plus the HTTP status and headers to send it with."""

    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


# =============================================================================
# Parameter helpers
# =============================================================================


def _param(params: Mapping[str, Any], name: str) -> Optional[str]:
    value = params.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _require(params: Mapping[str, Any], name: str, query_type: str) -> str:
    value = _param(params, name)
    if value is None:
        raise InvalidParamsError(
            f"Parameter '{name}' is required for type '{query_type}'",
            invalid_params={name: "missing"},
        )
    return value


def _int_param(
    params: Mapping[str, Any],
    name: str,
    default: Optional[int] = None,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
) -> Optional[int]:
    raw = _param(params, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidParamsError(
            f"Parameter '{name}' must be an integer", invalid_params={name: raw}
        )
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        raise InvalidParamsError(
            f"Parameter '{name}' must be between {minimum} and {maximum}",
            invalid_params={name: raw},
        )
    return value


def _float_param(params: Mapping[str, Any], name: str) -> Optional[float]:
    raw = _param(params, name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        raise InvalidParamsError(
            f"Parameter '{name}' must be a number", invalid_params={name: raw}
        )


def _bool_param(params: Mapping[str, Any], name: str) -> bool:
    raw = _param(params, name)
    return raw is not None and raw.lower() in ("1", "true", "yes", "on")


def _unknown_type(source: str, query_type: Optional[str], valid: Mapping[str, Any]) -> InvalidParamsError:
    return InvalidParamsError(
        f"Invalid type '{query_type}' for {source}. Valid types: {', '.join(valid)}",
        source=source,
        invalid_params={"type": str(query_type)},
    )


def _consumption(params: Mapping[str, Any]) -> Tuple[float, float]:
    """Monthly electricity kWh and natural gas Mcf overrides, or the averages."""
    kwh = validate_consumption(
        _float_param(params, "electricity_kwh"), "electricity_kwh", AVG_MONTHLY_ELECTRICITY_KWH
    )
    mcf = validate_consumption(
        _float_param(params, "natural_gas_mcf"), "natural_gas_mcf", AVG_MONTHLY_NATURAL_GAS_MCF
    )
    return kwh, mcf


def _sync(produce: Callable[[], Any]) -> Operation:
    """Wrap a synchronous lookup as an operation."""
    async def run() -> FetchResult:
        return FetchResult(data=produce())
    return run


def render_error(error: APIError, headers: Optional[Dict[str, str]] = None) -> AggregatedResponse:
    """Error envelope for a typed error; internal errors carry no details."""
    details = None if isinstance(error, InternalError) else error.details
    envelope = ApiResponse(
        success=False,
        error=ErrorBody(code=error.code.value, message=error.message, details=details),
    )
    body = envelope.model_dump(mode="json", exclude={"data", "meta"})
    if body["error"]["details"] is None:
        del body["error"]["details"]
    return AggregatedResponse(status_code=error.http_status, body=body, headers=dict(headers or {}))


# =============================================================================
# Aggregator
# =============================================================================


class Aggregator:
    """
    Routes typed queries to the source fetchers behind the rate limiter.

    Args:
        rate_limiter: Shared fixed-window limiter
        price_parity: BEA fetcher
        rents: HUD fetcher
        price_index: BLS fetcher
        energy: EIA fetcher
        resolver: Crosswalk resolver for location search
        settings: Settings for rate-limit window and batch size
    """

    def __init__(
        self,
        rate_limiter: FixedWindowRateLimiter,
        price_parity: PriceParityFetcher,
        rents: RentFetcher,
        price_index: PriceIndexFetcher,
        energy: EnergyFetcher,
        resolver: LocationResolver,
        settings: Optional[Settings] = None,
    ):
        self.rate_limiter = rate_limiter
        self.price_parity = price_parity
        self.rents = rents
        self.price_index = price_index
        self.energy = energy
        self.resolver = resolver
        self.settings = settings or get_settings()
        self.rate_limits: Dict[str, RateLimitConfig] = {
            **RATE_LIMITS,
            "heavy": RateLimitConfig(
                window_ms=self.settings.rate_limit_window_ms,
                max_requests=self.settings.rate_limit_max_requests,
            ),
        }

        self._planners: Dict[str, Callable[[Optional[str], Mapping[str, Any]], Operation]] = {
            "bea": self._plan_bea,
            "hud": self._plan_hud,
            "bls": self._plan_bls,
            "eia": self._plan_eia,
            "location": self._plan_location,
        }

    @classmethod
    def build(
        cls,
        cache: CacheStore,
        resolver: LocationResolver,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
    ) -> "Aggregator":
        """Build an aggregator whose fetchers share one cache store."""
        settings = settings or get_settings()
        return cls(
            rate_limiter=rate_limiter or get_rate_limiter(),
            price_parity=PriceParityFetcher(cache, settings=settings),
            rents=RentFetcher(cache, resolver, settings=settings),
            price_index=PriceIndexFetcher(cache, settings=settings),
            energy=EnergyFetcher(cache, settings=settings),
            resolver=resolver,
            settings=settings,
        )

    async def close(self) -> None:
        """Release upstream clients."""
        for fetcher in (self.price_parity, self.rents, self.price_index, self.energy):
            await fetcher.close()

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(
        self,
        source: str,
        identifier: str,
        query_type: Optional[str],
        params: Optional[Mapping[str, Any]] = None,
    ) -> AggregatedResponse:
        """
        Handle one request end to end.

        Args:
            source: bea, hud, bls, eia or location
            identifier: Client identifier for rate limiting
            query_type: Source-specific query type
            params: Raw query parameters

        Returns:
            AggregatedResponse; never raises
        """
        params = params or {}
        source = (source or "").lower()

        limit = self.rate_limiter.check_preset(
            f"{source}:{identifier}",
            SOURCE_PRESETS.get(source, "heavy"),
            self.rate_limits,
        )
        headers = limit.headers()

        if not limit.allowed:
            error = RateLimitedError(source=source, retry_after=limit.retry_after)
            return render_error(error, headers)

        try:
            planner = self._planners.get(source)
            if planner is None:
                raise InvalidParamsError(
                    f"Unknown source '{source}'. Valid sources: {', '.join(self._planners)}",
                    invalid_params={"source": source},
                )
            operation = planner(query_type, params)
            result = await operation()

        except APIError as e:
            if isinstance(e, InternalError):
                logger.error(f"Internal error serving {source}/{query_type}: {e}")
            else:
                logger.info(f"{source}/{query_type} failed with {e.code.value}: {e}")
            return render_error(e, headers)

        except Exception:
            logger.error(f"Unexpected error serving {source}/{query_type}", exc_info=True)
            return render_error(
                InternalError(UNEXPECTED_ERROR_MESSAGE, source=source), headers
            )

        return self._success_response(result, source, headers)

    def _success_response(
        self, result: FetchResult, source: str, headers: Dict[str, str]
    ) -> AggregatedResponse:
        meta = ResponseMeta(
            cached=result.cached,
            cache_age=result.cache_age,
            source=SOURCE_LABELS.get(source, source),
            data_year=result.data_year,
        )
        if isinstance(result.data, list):
            meta.count = len(result.data)
            if result.data and isinstance(result.data[0], RentBatchItem):
                meta.error_count = sum(1 for item in result.data if item.error is not None)
                meta.success_count = meta.count - meta.error_count

        envelope = ApiResponse(success=True, data=result.data, meta=meta)
        body = envelope.model_dump(mode="json", exclude={"error"})
        body["meta"] = {k: v for k, v in body["meta"].items() if v is not None}
        return AggregatedResponse(status_code=200, body=body, headers=headers)

    # =========================================================================
    # Planning (synchronous validation)
    # =========================================================================

    def _plan_bea(self, query_type: Optional[str], params: Mapping[str, Any]) -> Operation:
        fetcher = self.price_parity
        year = _int_param(params, "year", minimum=2008, maximum=2100)
        valid = {"states": None, "metros": None, "state": None, "metro": None}

        if query_type == "states":
            return lambda: fetcher.fetch_states(year)
        if query_type == "metros":
            return lambda: fetcher.fetch_metros(year)
        if query_type == "state":
            raw = _param(params, "fips") or _param(params, "state")
            if raw is None:
                raise InvalidParamsError(
                    "Parameter 'fips' (or 'state') is required for type 'state'",
                    source="bea",
                    invalid_params={"fips": "missing"},
                )
            fips = STATE_CODE_TO_FIPS.get(raw.upper(), raw) if raw.isalpha() else raw
            fips = normalize_state_fips(fips)
            return lambda: fetcher.fetch_state(fips, year)
        if query_type == "metro":
            cbsa = normalize_metro_code(_require(params, "cbsa", query_type))
            return lambda: fetcher.fetch_metro(cbsa, year)

        raise _unknown_type("bea", query_type, valid)

    def _plan_hud(self, query_type: Optional[str], params: Mapping[str, Any]) -> Operation:
        fetcher = self.rents
        valid = {"zip": None, "state": None, "batch": None, "metro": None, "nearby": None}

        if query_type == "zip":
            zip_code = validate_zip(_require(params, "zip", query_type))
            include_nearby = _bool_param(params, "include_nearby")
            return lambda: fetcher.fetch_zip(zip_code, include_nearby=include_nearby)
        if query_type == "state":
            state = validate_state_code(_require(params, "state", query_type))
            return lambda: fetcher.fetch_state(state)
        if query_type == "batch":
            raw = _require(params, "zips", query_type)
            zip_codes = [z.strip() for z in raw.split(",") if z.strip()]
            max_size = self.settings.hud_batch_max_size
            if not zip_codes or len(zip_codes) > max_size:
                raise InvalidParamsError(
                    f"Provide between 1 and {max_size} ZIP codes per request",
                    source="hud",
                    invalid_params={"zips": str(len(zip_codes))},
                )
            return lambda: fetcher.fetch_batch(zip_codes)
        if query_type == "metro":
            zip_code = validate_zip(_require(params, "zip", query_type))
            return _sync(lambda: fetcher.metro_info(zip_code))
        if query_type == "nearby":
            zip_code = validate_zip(_require(params, "zip", query_type))
            limit = _int_param(params, "limit", default=DEFAULT_NEARBY_LIMIT, minimum=1, maximum=20)
            return _sync(lambda: fetcher.nearby(zip_code, limit))

        raise _unknown_type("hud", query_type, valid)

    def _plan_bls(self, query_type: Optional[str], params: Mapping[str, Any]) -> Operation:
        fetcher = self.price_index
        valid = {"national": None, "state": None, "region": None, "timeseries": None, "regions": None}

        if query_type == "national":
            return fetcher.fetch_national
        if query_type == "state":
            state = validate_state_code(_require(params, "state", query_type))
            return lambda: fetcher.fetch_state(state)
        if query_type == "region":
            region = validate_region(_require(params, "region", query_type))
            return lambda: fetcher.fetch_region(region)
        if query_type == "timeseries":
            category = validate_category(_param(params, "category") or "all")
            region = validate_region(_param(params, "region") or "national")
            years = validate_years(
                _int_param(params, "years", default=DEFAULT_TIMESERIES_YEARS),
                max_timeseries_years(self.settings.get_bls_api_key()),
            )
            return lambda: fetcher.fetch_timeseries(category, region, years)
        if query_type == "regions":
            return _sync(fetcher.regions)

        raise _unknown_type("bls", query_type, valid)

    def _plan_eia(self, query_type: Optional[str], params: Mapping[str, Any]) -> Operation:
        fetcher = self.energy
        valid = {"all": None, "state": None, "utility": None, "utility-state": None}

        if query_type == "all":
            return fetcher.fetch_all
        if query_type == "state":
            state = validate_energy_state(_require(params, "state", query_type))
            return lambda: fetcher.fetch_state(state)
        if query_type == "utility":
            kwh, mcf = _consumption(params)
            return lambda: fetcher.utility(kwh, mcf)
        if query_type == "utility-state":
            state = validate_energy_state(_require(params, "state", query_type))
            kwh, mcf = _consumption(params)
            return lambda: fetcher.utility_state(state, kwh, mcf)

        raise _unknown_type("eia", query_type, valid)

    def _plan_location(self, query_type: Optional[str], params: Mapping[str, Any]) -> Operation:
        resolver = self.resolver
        valid = {"search": None}

        if query_type in (None, "search"):
            query = validate_search_query(_param(params, "q"))
            limit = _int_param(
                params, "limit", default=DEFAULT_SEARCH_LIMIT, minimum=1, maximum=MAX_SEARCH_LIMIT
            )
            return _sync(lambda: resolver.search(query, limit))

        raise _unknown_type("location", query_type, valid)
