"""
EIA energy price parsing and composition.

Each series decodes into {state_code: latest price}. Gasoline is published
per PADD region and fanned out to member states. Composition works on
explicit per-series outcomes so a failed series only blanks its own fields.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from costwise.core.api_errors import APIError
from costwise.core.schemas import EnergyPriceRecord, EnergyValues, UtilityCostEstimate

logger = logging.getLogger(__name__)

AVG_MONTHLY_ELECTRICITY_KWH = 886.0  # US residential average
AVG_MONTHLY_NATURAL_GAS_MCF = 5.5  # US residential average

STATE_NAME_TO_CODE: Dict[str, str] = {
    "Alabama": "AL", "Alaska": "AK", "Arizona": "AZ", "Arkansas": "AR", "California": "CA",
    "Colorado": "CO", "Connecticut": "CT", "Delaware": "DE", "District of Columbia": "DC",
    "Florida": "FL", "Georgia": "GA", "Hawaii": "HI", "Idaho": "ID", "Illinois": "IL",
    "Indiana": "IN", "Iowa": "IA", "Kansas": "KS", "Kentucky": "KY", "Louisiana": "LA",
    "Maine": "ME", "Maryland": "MD", "Massachusetts": "MA", "Michigan": "MI",
    "Minnesota": "MN", "Mississippi": "MS", "Missouri": "MO", "Montana": "MT",
    "Nebraska": "NE", "Nevada": "NV", "New Hampshire": "NH", "New Jersey": "NJ",
    "New Mexico": "NM", "New York": "NY", "North Carolina": "NC",
    "North Dakota": "ND", "Ohio": "OH", "Oklahoma": "OK", "Oregon": "OR",
    "Pennsylvania": "PA", "Rhode Island": "RI", "South Carolina": "SC",
    "South Dakota": "SD", "Tennessee": "TN", "Texas": "TX", "Utah": "UT",
    "Vermont": "VT", "Virginia": "VA", "Washington": "WA", "West Virginia": "WV",
    "Wisconsin": "WI", "Wyoming": "WY",
}

STATE_CODES = frozenset(STATE_NAME_TO_CODE.values())

_NAME_LOOKUP = {name.upper(): code for name, code in STATE_NAME_TO_CODE.items()}

# PADD gasoline reporting areas -> member states
PADD_TO_STATES: Dict[str, List[str]] = {
    "R1X": ["CT", "ME", "MA", "NH", "RI", "VT"],  # PADD 1A New England
    "R1Y": ["DE", "DC", "MD", "NJ", "NY", "PA"],  # PADD 1B Central Atlantic
    "R1Z": ["FL", "GA", "NC", "SC", "VA", "WV"],  # PADD 1C Lower Atlantic
    "R20": ["IL", "IN", "IA", "KS", "KY", "MI", "MN", "MO", "NE", "ND", "OH", "OK", "SD", "TN", "WI"],
    "R30": ["AL", "AR", "LA", "MS", "NM", "TX"],  # Gulf Coast
    "R40": ["CO", "ID", "MT", "UT", "WY"],  # Rocky Mountain
    "R5XCA": ["AZ", "NV", "OR", "WA", "AK"],  # West Coast except California
    "SCA": ["CA"],
}

SERIES_ELECTRICITY = "electricity"
SERIES_NATURAL_GAS = "natural_gas"
SERIES_GASOLINE = "gasoline"
SERIES_NAMES = (SERIES_ELECTRICITY, SERIES_NATURAL_GAS, SERIES_GASOLINE)


# =============================================================================
# Series outcomes
# =============================================================================


@dataclass
class SeriesSuccess:
    """A series that resolved, from cache or upstream."""

    name: str
    values: Dict[str, float]
    cached: bool = False
    cache_age: Optional[int] = None


@dataclass
class SeriesFailure:
    """A series that could not be resolved for this request."""

    name: str
    error: APIError
    values: Dict[str, float] = field(default_factory=dict)


SeriesOutcome = Union[SeriesSuccess, SeriesFailure]


# =============================================================================
# Parsing
# =============================================================================


def _rows(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    return ((data or {}).get("response") or {}).get("data") or []


def _price(item: Dict[str, Any], *columns: str) -> Optional[float]:
    for column in columns:
        raw = item.get(column)
        if raw is None or raw == "":
            continue
        try:
            return float(raw)
        except (TypeError, ValueError):
            continue
    return None


def _keep_latest(latest: Dict[str, tuple], key: str, period: str, price: float) -> None:
    current = latest.get(key)
    if current is None or period > current[0]:
        latest[key] = (period, price)


def state_code_from_name(name: Optional[str]) -> Optional[str]:
    """Two-letter code for a state name, case-insensitive."""
    if not name:
        return None
    return _NAME_LOOKUP.get(str(name).strip().upper())


def parse_electricity(data: Dict[str, Any]) -> Dict[str, float]:
    """Latest residential electricity price (cents/kWh) per state."""
    latest: Dict[str, tuple] = {}
    for item in _rows(data):
        state = str(item.get("stateid") or item.get("stateId") or "").upper()
        price = _price(item, "price")
        if state not in STATE_CODES or price is None:
            continue
        _keep_latest(latest, state, str(item.get("period", "")), price)
    return {state: price for state, (_, price) in latest.items()}


def parse_natural_gas(data: Dict[str, Any]) -> Dict[str, float]:
    """Latest residential natural gas price ($/Mcf) per state."""
    latest: Dict[str, tuple] = {}
    for item in _rows(data):
        state = state_code_from_name(item.get("stateDescription"))
        if state is None:
            duoarea = str(item.get("duoarea") or "")
            # State areas are "S" + postal code, e.g. SCA
            if len(duoarea) == 3 and duoarea.startswith("S") and duoarea[1:] in STATE_CODES:
                state = duoarea[1:]
        price = _price(item, "value", "price")
        if state is None or price is None:
            continue
        _keep_latest(latest, state, str(item.get("period", "")), price)
    return {state: price for state, (_, price) in latest.items()}


def parse_gasoline(data: Dict[str, Any]) -> Dict[str, float]:
    """Latest retail gasoline price ($/gal) per state, via PADD regions."""
    latest: Dict[str, tuple] = {}
    for item in _rows(data):
        area = str(item.get("duoarea") or "")
        price = _price(item, "value", "price")
        if area not in PADD_TO_STATES or price is None:
            continue
        _keep_latest(latest, area, str(item.get("period", "")), price)

    by_state: Dict[str, float] = {}
    for area, (_, price) in latest.items():
        for state in PADD_TO_STATES[area]:
            by_state[state] = price
    return by_state


# =============================================================================
# Composition
# =============================================================================


def national_average(values: Dict[str, float]) -> Optional[float]:
    """Arithmetic mean over state values; None when there are none."""
    state_values = [v for state, v in values.items() if state in STATE_CODES]
    if not state_values:
        return None
    return sum(state_values) / len(state_values)


def price_index(price: Optional[float], average: Optional[float]) -> Optional[float]:
    """Price relative to the national average x100, when both exist."""
    if price is None or not average:
        return None
    return round(price / average * 100, 2)


def _averages(outcomes: Dict[str, SeriesOutcome]) -> EnergyValues:
    return EnergyValues(
        electricity=national_average(outcomes[SERIES_ELECTRICITY].values),
        natural_gas=national_average(outcomes[SERIES_NATURAL_GAS].values),
        gasoline=national_average(outcomes[SERIES_GASOLINE].values),
    )


def _record(
    state_code: str, outcomes: Dict[str, SeriesOutcome], averages: EnergyValues
) -> Optional[EnergyPriceRecord]:
    electricity = outcomes[SERIES_ELECTRICITY].values.get(state_code)
    natural_gas = outcomes[SERIES_NATURAL_GAS].values.get(state_code)
    gasoline = outcomes[SERIES_GASOLINE].values.get(state_code)

    if electricity is None and gasoline is None:
        return None

    return EnergyPriceRecord(
        state_code=state_code,
        electricity_price=electricity,
        natural_gas_price=natural_gas,
        gasoline_price=gasoline,
        national_averages=averages,
        indices=EnergyValues(
            electricity=price_index(electricity, averages.electricity),
            natural_gas=price_index(natural_gas, averages.natural_gas),
            gasoline=price_index(gasoline, averages.gasoline),
        ),
    )


def _by_name(outcomes: Iterable[SeriesOutcome]) -> Dict[str, SeriesOutcome]:
    indexed = {outcome.name: outcome for outcome in outcomes}
    missing = [name for name in SERIES_NAMES if name not in indexed]
    if missing:
        raise ValueError(f"Missing series outcomes: {missing}")
    return indexed


def compose_energy_record(
    state_code: str, outcomes: Iterable[SeriesOutcome]
) -> Optional[EnergyPriceRecord]:
    """
    Energy record for one state from the three series outcomes.

    Returns None when neither electricity nor gasoline has a value for the
    state. Failed series leave their fields None.
    """
    indexed = _by_name(outcomes)
    return _record(state_code.upper(), indexed, _averages(indexed))


def compose_all_records(outcomes: Iterable[SeriesOutcome]) -> List[EnergyPriceRecord]:
    """Energy records for every state with electricity or gasoline data."""
    indexed = _by_name(outcomes)
    averages = _averages(indexed)
    states = sorted(
        set(indexed[SERIES_ELECTRICITY].values) | set(indexed[SERIES_GASOLINE].values)
    )
    records = [_record(state, indexed, averages) for state in states if state in STATE_CODES]
    return [record for record in records if record is not None]


def calculate_utility_cost(
    record: EnergyPriceRecord,
    electricity_kwh: float = AVG_MONTHLY_ELECTRICITY_KWH,
    natural_gas_mcf: float = AVG_MONTHLY_NATURAL_GAS_MCF,
) -> UtilityCostEstimate:
    """
    Monthly utility bill estimate.

    Electricity price is cents/kWh, natural gas $/Mcf; missing prices add 0.
    """
    monthly_electricity = (
        record.electricity_price * electricity_kwh / 100 if record.electricity_price else 0.0
    )
    monthly_gas = record.natural_gas_price * natural_gas_mcf if record.natural_gas_price else 0.0

    return UtilityCostEstimate(
        state_code=record.state_code,
        monthly_electricity=round(monthly_electricity, 2),
        monthly_natural_gas=round(monthly_gas, 2),
        monthly_total=round(monthly_electricity + monthly_gas, 2),
        electricity_kwh_per_month=electricity_kwh,
        natural_gas_mcf_per_month=natural_gas_mcf,
    )
