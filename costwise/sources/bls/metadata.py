"""
BLS CPI-U series catalog, parsing, and index calculation.

Series IDs follow CUUR{area}{item}:
- area: 0000 national, 0100 Northeast, 0200 Midwest, 0300 South, 0400 West
- item: SAF food, SAT transportation, SAM medical care, SAH housing, SA0 all items

Only monthly periods M01..M12 are kept; M13 (annual average) is skipped.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from costwise.core.schemas import CPIDataPoint, CPIIndexes, CPIRegion

logger = logging.getLogger(__name__)

NATIONAL = "national"

# region key -> (area code, display name)
CPI_AREAS: Dict[str, Dict[str, str]] = {
    "national": {"code": "0000", "name": "U.S. city average"},
    "northeast": {"code": "0100", "name": "Northeast"},
    "midwest": {"code": "0200", "name": "Midwest"},
    "south": {"code": "0300", "name": "South"},
    "west": {"code": "0400", "name": "West"},
}

# category -> item code
CPI_CATEGORIES: Dict[str, str] = {
    "food": "SAF",
    "transportation": "SAT",
    "medical": "SAM",
    "housing": "SAH",
    "all": "SA0",
}

REGION_STATES: Dict[str, List[str]] = {
    "northeast": ["CT", "ME", "MA", "NH", "NJ", "NY", "PA", "RI", "VT"],
    "midwest": ["IL", "IN", "IA", "KS", "MI", "MN", "MO", "NE", "ND", "OH", "SD", "WI"],
    "south": [
        "AL", "AR", "DE", "DC", "FL", "GA", "KY", "LA", "MD", "MS",
        "NC", "OK", "SC", "TN", "TX", "VA", "WV",
    ],
    "west": ["AK", "AZ", "CA", "CO", "HI", "ID", "MT", "NV", "NM", "OR", "UT", "WA", "WY"],
}


def series_id(region: str, category: str) -> str:
    """CPI-U, not seasonally adjusted, series ID for a region and category."""
    return f"CUUR{CPI_AREAS[region]['code']}{CPI_CATEGORIES[category]}"


def region_for_state(state_code: str) -> str:
    """Census region key for a state; unmapped states fall back to national."""
    upper = (state_code or "").upper()
    for region, states in REGION_STATES.items():
        if upper in states:
            return region
    return NATIONAL


def list_regions() -> List[CPIRegion]:
    """Static region catalog with member states."""
    return [
        CPIRegion(
            region=region,
            region_name=CPI_AREAS[region]["name"],
            area_code=CPI_AREAS[region]["code"],
            states=list(states),
        )
        for region, states in REGION_STATES.items()
    ]


@dataclass
class BLSObservation:
    """One decoded monthly observation."""

    series_id: str
    year: int
    month: int
    period: str
    value: float


def parse_series_response(data: Dict[str, Any]) -> Dict[str, List[BLSObservation]]:
    """
    Decode a BLS timeseries response into observations keyed by series ID.

    Non-monthly periods and unparseable values are skipped.
    """
    series_list = ((data.get("Results") or {}).get("series")) or []
    parsed: Dict[str, List[BLSObservation]] = {}

    for series in series_list:
        sid = series.get("seriesID")
        if not sid:
            continue
        observations = parsed.setdefault(sid, [])
        for point in series.get("data") or []:
            period = str(point.get("period", ""))
            if not period.startswith("M") or period == "M13":
                continue
            try:
                observations.append(BLSObservation(
                    series_id=sid,
                    year=int(point["year"]),
                    month=int(period[1:]),
                    period=period,
                    value=float(point["value"]),
                ))
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Skipping unparseable BLS point in {sid}: {point}")

    return parsed


def latest_observation(observations: List[BLSObservation]) -> Optional[BLSObservation]:
    """Observation with the greatest (year, month), compared numerically."""
    if not observations:
        return None
    return max(observations, key=lambda o: (o.year, o.month))


def cpi_index(regional: Optional[float], national: Optional[float]) -> float:
    """Regional value relative to national, x100; 100 when either is missing."""
    if not regional or not national:
        return 100.0
    return round(regional / national * 100, 2)


def compute_indexes(
    region: str,
    observations: Dict[str, List[BLSObservation]],
    state_code: Optional[str] = None,
) -> CPIIndexes:
    """
    Latest regional values and their indices against the national series.
    """
    latest: Dict[str, Optional[float]] = {}
    national: Dict[str, Optional[float]] = {}
    newest: Optional[BLSObservation] = None

    for category in CPI_CATEGORIES:
        regional_obs = latest_observation(observations.get(series_id(region, category), []))
        national_obs = latest_observation(observations.get(series_id(NATIONAL, category), []))
        latest[category] = regional_obs.value if regional_obs else None
        national[category] = national_obs.value if national_obs else None
        if regional_obs and (newest is None or (regional_obs.year, regional_obs.month) > (newest.year, newest.month)):
            newest = regional_obs

    return CPIIndexes(
        region=region,
        region_name=CPI_AREAS[region]["name"],
        state_code=state_code,
        food=latest["food"],
        transportation=latest["transportation"],
        medical=latest["medical"],
        housing=latest["housing"],
        overall=latest["all"],
        food_index=cpi_index(latest["food"], national["food"]),
        transportation_index=cpi_index(latest["transportation"], national["transportation"]),
        medical_index=cpi_index(latest["medical"], national["medical"]),
        housing_index=cpi_index(latest["housing"], national["housing"]),
        overall_index=cpi_index(latest["all"], national["all"]),
        latest_year=newest.year if newest else None,
        latest_month=newest.month if newest else None,
    )


def to_data_points(
    observations: List[BLSObservation], category: str, region: str
) -> List[CPIDataPoint]:
    """Observations as CPIDataPoint, oldest first."""
    ordered = sorted(observations, key=lambda o: (o.year, o.month))
    return [
        CPIDataPoint(
            series_id=o.series_id,
            category=category,
            region=region,
            year=o.year,
            month=o.month,
            period=o.period,
            value=o.value,
        )
        for o in ordered
    ]
