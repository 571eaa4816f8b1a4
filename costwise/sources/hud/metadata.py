"""
HUD FMR feature parsing and normalization.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from costwise.core.location_resolver import parse_metro_states
from costwise.core.schemas import FairMarketRent, MetroMatch

logger = logging.getLogger(__name__)

BEDROOM_FIELDS = ["FMR_0BDR", "FMR_1BDR", "FMR_2BDR", "FMR_3BDR", "FMR_4BDR"]
YEAR_FIELDS = ["FMR_YEAR", "YEAR", "FY"]


@dataclass
class FMRFeature:
    """Typed attributes of one FMR feature."""

    fmr_code: str
    area_name: str
    rents: List[float] = field(default_factory=lambda: [0.0] * 5)
    year: Optional[int] = None
    is_small_area: bool = False


def _as_number(raw: Any) -> float:
    try:
        return float(raw) if raw is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _as_year(attrs: Dict[str, Any]) -> Optional[int]:
    for name in YEAR_FIELDS:
        value = attrs.get(name)
        if value is None:
            continue
        try:
            year = int(str(value).strip()[-4:])
        except ValueError:
            continue
        if 2000 <= year <= 2100:
            return year
    return None


def parse_fmr_features(data: Dict[str, Any]) -> List[FMRFeature]:
    """Decode the features of an ArcGIS query response."""
    features = data.get("features") or []
    parsed: List[FMRFeature] = []
    for feature in features:
        attrs = (feature or {}).get("attributes") or {}
        code = str(attrs.get("FMR_CODE") or "").strip()
        if not code:
            continue
        parsed.append(FMRFeature(
            fmr_code=code,
            area_name=str(attrs.get("FMR_AREANAME") or "").strip(),
            rents=[_as_number(attrs.get(name)) for name in BEDROOM_FIELDS],
            year=_as_year(attrs),
            is_small_area=str(attrs.get("SAFMR_FLAG") or "").upper() in ("1", "Y", "TRUE"),
        ))
    return parsed


def normalize_fmr(
    feature: FMRFeature,
    default_year: int,
    match: Optional[MetroMatch] = None,
    zip_code: Optional[str] = None,
    fallback_state: Optional[str] = None,
) -> FairMarketRent:
    """
    Build a FairMarketRent from a feature, preferring crosswalk metro details.
    """
    area_name = feature.area_name or (match.metro_name if match else feature.fmr_code)
    states = parse_metro_states(feature.area_name)
    state_code = (match.state_code if match else None) or (states[0] if states else fallback_state)

    return FairMarketRent(
        zip_code=zip_code,
        metro_code=match.metro_code if match else feature.fmr_code,
        metro_name=match.metro_name if match else area_name,
        state_code=state_code,
        area_name=area_name,
        rents_by_bedroom=feature.rents,
        is_small_area_fmr=feature.is_small_area,
        year=feature.year or default_year,
    )


def feature_in_state(feature: FMRFeature, state_code: str) -> bool:
    """True when the feature's area name lists the state."""
    return state_code in parse_metro_states(feature.area_name)
