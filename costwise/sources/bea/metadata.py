"""
BEA Regional Price Parity parsing and normalization.

Pure functions: decode the BEA GetData payload into typed rows, bucket the
four RPP line codes by geography, and rank the batch.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from costwise.core.location_resolver import primary_state
from costwise.core.schemas import NormalizedPriceParity

logger = logging.getLogger(__name__)

# RPP line codes (same for SARPP and MARPP)
LINE_OVERALL = "1"
LINE_GOODS = "2"
LINE_RENTS = "3"
LINE_OTHER_SERVICES = "4"

RPP_LINE_CODES: Dict[str, str] = {
    LINE_OVERALL: "RPPs: All items",
    LINE_GOODS: "RPPs: Goods",
    LINE_RENTS: "RPPs: Services: Housing",
    LINE_OTHER_SERVICES: "RPPs: Services: Other",
}

# Geography level -> (table name, GeoFips selector)
RPP_TABLES: Dict[str, Dict[str, str]] = {
    "state": {"table": "SARPP", "geo_fips": "STATE"},
    "metro": {"table": "MARPP", "geo_fips": "MSA"},
}

NATIONAL_GEO_FIPS = "00000"

STATE_FIPS_TO_CODE: Dict[str, str] = {
    "01": "AL", "02": "AK", "04": "AZ", "05": "AR", "06": "CA",
    "08": "CO", "09": "CT", "10": "DE", "11": "DC", "12": "FL",
    "13": "GA", "15": "HI", "16": "ID", "17": "IL", "18": "IN",
    "19": "IA", "20": "KS", "21": "KY", "22": "LA", "23": "ME",
    "24": "MD", "25": "MA", "26": "MI", "27": "MN", "28": "MS",
    "29": "MO", "30": "MT", "31": "NE", "32": "NV", "33": "NH",
    "34": "NJ", "35": "NM", "36": "NY", "37": "NC", "38": "ND",
    "39": "OH", "40": "OK", "41": "OR", "42": "PA", "44": "RI",
    "45": "SC", "46": "SD", "47": "TN", "48": "TX", "49": "UT",
    "50": "VT", "51": "VA", "53": "WA", "54": "WV", "55": "WI",
    "56": "WY",
}


@dataclass
class BEARegionalRow:
    """One decoded row of a Regional GetData response."""

    geo_fips: str
    geo_name: str
    year: int
    line_code: str
    value: float


def parse_data_value(raw: Any) -> Optional[float]:
    """
    Parse a BEA DataValue.

    Values arrive as strings with thousands separators; suppressed values
    are "(NA)", "(D)" and similar.
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    text = str(raw).replace(",", "").strip()
    try:
        return float(text)
    except ValueError:
        return None


def parse_regional_response(
    data: Dict[str, Any], line_code: str, year: int
) -> List[BEARegionalRow]:
    """
    Decode a Regional GetData payload for one line code.

    Rows for other years and rows with suppressed values are dropped.

    Args:
        data: Parsed BEA JSON response
        line_code: Line code the request was made for
        year: Requested year

    Returns:
        Typed rows
    """
    results = (data.get("BEAAPI") or {}).get("Results") or {}
    if isinstance(results, list):
        results = results[0] if results else {}
    raw_rows = results.get("Data") or []

    rows: List[BEARegionalRow] = []
    for item in raw_rows:
        if str(item.get("TimePeriod", "")).strip() != str(year):
            continue

        value = parse_data_value(item.get("DataValue"))
        geo_fips = str(item.get("GeoFips", "")).strip()
        if value is None or not geo_fips:
            continue

        rows.append(BEARegionalRow(
            geo_fips=geo_fips,
            geo_name=str(item.get("GeoName", "")).strip(),
            year=year,
            line_code=str(item.get("LineCode") or line_code),
            value=value,
        ))

    logger.debug(f"Parsed {len(rows)} RPP rows for line {line_code}, year {year}")
    return rows


def state_code_for(geo_fips: str, geo_name: str, level: str) -> Optional[str]:
    """Two-letter state code for a state FIPS or a metro title."""
    if level == "state":
        return STATE_FIPS_TO_CODE.get(geo_fips[:2])
    return primary_state(geo_name)


def rank_by_overall(items: List[NormalizedPriceParity]) -> List[NormalizedPriceParity]:
    """
    Assign 1-based ranks by overall descending.

    The sort is stable, so ties keep their input order.
    """
    ordered = sorted(items, key=lambda item: -item.overall)
    return [
        item.model_copy(update={"rank": position})
        for position, item in enumerate(ordered, start=1)
    ]


def normalize_price_parity(
    rows: List[BEARegionalRow], level: str
) -> List[NormalizedPriceParity]:
    """
    Bucket rows by geography and build ranked price parity records.

    Geographies without an all-items value and the national row are
    dropped. Output is ordered by rank.
    """
    buckets: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        if row.geo_fips == NATIONAL_GEO_FIPS:
            continue
        bucket = buckets.setdefault(row.geo_fips, {
            "geo_id": row.geo_fips,
            "geo_name": row.geo_name,
            "year": row.year,
        })
        bucket[row.line_code] = row.value

    items: List[NormalizedPriceParity] = []
    for geo_fips, bucket in buckets.items():
        overall = bucket.get(LINE_OVERALL)
        if overall is None:
            continue
        items.append(NormalizedPriceParity(
            geo_id=geo_fips,
            geo_name=bucket["geo_name"],
            state_code=state_code_for(geo_fips, bucket["geo_name"], level),
            year=bucket["year"],
            overall=overall,
            goods=bucket.get(LINE_GOODS),
            housing_rent=bucket.get(LINE_RENTS),
            other_services=bucket.get(LINE_OTHER_SERVICES),
            percent_above_national=round(overall - 100, 3),
            rank=1,
        ))

    return rank_by_overall(items)
