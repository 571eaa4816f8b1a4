"""
ZIP code to metro area resolution.

Uses the weighted zip_to_cbsa crosswalk:
- The row with the highest residential_ratio is the primary metro
  (ties broken by lowest CBSA code)
- A ZIP with more than one row is a split ZIP
- Nearby metros are other CBSAs in the primary metro's state
"""

import csv
import logging
import re
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from costwise.core.api_errors import InternalError, InvalidParamsError
from costwise.core.models import ZipToCbsa
from costwise.core.schemas import CrosswalkRecord, LocationMatch, MetroMatch

logger = logging.getLogger(__name__)

ZIP_PATTERN = re.compile(r"^\d{5}$")
ZIP_PREFIX_PATTERN = re.compile(r"^\d{1,5}$")

MIN_SEARCH_LENGTH = 2
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 20

# Case-insensitive CSV headers accepted per crosswalk field
CROSSWALK_COLUMNS: Dict[str, tuple] = {
    "zip_code": ("zip", "zip_code"),
    "cbsa_code": ("cbsa", "cbsa_code"),
    "cbsa_name": ("cbsa_name", "cbsa_title", "name"),
    "residential_ratio": ("res_ratio", "residential_ratio"),
}


def is_valid_zip(zip_code: str) -> bool:
    """True for a 5-digit ZIP code."""
    return bool(zip_code) and bool(ZIP_PATTERN.match(zip_code))


def parse_metro_states(metro_name: str) -> List[str]:
    """
    State codes listed in a CBSA title.

    "Austin-Round Rock-Georgetown, TX" -> ["TX"]
    "New York-Newark-Jersey City, NY-NJ-PA" -> ["NY", "NJ", "PA"]
    """
    if not metro_name or "," not in metro_name:
        return []
    suffix = metro_name.rsplit(",", 1)[1].strip()
    # Some titles append " Metro Area" / " HUD Metro FMR Area"
    suffix = suffix.split(" ", 1)[0]
    return [part.strip().upper() for part in suffix.split("-") if len(part.strip()) == 2]


def primary_state(metro_name: str) -> Optional[str]:
    """First state code in a CBSA title, or None."""
    states = parse_metro_states(metro_name)
    return states[0] if states else None


def validate_search_query(query: Optional[str]) -> str:
    query = (query or "").strip()
    if len(query) < MIN_SEARCH_LENGTH:
        raise InvalidParamsError(
            f"Search query must be at least {MIN_SEARCH_LENGTH} characters",
            source="location",
            invalid_params={"q": query},
        )
    return query


def _pick(row: Dict[str, str], aliases: tuple) -> Optional[str]:
    for alias in aliases:
        value = row.get(alias)
        if value not in (None, ""):
            return value
    return None


def read_crosswalk_csv(path: str) -> Iterator[Dict[str, Optional[str]]]:
    """
    Yield crosswalk rows from a CSV with normalized field names.

    The HUD USPS ZIP-CBSA file carries no CBSA title, only the ZIP's
    preferred city and state (USPS_ZIP_PREF_CITY, USPS_ZIP_PREF_STATE).
    When no title column is present the name is composed as "City, ST"
    so the state can still be parsed from it.
    """
    with open(path, newline="", encoding="utf-8-sig") as handle:
        for raw in csv.DictReader(handle):
            lowered = {(k or "").strip().lower(): (v or "").strip() for k, v in raw.items()}
            row = {field: _pick(lowered, aliases) for field, aliases in CROSSWALK_COLUMNS.items()}

            if row["cbsa_name"] is None:
                city = lowered.get("usps_zip_pref_city")
                state = lowered.get("usps_zip_pref_state")
                if city and state:
                    row["cbsa_name"] = f"{city.title()}, {state.upper()}"
                elif city:
                    row["cbsa_name"] = city.title()
            yield row


class LocationResolver:
    """
    Resolves ZIP codes against the crosswalk table.

    Args:
        session_factory: SQLAlchemy sessionmaker bound to the crosswalk database
    """

    def __init__(self, session_factory: Callable[[], Any]):
        self._session_factory = session_factory

    def _rows_for_zip(self, zip_code: str) -> List[ZipToCbsa]:
        try:
            with self._session_factory() as session:
                rows = session.execute(
                    select(ZipToCbsa).where(ZipToCbsa.zip_code == zip_code)
                ).scalars().all()
                session.expunge_all()
                return list(rows)
        except SQLAlchemyError as e:
            logger.error(f"Crosswalk lookup failed for ZIP {zip_code}: {e}")
            raise InternalError(f"Crosswalk lookup failed for ZIP {zip_code}") from e

    def resolve_metro(self, zip_code: str) -> Optional[MetroMatch]:
        """
        Primary metro for a ZIP code.

        Returns:
            MetroMatch, or None when the ZIP is not in the crosswalk
        """
        rows = self._rows_for_zip(zip_code)
        if not rows:
            logger.info(f"No crosswalk rows for ZIP {zip_code}")
            return None

        primary = min(rows, key=lambda r: (-(r.residential_ratio or 0.0), r.cbsa_code))
        return MetroMatch(
            metro_code=primary.cbsa_code,
            metro_name=primary.cbsa_name,
            state_code=primary_state(primary.cbsa_name),
            residential_ratio=primary.residential_ratio or 0.0,
            is_split_zip=len(rows) > 1,
        )

    def nearby_metros(self, zip_code: str, limit: int = 5) -> List[CrosswalkRecord]:
        """
        Other metros in the same state as the ZIP's primary metro.

        Deduplicated by CBSA (highest-ratio row kept), ordered by ratio
        descending. Empty when the ZIP is unmapped or its metro has no state.
        """
        match = self.resolve_metro(zip_code)
        if match is None or not match.state_code or limit <= 0:
            return []

        state = match.state_code
        try:
            with self._session_factory() as session:
                candidates = session.execute(
                    select(ZipToCbsa)
                    .where(
                        ZipToCbsa.cbsa_name.like(f"%,%{state}%"),
                        ZipToCbsa.cbsa_code != match.metro_code,
                    )
                    .order_by(ZipToCbsa.residential_ratio.desc(), ZipToCbsa.cbsa_code)
                ).scalars().all()
                session.expunge_all()
        except SQLAlchemyError as e:
            logger.error(f"Nearby metro lookup failed for ZIP {zip_code}: {e}")
            raise InternalError(f"Nearby metro lookup failed for ZIP {zip_code}") from e

        seen = set()
        nearby: List[CrosswalkRecord] = []
        for row in candidates:
            if row.cbsa_code in seen or state not in parse_metro_states(row.cbsa_name):
                continue
            seen.add(row.cbsa_code)
            nearby.append(CrosswalkRecord(
                zip_code=row.zip_code,
                metro_code=row.cbsa_code,
                metro_name=row.cbsa_name,
                residential_ratio=row.residential_ratio or 0.0,
            ))
            if len(nearby) >= limit:
                break

        return nearby

    def _search_rows(self, clause, order_by) -> List[ZipToCbsa]:
        try:
            with self._session_factory() as session:
                rows = session.execute(
                    select(ZipToCbsa).where(clause).order_by(*order_by)
                ).scalars().all()
                session.expunge_all()
                return list(rows)
        except SQLAlchemyError as e:
            logger.error(f"Location search failed: {e}")
            raise InternalError("Location search failed") from e

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[LocationMatch]:
        """
        Find ZIPs by prefix and metros by name.

        A query of 1-5 digits also matches ZIPs starting with it; each ZIP
        appears once, labeled with its highest-ratio metro. Metros match
        case-insensitively anywhere in the CBSA title, one entry per CBSA.
        Exact name matches sort first, then metros before ZIPs.

        Raises:
            InvalidParamsError: Query shorter than 2 characters
        """
        query = validate_search_query(query)
        limit = max(1, min(limit, MAX_SEARCH_LIMIT))

        results: List[LocationMatch] = []

        if ZIP_PREFIX_PATTERN.match(query):
            seen_zips = set()
            for row in self._search_rows(
                ZipToCbsa.zip_code.startswith(query),
                (ZipToCbsa.zip_code, ZipToCbsa.residential_ratio.desc(), ZipToCbsa.cbsa_code),
            ):
                if row.zip_code in seen_zips:
                    continue
                seen_zips.add(row.zip_code)
                results.append(LocationMatch(
                    id=f"zip-{row.zip_code}",
                    type="zip",
                    name=f"ZIP {row.zip_code}",
                    state_code=primary_state(row.cbsa_name),
                    zip_code=row.zip_code,
                    metro_code=row.cbsa_code,
                ))
                if len(seen_zips) >= limit:
                    break

        seen_metros = set()
        for row in self._search_rows(
            ZipToCbsa.cbsa_name.icontains(query, autoescape=True),
            (ZipToCbsa.cbsa_code, ZipToCbsa.residential_ratio.desc()),
        ):
            if row.cbsa_code in seen_metros:
                continue
            seen_metros.add(row.cbsa_code)
            results.append(LocationMatch(
                id=f"metro-{row.cbsa_code}",
                type="metro",
                name=row.cbsa_name,
                state_code=primary_state(row.cbsa_name),
                metro_code=row.cbsa_code,
            ))
            if len(seen_metros) >= limit:
                break

        lowered = query.lower()
        results.sort(key=lambda m: (m.name.lower() != lowered, m.type != "metro"))
        logger.debug(f"Location search '{query}' matched {len(results)} entries")
        return results[:limit]

    def load_crosswalk(self, rows: Iterable[Dict[str, Any]]) -> int:
        """
        Upsert crosswalk rows keyed by (zip_code, cbsa_code).

        Each row needs zip_code, cbsa_code, cbsa_name and optionally
        residential_ratio (default 1.0 when absent). Rows with a malformed
        ZIP or a ratio outside [0, 1] are skipped.

        Returns:
            Number of rows inserted or updated
        """
        count = 0
        try:
            with self._session_factory() as session:
                existing = {
                    (r.zip_code, r.cbsa_code): r
                    for r in session.execute(select(ZipToCbsa)).scalars()
                }
                for raw in rows:
                    zip_code = str(raw.get("zip_code", "")).strip().zfill(5)
                    cbsa_code = str(raw.get("cbsa_code", "")).strip()
                    if not is_valid_zip(zip_code) or not cbsa_code:
                        logger.warning(f"Skipping malformed crosswalk row: {raw}")
                        continue

                    raw_ratio = raw.get("residential_ratio")
                    try:
                        ratio = 1.0 if raw_ratio in (None, "") else float(raw_ratio)
                    except (TypeError, ValueError):
                        logger.warning(f"Skipping crosswalk row with bad ratio: {raw}")
                        continue
                    if not 0.0 <= ratio <= 1.0:
                        logger.warning(f"Skipping crosswalk row with ratio outside [0, 1]: {raw}")
                        continue
                    name = str(raw.get("cbsa_name", "")).strip()

                    row = existing.get((zip_code, cbsa_code))
                    if row is None:
                        row = ZipToCbsa(
                            zip_code=zip_code,
                            cbsa_code=cbsa_code,
                            cbsa_name=name,
                            residential_ratio=ratio,
                        )
                        session.add(row)
                        existing[(zip_code, cbsa_code)] = row
                    else:
                        row.cbsa_name = name or row.cbsa_name
                        row.residential_ratio = ratio
                    count += 1

                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Crosswalk load failed: {e}")
            raise InternalError("Crosswalk load failed") from e

        logger.info(f"Loaded {count} crosswalk rows")
        return count
