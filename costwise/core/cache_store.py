"""
Durable cache for normalized upstream payloads.

Entries are keyed by (source, location_key) with an explicit expiry:
- Reads fail open: store errors, malformed rows and expired rows all read as a miss
- Writes are upserts and report success as a bool; None payloads are refused
- Explicit invalidation and the expiry sweep raise CacheError on store failure

TTL is a property of the source, never of the caller.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from costwise.core.api_errors import CacheError, InvalidParamsError
from costwise.core.models import ApiCacheEntry, DataSource, utcnow

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60

# Fixed TTL per source, in seconds
CACHE_TTL_SECONDS: Dict[DataSource, int] = {
    DataSource.HUD: 30 * DAY_SECONDS,  # FMR published annually
    DataSource.BEA: 30 * DAY_SECONDS,  # RPP published annually
    DataSource.BLS: 7 * DAY_SECONDS,  # CPI published monthly
    DataSource.EIA: 7 * DAY_SECONDS,  # gasoline weekly, power/gas monthly
    DataSource.CENSUS: 90 * DAY_SECONDS,
}

SourceLike = Union[DataSource, str]


def coerce_source(source: SourceLike) -> DataSource:
    """Normalize a source name to DataSource, rejecting unknown names."""
    if isinstance(source, DataSource):
        return source
    try:
        return DataSource(str(source).lower())
    except ValueError:
        valid = ", ".join(s.value for s in DataSource)
        raise InvalidParamsError(
            f"Unknown cache source '{source}'. Valid sources: {valid}",
            invalid_params={"source": str(source)},
        )


def ttl_for(source: SourceLike) -> int:
    """TTL in seconds for a source."""
    return CACHE_TTL_SECONDS[coerce_source(source)]


@dataclass
class CacheHit:
    """A live cache entry."""

    payload: Any
    age_seconds: int


class CacheStore:
    """
    Cache store backed by the api_cache table.

    Args:
        session_factory: SQLAlchemy sessionmaker bound to the cache database
        clock: Returns the current naive-UTC datetime (injectable for tests)
    """

    def __init__(
        self,
        session_factory: Callable[[], Any],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    # =========================================================================
    # Read / write
    # =========================================================================

    def get(self, source: SourceLike, key: str) -> Optional[CacheHit]:
        """
        Return the live entry for (source, key), or None.

        Never raises.
        """
        try:
            source = coerce_source(source)
            now = self._clock()
            with self._session_factory() as session:
                entry = session.execute(
                    select(ApiCacheEntry).where(
                        ApiCacheEntry.source == source,
                        ApiCacheEntry.location_key == key,
                    )
                ).scalar_one_or_none()

                if entry is None:
                    logger.debug(f"Cache miss: {source.value}/{key}")
                    return None

                if entry.expires_at is None or entry.expires_at <= now:
                    logger.debug(f"Cache expired: {source.value}/{key}")
                    return None

                payload = entry.data
                created_at = entry.created_at or now

        except (SQLAlchemyError, InvalidParamsError, TypeError, ValueError) as e:
            logger.warning(f"Cache read failed for {source}/{key}, treating as miss: {e}")
            return None

        if payload is None:
            logger.warning(f"Cache row without payload for {source.value}/{key}")
            return None

        age_seconds = max(0, int((now - created_at).total_seconds()))
        logger.debug(f"Cache hit: {source.value}/{key} (age {age_seconds}s)")
        return CacheHit(payload=payload, age_seconds=age_seconds)

    def set(
        self,
        source: SourceLike,
        key: str,
        payload: Any,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """
        Upsert a payload for (source, key).

        Returns:
            True when the write landed, False when it was refused or failed
        """
        if payload is None:
            logger.warning(f"Refusing to cache empty payload for {source}/{key}")
            return False

        try:
            source = coerce_source(source)
        except InvalidParamsError as e:
            logger.warning(f"Cache write skipped: {e}")
            return False

        ttl = ttl_seconds if ttl_seconds is not None else CACHE_TTL_SECONDS[source]
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl)

        try:
            try:
                self._write(source, key, payload, now, expires_at)
            except IntegrityError:
                # A concurrent miss inserted the same key first; overwrite it
                logger.debug(f"Cache insert raced for {source.value}/{key}, updating")
                self._write(source, key, payload, now, expires_at)
        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.warning(f"Cache write failed for {source.value}/{key}: {e}")
            return False

        logger.debug(f"Cached {source.value}/{key} for {ttl}s")
        return True

    def _write(
        self,
        source: DataSource,
        key: str,
        payload: Any,
        now: datetime,
        expires_at: datetime,
    ) -> None:
        with self._session_factory() as session:
            entry = session.execute(
                select(ApiCacheEntry).where(
                    ApiCacheEntry.source == source,
                    ApiCacheEntry.location_key == key,
                )
            ).scalar_one_or_none()

            if entry is None:
                session.add(ApiCacheEntry(
                    source=source,
                    location_key=key,
                    data=payload,
                    created_at=now,
                    expires_at=expires_at,
                ))
            else:
                entry.data = payload
                entry.created_at = now
                entry.expires_at = expires_at

            session.commit()

    # =========================================================================
    # Maintenance
    # =========================================================================

    def invalidate(
        self,
        source: Optional[SourceLike] = None,
        key: Optional[str] = None,
    ) -> int:
        """
        Delete entries by source, by key, by both, or all entries.

        Returns:
            Number of deleted entries

        Raises:
            InvalidParamsError: Unknown source name
            CacheError: Store unreachable
        """
        stmt = delete(ApiCacheEntry)
        if source is not None:
            stmt = stmt.where(ApiCacheEntry.source == coerce_source(source))
        if key is not None:
            stmt = stmt.where(ApiCacheEntry.location_key == key)

        try:
            with self._session_factory() as session:
                result = session.execute(stmt)
                session.commit()
                deleted = result.rowcount or 0
        except SQLAlchemyError as e:
            raise CacheError(f"Cache invalidation failed: {e}") from e

        logger.info(f"Invalidated {deleted} cache entries (source={source}, key={key})")
        return deleted

    def sweep(self) -> int:
        """
        Delete every entry whose expiry has passed.

        Raises:
            CacheError: Store unreachable
        """
        now = self._clock()
        try:
            with self._session_factory() as session:
                result = session.execute(
                    delete(ApiCacheEntry).where(ApiCacheEntry.expires_at < now)
                )
                session.commit()
                deleted = result.rowcount or 0
        except SQLAlchemyError as e:
            raise CacheError(f"Cache sweep failed: {e}") from e

        if deleted:
            logger.info(f"Cache sweep removed {deleted} expired entries")
        return deleted

    def stats(self) -> Dict[str, Any]:
        """
        Entry counts: total, per source, and expired-but-not-yet-swept.

        Raises:
            CacheError: Store unreachable
        """
        now = self._clock()
        try:
            with self._session_factory() as session:
                total = session.execute(
                    select(func.count()).select_from(ApiCacheEntry)
                ).scalar_one()
                rows = session.execute(
                    select(ApiCacheEntry.source, func.count())
                    .group_by(ApiCacheEntry.source)
                ).all()
                expired = session.execute(
                    select(func.count())
                    .select_from(ApiCacheEntry)
                    .where(ApiCacheEntry.expires_at < now)
                ).scalar_one()
        except SQLAlchemyError as e:
            raise CacheError(f"Cache stats unavailable: {e}") from e

        by_source = {
            (src.value if isinstance(src, DataSource) else str(src)): count
            for src, count in rows
        }
        return {"total": total, "by_source": by_source, "expired": expired}
