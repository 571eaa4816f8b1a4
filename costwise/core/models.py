"""
SQLAlchemy models for core tables.

- api_cache: normalized upstream payloads keyed by (source, location_key)
- zip_to_cbsa: weighted ZIP code to metro area crosswalk
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Float, JSON, Enum, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DataSource(str, enum.Enum):
    """Cacheable data sources - ONLY these values allowed."""
    HUD = "hud"
    BEA = "bea"
    BLS = "bls"
    EIA = "eia"
    CENSUS = "census"


class ApiCacheEntry(Base):
    """
    Cached, already-normalized upstream payload.

    One row per (source, location_key); writes replace, never duplicate.
    """
    __tablename__ = "api_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(
        Enum(DataSource, native_enum=False, length=20,
             values_callable=lambda e: [member.value for member in e]),
        nullable=False,
    )
    location_key = Column(String(255), nullable=False)
    data = Column(JSON, nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("source", "location_key", name="uq_api_cache_source_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<ApiCacheEntry(source={self.source}, location_key={self.location_key}, "
            f"expires_at={self.expires_at})>"
        )


class ZipToCbsa(Base):
    """
    ZIP code to Core-Based Statistical Area crosswalk row.

    A ZIP may appear in several rows (split ZIP). residential_ratio is the
    share of the ZIP's residential addresses inside the CBSA.
    """
    __tablename__ = "zip_to_cbsa"

    id = Column(Integer, primary_key=True, autoincrement=True)
    zip_code = Column(String(5), nullable=False)
    cbsa_code = Column(String(10), nullable=False)
    cbsa_name = Column(String(255), nullable=False)
    residential_ratio = Column(Float, nullable=False, default=1.0)

    __table_args__ = (
        UniqueConstraint("zip_code", "cbsa_code", name="uq_zip_to_cbsa"),
        Index("ix_zip_to_cbsa_zip", "zip_code"),
    )

    def __repr__(self) -> str:
        return (
            f"<ZipToCbsa(zip={self.zip_code}, cbsa={self.cbsa_code}, "
            f"ratio={self.residential_ratio})>"
        )
