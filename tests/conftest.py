"""
Pytest configuration and shared fixtures.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from costwise.core.cache_store import CacheStore
from costwise.core.config import Settings, reset_settings
from costwise.core.location_resolver import LocationResolver
from costwise.core.models import Base
from costwise.core.rate_limiter import reset_rate_limiter


@pytest.fixture(scope="function")
def clean_env(monkeypatch):
    """
    Clean environment for testing.

    Removes all app-related env vars to ensure clean state.
    """
    env_vars = [
        "DATABASE_URL",
        "BEA_API_KEY",
        "BLS_API_KEY",
        "EIA_API_KEY",
        "MAX_CONCURRENCY",
        "LOG_LEVEL",
        "RUN_INTEGRATION_TESTS",
        "REQUEST_TIMEOUT_SECONDS",
        "RATE_LIMIT_WINDOW_MS",
        "RATE_LIMIT_MAX_REQUESTS",
        "HUD_BATCH_MAX_SIZE",
        "ENABLE_SCHEDULER",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)

    reset_settings()
    reset_rate_limiter()

    yield

    reset_settings()
    reset_rate_limiter()


@pytest.fixture(scope="function")
def session_factory():
    """
    In-memory SQLite shared across sessions (StaticPool).

    Fresh database for each test.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    yield factory

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db(session_factory):
    """A single session on the test database."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


class FakeClock:
    """Mutable naive-UTC clock for cache expiry tests."""

    def __init__(self, start: datetime = datetime(2025, 1, 15, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_store(session_factory, clock):
    return CacheStore(session_factory, clock=clock)


@pytest.fixture
def settings(clean_env):
    """Settings with test keys and no .env file."""
    return Settings(
        _env_file=None,
        bea_api_key="test-bea-key",
        eia_api_key="test-eia-key",
        database_url="sqlite:///:memory:",
        enable_scheduler=False,
    )


@pytest.fixture
def crosswalk_rows():
    return [
        # 78701 is wholly inside Austin
        {"zip_code": "78701", "cbsa_code": "12420",
         "cbsa_name": "Austin-Round Rock-Georgetown, TX", "residential_ratio": 1.0},
        # 10001 is a split ZIP: 70% New York, 30% Trenton
        {"zip_code": "10001", "cbsa_code": "35620",
         "cbsa_name": "New York-Newark-Jersey City, NY-NJ-PA", "residential_ratio": 0.7},
        {"zip_code": "10001", "cbsa_code": "45940",
         "cbsa_name": "Trenton-Princeton, NJ", "residential_ratio": 0.3},
        # Other Texas metros
        {"zip_code": "75201", "cbsa_code": "19100",
         "cbsa_name": "Dallas-Fort Worth-Arlington, TX", "residential_ratio": 0.95},
        {"zip_code": "77002", "cbsa_code": "26420",
         "cbsa_name": "Houston-The Woodlands-Sugar Land, TX", "residential_ratio": 0.9},
        {"zip_code": "77003", "cbsa_code": "26420",
         "cbsa_name": "Houston-The Woodlands-Sugar Land, TX", "residential_ratio": 0.8},
        # Texarkana lists TX second
        {"zip_code": "75501", "cbsa_code": "45500",
         "cbsa_name": "Texarkana, TX-AR", "residential_ratio": 0.6},
        # Not Texas
        {"zip_code": "73301", "cbsa_code": "99999",
         "cbsa_name": "Testville, OK", "residential_ratio": 1.0},
    ]


@pytest.fixture
def resolver(session_factory, crosswalk_rows):
    resolver = LocationResolver(session_factory)
    resolver.load_crosswalk(crosswalk_rows)
    return resolver
