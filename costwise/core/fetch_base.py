"""
Base class for cache-aware source fetchers.

Provides reusable logic for:
- Cache lookup before any network access
- Decoding cached payloads back into typed domain objects
- Write-through caching after a successful upstream fetch
- Lazy upstream client creation (missing credentials only hurt on a miss)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from costwise.core.cache_store import CacheStore
from costwise.core.config import Settings, get_settings
from costwise.core.http_client import BaseAPIClient
from costwise.core.models import DataSource

logger = logging.getLogger(__name__)

T = TypeVar("T")
ClientT = TypeVar("ClientT", bound=BaseAPIClient)


@dataclass
class FetchResult(Generic[T]):
    """Normalized data plus where it came from."""

    data: T
    cached: bool = False
    cache_age: Optional[int] = None
    data_year: Optional[int] = None


class BaseSourceFetcher(ABC, Generic[ClientT]):
    """
    Base class for all source fetchers.

    Subclasses should:
    - Set SOURCE class attribute
    - Implement _create_client() (raise ConfigurationError for missing keys)
    - Wrap each upstream lookup in _cached()
    """

    SOURCE: DataSource

    def __init__(
        self,
        cache: CacheStore,
        client: Optional[ClientT] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            cache: Cache store shared by all fetchers
            client: Pre-built upstream client (tests inject mocks here)
            settings: Settings override; defaults to the global settings
        """
        self.cache = cache
        self.settings = settings or get_settings()
        self._client = client

    @abstractmethod
    def _create_client(self) -> ClientT:
        """Build the upstream client from settings."""

    @property
    def client(self) -> ClientT:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        """Release the upstream client."""
        if self._client is not None:
            await self._client.close()

    async def _cached(
        self,
        location_key: str,
        loader: Callable[[], Awaitable[T]],
        adapter: TypeAdapter,
        data_year: Optional[Callable[[T], Optional[int]]] = None,
    ) -> FetchResult[T]:
        """
        Serve location_key from cache, or load it upstream and write through.

        Args:
            location_key: Cache key within this fetcher's source
            loader: Coroutine factory producing fresh normalized data
            adapter: TypeAdapter used to encode/decode the cached payload
            data_year: Optional function extracting the data year

        Returns:
            FetchResult with cached=True on a live hit
        """
        hit = self.cache.get(self.SOURCE, location_key)
        if hit is not None:
            try:
                data = adapter.validate_python(hit.payload)
            except ValidationError as e:
                logger.warning(
                    f"Discarding malformed cache entry {self.SOURCE.value}/{location_key}: "
                    f"{e.error_count()} validation errors"
                )
            else:
                logger.debug(f"Serving {self.SOURCE.value}/{location_key} from cache")
                return FetchResult(
                    data=data,
                    cached=True,
                    cache_age=hit.age_seconds,
                    data_year=data_year(data) if data_year else None,
                )

        logger.info(f"Cache miss for {self.SOURCE.value}/{location_key}, fetching upstream")
        data = await loader()

        payload: Any = adapter.dump_python(data, mode="json")
        if not self.cache.set(self.SOURCE, location_key, payload):
            logger.warning(f"Serving uncached {self.SOURCE.value}/{location_key}")

        return FetchResult(
            data=data,
            cached=False,
            data_year=data_year(data) if data_year else None,
        )
