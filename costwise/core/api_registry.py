"""
Upstream API registry.

One entry per government data source: base URL, credential requirement,
polite pacing and the fixed per-call timeouts. Clients read their defaults
from here so vendor URLs and limits live in one place.
"""

from dataclasses import dataclass
from typing import Optional, Dict


@dataclass(frozen=True)
class UpstreamAPI:
    """Static facts about one external API."""

    source_name: str
    base_url: str
    key_required: bool
    signup_url: Optional[str] = None

    max_concurrency: int = 4
    requests_per_minute: Optional[int] = None  # None = no published limit

    # Single attempt per call; no retries
    timeout_seconds: float = 10.0
    connect_timeout_seconds: float = 5.0

    def require_key(self, api_key: Optional[str]) -> None:
        """
        Raises:
            ValueError: If this API needs a key and none was given
        """
        if self.key_required and not api_key:
            raise ValueError(
                f"{self.source_name.upper()}_API_KEY is required. "
                f"Get a free key at: {self.signup_url}"
            )

    def concurrency_limit(self, requested: Optional[int] = None) -> int:
        """Requested concurrency capped at this API's own limit."""
        if requested is None:
            return self.max_concurrency
        return max(1, min(requested, self.max_concurrency))

    def pacing_interval(self) -> Optional[float]:
        """Minimum seconds between requests implied by requests_per_minute."""
        if not self.requests_per_minute:
            return None
        return 60.0 / self.requests_per_minute


# =============================================================================
# Registry
# =============================================================================

API_REGISTRY: Dict[str, UpstreamAPI] = {
    # 100 req/min, 100 MB/min, 30 errors/min per UserID
    "bea": UpstreamAPI(
        source_name="bea",
        base_url="https://apps.bea.gov/api/data",
        key_required=True,
        signup_url="https://apps.bea.gov/api/signup/",
        max_concurrency=4,
        requests_per_minute=100,
    ),
    # Public ArcGIS feature service, FMR areas keyed by CBSA code
    "hud": UpstreamAPI(
        source_name="hud",
        base_url=(
            "https://services.arcgis.com/VTyQ9soqVukalItT/arcgis/rest/services/"
            "Fair_Market_Rents/FeatureServer/0"
        ),
        key_required=False,
        max_concurrency=5,
    ),
    # Unregistered: 25 series/query and 10 years. Registered: 50 series, 20 years
    "bls": UpstreamAPI(
        source_name="bls",
        base_url="https://api.bls.gov/publicAPI/v2/timeseries/data/",
        key_required=False,
        signup_url="https://data.bls.gov/registrationEngine/",
        max_concurrency=2,
    ),
    # 5,000 requests per hour with a key
    "eia": UpstreamAPI(
        source_name="eia",
        base_url="https://api.eia.gov/v2",
        key_required=True,
        signup_url="https://www.eia.gov/opendata/register.php",
        max_concurrency=3,
        requests_per_minute=80,
    ),
}


def get_api_config(source: str) -> UpstreamAPI:
    """
    Registry entry for a source.

    Raises:
        KeyError: If the source is not registered
    """
    try:
        return API_REGISTRY[source.lower()]
    except KeyError:
        available = ", ".join(sorted(API_REGISTRY))
        raise KeyError(f"Unknown API source: {source}. Available sources: {available}") from None
