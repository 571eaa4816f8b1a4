"""
HUD Fair Market Rent (FMR) source.

Provides:
- Monthly fair market rents for studio through 4-bedroom units
- Lookup by ZIP code (via the ZIP/CBSA crosswalk), by state, or ZIP batch

Data: https://www.huduser.gov/portal/datasets/fmr.html
API Key: Not required (public ArcGIS feature service)
"""

from costwise.sources.hud.client import HUDClient
from costwise.sources.hud.fetcher import RentFetcher
from costwise.sources.hud import metadata

__all__ = ["HUDClient", "RentFetcher", "metadata"]
