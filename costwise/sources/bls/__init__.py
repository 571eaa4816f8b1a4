"""
Bureau of Labor Statistics (BLS) Consumer Price Index source.

Provides:
- CPI-U (not seasonally adjusted) for food, transportation, medical care,
  housing and all items
- National and census region (Northeast, Midwest, South, West) series
- Regional indices relative to national, 100 = national average

API Documentation: https://www.bls.gov/developers/
API Key: Optional (recommended; raises daily query and year-range limits)
"""

from costwise.sources.bls.client import BLSClient
from costwise.sources.bls.fetcher import PriceIndexFetcher
from costwise.sources.bls import metadata

__all__ = ["BLSClient", "PriceIndexFetcher", "metadata"]
