"""
Bureau of Economic Analysis (BEA) Regional Price Parity source.

Provides:
- RPP by state (SARPP) and by metropolitan area (MARPP)
- All items, goods, housing rents and other services, 100 = national average

API Documentation: https://apps.bea.gov/api/
API Registration: https://apps.bea.gov/api/signup/

API Key: Required (free registration)
Rate Limits: 100 requests per minute, 100 MB per request, 30 errors per minute
"""

from costwise.sources.bea.client import BEAClient
from costwise.sources.bea.fetcher import PriceParityFetcher
from costwise.sources.bea import metadata

__all__ = ["BEAClient", "PriceParityFetcher", "metadata"]
