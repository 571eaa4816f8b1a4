"""
Energy Information Administration (EIA) energy price source.

Provides:
- Residential electricity prices by state (cents/kWh)
- Residential natural gas prices by state ($/Mcf)
- Retail gasoline prices by PADD region, mapped to states ($/gal)
- Monthly household utility cost estimates

API Documentation: https://www.eia.gov/opendata/documentation.php
API Key: Required (free registration at https://www.eia.gov/opendata/register.php)
"""

from costwise.sources.eia.client import EIAClient
from costwise.sources.eia.fetcher import EnergyFetcher
from costwise.sources.eia import metadata

__all__ = ["EIAClient", "EnergyFetcher", "metadata"]
