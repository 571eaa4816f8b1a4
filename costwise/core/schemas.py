"""
Pydantic schemas for normalized cost-of-living data and the response envelope.

All domain types use 100 = national average for their index fields.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Price parity (BEA)
# =============================================================================


class NormalizedPriceParity(BaseModel):
    """Regional price parity for one state or metro area."""

    geo_id: str
    geo_name: str
    state_code: Optional[str] = None
    year: int
    overall: float
    goods: Optional[float] = None
    housing_rent: Optional[float] = None
    other_services: Optional[float] = None
    percent_above_national: float
    rank: int = Field(..., ge=1, description="1 = most expensive in the batch")


# =============================================================================
# Fair market rent (HUD)
# =============================================================================


class MetroMatch(BaseModel):
    """Primary metro area for a ZIP code."""

    metro_code: str
    metro_name: str
    state_code: Optional[str] = None
    residential_ratio: float
    is_split_zip: bool


class CrosswalkRecord(BaseModel):
    """One ZIP/metro crosswalk row."""

    zip_code: str
    metro_code: str
    metro_name: str
    residential_ratio: float = Field(..., ge=0.0, le=1.0)


class LocationMatch(BaseModel):
    """A ZIP or metro returned by location search."""

    id: str
    type: str  # "zip" | "metro"
    name: str
    state_code: Optional[str] = None
    zip_code: Optional[str] = None
    metro_code: Optional[str] = None


class FairMarketRent(BaseModel):
    """Monthly fair market rents by bedroom count (0 = studio .. 4)."""

    zip_code: Optional[str] = None
    metro_code: str
    metro_name: str
    state_code: Optional[str] = None
    area_name: str
    rents_by_bedroom: List[float] = Field(default_factory=lambda: [0.0] * 5)
    is_small_area_fmr: bool = False
    year: int
    nearby_metros: Optional[List[CrosswalkRecord]] = None

    @field_validator("rents_by_bedroom", mode="before")
    @classmethod
    def validate_bedrooms(cls, v: Any) -> List[float]:
        """Always exactly five entries; missing sizes are 0."""
        padded = [float(x or 0) for x in list(v or [])[:5]]
        return padded + [0.0] * (5 - len(padded))


class RentBatchItem(BaseModel):
    """Per-ZIP outcome of a batch rent lookup."""

    zip_code: str
    data: Optional[FairMarketRent] = None
    error: Optional["ErrorBody"] = None


# =============================================================================
# Consumer price index (BLS)
# =============================================================================


class CPIDataPoint(BaseModel):
    """One monthly CPI observation."""

    series_id: str
    category: str
    region: str
    year: int
    month: int = Field(..., ge=1, le=12)
    period: str
    value: float


class CPIIndexes(BaseModel):
    """Latest CPI values for a region plus indices relative to national."""

    region: str
    region_name: str
    state_code: Optional[str] = None

    food: Optional[float] = None
    transportation: Optional[float] = None
    medical: Optional[float] = None
    housing: Optional[float] = None
    overall: Optional[float] = None

    food_index: float = 100.0
    transportation_index: float = 100.0
    medical_index: float = 100.0
    housing_index: float = 100.0
    overall_index: float = 100.0

    latest_year: Optional[int] = None
    latest_month: Optional[int] = None


class CPITimeseries(BaseModel):
    """Monthly points for one category/region, oldest first."""

    series_id: str
    category: str
    region: str
    points: List[CPIDataPoint]


class CPIRegion(BaseModel):
    """Census region and its member states."""

    region: str
    region_name: str
    area_code: str
    states: List[str]


# =============================================================================
# Energy (EIA)
# =============================================================================


class EnergyValues(BaseModel):
    """One value per energy type; any may be missing."""

    electricity: Optional[float] = None
    natural_gas: Optional[float] = None
    gasoline: Optional[float] = None


class EnergyPriceRecord(BaseModel):
    """
    Energy prices for one state.

    electricity: cents/kWh, natural gas: $/Mcf, gasoline: $/gallon.
    """

    state_code: str
    electricity_price: Optional[float] = None
    natural_gas_price: Optional[float] = None
    gasoline_price: Optional[float] = None
    national_averages: EnergyValues = Field(default_factory=EnergyValues)
    indices: EnergyValues = Field(default_factory=EnergyValues)


class UtilityCostEstimate(BaseModel):
    """Estimated monthly household utility bill for a state."""

    state_code: str
    monthly_electricity: float
    monthly_natural_gas: float
    monthly_total: float
    electricity_kwh_per_month: float
    natural_gas_mcf_per_month: float


class StateEnergyCost(BaseModel):
    """Energy prices and the derived utility estimate for one state."""

    energy: EnergyPriceRecord
    utility: UtilityCostEstimate


# =============================================================================
# Response envelope
# =============================================================================


class ErrorBody(BaseModel):
    """Error section of the envelope."""

    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ResponseMeta(BaseModel):
    """Metadata describing where the data came from."""

    cached: bool = False
    cache_age: Optional[int] = None
    source: str
    data_year: Optional[int] = None
    count: Optional[int] = None
    success_count: Optional[int] = None
    error_count: Optional[int] = None


class ApiResponse(BaseModel):
    """Uniform envelope for every aggregated response."""

    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    meta: Optional[ResponseMeta] = None


RentBatchItem.model_rebuild()
