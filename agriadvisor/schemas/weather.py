"""
Weather data schemas.

This module contains Pydantic schemas for current conditions, daily
forecasts and the derived agronomic indices.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from agriadvisor.schemas.base import BaseSchema, Coordinates

RiskLevel = Literal["Low", "Medium", "High"]
WindowQuality = Literal["Poor", "Fair", "Good", "Excellent"]
HarvestQuality = Literal["Poor", "Good", "Excellent"]


class WeatherObservation(BaseSchema):
    """Current conditions for a location with agricultural derivations."""

    location: str
    country: Optional[str] = None
    temperature: float = Field(..., description="Air temperature (°C)")
    humidity: float = Field(..., ge=0, le=100, description="Relative humidity (%)")
    pressure: float = Field(..., description="Atmospheric pressure (hPa)")
    wind_speed: float = Field(..., ge=0, description="Wind speed (m/s)")
    wind_direction: float = Field(..., ge=0, le=360, description="Wind direction (degrees)")
    cloudiness: float = Field(..., ge=0, le=100, description="Cloud cover (%)")
    visibility: Optional[float] = Field(None, description="Visibility (km)")
    uv_index: Optional[int] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    timestamp: datetime
    coordinates: Optional[Coordinates] = None
    dew_point: float = Field(..., description="Dew point (°C)")
    heat_index: float = Field(..., description="Apparent temperature (°C)")
    evapotranspiration: float = Field(..., ge=0, description="ET₀ proxy (mm/day)")
    soil_temperature: float = Field(..., description="Estimated soil temperature (°C)")
    source: str = Field("provider", description="'provider' or 'synthetic'")


class DailyForecast(BaseSchema):
    """One forecast day."""

    date: str
    temp_min: float
    temp_max: float
    avg_humidity: float
    avg_wind_speed: float = 0.0
    precipitation: float = 0.0
    description: Optional[str] = None
    icon: Optional[str] = None


class WeatherForecast(BaseSchema):
    """Multi-day forecast with agricultural advice."""

    location: str
    country: Optional[str] = None
    forecasts: List[DailyForecast]
    agricultural_advice: List[str]
    timestamp: datetime
    source: str = "provider"


class AgronomicIndices(BaseSchema):
    """Agronomic indices derived from current conditions and a forecast window."""

    location: str
    growing_degree_days: float
    chill_hours: int
    water_requirement: float
    pest_risk: RiskLevel
    disease_risk: RiskLevel
    optimal_planting_window: WindowQuality
    harvest_readiness: HarvestQuality
    forecast_days: int
    timestamp: datetime
