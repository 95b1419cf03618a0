"""
Farm analytics schemas.
"""

from datetime import datetime
from typing import List, Literal, Optional

from agriadvisor.schemas.base import BaseSchema
from agriadvisor.schemas.crops import CropRecommendation
from agriadvisor.schemas.iot import LatestSensorData
from agriadvisor.schemas.market import MarketPriceSample
from agriadvisor.schemas.weather import WeatherObservation


class FarmHealth(BaseSchema):
    health_score: int
    soil_condition: Literal["good", "fair", "poor", "unknown"]
    weather_status: str
    crop_recommendations: int
    market_opportunities: int


class FarmAnalytics(BaseSchema):
    """
    Dashboard summary for one farm.

    ``unavailable`` lists the sections that could not be computed; those
    sections carry their empty fallback.
    """

    farm_id: str
    farm_health: FarmHealth
    sensors: Optional[LatestSensorData] = None
    weather: Optional[WeatherObservation] = None
    recommendations: List[CropRecommendation] = []
    market: List[MarketPriceSample] = []
    alerts: List[str] = []
    unavailable: List[str] = []
    last_updated: datetime
