"""
Crop advisory schemas: recommendations, image diagnosis and yield prediction.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator

from agriadvisor.schemas.base import BaseSchema, Coordinates


class FarmData(BaseSchema):
    """Farm description submitted for crop recommendations."""

    model_config = ConfigDict(extra="allow")

    user_id: Optional[str] = None
    location: Optional[str] = None
    soil_type: Optional[str] = None
    farm_size: float = Field(1.0, ge=0, description="Farm size (acres)")
    irrigation: Optional[str] = None
    previous_crops: List[str] = []
    season: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    @field_validator("previous_crops")
    @classmethod
    def normalize_previous_crops(cls, v):
        return [crop.strip().lower() for crop in v]


class CropRecommendation(BaseSchema):
    name: str
    variety: Optional[str] = None
    suitability_score: float
    expected_yield: str
    profit_margin: str
    sustainability_score: float
    planting_window: Optional[str] = None
    harvest_time: Optional[str] = None
    water_requirement: Optional[str] = None
    labor_requirement: Optional[str] = None
    risk_level: Optional[str] = None
    disease_resistance: Optional[str] = None
    market_demand: Optional[str] = None
    advantages: List[str] = []
    challenges: List[str] = []


class RecommendationSet(BaseSchema):
    recommendations: List[CropRecommendation]
    analysis_factors: Dict[str, Any]
    confidence_score: float
    last_updated: datetime


class ImageAnalysisRequest(BaseSchema):
    image: str = Field(..., min_length=1, description="Base64 encoded crop image")
    crop_type: str = Field("tomatoes", min_length=1)


class Treatment(BaseSchema):
    type: str
    name: str
    application: str
    dosage: str
    precautions: str


class SimilarCase(BaseSchema):
    location: str
    outcome: str
    treatment: str


class CropDiagnosis(BaseSchema):
    diagnosis: str
    pathogen: str
    symptoms: List[str]
    confidence: float
    severity: str
    affected_area: int
    treatments: List[Treatment]
    prevention: List[str]
    prognosis: str
    similar_cases: List[SimilarCase]
    timestamp: datetime


class YieldPredictionRequest(BaseSchema):
    crop_type: str = Field(..., min_length=1)
    planting_date: date
    farm_size: float = Field(..., gt=0, description="Farm size (acres)")
    soil_conditions: Optional[Dict[str, Any]] = None
    weather_history: Optional[Dict[str, Any]] = None
    management_practices: Optional[Dict[str, Any]] = None


class YieldRange(BaseSchema):
    min: float
    max: float


class HarvestWindow(BaseSchema):
    estimated_date: date
    window: str
    readiness_indicators: List[str]


class MarketValue(BaseSchema):
    price_per_unit: float
    total_value: float
    market_trend: str = "Stable"
    best_selling_time: str = "Peak season pricing available"


class YieldPrediction(BaseSchema):
    expected_yield: float
    yield_range: YieldRange
    confidence: float
    factors: Dict[str, float]
    recommendations: List[str]
    harvest_window: HarvestWindow
    market_value: MarketValue
    timestamp: datetime
