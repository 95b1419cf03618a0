"""
Market price schemas.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from agriadvisor.schemas.base import BaseSchema

Trend = Literal["bullish", "bearish", "stable", "insufficient_data"]
BalanceStatus = Literal["surplus", "deficit", "balanced"]


class MarketPriceSample(BaseSchema):
    """Current price of a crop in a region."""

    crop: str
    region: str
    current_price: float
    previous_price: float
    change: float
    unit: str
    market_centers: List[str] = []
    last_updated: datetime
    source: str
    reliability: str


class PricePoint(BaseSchema):
    date: str
    price: float
    volume: int
    market_activity: Literal["low", "moderate", "high"]


class PriceAnalysis(BaseSchema):
    """Summary statistics of a price series."""

    current_price: Optional[float] = None
    previous_price: Optional[float] = None
    price_change: float = 0.0
    trend: Trend
    volatility: float = 0.0
    mean: Optional[float] = None
    support: Optional[float] = None
    resistance: Optional[float] = None


class DemandSupplyIndicators(BaseSchema):
    demand_level: Literal["low", "moderate", "high"]
    supply_level: Literal["low", "adequate", "high"]
    inventory_turnover: float
    seasonal_demand: Dict[str, str]
    price_elasticity: float
    substitute_crops: List[str]


class ForecastPoint(BaseSchema):
    period: str
    days: int
    price: float
    confidence: float
    factors: List[str]


class PriceForecast(BaseSchema):
    forecasts: List[ForecastPoint]
    methodology: str = "Trend analysis with demand-supply adjustment"
    confidence: str = "moderate"
    last_updated: datetime


class MarketTrends(BaseSchema):
    """Synthesized price history with trend analysis and a short forecast."""

    crop: str
    timeframe: str
    current_price: Optional[float] = None
    price_change: float
    trend: Trend
    volatility: float
    support: Optional[float] = None
    resistance: Optional[float] = None
    historical_data: List[PricePoint]
    demand_supply: DemandSupplyIndicators
    forecast: PriceForecast
    market_insights: List[str]
    recommendations: List[str]
    timestamp: datetime


class SupplySide(BaseSchema):
    production: float
    expected_harvest: float
    inventory: Dict[str, int]
    imports: Dict[str, int]


class DemandSide(BaseSchema):
    domestic: float
    industrial: float
    total: float
    growth_rate: float
    exports: Dict[str, int]


class SupplyBalance(BaseSchema):
    supply_ratio: float
    status: BalanceStatus
    surplus: float
    deficit: float
    demand_level: Literal["low", "moderate", "high"]
    supply_level: Literal["low", "adequate", "high"]


class DemandSupplyAnalysis(BaseSchema):
    crop: str
    supply: SupplySide
    demand: DemandSide
    balance: SupplyBalance
    price_impact: Literal["downward_pressure", "upward_pressure", "neutral"]
    seasonal_factors: Dict[str, str]
    recommendations: List[str]
    timestamp: datetime
