"""
Market price and trend estimator.

There is no live market feed behind this service. Prices are drawn from
static per-crop base tables, scaled by a regional multiplier and perturbed
within a crop-specific volatility band. Trend series are synthesized from
the same tables with seasonal, random and drift factors. Swap
``MarketService._quote`` for a real data source to go live.
"""

import math
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from agriadvisor.schemas.market import (
    DemandSide,
    DemandSupplyAnalysis,
    DemandSupplyIndicators,
    ForecastPoint,
    MarketPriceSample,
    MarketTrends,
    PriceAnalysis,
    PriceForecast,
    PricePoint,
    SupplyBalance,
    SupplySide,
)
from agriadvisor.utils.kv_store import KV_KEYS, KV_TTL, KeyValueStore
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)

# ₹ per kg or per quintal, see PRICE_UNITS
BASE_PRICES = {
    "tomatoes": 45,
    "cotton": 6200,
    "sugarcane": 3200,
    "wheat": 2100,
    "rice": 2800,
    "onion": 35,
    "potato": 25,
    "soybean": 4500,
    "maize": 1900,
}
DEFAULT_BASE_PRICE = 100

PRICE_UNITS = {
    "tomatoes": "₹/kg",
    "cotton": "₹/quintal",
    "sugarcane": "₹/quintal",
    "wheat": "₹/quintal",
    "rice": "₹/quintal",
    "onion": "₹/kg",
    "potato": "₹/kg",
    "soybean": "₹/quintal",
    "maize": "₹/quintal",
}
DEFAULT_PRICE_UNIT = "₹/kg"

REGIONAL_MULTIPLIERS = {
    "maharashtra": 1.0,
    "punjab": 1.05,
    "karnataka": 0.95,
    "gujarat": 1.02,
    "rajasthan": 0.98,
    "haryana": 1.03,
    "all": 1.0,
}

# Maximum relative deviation of the current price from its base
VOLATILITY_BANDS = {
    "tomatoes": 0.15,
    "cotton": 0.08,
    "sugarcane": 0.05,
    "wheat": 0.06,
    "rice": 0.07,
}
DEFAULT_VOLATILITY_BAND = 0.1

MARKET_CENTERS = {
    "tomatoes": ["Nashik", "Pune", "Mumbai", "Bangalore"],
    "cotton": ["Nagpur", "Akola", "Yavatmal", "Aurangabad"],
    "sugarcane": ["Kolhapur", "Sangli", "Ahmednagar", "Pune"],
}

TIMEFRAME_DAYS = {
    "7days": 7,
    "30days": 30,
    "90days": 90,
    "6months": 180,
    "1year": 365,
}
DEFAULT_TIMEFRAME = "30days"

# Month (1-12) → price factor
SEASONAL_PATTERNS = {
    "tomatoes": {1: 1.2, 2: 1.3, 3: 1.1, 4: 0.9, 5: 0.8, 6: 0.9,
                 7: 1.0, 8: 1.1, 9: 1.2, 10: 1.3, 11: 1.4, 12: 1.3},
    "cotton": {1: 1.1, 2: 1.0, 3: 0.9, 4: 0.9, 5: 0.9, 6: 0.9,
               7: 0.9, 8: 0.9, 9: 1.0, 10: 1.1, 11: 1.2, 12: 1.1},
}

TRADE_VOLUMES = {"tomatoes": 50000, "cotton": 10000, "sugarcane": 20000}
DEFAULT_TRADE_VOLUME = 25000

PRODUCTION = {"tomatoes": 1200000, "cotton": 350000, "sugarcane": 4000000}
DOMESTIC_DEMAND = {"tomatoes": 1100000, "cotton": 320000, "sugarcane": 3800000}
INDUSTRIAL_DEMAND = {"tomatoes": 200000, "cotton": 280000, "sugarcane": 3600000}
DEMAND_GROWTH = {"tomatoes": 3.5, "cotton": 2.1, "sugarcane": 1.8}
PRICE_ELASTICITY = {"tomatoes": 0.8, "cotton": 1.2, "sugarcane": 0.6}
SUBSTITUTES = {
    "tomatoes": ["capsicum", "cucumber", "other vegetables"],
    "cotton": ["synthetic fibers", "other cash crops"],
    "sugarcane": ["sugar beet", "corn for ethanol"],
}

SEASONS = {
    "tomatoes": {
        "plantingSeason": "June-July (Kharif), November-December (Rabi)",
        "harvestSeason": "September-November (Kharif), February-April (Rabi)",
        "peakConsumption": "October-February (Festival season)",
        "weatherDependency": "High - sensitive to temperature and rainfall",
    },
    "cotton": {
        "plantingSeason": "April-May (Kharif)",
        "harvestSeason": "October-January",
        "peakConsumption": "Year-round (Textile industry)",
        "weatherDependency": "Moderate - drought tolerant but needs timely rainfall",
    },
    "sugarcane": {
        "plantingSeason": "October-March",
        "harvestSeason": "November-April",
        "peakConsumption": "October-March (Sugar season)",
        "weatherDependency": "High - water intensive crop",
    },
}
DEFAULT_SEASONS = {
    "plantingSeason": "Varies by region",
    "harvestSeason": "Varies by region",
    "peakConsumption": "Year-round",
    "weatherDependency": "Moderate",
}

FORECAST_HORIZONS = (7, 14, 30)
TREND_THRESHOLD_PERCENT = 5
VOLATILE_CV_PERCENT = 15


def base_price(crop: str) -> float:
    return BASE_PRICES.get(crop.lower(), DEFAULT_BASE_PRICE)


def regional_multiplier(region: str) -> float:
    return REGIONAL_MULTIPLIERS.get(region.lower(), 1.0)


def volatility_band(crop: str) -> float:
    return VOLATILITY_BANDS.get(crop.lower(), DEFAULT_VOLATILITY_BAND)


def analyze_price_series(prices: Sequence[float]) -> PriceAnalysis:
    """
    Trend classification of a price series.

    The trend label depends only on the first-to-last change: over +5 % is
    bullish, under -5 % bearish, anything else stable. Volatility is the
    coefficient of variation (population standard deviation over mean) in
    percent and is reported alongside.
    """
    if len(prices) < 2:
        return PriceAnalysis(trend="insufficient_data")

    current, previous = prices[-1], prices[0]
    change = (current - previous) / previous * 100 if previous else 0.0
    mean = sum(prices) / len(prices)
    variance = sum((price - mean) ** 2 for price in prices) / len(prices)
    cv = math.sqrt(variance) / mean * 100 if mean else 0.0

    if change > TREND_THRESHOLD_PERCENT:
        trend = "bullish"
    elif change < -TREND_THRESHOLD_PERCENT:
        trend = "bearish"
    else:
        trend = "stable"

    return PriceAnalysis(
        current_price=current,
        previous_price=previous,
        price_change=round(change, 1),
        trend=trend,
        volatility=round(cv, 1),
        mean=round(mean),
        support=min(prices),
        resistance=max(prices),
    )


def supply_demand_balance(production: float, total_demand: float) -> SupplyBalance:
    """Surplus above a 1.1 supply ratio, deficit below 0.9."""
    ratio = production / total_demand
    if ratio > 1.1:
        status = "surplus"
    elif ratio < 0.9:
        status = "deficit"
    else:
        status = "balanced"

    if total_demand > production * 1.1:
        demand_level = "high"
    elif total_demand < production * 0.9:
        demand_level = "low"
    else:
        demand_level = "moderate"

    if production > total_demand * 1.1:
        supply_level = "high"
    elif production < total_demand * 0.9:
        supply_level = "low"
    else:
        supply_level = "adequate"

    return SupplyBalance(
        supply_ratio=round(ratio, 2),
        status=status,
        surplus=max(0, production - total_demand),
        deficit=max(0, total_demand - production),
        demand_level=demand_level,
        supply_level=supply_level,
    )


def price_impact(balance: SupplyBalance) -> str:
    if balance.status == "surplus":
        return "downward_pressure"
    if balance.status == "deficit":
        return "upward_pressure"
    return "neutral"


def supply_demand_recommendations(balance: SupplyBalance) -> List[str]:
    if balance.status == "surplus":
        return [
            "Explore export opportunities",
            "Consider value-added processing",
            "Focus on quality premiums",
        ]
    if balance.status == "deficit":
        return [
            "Increase production capacity",
            "Improve yield through better practices",
            "Consider premium pricing strategies",
        ]
    return ["Maintain current production levels", "Focus on cost optimization"]


def forecast_confidence(days: int) -> float:
    """Confidence shrinks with the horizon, floored at 50."""
    return max(50.0, 90 - days * 1.5)


def forecast_factors(days: int) -> List[str]:
    factors = ["weather patterns", "seasonal demand", "supply chain dynamics"]
    if days > 14:
        factors.extend(["policy changes", "international market trends"])
    return factors


def market_insights(crop: str, analysis: PriceAnalysis, indicators: DemandSupplyIndicators) -> List[str]:
    insights = []
    if analysis.trend == "bullish":
        insights.append(f"{crop} prices showing strong upward momentum with {analysis.price_change}% increase")
    elif analysis.trend == "bearish":
        insights.append(f"{crop} prices under pressure with {abs(analysis.price_change)}% decline")
    elif analysis.volatility > VOLATILE_CV_PERCENT:
        insights.append(f"{crop} market experiencing high volatility - exercise caution")

    if indicators.demand_level == "high" and indicators.supply_level == "low":
        insights.append("Strong demand with limited supply supporting higher prices")
    elif indicators.demand_level == "low" and indicators.supply_level == "high":
        insights.append("Oversupply situation may pressure prices downward")

    if analysis.volatility > 20:
        insights.append("High price volatility suggests market uncertainty - consider price risk management")
    return insights


def market_recommendations(analysis: PriceAnalysis, forecast: PriceForecast) -> List[str]:
    recommendations = []
    if analysis.trend == "bullish":
        recommendations.append("Consider holding inventory for better prices")
        recommendations.append("Good time to market surplus produce")
    elif analysis.trend == "bearish":
        recommendations.append("Consider quick sales to avoid further price decline")
        recommendations.append("Focus on cost reduction strategies")

    if forecast.forecasts and forecast.forecasts[0].confidence > 70:
        recommendations.append(
            f"Price forecast indicates {forecast.forecasts[0].price:g} in next week - plan accordingly"
        )

    if analysis.volatility > VOLATILE_CV_PERCENT:
        recommendations.append("Consider forward contracts to hedge price risk")
    return recommendations


class MarketService:
    """
    Crop price quotes, trend analysis and demand/supply balance.

    ``rng`` drives every random draw and ``clock`` supplies "now"; inject
    both for reproducible output.
    """

    def __init__(
        self,
        store: KeyValueStore,
        price_ttl: int = KV_TTL["market_prices"],
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.price_ttl = price_ttl
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _quote(self, crop: str, region: str) -> MarketPriceSample:
        crop_key = crop.lower()
        reference = base_price(crop_key) * regional_multiplier(region)
        band = volatility_band(crop_key)
        deviation = (self.rng.random() - 0.5) * 2 * band
        current = reference * (1 + deviation)

        return MarketPriceSample(
            crop=crop,
            region=region,
            current_price=round(current),
            previous_price=round(reference),
            change=round((current - reference) / reference * 100, 1),
            unit=PRICE_UNITS.get(crop_key, DEFAULT_PRICE_UNIT),
            market_centers=MARKET_CENTERS.get(crop_key, ["Local Market"]),
            last_updated=self.clock(),
            source="Agricultural Marketing Intelligence",
            reliability="high",
        )

    def fallback_price(self, crop: str, region: str) -> MarketPriceSample:
        price = base_price(crop)
        return MarketPriceSample(
            crop=crop,
            region=region,
            current_price=price,
            previous_price=round(price * 0.95, 2),
            change=5.0,
            unit=PRICE_UNITS.get(crop.lower(), DEFAULT_PRICE_UNIT),
            market_centers=[],
            last_updated=self.clock(),
            source="fallback_data",
            reliability="estimated",
        )

    def get_current_prices(self, crop: str, region: str = "all") -> MarketPriceSample:
        """Cached price quote; computation errors yield the fallback sample."""
        key = KV_KEYS["market_prices"](crop.lower(), region.lower())
        cached = self.store.get(key)
        if cached is not None:
            return MarketPriceSample.model_validate(cached)

        try:
            sample = self._quote(crop, region)
        except (ArithmeticError, ValueError, TypeError, KeyError) as e:
            logger.warning(f"Price computation failed for {crop}/{region}: {e}. Using fallback data.")
            return self.fallback_price(crop, region)

        self.store.set(key, sample.to_store(), ttl=self.price_ttl)
        return sample

    def _historical_prices(self, crop: str, days: int) -> List[PricePoint]:
        crop_key = crop.lower()
        reference = base_price(crop_key)
        pattern = SEASONAL_PATTERNS.get(crop_key)
        today = self.clock().date()
        series = []

        for i in range(days, -1, -1):
            day = today - timedelta(days=i)
            seasonal = pattern[day.month] if pattern else 1.0
            noise = 1 + (self.rng.random() - 0.5) * 0.2
            drift = 1 + (i / days) * 0.1
            price = reference * seasonal * noise * drift

            ratio = price / reference
            if ratio > 1.1:
                activity = "high"
            elif ratio < 0.9:
                activity = "low"
            else:
                activity = "moderate"

            volume = TRADE_VOLUMES.get(crop_key, DEFAULT_TRADE_VOLUME)
            series.append(PricePoint(
                date=day.isoformat(),
                price=round(price),
                volume=round(volume * (0.8 + self.rng.random() * 0.4)),
                market_activity=activity,
            ))
        return series

    def _indicators(self, crop: str) -> DemandSupplyIndicators:
        crop_key = crop.lower()
        balance = self._balance(crop_key)
        return DemandSupplyIndicators(
            demand_level=balance.demand_level,
            supply_level=balance.supply_level,
            inventory_turnover=round(15 + self.rng.random() * 20, 1),
            seasonal_demand={
                "peak": "October-January",
                "low": "May-July",
                "pattern": "Winter festival season drives higher consumption",
            },
            price_elasticity=PRICE_ELASTICITY.get(crop_key, 1.0),
            substitute_crops=SUBSTITUTES.get(crop_key, []),
        )

    def _forecast(self, series: List[PricePoint], indicators: DemandSupplyIndicators) -> PriceForecast:
        recent = [point.price for point in series[-7:]]
        average = sum(recent) / len(recent)
        trend_factor = recent[-1] / recent[0] if len(recent) > 1 and recent[0] else 1.0

        if indicators.demand_level == "high" and indicators.supply_level == "low":
            balance_factor = 1.1
        elif indicators.demand_level == "low" and indicators.supply_level == "high":
            balance_factor = 0.9
        else:
            balance_factor = 1.0

        points = [
            ForecastPoint(
                period=f"{days} days",
                days=days,
                price=round(average * trend_factor * balance_factor * (1 + self.rng.random() * 0.1)),
                confidence=forecast_confidence(days),
                factors=forecast_factors(days),
            )
            for days in FORECAST_HORIZONS
        ]
        return PriceForecast(forecasts=points, last_updated=self.clock())

    def get_market_trends(self, crop: str, timeframe: str = DEFAULT_TIMEFRAME) -> MarketTrends:
        """
        Synthesize a daily price series over ``timeframe`` and analyze it.

        Unknown timeframes fall back to 30 days.
        """
        if timeframe not in TIMEFRAME_DAYS:
            logger.debug(f"Unknown timeframe '{timeframe}', using {DEFAULT_TIMEFRAME}")
            timeframe = DEFAULT_TIMEFRAME

        series = self._historical_prices(crop, TIMEFRAME_DAYS[timeframe])
        analysis = analyze_price_series([point.price for point in series])
        indicators = self._indicators(crop)
        forecast = self._forecast(series, indicators)

        return MarketTrends(
            crop=crop,
            timeframe=timeframe,
            current_price=analysis.current_price,
            price_change=analysis.price_change,
            trend=analysis.trend,
            volatility=analysis.volatility,
            support=analysis.support,
            resistance=analysis.resistance,
            historical_data=series,
            demand_supply=indicators,
            forecast=forecast,
            market_insights=market_insights(crop, analysis, indicators),
            recommendations=market_recommendations(analysis, forecast),
            timestamp=self.clock(),
        )

    def _balance(self, crop_key: str) -> SupplyBalance:
        production = PRODUCTION.get(crop_key, 500000)
        demand = DOMESTIC_DEMAND.get(crop_key, 450000) + INDUSTRIAL_DEMAND.get(crop_key, 100000)
        return supply_demand_balance(production, demand)

    def get_demand_supply_analysis(self, crop: str) -> DemandSupplyAnalysis:
        crop_key = crop.lower()
        production = PRODUCTION.get(crop_key, 500000)
        domestic = DOMESTIC_DEMAND.get(crop_key, 450000)
        industrial = INDUSTRIAL_DEMAND.get(crop_key, 100000)
        balance = supply_demand_balance(production, domestic + industrial)
        rng = self.rng

        return DemandSupplyAnalysis(
            crop=crop,
            supply=SupplySide(
                production=production,
                expected_harvest=round(production * (0.95 + rng.random() * 0.1)),
                inventory={
                    "farmGate": round(rng.random() * 50000),
                    "wholesale": round(rng.random() * 30000),
                    "retail": round(rng.random() * 10000),
                    "processing": round(rng.random() * 20000),
                },
                imports={
                    "volume": round(rng.random() * 10000),
                    "value": round(rng.random() * 100000000),
                },
            ),
            demand=DemandSide(
                domestic=domestic,
                industrial=industrial,
                total=domestic + industrial,
                growth_rate=DEMAND_GROWTH.get(crop_key, 2.5),
                exports={
                    "volume": round(rng.random() * 15000),
                    "value": round(rng.random() * 150000000),
                },
            ),
            balance=balance,
            price_impact=price_impact(balance),
            seasonal_factors=SEASONS.get(crop_key, DEFAULT_SEASONS),
            recommendations=supply_demand_recommendations(balance),
            timestamp=self.clock(),
        )
