"""
Farm analytics.

Gathers the dashboard sections for one farm concurrently: latest sensor
data, current weather at the farm's location, the owner's cached crop
recommendations and prices for the farm's crops. A section that fails is
logged, listed under ``unavailable`` and left empty; the rest still
answer.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool

from agriadvisor.schemas.analytics import FarmAnalytics, FarmHealth
from agriadvisor.schemas.iot import LatestSensorData
from agriadvisor.schemas.market import MarketPriceSample
from agriadvisor.schemas.weather import WeatherObservation
from agriadvisor.services import ServiceContainer
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CROPS = ["tomatoes"]
SECTIONS = ("sensors", "weather", "recommendations", "market")
LOW_HEALTH_SCORE = 50


def soil_condition(sensors: Optional[LatestSensorData]) -> str:
    if sensors is None or not sensors.sensors:
        return "unknown"
    if sensors.health_score >= 80:
        return "good"
    if sensors.health_score >= LOW_HEALTH_SCORE:
        return "fair"
    return "poor"


def farm_alerts(sensors: Optional[LatestSensorData]) -> List[str]:
    if sensors is None or not sensors.sensors:
        return []

    alerts = [
        f"{name.replace('_', ' ')} sensor is {state.status}"
        for name, state in sensors.sensor_status.items()
        if state.status in ("delayed", "offline")
    ]
    if sensors.health_score < LOW_HEALTH_SCORE:
        alerts.append(f"Farm health score is low ({sensors.health_score}); review sensor readings")
    return alerts


async def build_farm_analytics(services: ServiceContainer, farm_id: str) -> FarmAnalytics:
    profile = await run_in_threadpool(services.farms.find_profile, farm_id)
    location = profile.location if profile else None
    crops = profile.crops if profile and profile.crops else DEFAULT_CROPS
    owner = profile.user_id if profile and profile.user_id else farm_id

    async def _weather() -> Optional[WeatherObservation]:
        if not location:
            return None
        return await services.weather.get_current_weather(location)

    async def _market() -> List[MarketPriceSample]:
        return [
            await run_in_threadpool(services.market.get_current_prices, crop)
            for crop in crops
        ]

    outcomes = await asyncio.gather(
        run_in_threadpool(services.iot.get_latest_sensor_data, farm_id),
        _weather(),
        run_in_threadpool(services.crops.cached_recommendations, owner),
        _market(),
        return_exceptions=True,
    )

    resolved = {}
    unavailable = []
    for name, outcome in zip(SECTIONS, outcomes):
        if isinstance(outcome, Exception):
            logger.warning(f"Analytics section '{name}' failed for farm {farm_id}: {outcome}")
            unavailable.append(name)
            resolved[name] = None
        else:
            resolved[name] = outcome

    sensors = resolved["sensors"]
    weather = resolved["weather"]
    recommendations = resolved["recommendations"].recommendations if resolved["recommendations"] else []
    market = resolved["market"] or []

    return FarmAnalytics(
        farm_id=farm_id,
        farm_health=FarmHealth(
            health_score=sensors.health_score if sensors else 0,
            soil_condition=soil_condition(sensors),
            weather_status=(weather.description or "unknown") if weather else "unknown",
            crop_recommendations=len(recommendations),
            market_opportunities=sum(1 for sample in market if sample.change > 0),
        ),
        sensors=sensors,
        weather=weather,
        recommendations=recommendations,
        market=market,
        alerts=farm_alerts(sensors),
        unavailable=unavailable,
        last_updated=datetime.now(timezone.utc),
    )
