"""
Weather router - current conditions, forecasts and agronomic indices.

Every endpoint answers even when the upstream provider is down: the
weather service falls back to synthetic data and marks the payload's
``source`` accordingly.
"""

from fastapi import APIRouter, Depends, Path, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from agriadvisor.config import settings
from agriadvisor.dependencies.services import get_services
from agriadvisor.schemas.weather import AgronomicIndices, WeatherForecast, WeatherObservation
from agriadvisor.services import ServiceContainer

router = APIRouter(
    prefix="/weather",
    tags=["Weather"],
    responses={
        422: {"description": "Invalid parameters"},
    },
)

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


@router.get("/current/{location}", response_model=WeatherObservation)
@limiter.limit("100/minute")
async def get_current_weather(
    request: Request,
    location: str = Path(..., min_length=1, description="City name", examples=["Nashik"]),
    services: ServiceContainer = Depends(get_services),
):
    """
    Current conditions with derived dew point, heat index, ET₀ and soil
    temperature.

    Cached for one hour per location.

    **Rate limit**: 100 requests per minute
    """
    return await services.weather.get_current_weather(location)


@router.get("/forecast/{location}", response_model=WeatherForecast)
@limiter.limit("100/minute")
async def get_forecast(
    request: Request,
    location: str = Path(..., min_length=1, description="City name", examples=["Nashik"]),
    days: int = Query(7, ge=1, le=16, description="Number of forecast days"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Daily forecast with agricultural advice.

    **Rate limit**: 100 requests per minute
    """
    return await services.weather.get_forecast(location, days)


@router.get("/agri-indices/{location}", response_model=AgronomicIndices)
@limiter.limit("100/minute")
async def get_agricultural_indices(
    request: Request,
    location: str = Path(..., min_length=1, description="City name", examples=["Nashik"]),
    services: ServiceContainer = Depends(get_services),
):
    """
    Agronomic indices over a 14-day forecast.

    Returns growing degree days, chill hours, water requirement, pest and
    disease risk, planting window and harvest readiness.

    **Rate limit**: 100 requests per minute
    """
    return await services.weather.get_agricultural_indices(location)
