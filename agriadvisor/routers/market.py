"""
Market router - crop prices, trends and demand/supply analysis.

Prices are synthesized from static base tables with regional multipliers
and a per-crop volatility band; they stand in for a live market feed.
"""

from fastapi import APIRouter, Depends, Path, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from agriadvisor.config import settings
from agriadvisor.dependencies.services import get_services
from agriadvisor.schemas.market import DemandSupplyAnalysis, MarketPriceSample, MarketTrends
from agriadvisor.services import ServiceContainer
from agriadvisor.services.market import DEFAULT_TIMEFRAME

router = APIRouter(
    prefix="/market",
    tags=["Market Intelligence"],
    responses={
        422: {"description": "Invalid parameters"},
    },
)

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


@router.get("/prices/{crop}", response_model=MarketPriceSample)
@limiter.limit("100/minute")
def get_current_prices(
    request: Request,
    crop: str = Path(..., min_length=1, description="Crop name", examples=["tomatoes"]),
    region: str = Query("all", description="Region, e.g. 'maharashtra'; 'all' for the national average"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Current price for a crop in a region.

    Cached for 30 minutes. On a computation error a fallback sample with
    ``source = "fallback_data"`` is returned.

    **Rate limit**: 100 requests per minute
    """
    return services.market.get_current_prices(crop, region)


@router.get("/trends/{crop}", response_model=MarketTrends)
@limiter.limit("100/minute")
def get_market_trends(
    request: Request,
    crop: str = Path(..., min_length=1, description="Crop name", examples=["tomatoes"]),
    timeframe: str = Query(
        DEFAULT_TIMEFRAME,
        description="One of 7days, 30days, 90days, 6months, 1year",
    ),
    services: ServiceContainer = Depends(get_services),
):
    """
    Price series analysis over a timeframe.

    Trend is ``bullish`` above +5 % change, ``bearish`` below -5 %,
    ``stable`` otherwise. Volatility (coefficient of variation, %) is
    reported separately.

    **Rate limit**: 100 requests per minute
    """
    return services.market.get_market_trends(crop, timeframe)


@router.get("/demand-supply/{crop}", response_model=DemandSupplyAnalysis)
@limiter.limit("100/minute")
def get_demand_supply_analysis(
    request: Request,
    crop: str = Path(..., min_length=1, description="Crop name", examples=["tomatoes"]),
    services: ServiceContainer = Depends(get_services),
):
    """
    Supply ratio, balance status and expected price impact.

    **Rate limit**: 100 requests per minute
    """
    return services.market.get_demand_supply_analysis(crop)
