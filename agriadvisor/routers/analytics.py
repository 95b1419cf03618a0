"""
Analytics router - per-farm dashboard summary.
"""

from fastapi import APIRouter, Depends, Path, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from agriadvisor.config import settings
from agriadvisor.dependencies.services import get_services
from agriadvisor.schemas.analytics import FarmAnalytics
from agriadvisor.services import ServiceContainer
from agriadvisor.services.analytics import build_farm_analytics

router = APIRouter(
    prefix="/analytics",
    tags=["Analytics"],
)

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


@router.get("/farm/{farm_id}", response_model=FarmAnalytics)
@limiter.limit("100/minute")
async def get_farm_analytics(
    request: Request,
    farm_id: str = Path(..., min_length=1, description="Farm identifier"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Farm health, sensors, weather, recommendations and prices in one call.

    Sections are fetched concurrently. Weather needs a stored farm profile
    with a ``location``; prices cover the profile's crops (tomatoes when
    none are listed).

    **Rate limit**: 100 requests per minute
    """
    return await build_farm_analytics(services, farm_id)
