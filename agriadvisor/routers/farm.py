"""
Farm profile router.
"""

from fastapi import APIRouter, Depends, Path, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from agriadvisor.config import settings
from agriadvisor.dependencies.services import get_services
from agriadvisor.schemas.farm import FarmProfile, FarmProfileSaved
from agriadvisor.services import ServiceContainer

router = APIRouter(
    prefix="/farm",
    tags=["Farm Profiles"],
    responses={
        404: {"description": "Farm profile not found"},
    },
)

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


@router.post("/profile", response_model=FarmProfileSaved)
@limiter.limit("30/minute")
def save_farm_profile(
    request: Request,
    profile: FarmProfile,
    services: ServiceContainer = Depends(get_services),
):
    """
    Create or replace a farm profile.

    An ``id`` is generated when the body has none. Fields beyond the
    documented ones are stored and returned unchanged.

    **Rate limit**: 30 requests per minute
    """
    farm_id = services.farms.save_profile(profile)
    return FarmProfileSaved(farm_id=farm_id)


@router.get("/profile/{farm_id}", response_model=FarmProfile)
@limiter.limit("100/minute")
def get_farm_profile(
    request: Request,
    farm_id: str = Path(..., min_length=1, description="Farm identifier"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Fetch a stored farm profile.

    **Rate limit**: 100 requests per minute
    """
    return services.farms.get_profile(farm_id)
