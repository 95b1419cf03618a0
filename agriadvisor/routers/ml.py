"""
Crop intelligence router - recommendations, image diagnosis and yield
prediction.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from slowapi import Limiter
from slowapi.util import get_remote_address

from agriadvisor.config import settings
from agriadvisor.dependencies.services import get_services
from agriadvisor.schemas.crops import (
    CropDiagnosis,
    FarmData,
    ImageAnalysisRequest,
    RecommendationSet,
    YieldPrediction,
    YieldPredictionRequest,
)
from agriadvisor.services import ServiceContainer
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/ml",
    tags=["Crop Intelligence"],
    responses={
        422: {"description": "Malformed request body"},
    },
)

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


@router.post("/crop-recommendations", response_model=RecommendationSet)
@limiter.limit("30/minute")
async def get_crop_recommendations(
    request: Request,
    farm: FarmData,
    services: ServiceContainer = Depends(get_services),
):
    """
    Rank candidate crops for a farm.

    Each crop is scored from a base of 70 on temperature, soil pH, rainfall
    and rotation fit (clamped to 30-95). When ``userId`` is present the
    result is cached for that user and, if they subscribed to
    ``crop_recommendations``, a notification is sent.

    **Rate limit**: 30 requests per minute
    """
    result = await run_in_threadpool(services.crops.recommend, farm)

    if farm.user_id:
        report = await services.notifications.send_crop_recommendations(
            farm.user_id, result.recommendations
        )
        if report is not None:
            logger.info(f"Crop recommendation notification {report.notification_id} sent to {farm.user_id}")

    return result


@router.post("/crop-diagnosis", response_model=CropDiagnosis)
@limiter.limit("30/minute")
async def analyze_crop_image(
    request: Request,
    image_request: ImageAnalysisRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Diagnose a crop disease from an image.

    The diagnosis is drawn from the crop's catalog of known diseases; no
    image model is involved.

    **Rate limit**: 30 requests per minute
    """
    return services.crops.diagnose(image_request)


@router.post("/yield-prediction", response_model=YieldPrediction)
@limiter.limit("30/minute")
async def predict_yield(
    request: Request,
    prediction_request: YieldPredictionRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Predict yield, harvest window and market value for a planting.

    **Rate limit**: 30 requests per minute
    """
    return await run_in_threadpool(services.crops.predict_yield, prediction_request)
