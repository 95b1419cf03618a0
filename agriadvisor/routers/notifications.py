"""
Notifications router - subscriptions, inboxes, alerts and scheduled runs.

Nothing here runs on a timer: scheduled updates are produced only when an
external trigger calls ``POST /notifications/scheduled/run``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from agriadvisor.config import settings
from agriadvisor.dependencies.services import get_services
from agriadvisor.schemas.notifications import (
    FanoutResult,
    MarkReadResult,
    NotificationStats,
    PriceAlertRequest,
    ScheduledRunResult,
    SubscribeResponse,
    SubscriptionRequest,
    SystemAlertRequest,
    UserNotifications,
    WeatherAlertRequest,
)
from agriadvisor.services import ServiceContainer

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
    responses={
        404: {"description": "Notification not found"},
        422: {"description": "Malformed request body"},
    },
)

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

@router.post("/subscribe", response_model=SubscribeResponse)
@limiter.limit("30/minute")
def subscribe_to_notifications(
    request: Request,
    subscription: SubscriptionRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Subscribe a user (replacing any earlier subscription).

    Defaults: price alerts, weather warnings and crop recommendations over
    push, immediate frequency, quiet hours 22:00-06:00.

    **Rate limit**: 30 requests per minute
    """
    stored = services.notifications.subscribe(subscription)
    return SubscribeResponse(user_id=stored.user_id)


# ============================================================================
# ALERTS AND SCHEDULED RUNS
# ============================================================================

@router.post("/scheduled/run", response_model=ScheduledRunResult)
@limiter.limit("30/minute")
async def run_scheduled_notifications(
    request: Request,
    services: ServiceContainer = Depends(get_services),
):
    """
    Send weather, market and crop-reminder updates to every subscriber
    outside their quiet hours whose frequency allows it.

    **Rate limit**: 30 requests per minute
    """
    return await services.notifications.run_scheduled()


@router.post("/alerts/price", response_model=FanoutResult)
@limiter.limit("30/minute")
async def send_price_alert(
    request: Request,
    alert: PriceAlertRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Notify growers of a crop whose price-change threshold is met.

    **Rate limit**: 30 requests per minute
    """
    return await services.notifications.send_price_alert(alert)


@router.post("/alerts/weather", response_model=FanoutResult)
@limiter.limit("30/minute")
async def send_weather_alert(
    request: Request,
    alert: WeatherAlertRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Notify a farm's users of a weather warning over push and SMS.

    **Rate limit**: 30 requests per minute
    """
    return await services.notifications.send_weather_alert(alert)


@router.post("/alerts/system", response_model=FanoutResult)
@limiter.limit("30/minute")
async def send_system_alert(
    request: Request,
    alert: SystemAlertRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Route an operational alert to all users, a farm or a crop.

    **Rate limit**: 30 requests per minute
    """
    return await services.notifications.send_system_alert(alert)


# ============================================================================
# INBOX AND STATS
# ============================================================================

@router.get("/stats", response_model=NotificationStats, response_model_exclude_none=True)
@limiter.limit("100/minute")
def get_notification_stats(
    request: Request,
    user_id: Optional[str] = Query(None, alias="userId", description="Per-user stats; system-wide when omitted"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Notification counters for one user or for the whole system.

    **Rate limit**: 100 requests per minute
    """
    return services.notifications.get_stats(user_id)


@router.get("/{user_id}", response_model=UserNotifications)
@limiter.limit("100/minute")
def get_user_notifications(
    request: Request,
    user_id: str = Path(..., min_length=1, description="User identifier"),
    services: ServiceContainer = Depends(get_services),
):
    """
    A user's inbox, newest first.

    Fetching marks pending notifications as delivered; read state is
    unchanged.

    **Rate limit**: 100 requests per minute
    """
    return services.notifications.get_user_notifications(user_id)


@router.post("/{user_id}/{notification_id}/read", response_model=MarkReadResult)
@limiter.limit("100/minute")
def mark_notification_read(
    request: Request,
    user_id: str = Path(..., min_length=1),
    notification_id: str = Path(..., min_length=1),
    services: ServiceContainer = Depends(get_services),
):
    """
    Mark one notification as read.

    **Rate limit**: 100 requests per minute
    """
    return services.notifications.mark_as_read(user_id, notification_id)
