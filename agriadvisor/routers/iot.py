"""
IoT router - sensor ingest, latest readings, history and simulation.

Critical and warning alerts raised by an ingested reading are forwarded
to the farm's users subscribed to ``sensor_alerts``.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request
from fastapi.concurrency import run_in_threadpool
from slowapi import Limiter
from slowapi.util import get_remote_address

from agriadvisor.config import settings
from agriadvisor.dependencies.services import get_services
from agriadvisor.schemas.iot import (
    LatestSensorData,
    SensorHistory,
    SensorIngestResponse,
    SensorPayload,
    SimulationResult,
)
from agriadvisor.services import ServiceContainer
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/iot",
    tags=["IoT Sensors"],
    responses={
        400: {"description": "Bad request - Invalid parameters"},
        422: {"description": "Malformed sensor payload"},
    },
)

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

NOTIFIABLE_ALERTS = ("critical", "warning")


@router.post("/sensor-data", response_model=SensorIngestResponse)
@limiter.limit("100/minute")
async def submit_sensor_reading(
    request: Request,
    payload: SensorPayload,
    services: ServiceContainer = Depends(get_services),
):
    """
    Ingest one sensor reading.

    Stores the reading (30-day retention), updates the latest pointer and
    the daily aggregate, and returns threshold alerts, derived metrics and
    recommendations.

    **Example request**:
    ```
    {
      "farmId": "farm_001",
      "sensorId": "sm_01",
      "sensorType": "soil_moisture",
      "timestamp": "2024-06-01T08:00:00Z",
      "readings": {"value": 12.5, "unit": "%", "batteryLevel": 80}
    }
    ```

    **Rate limit**: 100 requests per minute
    """
    result = await run_in_threadpool(services.iot.ingest, payload)

    notifications_sent = 0
    alerts = [alert for alert in result.alerts if alert.type in NOTIFIABLE_ALERTS]
    if alerts:
        reading = services.iot.normalize(payload)
        for alert in alerts:
            fanout = await services.notifications.send_sensor_alert(reading, alert)
            notifications_sent += fanout.users_notified
        logger.info(f"Sensor alerts for farm {payload.farm_id} sent {notifications_sent} notification(s)")

    return SensorIngestResponse(processed=result, notifications_sent=notifications_sent)


@router.get("/farm/{farm_id}/latest", response_model=LatestSensorData)
@limiter.limit("100/minute")
async def get_latest_sensor_data(
    request: Request,
    farm_id: str = Path(..., min_length=1, description="Farm identifier"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Latest reading per sensor type with health score, liveness and insights.

    Liveness: online under 2 hours since the last reading, delayed under
    24 hours, offline otherwise; ``no_data`` for sensors never seen.

    **Rate limit**: 100 requests per minute
    """
    return await run_in_threadpool(services.iot.get_latest_sensor_data, farm_id)


@router.get("/farm/{farm_id}/history", response_model=SensorHistory)
@limiter.limit("100/minute")
async def get_sensor_history(
    request: Request,
    farm_id: str = Path(..., min_length=1, description="Farm identifier"),
    start: Optional[datetime] = Query(None, description="Range start (ISO 8601); defaults to 30 days ago"),
    end: Optional[datetime] = Query(None, description="Range end (ISO 8601); defaults to now"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Daily aggregates over ``[start, end]`` with per-sensor trends.

    Days without stored data are filled with simulated aggregates flagged
    ``simulated: true``.

    **Rate limit**: 100 requests per minute
    """
    return await run_in_threadpool(services.iot.get_sensor_history, farm_id, start, end)


@router.post("/simulate/{farm_id}", response_model=SimulationResult)
@limiter.limit("30/minute")
async def simulate_iot_data(
    request: Request,
    farm_id: str = Path(..., min_length=1, description="Farm identifier"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Generate and ingest one realistic reading for every sensor type.

    **Rate limit**: 30 requests per minute
    """
    return await run_in_threadpool(services.iot.simulate, farm_id)
