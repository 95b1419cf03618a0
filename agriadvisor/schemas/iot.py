"""
IoT sensor schemas.

Request payloads posted by field sensors, the normalized reading kept in
the store, alerts, daily aggregates and the farm-level summaries.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from agriadvisor.schemas.base import BaseSchema


class SensorType(str, Enum):
    """Supported sensor kinds."""
    SOIL_MOISTURE = "soil_moisture"
    SOIL_TEMPERATURE = "soil_temperature"
    SOIL_PH = "soil_ph"
    AIR_TEMPERATURE = "air_temperature"
    HUMIDITY = "humidity"
    LIGHT_INTENSITY = "light_intensity"


class SensorReadings(BaseSchema):
    """Measurement block of a sensor payload."""
    value: float
    unit: Optional[str] = None
    quality: Optional[str] = None
    battery_level: Optional[float] = Field(None, ge=0, le=100)


class SensorPayload(BaseSchema):
    """Raw sensor submission."""
    farm_id: str = Field(..., min_length=1)
    sensor_id: str = Field(..., min_length=1)
    sensor_type: SensorType
    location: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    readings: SensorReadings


class SensorReading(BaseSchema):
    """Normalized reading as stored."""
    farm_id: str
    sensor_id: str
    sensor_type: SensorType
    location: Optional[Dict[str, Any]] = None
    timestamp: datetime
    value: float
    unit: Optional[str] = None
    quality: str = "unknown"
    battery_level: Optional[float] = None
    processed: datetime


class Alert(BaseSchema):
    """Alert raised by a single ingest."""
    type: Literal["critical", "warning", "maintenance"]
    severity: Literal["high", "medium", "low"]
    message: str
    action: str
    timestamp: datetime


class IngestResult(BaseSchema):
    """Outcome of processing one reading."""
    status: str = "processed"
    data_key: str
    alerts: List[Alert]
    metrics: Dict[str, str]
    recommendations: List[str]


class AggregateSample(BaseSchema):
    timestamp: datetime
    value: float


class DailyAggregate(BaseSchema):
    """Per-day rollup for one farm and sensor type."""
    date: str
    farm_id: str
    sensor_type: SensorType
    count: int = 0
    sum: float = 0.0
    min: float
    max: float
    average: float
    values: List[AggregateSample] = []
    last_updated: datetime
    simulated: bool = False


class SensorStatus(BaseSchema):
    status: Literal["online", "delayed", "offline", "no_data"]
    last_seen: Optional[datetime] = None
    battery_level: Optional[float] = None


class LatestSensorData(BaseSchema):
    farm_id: str
    sensors: Dict[str, SensorReading]
    health_score: int
    insights: List[str]
    last_updated: datetime
    sensor_status: Dict[str, SensorStatus]


class SensorTrend(BaseSchema):
    trend: Literal["increasing", "decreasing", "stable"]
    change_percent: float
    current_value: float
    previous_value: float


class HistoryPeriod(BaseSchema):
    start: datetime
    end: datetime


class SensorHistory(BaseSchema):
    farm_id: str
    period: HistoryPeriod
    daily_data: List[DailyAggregate]
    trends: Dict[str, SensorTrend]
    insights: List[str]
    recommendations: List[str]


class SimulatedSensor(BaseSchema):
    sensor: SensorType
    data: SensorPayload
    result: IngestResult


class SimulationResult(BaseSchema):
    farm_id: str
    simulated_sensors: int
    data: List[SimulatedSensor]
    timestamp: datetime


class SensorIngestResponse(BaseSchema):
    """Envelope returned by the ingest endpoint."""
    status: str = "success"
    processed: IngestResult
    notifications_sent: int = 0
