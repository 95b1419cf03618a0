"""
IoT ingest and alerting service.

Normalizes field sensor readings, raises threshold alerts, keeps daily
aggregates per farm and sensor type and summarizes farm health.
"""

import random
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional

from agriadvisor.core.exceptions import MalformedInputError
from agriadvisor.schemas.iot import (
    AggregateSample,
    Alert,
    DailyAggregate,
    HistoryPeriod,
    IngestResult,
    LatestSensorData,
    SensorHistory,
    SensorPayload,
    SensorReading,
    SensorReadings,
    SensorStatus,
    SensorTrend,
    SensorType,
    SimulatedSensor,
    SimulationResult,
)
from agriadvisor.utils.kv_store import KV_KEYS, KV_TTL, KeyValueStore
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)

LOW_BATTERY_LEVEL = 20
ONLINE_HOURS = 2
DELAYED_HOURS = 24
DEFAULT_HISTORY_DAYS = 30
MAX_HISTORY_DAYS = 366
SIGNIFICANT_TREND_PERCENT = 10


class ThresholdTier(str, Enum):
    """Alert tier of a single reading."""
    CRITICAL_LOW = "critical_low"
    WARNING_LOW = "warning_low"
    WARNING_HIGH = "warning_high"
    CRITICAL_HIGH = "critical_high"


class Thresholds(NamedTuple):
    critical_low: float
    warning_low: float
    warning_high: float
    critical_high: float


SENSOR_THRESHOLDS: Dict[SensorType, Thresholds] = {
    SensorType.SOIL_MOISTURE: Thresholds(15, 25, 75, 85),
    SensorType.SOIL_TEMPERATURE: Thresholds(10, 15, 32, 40),
    SensorType.SOIL_PH: Thresholds(5.0, 5.5, 7.8, 8.5),
    SensorType.AIR_TEMPERATURE: Thresholds(5, 10, 38, 45),
    SensorType.HUMIDITY: Thresholds(25, 35, 80, 90),
    SensorType.LIGHT_INTENSITY: Thresholds(5000, 15000, 70000, 90000),
}

# Optimal band used by the health score and the simulator
OPTIMAL_RANGES: Dict[SensorType, tuple] = {
    SensorType.SOIL_MOISTURE: (40, 60),
    SensorType.SOIL_TEMPERATURE: (20, 30),
    SensorType.SOIL_PH: (6.0, 7.5),
    SensorType.AIR_TEMPERATURE: (20, 35),
    SensorType.HUMIDITY: (50, 70),
    SensorType.LIGHT_INTENSITY: (30000, 60000),
}

# Plausible spread of simulated values: (unit, full range)
SIMULATION_PROFILES: Dict[SensorType, tuple] = {
    SensorType.SOIL_MOISTURE: ("%", (20, 80)),
    SensorType.SOIL_TEMPERATURE: ("°C", (15, 35)),
    SensorType.SOIL_PH: ("pH", (5.5, 8.0)),
    SensorType.AIR_TEMPERATURE: ("°C", (10, 45)),
    SensorType.HUMIDITY: ("%", (30, 90)),
    SensorType.LIGHT_INTENSITY: ("lux", (10000, 80000)),
}

SIMULATED_DAILY_BASELINE: Dict[SensorType, float] = {
    SensorType.SOIL_MOISTURE: 45,
    SensorType.SOIL_TEMPERATURE: 25,
    SensorType.SOIL_PH: 6.8,
    SensorType.AIR_TEMPERATURE: 28,
    SensorType.HUMIDITY: 65,
    SensorType.LIGHT_INTENSITY: 45000,
}

ALERT_ACTIONS: Dict[SensorType, Dict[ThresholdTier, str]] = {
    SensorType.SOIL_MOISTURE: {
        ThresholdTier.CRITICAL_LOW: "Immediate irrigation required",
        ThresholdTier.WARNING_LOW: "Schedule irrigation within 24 hours",
        ThresholdTier.WARNING_HIGH: "Check drainage, reduce irrigation",
        ThresholdTier.CRITICAL_HIGH: "Stop irrigation, improve drainage immediately",
    },
    SensorType.SOIL_TEMPERATURE: {
        ThresholdTier.CRITICAL_LOW: "Protect crops from cold, consider heating",
        ThresholdTier.WARNING_LOW: "Monitor for cold stress",
        ThresholdTier.WARNING_HIGH: "Increase shade, mulching recommended",
        ThresholdTier.CRITICAL_HIGH: "Emergency cooling required",
    },
    SensorType.SOIL_PH: {
        ThresholdTier.CRITICAL_LOW: "Apply lime to increase pH",
        ThresholdTier.WARNING_LOW: "Consider pH adjustment",
        ThresholdTier.WARNING_HIGH: "Apply sulfur or organic matter",
        ThresholdTier.CRITICAL_HIGH: "Immediate pH correction needed",
    },
    SensorType.AIR_TEMPERATURE: {
        ThresholdTier.CRITICAL_LOW: "Frost protection measures needed",
        ThresholdTier.WARNING_LOW: "Monitor for cold damage",
        ThresholdTier.WARNING_HIGH: "Provide shade, increase ventilation",
        ThresholdTier.CRITICAL_HIGH: "Emergency cooling and shade required",
    },
    SensorType.HUMIDITY: {
        ThresholdTier.CRITICAL_LOW: "Increase irrigation, misting",
        ThresholdTier.WARNING_LOW: "Monitor plant stress",
        ThresholdTier.WARNING_HIGH: "Improve ventilation",
        ThresholdTier.CRITICAL_HIGH: "Prevent fungal diseases, reduce moisture",
    },
    SensorType.LIGHT_INTENSITY: {
        ThresholdTier.CRITICAL_LOW: "Supplement with artificial lighting",
        ThresholdTier.WARNING_LOW: "Monitor for reduced photosynthesis",
        ThresholdTier.WARNING_HIGH: "Provide shade during peak hours",
        ThresholdTier.CRITICAL_HIGH: "Immediate shade protection required",
    },
}

TIER_ALERTS = {
    ThresholdTier.CRITICAL_LOW: ("critical", "high", "critically low"),
    ThresholdTier.WARNING_LOW: ("warning", "medium", "below optimal"),
    ThresholdTier.CRITICAL_HIGH: ("critical", "high", "critically high"),
    ThresholdTier.WARNING_HIGH: ("warning", "medium", "above optimal"),
}

DEFAULT_ACTION = "Monitor and take appropriate action"


def _utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# ============================================================================
# Classification and derived metrics
# ============================================================================

def classify_reading(value: float, thresholds: Thresholds) -> Optional[ThresholdTier]:
    """
    Classify a value against a threshold table.

    Low tiers are checked before high tiers and critical before warning, so
    at most one tier is returned. None means the value is in range.
    """
    if value <= thresholds.critical_low:
        return ThresholdTier.CRITICAL_LOW
    if value <= thresholds.warning_low:
        return ThresholdTier.WARNING_LOW
    if value >= thresholds.critical_high:
        return ThresholdTier.CRITICAL_HIGH
    if value >= thresholds.warning_high:
        return ThresholdTier.WARNING_HIGH
    return None


def action_for(sensor_type: SensorType, tier: ThresholdTier) -> str:
    return ALERT_ACTIONS.get(sensor_type, {}).get(tier, DEFAULT_ACTION)


def analyze_alerts(reading: SensorReading, now: Optional[datetime] = None) -> List[Alert]:
    """Threshold alert (at most one) plus an independent low-battery alert."""
    now = now or datetime.now(timezone.utc)
    alerts = []

    tier = classify_reading(reading.value, SENSOR_THRESHOLDS[reading.sensor_type])
    if tier is not None:
        alert_type, severity, wording = TIER_ALERTS[tier]
        alerts.append(Alert(
            type=alert_type,
            severity=severity,
            message=f"{reading.sensor_type.value} {wording}: {reading.value} {reading.unit or ''}".rstrip(),
            action=action_for(reading.sensor_type, tier),
            timestamp=now,
        ))

    if reading.battery_level is not None and reading.battery_level < LOW_BATTERY_LEVEL:
        alerts.append(Alert(
            type="maintenance",
            severity="low",
            message=f"Low battery on {reading.sensor_id}: {reading.battery_level}%",
            action="Replace or recharge sensor battery",
            timestamp=now,
        ))

    return alerts


def _water_stress(moisture: float) -> str:
    if moisture < 20:
        return "severe"
    if moisture < 30:
        return "moderate"
    if moisture < 40:
        return "mild"
    return "none"


def _irrigation_need(moisture: float) -> str:
    if moisture < 25:
        return "immediate"
    if moisture < 35:
        return "within_24h"
    if moisture < 45:
        return "within_48h"
    return "not_needed"


def _root_zone_condition(temperature: float) -> str:
    if temperature < 15:
        return "cold_stress"
    if temperature > 30:
        return "heat_stress"
    return "optimal"


def _nutrient_availability(ph: float) -> str:
    if ph < 5.5 or ph > 8.0:
        return "poor"
    if ph < 6.0 or ph > 7.5:
        return "moderate"
    return "good"


def _heat_stress(temperature: float) -> str:
    if temperature > 40:
        return "severe"
    if temperature > 35:
        return "moderate"
    if temperature > 30:
        return "mild"
    return "none"


def _disease_risk(humidity: float) -> str:
    if humidity > 85:
        return "high"
    if humidity > 75:
        return "moderate"
    return "low"


def _photosynthesis_efficiency(lux: float) -> str:
    if lux < 20000:
        return "low"
    if lux > 70000:
        return "excessive"
    return "optimal"


def calculate_derived_metrics(sensor_type: SensorType, value: float) -> Dict[str, str]:
    """Sensor-specific agronomic interpretation of a reading."""
    if sensor_type == SensorType.SOIL_MOISTURE:
        return {"waterStress": _water_stress(value), "irrigationNeed": _irrigation_need(value)}
    if sensor_type == SensorType.SOIL_TEMPERATURE:
        return {"rootZoneCondition": _root_zone_condition(value)}
    if sensor_type == SensorType.SOIL_PH:
        return {"nutrientAvailability": _nutrient_availability(value)}
    if sensor_type == SensorType.AIR_TEMPERATURE:
        return {"heatStress": _heat_stress(value)}
    if sensor_type == SensorType.HUMIDITY:
        return {"diseaseRisk": _disease_risk(value)}
    if sensor_type == SensorType.LIGHT_INTENSITY:
        return {"photosynthesisEfficiency": _photosynthesis_efficiency(value)}
    return {}


def generate_recommendations(reading: SensorReading, alerts: List[Alert]) -> List[str]:
    if alerts:
        return [alert.action for alert in alerts if alert.action]

    recommendations = []
    if reading.sensor_type == SensorType.SOIL_MOISTURE and reading.value > 60:
        recommendations.append("Soil moisture is adequate - maintain current irrigation schedule")
    elif reading.sensor_type == SensorType.SOIL_PH and 6.0 <= reading.value <= 7.5:
        recommendations.append("Soil pH is optimal for most crops")
    return recommendations


# ============================================================================
# Farm-level summaries
# ============================================================================

def calculate_health_score(values: Dict[SensorType, Optional[float]]) -> int:
    """
    Farm health score in [0, 100].

    Each valid sensor reading outside its optimal band costs
    ``min(20, deviation * 10)`` points, where deviation is the distance from
    the band midpoint in half-widths. Readings inside the band cost nothing.
    No valid readings scores 0.
    """
    score = 100.0
    valid = 0

    for sensor_type, value in values.items():
        if value is None:
            continue
        valid += 1
        band = OPTIMAL_RANGES.get(sensor_type)
        if band is None:
            continue
        low, high = band
        if value < low or value > high:
            deviation = abs(value - (low + high) / 2) / ((high - low) / 2)
            score -= min(20.0, deviation * 10)

    if not valid:
        return 0
    return max(0, round(score))


def sensor_liveness(last_seen: Optional[datetime], now: datetime) -> str:
    """online under 2 h since last reading, delayed under 24 h, else offline."""
    if last_seen is None:
        return "no_data"
    hours = (_utc(now) - _utc(last_seen)).total_seconds() / 3600
    if hours < ONLINE_HOURS:
        return "online"
    if hours < DELAYED_HOURS:
        return "delayed"
    return "offline"


def generate_farm_insights(sensors: Dict[str, SensorReading]) -> List[str]:
    insights = []

    moisture = sensors.get(SensorType.SOIL_MOISTURE.value)
    if moisture and moisture.value < 30:
        insights.append("Soil moisture is low - consider irrigation within 24 hours")

    ph = sensors.get(SensorType.SOIL_PH.value)
    if ph and (ph.value < 6.0 or ph.value > 7.5):
        insights.append("Soil pH is outside optimal range - consider soil amendment")

    air = sensors.get(SensorType.AIR_TEMPERATURE.value)
    if air and air.value > 35:
        insights.append("High air temperature detected - provide shade and increase ventilation")

    humidity = sensors.get(SensorType.HUMIDITY.value)
    if humidity and humidity.value > 80:
        insights.append("High humidity increases disease risk - improve air circulation")

    if not insights:
        insights.append("All sensor readings are within optimal ranges")
    return insights


def accumulate_daily(
    current: Optional[dict],
    reading: SensorReading,
    now: Optional[datetime] = None,
) -> dict:
    """Fold one reading into a stored daily aggregate (or start a new one)."""
    now = now or datetime.now(timezone.utc)
    if current:
        aggregate = DailyAggregate.model_validate(current)
    else:
        aggregate = DailyAggregate(
            date=_utc(reading.timestamp).date().isoformat(),
            farm_id=reading.farm_id,
            sensor_type=reading.sensor_type,
            min=reading.value,
            max=reading.value,
            average=reading.value,
            last_updated=now,
        )

    aggregate.count += 1
    aggregate.sum += reading.value
    aggregate.min = min(aggregate.min, reading.value)
    aggregate.max = max(aggregate.max, reading.value)
    aggregate.values.append(AggregateSample(timestamp=reading.timestamp, value=reading.value))
    aggregate.average = aggregate.sum / aggregate.count
    aggregate.last_updated = now
    return aggregate.to_store()


def analyze_trends(daily_data: List[DailyAggregate]) -> Dict[str, SensorTrend]:
    """First-to-last change of the daily average, per sensor type."""
    by_type: Dict[str, List[DailyAggregate]] = {}
    for aggregate in daily_data:
        by_type.setdefault(aggregate.sensor_type.value, []).append(aggregate)

    trends = {}
    for sensor_type, series in by_type.items():
        if len(series) < 2:
            continue
        series.sort(key=lambda item: item.date)
        first, last = series[0].average, series[-1].average

        if last > first:
            direction = "increasing"
        elif last < first:
            direction = "decreasing"
        else:
            direction = "stable"
        change = round((last - first) / first * 100) if first else 0

        trends[sensor_type] = SensorTrend(
            trend=direction,
            change_percent=change,
            current_value=last,
            previous_value=first,
        )
    return trends


def historical_insights(trends: Dict[str, SensorTrend]) -> List[str]:
    insights = [
        f"{sensor_type} has {trend.trend} by {abs(trend.change_percent):g}% over the period"
        for sensor_type, trend in trends.items()
        if abs(trend.change_percent) > SIGNIFICANT_TREND_PERCENT
    ]
    return insights or ["Sensor readings have been stable over the analyzed period"]


def historical_recommendations(trends: Dict[str, SensorTrend]) -> List[str]:
    recommendations = []

    moisture = trends.get(SensorType.SOIL_MOISTURE.value)
    if moisture and moisture.trend == "decreasing":
        recommendations.append("Consider adjusting irrigation schedule due to declining soil moisture trend")

    ph = trends.get(SensorType.SOIL_PH.value)
    if ph and abs(ph.change_percent) > 5:
        recommendations.append("Monitor soil pH changes and consider soil amendment if needed")

    return recommendations or ["Continue current management practices based on stable sensor trends"]


# ============================================================================
# Service
# ============================================================================

class IoTService:
    """
    Sensor ingest, alerting and farm summaries on top of the key-value store.

    ``rng`` drives simulated readings and backfilled history; ``clock``
    supplies the current time. Both are injectable for tests.
    """

    def __init__(
        self,
        store: KeyValueStore,
        retention_seconds: int = KV_TTL["sensor_data"],
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.retention_seconds = retention_seconds
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def normalize(self, payload: SensorPayload) -> SensorReading:
        readings = payload.readings
        return SensorReading(
            farm_id=payload.farm_id,
            sensor_id=payload.sensor_id,
            sensor_type=payload.sensor_type,
            location=payload.location,
            timestamp=payload.timestamp,
            value=readings.value,
            unit=readings.unit,
            quality=readings.quality or "unknown",
            battery_level=readings.battery_level,
            processed=self.clock(),
        )

    def ingest(self, payload: SensorPayload) -> IngestResult:
        """
        Process one sensor submission.

        Stores the normalized reading with the retention TTL, moves the
        latest pointer, folds the value into the day's aggregate and returns
        alerts, derived metrics and recommendations.
        """
        reading = self.normalize(payload)
        now = reading.processed

        data_key = KV_KEYS["sensor_reading"](
            reading.farm_id, reading.sensor_id, _utc(reading.timestamp).isoformat()
        )
        self.store.set(data_key, reading.to_store(), ttl=self.retention_seconds)
        self.store.set(
            KV_KEYS["sensor_latest"](reading.farm_id, reading.sensor_type.value),
            reading.to_store(),
        )

        alerts = analyze_alerts(reading, now)
        metrics = calculate_derived_metrics(reading.sensor_type, reading.value)

        day = _utc(reading.timestamp).date().isoformat()
        self.store.update(
            KV_KEYS["sensor_daily"](reading.farm_id, reading.sensor_type.value, day),
            lambda current: accumulate_daily(current, reading, now),
            ttl=self.retention_seconds,
        )

        if alerts:
            logger.info(
                f"Sensor {reading.sensor_id} on farm {reading.farm_id} raised "
                f"{len(alerts)} alert(s): {', '.join(a.type for a in alerts)}"
            )

        return IngestResult(
            data_key=data_key,
            alerts=alerts,
            metrics=metrics,
            recommendations=generate_recommendations(reading, alerts),
        )

    def get_latest_sensor_data(self, farm_id: str) -> LatestSensorData:
        now = self.clock()
        sensors: Dict[str, SensorReading] = {}

        for sensor_type in SensorType:
            stored = self.store.get(KV_KEYS["sensor_latest"](farm_id, sensor_type.value))
            if stored:
                sensors[sensor_type.value] = SensorReading.model_validate(stored)

        sensor_status = {}
        for sensor_type in SensorType:
            reading = sensors.get(sensor_type.value)
            if reading is None:
                sensor_status[sensor_type.value] = SensorStatus(status="no_data")
            else:
                sensor_status[sensor_type.value] = SensorStatus(
                    status=sensor_liveness(reading.timestamp, now),
                    last_seen=reading.timestamp,
                    battery_level=reading.battery_level,
                )

        return LatestSensorData(
            farm_id=farm_id,
            sensors=sensors,
            health_score=calculate_health_score(
                {reading.sensor_type: reading.value for reading in sensors.values()}
            ),
            insights=generate_farm_insights(sensors),
            last_updated=now,
            sensor_status=sensor_status,
        )

    def _simulated_aggregate(self, farm_id: str, sensor_type: SensorType, day: str) -> DailyAggregate:
        base = SIMULATED_DAILY_BASELINE[sensor_type]
        variation = base * 0.1
        low = base - variation + self.rng.random() * variation
        high = base + variation - self.rng.random() * variation
        return DailyAggregate(
            date=day,
            farm_id=farm_id,
            sensor_type=sensor_type,
            count=24,
            min=round(low, 2),
            max=round(high, 2),
            average=round((low + high) / 2, 2),
            last_updated=self.clock(),
            simulated=True,
        )

    def get_sensor_history(
        self,
        farm_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SensorHistory:
        """
        Daily aggregates over ``[start, end]`` with trends.

        Defaults to the last 30 days. Days without stored data are filled
        with simulated aggregates flagged ``simulated``.
        """
        end = _utc(end) if end else self.clock()
        start = _utc(start) if start else end - timedelta(days=DEFAULT_HISTORY_DAYS)
        if start > end:
            raise MalformedInputError("start must not be after end")
        if (end - start).days > MAX_HISTORY_DAYS:
            raise MalformedInputError(f"History range is limited to {MAX_HISTORY_DAYS} days")

        daily_data = []
        day: date = start.date()
        while day <= end.date():
            day_str = day.isoformat()
            for sensor_type in SensorType:
                stored = self.store.get(KV_KEYS["sensor_daily"](farm_id, sensor_type.value, day_str))
                if stored:
                    daily_data.append(DailyAggregate.model_validate(stored))
                else:
                    daily_data.append(self._simulated_aggregate(farm_id, sensor_type, day_str))
            day += timedelta(days=1)

        trends = analyze_trends(daily_data)
        return SensorHistory(
            farm_id=farm_id,
            period=HistoryPeriod(start=start, end=end),
            daily_data=daily_data,
            trends=trends,
            insights=historical_insights(trends),
            recommendations=historical_recommendations(trends),
        )

    def realistic_value(self, sensor_type: SensorType) -> float:
        """80 % of values fall inside the optimal band, the rest anywhere in range."""
        _, (low, high) = SIMULATION_PROFILES[sensor_type]
        if self.rng.random() < 0.8:
            low, high = OPTIMAL_RANGES[sensor_type]
        return round(low + self.rng.random() * (high - low), 2)

    def simulate(self, farm_id: str) -> SimulationResult:
        """Generate and ingest one reading per sensor type."""
        now = self.clock()
        simulated = []

        for sensor_type in SensorType:
            unit, _ = SIMULATION_PROFILES[sensor_type]
            payload = SensorPayload(
                farm_id=farm_id,
                sensor_id=f"sensor_{sensor_type.value}_001",
                sensor_type=sensor_type,
                location={"zone": "field_a", "coordinates": {"lat": 19.997, "lon": 73.789}},
                timestamp=now,
                readings=SensorReadings(
                    value=self.realistic_value(sensor_type),
                    unit=unit,
                    quality="good",
                    battery_level=round(85 + self.rng.random() * 10, 1),
                ),
            )
            simulated.append(SimulatedSensor(
                sensor=sensor_type,
                data=payload,
                result=self.ingest(payload),
            ))

        logger.info(f"Simulated {len(simulated)} sensor readings for farm {farm_id}")
        return SimulationResult(
            farm_id=farm_id,
            simulated_sensors=len(simulated),
            data=simulated,
            timestamp=now,
        )
