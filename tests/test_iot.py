"""
Tests for IoT ingest, alerting, aggregates and farm summaries.
"""

import random
from datetime import datetime, timedelta, timezone

import pytest

from agriadvisor.core.exceptions import MalformedInputError
from agriadvisor.schemas.iot import SensorPayload, SensorReading, SensorType
from agriadvisor.services.iot import (
    OPTIMAL_RANGES,
    SENSOR_THRESHOLDS,
    IoTService,
    ThresholdTier,
    analyze_alerts,
    calculate_derived_metrics,
    calculate_health_score,
    classify_reading,
    sensor_liveness,
)
from agriadvisor.utils.kv_store import KV_KEYS

NOW = datetime(2024, 6, 5, 12, 0, tzinfo=timezone.utc)


def payload(value, sensor_type="soil_moisture", battery=90.0, timestamp=NOW, sensor_id="sm_01"):
    return SensorPayload.model_validate({
        "farmId": "farm_1",
        "sensorId": sensor_id,
        "sensorType": sensor_type,
        "timestamp": timestamp.isoformat(),
        "readings": {"value": value, "unit": "%", "batteryLevel": battery},
    })


def reading(value, sensor_type=SensorType.SOIL_MOISTURE, battery=None):
    return SensorReading(
        farm_id="farm_1",
        sensor_id="s1",
        sensor_type=sensor_type,
        timestamp=NOW,
        value=value,
        battery_level=battery,
        processed=NOW,
    )


@pytest.fixture
def iot(store):
    return IoTService(store, rng=random.Random(3), clock=lambda: NOW)


class TestThresholdClassification:
    """Test the single-tier classifier."""

    def test_tiers_for_soil_moisture(self):
        table = SENSOR_THRESHOLDS[SensorType.SOIL_MOISTURE]
        assert classify_reading(10, table) == ThresholdTier.CRITICAL_LOW
        assert classify_reading(15, table) == ThresholdTier.CRITICAL_LOW
        assert classify_reading(20, table) == ThresholdTier.WARNING_LOW
        assert classify_reading(50, table) is None
        assert classify_reading(75, table) == ThresholdTier.WARNING_HIGH
        assert classify_reading(90, table) == ThresholdTier.CRITICAL_HIGH

    def test_critical_low_alert_for_dry_soil(self):
        alerts = analyze_alerts(reading(10), NOW)
        assert len(alerts) == 1
        assert alerts[0].type == "critical"
        assert alerts[0].severity == "high"
        assert alerts[0].action == "Immediate irrigation required"

    def test_optimal_reading_raises_no_alert(self):
        assert analyze_alerts(reading(50), NOW) == []

    def test_low_battery_alert_is_independent(self):
        alerts = analyze_alerts(reading(10, battery=15), NOW)
        assert [a.type for a in alerts] == ["critical", "maintenance"]

        alerts = analyze_alerts(reading(50, battery=15), NOW)
        assert [a.type for a in alerts] == ["maintenance"]

    def test_derived_metrics(self):
        assert calculate_derived_metrics(SensorType.SOIL_MOISTURE, 22) == {
            "waterStress": "moderate",
            "irrigationNeed": "immediate",
        }
        assert calculate_derived_metrics(SensorType.SOIL_PH, 6.5) == {"nutrientAvailability": "good"}
        assert calculate_derived_metrics(SensorType.LIGHT_INTENSITY, 80000) == {
            "photosynthesisEfficiency": "excessive"
        }


class TestHealthScore:
    """Test farm health scoring."""

    def test_all_sensors_at_midpoint_scores_100(self):
        values = {t: (low + high) / 2 for t, (low, high) in OPTIMAL_RANGES.items()}
        assert len(values) == 6
        assert calculate_health_score(values) == 100

    def test_missing_sensor_still_scored(self):
        values = {t: (low + high) / 2 for t, (low, high) in OPTIMAL_RANGES.items()}
        del values[SensorType.SOIL_PH]
        values[SensorType.HUMIDITY] = None
        assert calculate_health_score(values) == 100

    def test_penalty_is_capped_per_sensor(self):
        # soil moisture 0: deviation 5 half-widths -> capped at 20
        assert calculate_health_score({SensorType.SOIL_MOISTURE: 0}) == 80
        # soil moisture 65: deviation 1.5 -> 15 points
        assert calculate_health_score({SensorType.SOIL_MOISTURE: 65}) == 85

    def test_no_valid_reading_scores_zero(self):
        assert calculate_health_score({}) == 0
        assert calculate_health_score({SensorType.SOIL_PH: None}) == 0


class TestLiveness:
    """Test sensor liveness buckets."""

    def test_buckets(self):
        assert sensor_liveness(NOW - timedelta(minutes=30), NOW) == "online"
        assert sensor_liveness(NOW - timedelta(hours=5), NOW) == "delayed"
        assert sensor_liveness(NOW - timedelta(days=2), NOW) == "offline"
        assert sensor_liveness(None, NOW) == "no_data"


class TestIngest:
    """Test the ingest path against the key-value store."""

    def test_ingest_stores_reading_and_latest(self, iot, store):
        result = iot.ingest(payload(50))

        assert result.status == "processed"
        assert result.alerts == []
        assert store.get(result.data_key)["value"] == 50
        latest = store.get(KV_KEYS["sensor_latest"]("farm_1", "soil_moisture"))
        assert latest["sensorId"] == "sm_01"

    def test_readings_expire_after_retention(self, iot, redis_client):
        result = iot.ingest(payload(50))
        ttl = redis_client.ttl(result.data_key)
        assert 0 < ttl <= 30 * 24 * 3600

    def test_daily_aggregate_accumulates(self, iot, store):
        for value in (30, 50, 40):
            iot.ingest(payload(value))

        aggregate = store.get(KV_KEYS["sensor_daily"]("farm_1", "soil_moisture", "2024-06-05"))
        assert aggregate["count"] == 3
        assert aggregate["sum"] == 120
        assert aggregate["min"] == 30
        assert aggregate["max"] == 50
        assert aggregate["average"] == 40
        assert len(aggregate["values"]) == 3

    def test_aggregate_keyed_by_reading_date(self, iot, store):
        yesterday = NOW - timedelta(days=1)
        iot.ingest(payload(30, timestamp=yesterday))

        assert store.get(KV_KEYS["sensor_daily"]("farm_1", "soil_moisture", "2024-06-04"))["count"] == 1
        assert store.get(KV_KEYS["sensor_daily"]("farm_1", "soil_moisture", "2024-06-05")) is None

    def test_dry_soil_recommends_irrigation(self, iot):
        result = iot.ingest(payload(10))
        assert result.recommendations == ["Immediate irrigation required"]
        assert result.metrics["irrigationNeed"] == "immediate"

    def test_unknown_sensor_type_rejected(self):
        with pytest.raises(ValueError):
            payload(10, sensor_type="wind_speed")


class TestFarmSummaries:
    """Test latest-data summaries, history and simulation."""

    def test_latest_sensor_data(self, iot):
        iot.ingest(payload(50))
        iot.ingest(payload(6.5, sensor_type="soil_ph", sensor_id="ph_01", timestamp=NOW - timedelta(hours=3)))

        latest = iot.get_latest_sensor_data("farm_1")

        assert set(latest.sensors) == {"soil_moisture", "soil_ph"}
        assert latest.health_score == 100
        assert latest.sensor_status["soil_moisture"].status == "online"
        assert latest.sensor_status["soil_ph"].status == "delayed"
        assert latest.sensor_status["humidity"].status == "no_data"

    def test_latest_for_unknown_farm(self, iot):
        latest = iot.get_latest_sensor_data("nowhere")
        assert latest.sensors == {}
        assert latest.health_score == 0

    def test_history_mixes_stored_and_simulated_days(self, iot):
        iot.ingest(payload(42))

        history = iot.get_sensor_history("farm_1", start=NOW - timedelta(days=2), end=NOW)

        assert len(history.daily_data) == 3 * len(SensorType)
        stored = [
            d for d in history.daily_data
            if d.sensor_type == SensorType.SOIL_MOISTURE and d.date == "2024-06-05"
        ]
        assert stored[0].simulated is False
        assert stored[0].average == 42
        assert all(d.simulated for d in history.daily_data if d.date == "2024-06-03")
        assert set(history.trends) == {t.value for t in SensorType}

    def test_history_rejects_inverted_range(self, iot):
        with pytest.raises(MalformedInputError):
            iot.get_sensor_history("farm_1", start=NOW, end=NOW - timedelta(days=1))

    def test_history_rejects_oversized_range(self, iot):
        with pytest.raises(MalformedInputError):
            iot.get_sensor_history("farm_1", start=NOW - timedelta(days=400), end=NOW)

    def test_simulate_ingests_every_sensor_type(self, iot):
        result = iot.simulate("farm_9")

        assert result.simulated_sensors == len(SensorType)
        latest = iot.get_latest_sensor_data("farm_9")
        assert set(latest.sensors) == {t.value for t in SensorType}


class TestIoTEndpoints:
    """Test the IoT HTTP endpoints."""

    def test_submit_sensor_reading(self, client):
        response = client.post("/iot/sensor-data", json={
            "farmId": "farm_1",
            "sensorId": "sm_01",
            "sensorType": "soil_moisture",
            "readings": {"value": 10, "unit": "%", "batteryLevel": 80},
        })
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["processed"]["alerts"][0]["action"] == "Immediate irrigation required"
        assert data["notificationsSent"] == 0

    def test_sensor_alert_reaches_farm_subscriber(self, client):
        client.post("/notifications/subscribe", json={
            "userId": "grower",
            "farmId": "farm_1",
            "notificationTypes": ["sensor_alerts"],
            "channels": ["push"],
        })

        response = client.post("/iot/sensor-data", json={
            "farmId": "farm_1",
            "sensorId": "sm_01",
            "sensorType": "soil_moisture",
            "readings": {"value": 10},
        })
        assert response.json()["notificationsSent"] == 1

        inbox = client.get("/notifications/grower").json()
        assert inbox["notifications"][0]["type"] == "sensor_alerts"

    def test_unknown_sensor_type_is_malformed(self, client):
        response = client.post("/iot/sensor-data", json={
            "farmId": "farm_1",
            "sensorId": "x",
            "sensorType": "wind_speed",
            "readings": {"value": 1},
        })
        assert response.status_code == 422
        assert response.json()["error"] == "malformed_input"

    def test_missing_readings_is_malformed(self, client):
        response = client.post("/iot/sensor-data", json={"farmId": "farm_1", "sensorId": "x"})
        assert response.status_code == 422

    def test_history_inverted_range_returns_400(self, client):
        response = client.get(
            "/iot/farm/farm_1/history",
            params={"start": "2024-06-05T00:00:00Z", "end": "2024-06-01T00:00:00Z"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "malformed_input"

    def test_simulate_endpoint(self, client):
        response = client.post("/iot/simulate/farm_2")
        assert response.status_code == 200
        assert response.json()["simulatedSensors"] == 6

        latest = client.get("/iot/farm/farm_2/latest").json()
        assert len(latest["sensors"]) == 6
