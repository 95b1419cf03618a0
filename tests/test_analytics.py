"""
Tests for the per-farm analytics summary.
"""

from datetime import datetime, timezone

from agriadvisor.schemas.crops import FarmData
from agriadvisor.schemas.farm import FarmProfile
from agriadvisor.schemas.iot import LatestSensorData, SensorReading, SensorStatus, SensorType
from agriadvisor.services.analytics import build_farm_analytics, farm_alerts, soil_condition

NOW = datetime(2024, 6, 5, 12, 0, tzinfo=timezone.utc)


def latest(health_score, status="online"):
    return LatestSensorData(
        farm_id="farm_1",
        sensors={"soil_moisture": SensorReading(
            farm_id="farm_1",
            sensor_id="sm_01",
            sensor_type=SensorType.SOIL_MOISTURE,
            timestamp=NOW,
            value=40,
            processed=NOW,
        )},
        health_score=health_score,
        insights=[],
        last_updated=NOW,
        sensor_status={"soil_moisture": SensorStatus(status=status, last_seen=NOW)},
    )


class TestFarmHealth:
    """Test soil condition grading and farm alerts."""

    def test_soil_condition(self):
        assert soil_condition(latest(90)) == "good"
        assert soil_condition(latest(80)) == "good"
        assert soil_condition(latest(50)) == "fair"
        assert soil_condition(latest(49)) == "poor"
        assert soil_condition(None) == "unknown"

    def test_alerts_for_stale_sensor_and_low_score(self):
        alerts = farm_alerts(latest(30, status="offline"))
        assert alerts[0] == "soil moisture sensor is offline"
        assert "low (30)" in alerts[1]

    def test_no_alerts_for_healthy_farm(self):
        assert farm_alerts(latest(95)) == []
        assert farm_alerts(None) == []


class TestBuildFarmAnalytics:
    """Test section gathering against the in-memory container."""

    async def test_all_sections_present(self, services):
        services.farms.save_profile(FarmProfile(
            id="farm_1", user_id="u1", location="Nashik", crops=["Cotton", "Tomatoes"]
        ))
        services.crops.recommend(FarmData(user_id="u1"))
        services.iot.simulate("farm_1")

        analytics = await build_farm_analytics(services, "farm_1")

        assert analytics.unavailable == []
        assert analytics.weather is not None
        assert analytics.weather.location == "Nashik"
        assert len(analytics.sensors.sensors) == 6
        assert [sample.crop for sample in analytics.market] == ["Cotton", "Tomatoes"]
        assert analytics.farm_health.crop_recommendations == 3
        assert analytics.farm_health.health_score == analytics.sensors.health_score

    async def test_unknown_farm_uses_defaults(self, services):
        analytics = await build_farm_analytics(services, "farm_x")

        assert analytics.weather is None
        assert analytics.sensors.sensors == {}
        assert analytics.farm_health.soil_condition == "unknown"
        assert analytics.farm_health.weather_status == "unknown"
        assert [sample.crop for sample in analytics.market] == ["tomatoes"]
        assert analytics.recommendations == []

    async def test_failed_section_listed_as_unavailable(self, services, monkeypatch):
        def broken(farm_id):
            raise RuntimeError("sensor index corrupted")

        monkeypatch.setattr(services.iot, "get_latest_sensor_data", broken)

        analytics = await build_farm_analytics(services, "farm_1")

        assert analytics.unavailable == ["sensors"]
        assert analytics.sensors is None
        assert analytics.farm_health.health_score == 0
        assert len(analytics.market) == 1


class TestAnalyticsEndpoint:
    """Test the analytics HTTP endpoint."""

    def test_farm_analytics(self, client):
        client.post("/farm/profile", json={"id": "farm_7", "location": "Pune", "crops": ["Sugarcane"]})
        client.post("/iot/simulate/farm_7")

        response = client.get("/analytics/farm/farm_7")
        assert response.status_code == 200
        data = response.json()
        assert data["farmId"] == "farm_7"
        assert data["weather"]["location"] == "Pune"
        assert data["market"][0]["crop"] == "Sugarcane"
        assert data["unavailable"] == []
        assert "healthScore" in data["farmHealth"]
