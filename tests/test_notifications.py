"""
Tests for notification subscriptions, gates, fan-out and inboxes.
"""

from datetime import datetime, time, timedelta, timezone

import pytest

from agriadvisor.core.exceptions import NotFoundError
from agriadvisor.schemas.farm import FarmProfile
from agriadvisor.schemas.iot import Alert, SensorReading, SensorType
from agriadvisor.schemas.notifications import (
    Notification,
    PriceAlertRequest,
    SubscriptionRequest,
    SystemAlertRequest,
    WeatherAlertRequest,
)
from agriadvisor.services.farms import FarmService
from agriadvisor.services.notifications import (
    NotificationChannel,
    NotificationService,
    alert_channels,
    default_channels,
    in_quiet_hours,
    should_send_scheduled,
)
from agriadvisor.utils.kv_store import KV_KEYS

# Wednesday 12:00 UTC
NOW = datetime(2024, 6, 5, 12, 0, tzinfo=timezone.utc)


def subscription_request(user_id="u1", preferences=None, **fields):
    return SubscriptionRequest.model_validate({
        "userId": user_id,
        "preferences": preferences or {"timezone": "UTC"},
        **fields,
    })


def notification(n, user_id="u1"):
    return Notification(
        id=f"n{n}",
        user_id=user_id,
        type="price_alerts",
        title=f"Notification {n}",
        message="test",
        channels=["push"],
        timestamp=NOW + timedelta(seconds=n),
    )


class FailingChannel(NotificationChannel):
    name = "email"

    async def deliver(self, notification):
        raise ConnectionError("SMTP relay unreachable")


@pytest.fixture
def notifications(store):
    return NotificationService(store, clock=lambda: NOW)


class TestQuietHours:
    """Test the quiet-hours window."""

    def test_window_wraps_past_midnight(self):
        start, end = time(22, 0), time(6, 0)
        assert in_quiet_hours(time(23, 30), start, end)
        assert in_quiet_hours(time(0, 0), start, end)
        assert in_quiet_hours(time(5, 59), start, end)
        assert in_quiet_hours(time(22, 0), start, end)
        assert not in_quiet_hours(time(6, 0), start, end)
        assert not in_quiet_hours(time(12, 0), start, end)

    def test_same_day_window(self):
        start, end = time(13, 0), time(15, 0)
        assert in_quiet_hours(time(14, 0), start, end)
        assert not in_quiet_hours(time(15, 0), start, end)
        assert not in_quiet_hours(time(9, 0), start, end)

    def test_equal_bounds_mean_no_window(self):
        assert not in_quiet_hours(time(10, 0), time(10, 0), time(10, 0))

    def test_evaluated_in_subscriber_timezone(self, notifications):
        # 12:00 UTC is 21:30 in Adelaide (UTC+9:30 in June): outside 22:00-06:00
        subscription = notifications.subscribe(subscription_request(
            preferences={"timezone": "Australia/Adelaide"}
        ))
        assert should_send_scheduled(subscription, NOW)
        assert not should_send_scheduled(subscription, NOW + timedelta(hours=1))


class TestFrequencyGate:
    """Test scheduled-delivery frequency rules."""

    def test_never_suppresses(self, notifications):
        subscription = notifications.subscribe(subscription_request(
            preferences={"timezone": "UTC", "frequency": "never"}
        ))
        assert not should_send_scheduled(subscription, NOW)

    def test_weekly_only_on_monday(self, notifications):
        subscription = notifications.subscribe(subscription_request(
            preferences={"timezone": "UTC", "frequency": "weekly"}
        ))
        monday = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)
        assert should_send_scheduled(subscription, monday)
        assert not should_send_scheduled(subscription, NOW)


class TestSubscriptions:
    """Test subscribe/replace semantics."""

    def test_resubscribe_replaces_channels(self, notifications, store):
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["weather_warnings", "system_alerts"], channels=["push", "email"]
        ))
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["system_alerts"], channels=["sms"]
        ))

        stored = notifications.get_subscription("u1")
        assert stored.channels == ["sms"]
        assert stored.notification_types == ["system_alerts"]
        assert store.get(KV_KEYS["all_users"]()) == ["u1"]

    async def test_later_channels_used_for_delivery(self, notifications):
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["system_alerts"], channels=["push", "email"]
        ))
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["system_alerts"], channels=["sms"]
        ))

        result = await notifications.send_system_alert(SystemAlertRequest(
            type="farm_specific", message="Pump maintenance", farm_id="farm_1"
        ))

        assert result.users_notified == 1
        assert list(result.results[0].result.delivered) == ["sms"]

    async def test_dropped_type_stops_delivery(self, notifications):
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["weather_warnings"]
        ))
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["price_alerts"]
        ))

        result = await notifications.send_weather_alert(WeatherAlertRequest(
            farm_id="farm_1", type="heatwave", message="42 °C expected"
        ))
        assert result.users_notified == 0

    def test_alert_channels_intersect_subscription(self, notifications):
        subscription = notifications.subscribe(subscription_request(channels=["sms", "email", "push"]))
        assert alert_channels("weather_warnings", subscription) == ["push", "sms"]
        assert alert_channels("sensor_alerts", subscription) == ["push"]

        subscription = notifications.subscribe(subscription_request(channels=["email"]))
        assert alert_channels("weather_warnings", subscription) == ["email"]

    async def test_moving_farm_stops_old_farm_alerts(self, notifications, store):
        notifications.subscribe(subscription_request(farmId="farm_a", notificationTypes=["weather_warnings"]))
        notifications.subscribe(subscription_request(farmId="farm_b", notificationTypes=["weather_warnings"]))

        assert store.get(KV_KEYS["farm_users"]("farm_a")) == []
        assert store.get(KV_KEYS["farm_users"]("farm_b")) == ["u1"]

        old_farm = await notifications.send_weather_alert(WeatherAlertRequest(
            farm_id="farm_a", type="frost", message="Frost tonight"
        ))
        new_farm = await notifications.send_weather_alert(WeatherAlertRequest(
            farm_id="farm_b", type="frost", message="Frost tonight"
        ))
        assert old_farm.users_notified == 0
        assert new_farm.users_notified == 1

    def test_farm_owner_stays_indexed_after_moving(self, notifications, store):
        FarmService(store).save_profile(FarmProfile(id="farm_a", user_id="u1", crops=["rice"]))
        notifications.subscribe(subscription_request(farmId="farm_a"))
        notifications.subscribe(subscription_request(farmId="farm_b"))

        assert store.get(KV_KEYS["farm_users"]("farm_a")) == ["u1"]


class TestDelivery:
    """Test store-and-deliver and the per-user inbox."""

    async def test_inbox_capped_newest_first(self, notifications, store):
        for n in range(105):
            await notifications.store_and_deliver(notification(n))

        stored = store.get(KV_KEYS["user_notifications"]("u1"))
        assert len(stored) == 100
        assert stored[0]["id"] == "n104"
        assert stored[-1]["id"] == "n5"
        assert all(item["id"] not in {"n0", "n1", "n2", "n3", "n4"} for item in stored)

    async def test_failing_channel_does_not_block_others(self, store):
        channels = default_channels()
        channels["email"] = FailingChannel()
        service = NotificationService(store, channels=channels, clock=lambda: NOW)

        n = notification(1)
        n.channels = ["push", "email", "sms"]
        report = await service.store_and_deliver(n)

        assert report.stored
        assert report.delivered["push"].status == "sent"
        assert report.delivered["sms"].status == "sent"
        assert report.delivered["email"].status == "failed"
        assert "SMTP" in report.delivered["email"].error

    async def test_unconfigured_channel_reported(self, store):
        service = NotificationService(store, channels={}, clock=lambda: NOW)
        report = await service.store_and_deliver(notification(1))
        assert report.delivered["push"].error == "Channel not configured"

    async def test_fetch_marks_delivered_not_read(self, notifications):
        await notifications.store_and_deliver(notification(1))

        inbox = notifications.get_user_notifications("u1")

        assert inbox.notifications[0].status == "delivered"
        assert inbox.notifications[0].delivered_at == NOW
        assert inbox.notifications[0].read is False
        assert inbox.unread_count == 1

    async def test_mark_as_read(self, notifications):
        await notifications.store_and_deliver(notification(1))
        notifications.mark_as_read("u1", "n1")

        inbox = notifications.get_user_notifications("u1")
        assert inbox.notifications[0].read is True
        assert inbox.unread_count == 0

    def test_mark_unknown_notification(self, notifications):
        with pytest.raises(NotFoundError):
            notifications.mark_as_read("u1", "missing")

    async def test_system_stats(self, notifications):
        await notifications.store_and_deliver(notification(1))
        await notifications.store_and_deliver(notification(2))

        stats = notifications.get_stats()
        assert stats.system_stats.total_sent == 2
        assert stats.system_stats.by_type == {"price_alerts": 2}
        assert stats.system_stats.by_day == {"2024-06-05": 2}

        user_stats = notifications.get_stats("u1")
        assert user_stats.total_notifications == 2
        assert user_stats.last_notification == NOW + timedelta(seconds=2)


class TestAlertBuilders:
    """Test alert routing."""

    async def test_price_alert_respects_threshold(self, notifications):
        notifications.store.update(KV_KEYS["crop_users"]("tomatoes"), lambda current: ["u1", "u2"])
        notifications.subscribe(subscription_request("u1", notificationTypes=["price_alerts"]))
        notifications.subscribe(subscription_request(
            "u2",
            notificationTypes=["price_alerts"],
            preferences={"timezone": "UTC", "priceChangeThreshold": 10},
        ))

        result = await notifications.send_price_alert(PriceAlertRequest(
            crop="Tomatoes", current_price=2750, previous_price=2500, change_percent=8.0
        ))

        assert [r.user_id for r in result.results] == ["u1"]

    async def test_weather_alert_prefers_push_and_sms(self, notifications):
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["weather_warnings"], channels=["push", "email", "sms"]
        ))

        result = await notifications.send_weather_alert(WeatherAlertRequest(
            farm_id="farm_1", type="heavy_rain", message="80 mm expected", severity="severe"
        ))

        report = result.results[0].result
        assert set(report.delivered) == {"push", "sms"}

    async def test_weather_alert_follows_latest_channels(self, notifications):
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["weather_warnings"], channels=["push", "sms"]
        ))
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["weather_warnings"], channels=["email"]
        ))

        result = await notifications.send_weather_alert(WeatherAlertRequest(
            farm_id="farm_1", type="heavy_rain", message="80 mm expected"
        ))

        assert list(result.results[0].result.delivered) == ["email"]

    async def test_sensor_alert_limited_to_subscribed_channels(self, notifications):
        notifications.subscribe(subscription_request(
            farmId="farm_1", notificationTypes=["sensor_alerts"], channels=["sms"]
        ))
        reading = SensorReading(
            farm_id="farm_1",
            sensor_id="sm_01",
            sensor_type=SensorType.SOIL_MOISTURE,
            timestamp=NOW,
            value=10,
            processed=NOW,
        )
        alert = Alert(
            type="critical", severity="high", message="Soil too dry",
            action="Immediate irrigation required", timestamp=NOW,
        )

        result = await notifications.send_sensor_alert(reading, alert)

        assert list(result.results[0].result.delivered) == ["sms"]

    async def test_maintenance_alert_reaches_everyone(self, notifications):
        notifications.subscribe(subscription_request("u1"))
        notifications.subscribe(subscription_request("u2", notificationTypes=["price_alerts"]))

        result = await notifications.send_system_alert(SystemAlertRequest(
            type="system_maintenance", message="Downtime at 02:00"
        ))
        assert result.users_notified == 2

    async def test_scheduled_run_applies_gates(self, notifications):
        notifications.subscribe(subscription_request("day", notificationTypes=["weather_updates"]))
        notifications.subscribe(subscription_request(
            "night",
            notificationTypes=["weather_updates"],
            preferences={"timezone": "Asia/Tokyo"},  # 21:00 local, outside 22:00-06:00
        ))
        notifications.subscribe(subscription_request(
            "quiet",
            notificationTypes=["weather_updates"],
            preferences={"timezone": "UTC", "quietHours": {"start": "11:00", "end": "13:00"}},
        ))

        result = await notifications.run_scheduled()

        weather = next(r for r in result.results if r.type == "weather_updates")
        assert sorted(r.user_id for r in weather.results) == ["day", "night"]


class TestNotificationEndpoints:
    """Test the notification HTTP endpoints."""

    def test_subscribe_and_fetch(self, client):
        response = client.post("/notifications/subscribe", json={"userId": "u1"})
        assert response.status_code == 200
        assert response.json() == {"status": "subscribed", "userId": "u1"}

        inbox = client.get("/notifications/u1").json()
        assert inbox["notifications"] == []
        assert inbox["unreadCount"] == 0

    def test_subscribe_requires_user_id(self, client):
        response = client.post("/notifications/subscribe", json={"channels": ["push"]})
        assert response.status_code == 422
        assert response.json()["error"] == "malformed_input"

    def test_invalid_timezone_rejected(self, client):
        response = client.post("/notifications/subscribe", json={
            "userId": "u1",
            "preferences": {"timezone": "Mars/Olympus"},
        })
        assert response.status_code == 422

    def test_mark_read_unknown_returns_404(self, client):
        response = client.post("/notifications/u1/missing/read")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_price_alert_endpoint_and_stats(self, client):
        client.post("/farm/profile", json={"id": "farm_1", "userId": "u1", "crops": ["Onions"]})
        client.post("/notifications/subscribe", json={"userId": "u1", "notificationTypes": ["price_alerts"]})

        response = client.post("/notifications/alerts/price", json={
            "crop": "onions", "currentPrice": 2000, "changePercent": -12.5,
        })
        assert response.status_code == 200
        assert response.json()["usersNotified"] == 1

        stats = client.get("/notifications/stats", params={"userId": "u1"}).json()
        assert stats["totalNotifications"] == 1
        assert stats["byType"] == {"price_alerts": 1}

        system = client.get("/notifications/stats").json()
        assert system["systemStats"]["totalSent"] == 1

    def test_scheduled_run_endpoint(self, client):
        response = client.post("/notifications/scheduled/run")
        assert response.status_code == 200
        assert response.json()["processedTypes"] == 3
