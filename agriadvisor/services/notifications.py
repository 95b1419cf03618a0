"""
Notification fan-out.

Every alert builder resolves its recipients from stored subscriptions,
builds a typed ``Notification`` and hands it to ``store_and_deliver``:

1. prepend to the user's inbox (newest first, capped),
2. deliver to each requested channel concurrently,
3. bump the system-wide counters.

A channel that fails is reported as ``failed`` in the delivery report; the
other channels still go out. Scheduled notifications are produced only
when ``run_scheduled`` is called by an external trigger.
"""

import asyncio
import uuid
from datetime import datetime, time, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from agriadvisor.core.exceptions import NotFoundError
from agriadvisor.schemas.crops import CropRecommendation
from agriadvisor.schemas.iot import Alert, SensorReading
from agriadvisor.schemas.notifications import (
    ChannelResult,
    DeliveryReport,
    FanoutResult,
    MarkReadResult,
    Notification,
    NotificationStats,
    PriceAlertRequest,
    ScheduledRunResult,
    ScheduledTypeResult,
    Subscription,
    SubscriptionRequest,
    SystemAlertRequest,
    SystemStats,
    UserDelivery,
    UserNotifications,
    WeatherAlertRequest,
)
from agriadvisor.utils.kv_store import KV_KEYS, KeyValueStore, append_unique, remove_member
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)

SCHEDULED_TYPES = ("weather_updates", "market_updates", "crop_reminders")
MONDAY = 0

SCHEDULED_CONTENT = {
    "weather_updates": {
        "title": "Daily Weather Update",
        "message": "Check today's weather forecast and agricultural advice",
        "data": {"weatherSummary": "Partly cloudy, good for field work"},
    },
    "market_updates": {
        "title": "Market Price Update",
        "message": "Latest crop prices and market trends available",
        "data": {"marketSummary": "Tomato prices trending upward"},
    },
    "crop_reminders": {
        "title": "Crop Care Reminder",
        "message": "Time for scheduled farm activities",
        "data": {"activities": ["Irrigation check", "Pest monitoring"]},
    },
}
DEFAULT_CONTENT = {"title": "Farm Update", "message": "New update available", "data": {}}

# Channels an alert type is sent over, when the subscriber has them
ALERT_CHANNELS = {
    "weather_warnings": ("push", "sms"),
    "sensor_alerts": ("push",),
}


def alert_channels(ntype: str, subscription: Subscription) -> List[str]:
    """
    Preferred channels of an alert type that the subscriber opted into.

    Falls back to the subscriber's own channels when none overlap.
    """
    preferred = [name for name in ALERT_CHANNELS.get(ntype, ()) if name in subscription.channels]
    return preferred or list(subscription.channels)


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_quiet_hours(moment: time, start: time, end: time) -> bool:
    """
    Whether ``moment`` falls in the quiet window ``[start, end)``.

    A window whose start is after its end wraps past midnight, so
    22:00-06:00 covers 22:00 through 05:59. Equal bounds mean no window.
    """
    if start == end:
        return False
    if start < end:
        return start <= moment < end
    return moment >= start or moment < end


def should_send_scheduled(subscription: Subscription, now: datetime) -> bool:
    """
    Quiet-hours and frequency gates for scheduled notifications.

    Both are evaluated in the subscriber's timezone. ``never`` always
    suppresses; ``weekly`` delivers on Mondays only.
    """
    preferences = subscription.preferences
    local = now.astimezone(ZoneInfo(preferences.timezone))

    quiet = preferences.quiet_hours
    if in_quiet_hours(local.time().replace(second=0, microsecond=0),
                      _parse_hhmm(quiet.start), _parse_hhmm(quiet.end)):
        return False

    if preferences.frequency == "never":
        return False
    if preferences.frequency == "weekly" and local.weekday() != MONDAY:
        return False
    return True


def prepend_capped(notification: dict, limit: int) -> Callable[[Optional[list]], list]:
    """``update`` callable that puts ``notification`` first and keeps ``limit`` entries."""
    def _prepend(current: Optional[list]) -> list:
        return ([notification] + list(current or []))[:limit]
    return _prepend


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


# ============================================================================
# Channels
# ============================================================================

class NotificationChannel:
    """
    Delivery channel.

    The bundled channels only log; a real gateway (FCM, SMTP, SMS
    provider) subclasses this and overrides ``deliver``.
    """

    name = "channel"

    async def deliver(self, notification: Notification) -> None:
        logger.info(f"Sending {self.name} notification to {notification.user_id}: {notification.title}")

    async def send(self, notification: Notification) -> ChannelResult:
        await self.deliver(notification)
        return ChannelResult(status="sent", channel=self.name, timestamp=datetime.now(timezone.utc))


class PushChannel(NotificationChannel):
    name = "push"


class EmailChannel(NotificationChannel):
    name = "email"


class SMSChannel(NotificationChannel):
    name = "sms"


def default_channels() -> Dict[str, NotificationChannel]:
    return {channel.name: channel for channel in (PushChannel(), EmailChannel(), SMSChannel())}


# ============================================================================
# Service
# ============================================================================

class NotificationService:
    def __init__(
        self,
        store: KeyValueStore,
        channels: Optional[Dict[str, NotificationChannel]] = None,
        history_limit: int = 100,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.channels = channels if channels is not None else default_channels()
        self.history_limit = history_limit
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ---- subscriptions -----------------------------------------------------

    def subscribe(self, request: SubscriptionRequest) -> Subscription:
        """
        Store (or replace) a user's subscription.

        The user is indexed in each type's queue, in the all-users list and
        under the farm. Type queues are append-only; delivery re-reads the
        subscription, so dropped types simply stop matching. Moving to
        another farm removes the user from the previous farm's index unless
        they own that farm's profile.
        """
        now = self.clock()
        previous = self.get_subscription(request.user_id)
        subscription = Subscription(
            **request.model_dump(),
            is_active=True,
            subscribed_at=now,
            last_updated=now,
        )
        user_id = subscription.user_id
        self.store.set(KV_KEYS["subscription"](user_id), subscription.to_store())

        for ntype in subscription.notification_types:
            self.store.update(KV_KEYS["notification_queue"](ntype), append_unique(user_id))
        self.store.update(KV_KEYS["all_users"](), append_unique(user_id))
        if subscription.farm_id:
            self.store.update(KV_KEYS["farm_users"](subscription.farm_id), append_unique(user_id))

        old_farm = previous.farm_id if previous else None
        if old_farm and old_farm != subscription.farm_id and not self._owns_farm(user_id, old_farm):
            self.store.update(KV_KEYS["farm_users"](old_farm), remove_member(user_id))
            logger.debug(f"User {user_id} left farm {old_farm}")

        logger.info(f"User {user_id} subscribed to {', '.join(subscription.notification_types)}")
        return subscription

    def _owns_farm(self, user_id: str, farm_id: str) -> bool:
        profile = self.store.get(KV_KEYS["farm_profile"](farm_id))
        return bool(profile) and profile.get("userId") == user_id

    def get_subscription(self, user_id: str) -> Optional[Subscription]:
        stored = self.store.get(KV_KEYS["subscription"](user_id))
        return Subscription.model_validate(stored) if stored else None

    def _eligible(self, user_id: str, ntype: Optional[str]) -> Optional[Subscription]:
        """Active subscription that includes ``ntype`` (any type when None)."""
        subscription = self.get_subscription(user_id)
        if subscription is None or not subscription.is_active:
            return None
        if ntype is not None and ntype not in subscription.notification_types:
            return None
        return subscription

    def _resolve(self, index_key: str, ntype: Optional[str]) -> List[Subscription]:
        subscriptions = []
        for user_id in self.store.get(index_key) or []:
            subscription = self._eligible(user_id, ntype)
            if subscription is not None:
                subscriptions.append(subscription)
        return subscriptions

    def users_for_farm(self, farm_id: str, ntype: str) -> List[Subscription]:
        return self._resolve(KV_KEYS["farm_users"](farm_id), ntype)

    def users_for_crop(self, crop: str, ntype: str) -> List[Subscription]:
        return self._resolve(KV_KEYS["crop_users"](crop.lower()), ntype)

    def all_active_users(self) -> List[Subscription]:
        return self._resolve(KV_KEYS["all_users"](), None)

    # ---- delivery ----------------------------------------------------------

    async def _send_channel(self, channel_name: str, notification: Notification) -> ChannelResult:
        channel = self.channels.get(channel_name)
        if channel is None:
            return ChannelResult(status="failed", channel=channel_name, error="Channel not configured")
        return await channel.send(notification)

    async def deliver_to_channels(self, notification: Notification) -> Dict[str, ChannelResult]:
        """Deliver to every requested channel concurrently; failures are per channel."""
        names = list(dict.fromkeys(notification.channels))
        outcomes = await asyncio.gather(
            *(self._send_channel(name, notification) for name in names),
            return_exceptions=True,
        )

        results = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"{name} delivery failed for {notification.id}: {outcome}")
                results[name] = ChannelResult(status="failed", channel=name, error=str(outcome))
            else:
                results[name] = outcome
        return results

    def _record_stats(self, notification: Notification):
        day = self.clock().date().isoformat()

        def _bump(current: Optional[dict]) -> dict:
            stats = SystemStats.model_validate(current) if current else SystemStats()
            stats.total_sent += 1
            stats.by_type[notification.type] = stats.by_type.get(notification.type, 0) + 1
            stats.by_day[day] = stats.by_day.get(day, 0) + 1
            return stats.to_store()

        self.store.update(KV_KEYS["system_stats"](), _bump)

    async def store_and_deliver(self, notification: Notification) -> DeliveryReport:
        stored = self.store.update(
            KV_KEYS["user_notifications"](notification.user_id),
            prepend_capped(notification.to_store(), self.history_limit),
        )
        delivered = await self.deliver_to_channels(notification)
        self._record_stats(notification)

        return DeliveryReport(
            stored=stored is not None,
            notification_id=notification.id,
            delivered=delivered,
        )

    async def _fan_out(self, scope: str, notifications: List[Notification]) -> FanoutResult:
        results = []
        for notification in notifications:
            report = await self.store_and_deliver(notification)
            results.append(UserDelivery(user_id=notification.user_id, result=report))
        return FanoutResult(scope=scope, users_notified=len(results), results=results)

    # ---- inbox -------------------------------------------------------------

    def get_user_notifications(self, user_id: str) -> UserNotifications:
        """Return the inbox newest first, marking pending entries delivered."""
        now = self.clock()

        def _mark_delivered(current: Optional[list]) -> list:
            notifications = [Notification.model_validate(item) for item in current or []]
            notifications.sort(key=lambda n: n.timestamp, reverse=True)
            for notification in notifications:
                if notification.status == "pending":
                    notification.status = "delivered"
                    notification.delivered_at = now
            return [notification.to_store() for notification in notifications]

        stored = self.store.update(KV_KEYS["user_notifications"](user_id), _mark_delivered)
        notifications = [Notification.model_validate(item) for item in stored or []]

        return UserNotifications(
            user_id=user_id,
            notifications=notifications,
            unread_count=sum(1 for n in notifications if not n.read),
            last_updated=now,
        )

    def mark_as_read(self, user_id: str, notification_id: str) -> MarkReadResult:
        key = KV_KEYS["user_notifications"](user_id)
        if not any(item.get("id") == notification_id for item in self.store.get(key) or []):
            raise NotFoundError(f"Notification '{notification_id}' not found for user '{user_id}'")

        now = self.clock()

        def _mark_read(current: Optional[list]) -> list:
            notifications = list(current or [])
            for item in notifications:
                if item.get("id") == notification_id:
                    item["read"] = True
                    item["readAt"] = now.isoformat()
            return notifications

        self.store.update(key, _mark_read)
        return MarkReadResult(notification_id=notification_id)

    def get_stats(self, user_id: Optional[str] = None) -> NotificationStats:
        now = self.clock()
        if user_id is None:
            stored = self.store.get(KV_KEYS["system_stats"]())
            stats = SystemStats.model_validate(stored) if stored else SystemStats()
            return NotificationStats(system_stats=stats, timestamp=now)

        notifications = [
            Notification.model_validate(item)
            for item in self.store.get(KV_KEYS["user_notifications"](user_id)) or []
        ]
        by_type: Dict[str, int] = {}
        for notification in notifications:
            by_type[notification.type] = by_type.get(notification.type, 0) + 1

        return NotificationStats(
            user_id=user_id,
            total_notifications=len(notifications),
            unread_count=sum(1 for n in notifications if not n.read),
            by_type=by_type,
            recent_activity=notifications[:5],
            last_notification=notifications[0].timestamp if notifications else None,
            timestamp=now,
        )

    # ---- builders ----------------------------------------------------------

    async def run_scheduled(self) -> ScheduledRunResult:
        """Send the periodic updates to every subscriber whose gates are open."""
        now = self.clock()
        results = []

        for ntype in SCHEDULED_TYPES:
            content = SCHEDULED_CONTENT.get(ntype, DEFAULT_CONTENT)
            notifications = [
                Notification(
                    id=_new_id(f"scheduled_{ntype}"),
                    user_id=subscription.user_id,
                    type=ntype,
                    title=content["title"],
                    message=content["message"],
                    data=content["data"],
                    channels=subscription.channels,
                    timestamp=now,
                )
                for subscription in self._resolve(KV_KEYS["notification_queue"](ntype), ntype)
                if should_send_scheduled(subscription, now)
            ]
            fanout = await self._fan_out(ntype, notifications)
            results.append(ScheduledTypeResult(
                type=ntype,
                subscribers_notified=fanout.users_notified,
                results=fanout.results,
            ))

        logger.info(
            "Scheduled notifications sent: "
            + ", ".join(f"{r.type}={r.subscribers_notified}" for r in results)
        )
        return ScheduledRunResult(processed_types=len(results), results=results, timestamp=now)

    async def send_price_alert(self, alert: PriceAlertRequest) -> FanoutResult:
        """Notify growers of ``crop`` whose change threshold is met."""
        now = self.clock()
        change = alert.change_percent
        direction = "increased" if change > 0 else "decreased"

        notifications = [
            Notification(
                id=_new_id("price"),
                user_id=subscription.user_id,
                type="price_alerts",
                title=f"Price Alert: {alert.crop}",
                message=f"{alert.crop} price {direction} by {abs(change):g}% to {alert.current_price:g}",
                data={
                    "crop": alert.crop,
                    "currentPrice": alert.current_price,
                    "previousPrice": alert.previous_price,
                    "changePercent": change,
                    "marketTrend": alert.trend,
                },
                priority="high" if abs(change) > 10 else "normal",
                channels=subscription.channels,
                timestamp=now,
            )
            for subscription in self.users_for_crop(alert.crop, "price_alerts")
            if abs(change) >= subscription.preferences.price_change_threshold
        ]
        return await self._fan_out(alert.crop, notifications)

    async def send_weather_alert(self, alert: WeatherAlertRequest) -> FanoutResult:
        now = self.clock()
        notifications = [
            Notification(
                id=_new_id("weather"),
                user_id=subscription.user_id,
                farm_id=alert.farm_id,
                type="weather_warnings",
                title=f"Weather Alert: {alert.type}",
                message=alert.message,
                data={
                    "alertType": alert.type,
                    "severity": alert.severity,
                    "actionRequired": alert.action_required,
                    "validUntil": alert.valid_until.isoformat() if alert.valid_until else None,
                },
                priority="high" if alert.severity == "severe" else "normal",
                channels=alert_channels("weather_warnings", subscription),
                timestamp=now,
            )
            for subscription in self.users_for_farm(alert.farm_id, "weather_warnings")
        ]
        return await self._fan_out(alert.farm_id, notifications)

    async def send_sensor_alert(self, reading: SensorReading, alert: Alert) -> FanoutResult:
        now = self.clock()
        notifications = [
            Notification(
                id=_new_id("sensor"),
                user_id=subscription.user_id,
                farm_id=reading.farm_id,
                type="sensor_alerts",
                title=f"Sensor Alert: {reading.sensor_type.value}",
                message=alert.message,
                data={
                    "sensorType": reading.sensor_type.value,
                    "sensorId": reading.sensor_id,
                    "value": reading.value,
                    "alertType": alert.type,
                    "actionRequired": alert.action,
                },
                priority="high" if alert.type == "critical" else "normal",
                channels=alert_channels("sensor_alerts", subscription),
                timestamp=now,
            )
            for subscription in self.users_for_farm(reading.farm_id, "sensor_alerts")
        ]
        return await self._fan_out(reading.farm_id, notifications)

    async def send_crop_recommendations(
        self, user_id: str, recommendations: List[CropRecommendation]
    ) -> Optional[DeliveryReport]:
        """Notify one user of new recommendations; None when not subscribed."""
        subscription = self._eligible(user_id, "crop_recommendations")
        if subscription is None:
            return None

        notification = Notification(
            id=_new_id("crop_rec"),
            user_id=user_id,
            type="crop_recommendations",
            title="New Crop Recommendations Available",
            message=f"We have {len(recommendations)} new crop recommendations based on your farm data",
            data={
                "recommendations": [rec.to_store() for rec in recommendations[:3]],
                "totalCount": len(recommendations),
            },
            channels=subscription.channels,
            timestamp=self.clock(),
        )
        return await self.store_and_deliver(notification)

    async def send_system_alert(self, alert: SystemAlertRequest) -> FanoutResult:
        """
        Route an operational alert.

        ``system_maintenance`` goes to every active subscriber;
        ``farm_specific`` and ``crop_specific`` go to users of that farm or
        crop who subscribed to ``system_alerts``.
        """
        if alert.type == "system_maintenance":
            recipients, scope = self.all_active_users(), "all"
        elif alert.type == "farm_specific":
            recipients, scope = self.users_for_farm(alert.farm_id or "", "system_alerts"), alert.farm_id
        else:
            recipients, scope = self.users_for_crop(alert.crop or "", "system_alerts"), alert.crop

        now = self.clock()
        data: Dict[str, Any] = {"severity": alert.severity, "actionRequired": alert.action}
        notifications = [
            Notification(
                id=_new_id("alert"),
                user_id=subscription.user_id,
                farm_id=alert.farm_id,
                type="system_alert",
                title=f"Alert: {alert.type}",
                message=alert.message,
                data=data,
                priority="high" if alert.severity == "high" else "normal",
                channels=subscription.channels,
                timestamp=now,
            )
            for subscription in recipients
        ]
        return await self._fan_out(scope or "", notifications)
