"""
Notification schemas.

Subscriptions with delivery preferences, stored notifications, per-channel
delivery reports and the request bodies of the alert builders.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator

from agriadvisor.schemas.base import BaseSchema

Channel = Literal["push", "email", "sms"]
Frequency = Literal["immediate", "daily", "weekly", "never"]
Priority = Literal["low", "normal", "high"]

DEFAULT_NOTIFICATION_TYPES = ["price_alerts", "weather_warnings", "crop_recommendations"]
HH_MM = r"^([01]\d|2[0-3]):[0-5]\d$"


class QuietHours(BaseSchema):
    """Daily window ``[start, end)`` in the subscriber's local time."""
    start: str = Field("22:00", pattern=HH_MM)
    end: str = Field("06:00", pattern=HH_MM)


class NotificationPreferences(BaseSchema):
    frequency: Frequency = "immediate"
    quiet_hours: QuietHours = QuietHours()
    language: str = "en"
    timezone: str = "Asia/Kolkata"
    price_change_threshold: float = Field(5.0, ge=0, description="Minimum price change (%) to alert on")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'")
        return v


class SubscriptionRequest(BaseSchema):
    user_id: str = Field(..., min_length=1)
    farm_id: Optional[str] = None
    notification_types: List[str] = Field(default_factory=lambda: list(DEFAULT_NOTIFICATION_TYPES))
    channels: List[Channel] = Field(default_factory=lambda: ["push"])
    preferences: NotificationPreferences = NotificationPreferences()


class Subscription(SubscriptionRequest):
    is_active: bool = True
    subscribed_at: datetime
    last_updated: datetime


class SubscribeResponse(BaseSchema):
    status: str = "subscribed"
    user_id: str


class Notification(BaseSchema):
    id: str
    user_id: str
    farm_id: Optional[str] = None
    type: str
    title: str
    message: str
    data: Dict[str, Any] = {}
    priority: Priority = "normal"
    channels: List[Channel]
    timestamp: datetime
    status: Literal["pending", "delivered"] = "pending"
    delivered_at: Optional[datetime] = None
    read: bool = False
    read_at: Optional[datetime] = None


class ChannelResult(BaseSchema):
    status: Literal["sent", "failed"]
    channel: str
    timestamp: Optional[datetime] = None
    error: Optional[str] = None


class DeliveryReport(BaseSchema):
    stored: bool
    notification_id: str
    delivered: Dict[str, ChannelResult]


class UserDelivery(BaseSchema):
    user_id: str
    result: DeliveryReport


class FanoutResult(BaseSchema):
    """Outcome of an alert sent to every eligible user in a scope."""
    scope: str
    users_notified: int
    results: List[UserDelivery]


class UserNotifications(BaseSchema):
    user_id: str
    notifications: List[Notification]
    unread_count: int
    last_updated: datetime


class MarkReadResult(BaseSchema):
    status: str = "marked_as_read"
    notification_id: str


class SystemStats(BaseSchema):
    total_sent: int = 0
    by_type: Dict[str, int] = {}
    by_day: Dict[str, int] = {}


class NotificationStats(BaseSchema):
    """Per-user stats when ``user_id`` is set, otherwise system-wide stats."""
    user_id: Optional[str] = None
    total_notifications: Optional[int] = None
    unread_count: Optional[int] = None
    by_type: Optional[Dict[str, int]] = None
    recent_activity: Optional[List[Notification]] = None
    last_notification: Optional[datetime] = None
    system_stats: Optional[SystemStats] = None
    timestamp: datetime


class ScheduledTypeResult(BaseSchema):
    type: str
    subscribers_notified: int
    results: List[UserDelivery]


class ScheduledRunResult(BaseSchema):
    processed_types: int
    results: List[ScheduledTypeResult]
    timestamp: datetime


class PriceAlertRequest(BaseSchema):
    crop: str = Field(..., min_length=1)
    current_price: float
    previous_price: Optional[float] = None
    change_percent: float
    trend: Optional[str] = None


class WeatherAlertRequest(BaseSchema):
    farm_id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, description="e.g. heavy_rain, heatwave, frost")
    message: str
    severity: Literal["minor", "moderate", "severe"] = "moderate"
    action_required: Optional[str] = None
    valid_until: Optional[datetime] = None


class SystemAlertRequest(BaseSchema):
    type: Literal["system_maintenance", "farm_specific", "crop_specific"]
    message: str
    severity: str = "medium"
    action: Optional[str] = None
    farm_id: Optional[str] = None
    crop: Optional[str] = None
