"""
Redis-backed key-value store for the Smart Farm Advisory API.

Every service keeps its state here: cached weather and prices, sensor
readings and daily aggregates, farm profiles, subscriptions and user
notification inboxes. Values are stored as JSON with an optional TTL.
"""

import json
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError

from agriadvisor.config import settings
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)


class KeyValueStore:
    """
    JSON key-value store on top of Redis.

    When Redis cannot be reached the store disables itself: reads return
    None and writes return False, which callers treat as "use fallback".
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        """
        Initialize the store.

        Args:
            client: Pre-built Redis client (e.g. in tests). When omitted a
                connection is opened from settings.
        """
        self.client: Optional[redis.Redis] = client
        self.enabled = client is not None
        if client is None:
            self._connect()

    def _connect(self):
        """Establish connection to Redis."""
        try:
            self.client = redis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                db=settings.REDIS_DB,
                decode_responses=True,
                socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT
            )
            self.client.ping()
            self.enabled = True
            logger.info(f"Key-value store connected: {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        except (RedisError, ConnectionError) as e:
            logger.warning(f"Key-value store unavailable: {e}. Running without persistence.")
            self.enabled = False
            self.client = None

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from the store.

        Args:
            key: Store key

        Returns:
            Decoded value, or None if absent, expired or store disabled
        """
        if not self.enabled or not self.client:
            return None

        try:
            value = self.client.get(key)
            if value is None:
                logger.debug(f"KV MISS: {key}")
                return None
            logger.debug(f"KV HIT: {key}")
            return json.loads(value)
        except (RedisError, json.JSONDecodeError) as e:
            logger.error(f"KV GET error for key '{key}': {e}")
            return None

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None
    ) -> bool:
        """
        Set value in the store.

        Args:
            key: Store key
            value: Value to store (will be JSON serialized)
            ttl: Time to live in seconds; None keeps the key until overwritten

        Returns:
            True if successful, False otherwise
        """
        if not self.enabled or not self.client:
            return False

        try:
            serialized = json.dumps(value, default=str)
            if ttl:
                self.client.setex(key, ttl, serialized)
            else:
                self.client.set(key, serialized)
            logger.debug(f"KV SET: {key} (TTL: {ttl}s)")
            return True
        except (RedisError, TypeError, ValueError) as e:
            logger.error(f"KV SET error for key '{key}': {e}")
            return False

    def delete(self, key: str) -> bool:
        """
        Delete key from the store.

        Args:
            key: Store key to delete

        Returns:
            True if successful, False otherwise
        """
        if not self.enabled or not self.client:
            return False

        try:
            self.client.delete(key)
            logger.debug(f"KV DELETE: {key}")
            return True
        except RedisError as e:
            logger.error(f"KV DELETE error for key '{key}': {e}")
            return False

    def update(
        self,
        key: str,
        func: Callable[[Optional[Any]], Any],
        ttl: Optional[int] = None
    ) -> Optional[Any]:
        """
        Atomically read-modify-write a value.

        The key is WATCHed; if another writer changes it between the read
        and the write, redis-py retries the whole callable. ``func`` receives
        the current decoded value (None when absent) and must return the new
        value without side effects.

        Args:
            key: Store key
            func: Transformation applied to the current value
            ttl: Time to live in seconds for the written value

        Returns:
            The stored value, or None if the store is disabled or failed
        """
        if not self.enabled or not self.client:
            return None

        def _apply(pipe):
            raw = pipe.get(key)
            current = json.loads(raw) if raw is not None else None
            updated = func(current)
            serialized = json.dumps(updated, default=str)
            pipe.multi()
            if ttl:
                pipe.setex(key, ttl, serialized)
            else:
                pipe.set(key, serialized)
            return updated

        try:
            result = self.client.transaction(_apply, key, value_from_callable=True)
            logger.debug(f"KV UPDATE: {key} (TTL: {ttl}s)")
            return result
        except (RedisError, TypeError, ValueError) as e:
            logger.error(f"KV UPDATE error for key '{key}': {e}")
            return None

    def health_check(self) -> dict:
        """
        Check Redis health status.

        Returns:
            Dict with health status information
        """
        if not self.enabled or not self.client:
            return {
                "status": "disabled",
                "message": "Key-value store is not connected"
            }

        try:
            self.client.ping()
            return {"status": "healthy"}
        except RedisError as e:
            return {
                "status": "unhealthy",
                "error": str(e)
            }


def make_key(*parts: Any) -> str:
    """
    Create a store key from parts.

    Example:
        >>> make_key("iot", "latest", "farm_1", "soil_ph")
        'iot:latest:farm_1:soil_ph'
    """
    return ":".join(str(part) for part in parts)


def append_unique(value: str) -> Callable[[Optional[list]], list]:
    """Build an ``update`` callable that adds ``value`` to a JSON list once."""
    def _append(current: Optional[list]) -> list:
        members = list(current or [])
        if value not in members:
            members.append(value)
        return members
    return _append


def remove_member(value: str) -> Callable[[Optional[list]], list]:
    """Build an ``update`` callable that drops ``value`` from a JSON list."""
    def _remove(current: Optional[list]) -> list:
        return [member for member in (current or []) if member != value]
    return _remove


# Pre-defined keys for the stored entities
KV_KEYS = {
    "weather_current": lambda location: make_key("weather", "current", location),
    "weather_forecast": lambda location, days: make_key("weather", "forecast", location, days),
    "sensor_reading": lambda farm_id, sensor_id, ts: make_key("iot", farm_id, sensor_id, ts),
    "sensor_latest": lambda farm_id, sensor_type: make_key("iot", "latest", farm_id, sensor_type),
    "sensor_daily": lambda farm_id, sensor_type, day: make_key("iot", "daily", farm_id, sensor_type, day),
    "market_prices": lambda crop, region: make_key("market", "prices", crop, region),
    "recommendations": lambda owner_id: make_key("recommendations", owner_id),
    "farm_profile": lambda farm_id: make_key("farm", "profile", farm_id),
    "farm_users": lambda farm_id: make_key("farm", "users", farm_id),
    "crop_users": lambda crop: make_key("crop", "users", crop),
    "subscription": lambda user_id: make_key("notifications", "subscription", user_id),
    "notification_queue": lambda ntype: make_key("notifications", "queue", ntype),
    "user_notifications": lambda user_id: make_key("notifications", "user", user_id),
    "all_users": lambda: make_key("notifications", "all_users"),
    "system_stats": lambda: make_key("notifications", "system", "stats"),
}


# TTL presets (in seconds); settings override them per deployment
KV_TTL = {
    "weather_current": 3600,      # 1 hour
    "weather_forecast": 7200,     # 2 hours
    "sensor_data": 2592000,       # 30 days
    "market_prices": 1800,        # 30 minutes
    "recommendations": 86400,     # 24 hours
}
