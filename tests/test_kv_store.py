"""
Tests for the Redis-backed key-value store.
"""

from agriadvisor.utils.kv_store import KV_KEYS, KeyValueStore, append_unique, make_key, remove_member


class TestKeyValueStore:
    """Test JSON get/set/update against fakeredis."""

    def test_set_and_get_round_trip(self, store):
        assert store.set("farm:profile:f1", {"id": "f1", "crops": ["rice"]})
        assert store.get("farm:profile:f1") == {"id": "f1", "crops": ["rice"]}

    def test_missing_key_returns_none(self, store):
        assert store.get("nope") is None

    def test_ttl_applied(self, store, redis_client):
        store.set("market:prices:rice:all", {"price": 2800}, ttl=1800)
        assert 0 < redis_client.ttl("market:prices:rice:all") <= 1800

    def test_no_ttl_keeps_key(self, store, redis_client):
        store.set("farm:profile:f2", {"id": "f2"})
        assert redis_client.ttl("farm:profile:f2") == -1

    def test_delete(self, store):
        store.set("k", 1)
        assert store.delete("k")
        assert store.get("k") is None

    def test_update_applies_function(self, store):
        store.set("counter", {"count": 1})
        result = store.update("counter", lambda current: {"count": current["count"] + 1})

        assert result == {"count": 2}
        assert store.get("counter") == {"count": 2}

    def test_update_missing_key_receives_none(self, store):
        seen = []

        def init(current):
            seen.append(current)
            return {"count": 1}

        store.update("fresh", init, ttl=60)
        assert seen == [None]
        assert store.get("fresh") == {"count": 1}

    def test_append_unique(self, store):
        key = KV_KEYS["crop_users"]("rice")
        store.update(key, append_unique("u1"))
        store.update(key, append_unique("u2"))
        store.update(key, append_unique("u1"))
        assert store.get(key) == ["u1", "u2"]

    def test_remove_member(self, store):
        key = KV_KEYS["farm_users"]("farm_1")
        store.update(key, append_unique("u1"))
        store.update(key, append_unique("u2"))
        store.update(key, remove_member("u1"))
        store.update(key, remove_member("missing"))
        assert store.get(key) == ["u2"]

    def test_health_check(self, store):
        assert store.health_check() == {"status": "healthy"}


class TestDisabledStore:
    """A store without a Redis connection answers with fallbacks."""

    def disabled(self):
        store = KeyValueStore.__new__(KeyValueStore)
        store.client = None
        store.enabled = False
        return store

    def test_reads_and_writes_degrade(self):
        store = self.disabled()
        assert store.get("k") is None
        assert store.set("k", 1) is False
        assert store.delete("k") is False
        assert store.update("k", lambda current: 1) is None
        assert store.health_check()["status"] == "disabled"


class TestKeys:
    """Test key construction."""

    def test_make_key(self):
        assert make_key("iot", "latest", "farm_1", "soil_ph") == "iot:latest:farm_1:soil_ph"

    def test_predefined_keys(self):
        assert KV_KEYS["sensor_daily"]("f1", "humidity", "2024-06-05") == "iot:daily:f1:humidity:2024-06-05"
        assert KV_KEYS["market_prices"]("cotton", "all") == "market:prices:cotton:all"
        assert KV_KEYS["all_users"]() == "notifications:all_users"
