import json

from propertyhub.services.cache import (
    MemoryCacheBackend,
    ResponseCache,
    collect_property_cache_user_ids,
    invalidate_property_caches,
)
from propertyhub.services import cache as cache_module


class FailingBackend:
    def get(self, key):
        raise ConnectionError("redis down")

    def setex(self, key, ttl_seconds, value):
        raise ConnectionError("redis down")

    def scan_iter(self, match):
        raise ConnectionError("redis down")


def test_memory_backend_expires_entries(monkeypatch):
    backend = MemoryCacheBackend()
    now = {"value": 100.0}
    monkeypatch.setattr("propertyhub.services.cache.time.monotonic", lambda: now["value"])

    backend.setex("cache:/properties:user:1", 60, json.dumps({"total": 1}))
    assert backend.get("cache:/properties:user:1") is not None
    now["value"] += 61
    assert backend.get("cache:/properties:user:1") is None


def test_pattern_invalidation_only_touches_matching_user():
    response_cache = ResponseCache(MemoryCacheBackend())
    response_cache.set("cache:/properties:user:1", {"total": 1}, 60)
    response_cache.set("cache:/properties/5?limit=2:user:1", {"id": 5}, 60)
    response_cache.set("cache:/properties:user:2", {"total": 3}, 60)

    assert response_cache.invalidate_pattern("cache:/properties*:user:1") == 2
    assert response_cache.get("cache:/properties:user:1") is None
    assert response_cache.get("cache:/properties:user:2") == {"total": 3}


def test_backend_failures_are_logged_not_raised(caplog):
    response_cache = ResponseCache(FailingBackend())

    assert response_cache.get("cache:key") is None
    response_cache.set("cache:key", {"a": 1}, 30)
    assert response_cache.invalidate_pattern("cache:*") == 0
    assert "Cache read failed" in caplog.text
    assert "Cache write failed" in caplog.text


def test_collect_cache_user_ids_includes_manager_and_owners():
    class Ownership:
        def __init__(self, owner_id):
            self.owner_id = owner_id

    class FakeProperty:
        manager_id = 7
        owners = [Ownership(8), Ownership(9)]

    assert collect_property_cache_user_ids(FakeProperty(), 1) == {1, 7, 8, 9}
    assert collect_property_cache_user_ids(None, 1) == {1}


def test_invalidate_property_caches_uses_shared_cache(monkeypatch):
    shared = ResponseCache(MemoryCacheBackend())
    monkeypatch.setattr(cache_module, "cache", shared)
    shared.set("cache:/properties:user:4", {"total": 0}, 60)
    shared.set("cache:/properties/1/activity:user:4", {"activities": []}, 60)
    shared.set("cache:/properties:user:5", {"total": 0}, 60)

    invalidate_property_caches({4})

    assert shared.get("cache:/properties:user:4") is None
    assert shared.get("cache:/properties/1/activity:user:4") is None
    assert shared.get("cache:/properties:user:5") == {"total": 0}
