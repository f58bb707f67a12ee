"""Best-effort response cache.

Redis when ``REDIS_URL`` is configured, otherwise an in-process store. Cache
failures are logged and swallowed: a stale or missing entry only costs a
database round trip.
"""

import fnmatch
import json
import logging
import threading
import time
from typing import Any, Dict, Iterable, Optional, Set, Tuple

import redis
from fastapi import Request

from ..config import settings

logger = logging.getLogger(__name__)


class MemoryCacheBackend:
    def __init__(self) -> None:
        self._store: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                self._store.pop(key, None)
                return None
            return value

    def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        with self._lock:
            self._store[key] = (time.monotonic() + ttl_seconds, value)

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._store.pop(key, None) is not None:
                    removed += 1
        return removed

    def scan_iter(self, match: str) -> Iterable[str]:
        with self._lock:
            return [key for key in self._store if fnmatch.fnmatchcase(key, match)]

    def flushdb(self) -> None:
        with self._lock:
            self._store.clear()


class ResponseCache:
    def __init__(self, client: Any) -> None:
        self.client = client

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(key)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self.client.setex(key, int(ttl_seconds), json.dumps(value, default=str))
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    def invalidate(self, key: str) -> None:
        try:
            self.client.delete(key)
        except Exception as exc:
            logger.warning("Cache invalidation failed for %s: %s", key, exc)

    def invalidate_pattern(self, pattern: str) -> int:
        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                self.client.delete(*keys)
            return len(keys)
        except Exception as exc:
            logger.warning("Cache pattern invalidation failed for %s: %s", pattern, exc)
            return 0

    def clear(self) -> None:
        try:
            self.client.flushdb()
        except Exception as exc:
            logger.warning("Cache clear failed: %s", exc)


def _build_client() -> Any:
    if settings.redis_url:
        return redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=0.75,
            socket_connect_timeout=0.75,
        )
    return MemoryCacheBackend()


cache = ResponseCache(_build_client())


def request_cache_key(request: Request, user_id: int) -> str:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return f"cache:{path}:user:{user_id}"


def collect_property_cache_user_ids(property_obj: Any, current_user_id: Optional[int] = None) -> Set[int]:
    user_ids: Set[int] = set()
    if current_user_id is not None:
        user_ids.add(current_user_id)
    if property_obj is None:
        return user_ids
    if getattr(property_obj, "manager_id", None) is not None:
        user_ids.add(property_obj.manager_id)
    for ownership in getattr(property_obj, "owners", None) or []:
        if ownership.owner_id is not None:
            user_ids.add(ownership.owner_id)
    return user_ids


def invalidate_property_caches(user_ids: Iterable[int]) -> None:
    for user_id in user_ids:
        cache.invalidate_pattern(f"cache:/properties*:user:{user_id}")
