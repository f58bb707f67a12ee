import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Tuple

from fastapi import Request, Response, status

from .errors import ApiError, ErrorCodes


class RateLimiter:
    """Sliding-window limiter kept in process memory."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def hit(self, key: str, limit: int, window: int) -> Tuple[bool, float, int]:
        """Record a hit; returns (allowed, retry_after_seconds, remaining)."""
        now = self._clock()
        async with self._lock:
            bucket = self._hits.setdefault(key, deque())
            while bucket and now - bucket[0] > window:
                bucket.popleft()
            if len(bucket) >= limit:
                retry_after = max(0.0, window - (now - bucket[0]))
                return False, retry_after, 0
            bucket.append(now)
            return True, 0.0, limit - len(bucket)

    def reset(self) -> None:
        self._hits.clear()


limiter = RateLimiter()


def _client_key(request: Request) -> str:
    user = getattr(request.state, "user_id", None)
    if user is not None:
        return f"user:{user}"
    return f"ip:{request.client.host if request.client else 'anonymous'}"


def rate_limit_dependency(scope: str, limit: int, window_seconds: int) -> Callable[[Request, Response], Awaitable[None]]:
    async def dependency(request: Request, response: Response) -> None:
        key = f"{scope}:{_client_key(request)}"
        allowed, retry_after, remaining = await limiter.hit(key, limit, window_seconds)
        if not allowed:
            headers = {
                "Retry-After": str(int(retry_after) or window_seconds),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            }
            raise ApiError(
                status.HTTP_429_TOO_MANY_REQUESTS,
                "Too many requests. Please try again later.",
                ErrorCodes.RATE_LIMIT_EXCEEDED,
                headers=headers,
            )
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)

    return dependency
