"""Rate limiting with an in-memory sliding window and an optional shared Redis backend."""

import asyncio
import logging
import re
import time
from collections import OrderedDict, deque

import redis.asyncio as redis
from fastapi import HTTPException, Request, status

from deseo.core.config import settings


logger = logging.getLogger("deseo.rate_limit")

MAX_TRACKED_KEYS = 10000
_GLOB_SPECIAL = re.compile(r"[*?\[\]\\]")


def _escape_glob(value: str) -> str:
    return _GLOB_SPECIAL.sub(lambda match: "\\" + match.group(0), value)


class InMemoryRateLimiter:
    """
    Sliding-window limiter for a single process.

    Each key keeps the timestamps of its accepted hits inside the window.
    Keys are held in least-recently-used order and the oldest are dropped
    once ``max_keys`` is exceeded.
    """

    def __init__(self, max_keys: int = MAX_TRACKED_KEYS) -> None:
        self._max_keys = max_keys
        self._hits: OrderedDict[str, deque[float]] = OrderedDict()
        self._evicted = 0

    def hit(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        """Record one request for ``key``; returns ``(allowed, retry_after_seconds)``."""
        now = time.monotonic()
        window = self._hits.get(key)
        if window is None:
            window = self._hits[key] = deque()
        self._hits.move_to_end(key)

        while window and window[0] <= now - window_seconds:
            window.popleft()

        if len(window) >= max_requests:
            retry_after = int(window[0] + window_seconds - now) + 1
            return False, max(1, retry_after)

        window.append(now)
        self._evict_overflow()
        return True, 0

    def _evict_overflow(self) -> None:
        overflow = len(self._hits) - self._max_keys
        if overflow <= 0:
            return
        for _ in range(overflow):
            self._hits.popitem(last=False)
        self._evicted += overflow
        logger.warning("Rate limit table full, evicted %d least recently used keys", overflow)

    async def is_allowed(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        return self.hit(key, max_requests, window_seconds)

    async def reset(self, key: str) -> None:
        self._hits.pop(key, None)

    def get_stats(self) -> dict:
        return {
            "backend": "memory",
            "tracked_keys": len(self._hits),
            "evicted_keys": self._evicted,
            "max_keys": self._max_keys,
        }


class RedisRateLimiter:
    """
    Fixed-window counter shared across workers through Redis.

    While Redis is unreachable the limiter backs off with an exponential
    cooldown and answers from an in-process sliding window instead.
    """

    def __init__(self, redis_dsn: str | None = None, fallback: InMemoryRateLimiter | None = None) -> None:
        self._redis_dsn = redis_dsn or settings.redis_dsn
        self._fallback = fallback or InMemoryRateLimiter()
        self._redis: redis.Redis | None = None
        self._connect_lock = asyncio.Lock()
        self._cooldown_until_monotonic = 0.0
        self._connect_failures = 0

    def _key(self, key: str, window_seconds: int) -> str:
        bucket = int(time.time()) // max(1, window_seconds)
        return f"ratelimit:{key}:{bucket}"

    def _in_cooldown(self) -> bool:
        return time.monotonic() < self._cooldown_until_monotonic

    def _mark_redis_failed(self, exc: Exception) -> None:
        self._redis = None
        self._connect_failures += 1
        cooldown = min(60.0, 1.0 * (2 ** min(self._connect_failures, 6)))
        self._cooldown_until_monotonic = time.monotonic() + cooldown
        logger.warning(
            "RedisRateLimiter redis unavailable failures=%s cooldown_s=%.0f error=%s",
            self._connect_failures,
            cooldown,
            exc,
        )

    async def _get_redis(self) -> redis.Redis | None:
        if not self._redis_dsn or not str(self._redis_dsn).strip():
            return None
        if self._redis is not None:
            return self._redis
        if self._in_cooldown():
            return None
        async with self._connect_lock:
            if self._redis is not None:
                return self._redis
            if self._in_cooldown():
                return None
            try:
                client = redis.from_url(
                    self._redis_dsn,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )
                await client.ping()
                self._redis = client
                self._connect_failures = 0
                self._cooldown_until_monotonic = 0.0
                logger.info("RedisRateLimiter connected redis=%s", self._redis_dsn)
            except (redis.RedisError, OSError) as exc:
                self._mark_redis_failed(exc)
        return self._redis

    async def is_allowed(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        client = await self._get_redis()
        if client is None:
            return self._fallback.hit(key, max_requests, window_seconds)
        redis_key = self._key(key, window_seconds)
        try:
            pipe = client.pipeline()
            pipe.incr(redis_key)
            pipe.ttl(redis_key)
            count, ttl = await pipe.execute()
            if ttl is None or int(ttl) < 0:
                await client.expire(redis_key, window_seconds)
                ttl = window_seconds
        except redis.RedisError as exc:
            self._mark_redis_failed(exc)
            return self._fallback.hit(key, max_requests, window_seconds)

        if int(count) > max_requests:
            return False, max(1, int(ttl))
        return True, 0

    async def reset(self, key: str) -> None:
        """Forget `key` in the fallback and delete its buckets for every window."""
        await self._fallback.reset(key)
        client = await self._get_redis()
        if client is None:
            return
        pattern = f"ratelimit:{_escape_glob(key)}:*"
        try:
            async for redis_key in client.scan_iter(match=pattern):
                await client.delete(redis_key)
        except redis.RedisError as exc:
            self._mark_redis_failed(exc)

    def get_stats(self) -> dict:
        return {
            "backend": "redis",
            "connected": self._redis is not None,
            "connect_failures": self._connect_failures,
            "cooldown_s": max(0.0, self._cooldown_until_monotonic - time.monotonic()),
            "fallback": self._fallback.get_stats(),
        }


def _build_limiter() -> InMemoryRateLimiter | RedisRateLimiter:
    if (settings.rate_limit_backend or "memory").lower() == "redis":
        return RedisRateLimiter()
    return InMemoryRateLimiter()


limiter = _build_limiter()


def get_client_identifier(request: Request) -> str:
    """Get unique identifier for the client."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
        return f"ip:{client_ip}"

    if request.client:
        return f"ip:{request.client.host}"

    user_agent = request.headers.get("User-Agent", "")
    return f"ua:{hash(user_agent)}"


async def check_rate_limit(
    request: Request,
    max_requests: int | None = None,
    window_seconds: int | None = None,
    key_suffix: str = "",
) -> None:
    """
    Imperative rate limit check.

    Raises HTTPException(429) if rate limit exceeded.
    """
    if not settings.rate_limit_enabled:
        return

    client_id = get_client_identifier(request)
    key = f"{client_id}:{request.url.path}:{key_suffix}"

    allowed, retry_after = await limiter.is_allowed(
        key,
        max_requests or settings.rate_limit_requests,
        window_seconds or settings.rate_limit_window_seconds,
    )

    if not allowed:
        logger.warning(
            "Rate limit exceeded for %s on %s, retry_after=%ds",
            client_id,
            request.url.path,
            retry_after,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests",
            headers={"Retry-After": str(retry_after)},
        )
