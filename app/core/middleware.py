"""HTTP middleware and per-route rate limiting."""

import logging
import time

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

import redis.asyncio as redis

from app.config import settings
from app.core.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

UNLIMITED_PATHS = ("/health", "/docs", "/redoc", "/openapi.json")


def _limits_disabled() -> bool:
    return settings.debug or settings.environment == "test"


def client_key(request: Request) -> str:
    """Identify the caller: authenticated user, else first forwarded IP."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class SlidingWindowCounter:
    """Per-key request counter over the last minute, stored in a Redis sorted set."""

    def __init__(self, prefix: str, redis_url: str | None = None) -> None:
        self.prefix = prefix
        self.redis_url = redis_url or settings.redis_url
        self._redis: redis.Redis | None = None

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        return self._redis

    async def hit(self, key: str) -> int:
        """Record one request and return how many preceded it in the window.

        Raises:
            redis.RedisError: Redis is unreachable
        """
        now = time.time()
        redis_key = f"{self.prefix}:{key}"
        async with self._client().pipeline(transaction=True) as pipe:
            await pipe.zremrangebyscore(redis_key, 0, now - WINDOW_SECONDS)
            await pipe.zcard(redis_key)
            await pipe.zadd(redis_key, {f"{now:.6f}": now})
            await pipe.expire(redis_key, WINDOW_SECONDS)
            results = await pipe.execute()
        return results[1]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Global per-client limit across the whole API."""

    def __init__(self, app, requests_per_minute: int = 100, redis_url: str | None = None):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.counter = SlidingWindowCounter("rate_limit", redis_url)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if _limits_disabled() or path in UNLIMITED_PATHS or "/webhooks/" in path:
            return await call_next(request)

        try:
            seen = await self.counter.hit(client_key(request))
        except redis.RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return await call_next(request)

        reset = str(int(time.time()) + WINDOW_SECONDS)
        if seen >= self.requests_per_minute:
            logger.warning(f"Rate limit hit by {client_key(request)} on {path}")
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please try again later."},
                headers={
                    "Retry-After": str(WINDOW_SECONDS),
                    "X-RateLimit-Limit": str(self.requests_per_minute),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": reset,
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.requests_per_minute - seen - 1))
        response.headers["X-RateLimit-Reset"] = reset
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration; echo a request id."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(time.time_ns())
        request.state.request_id = request_id

        response = await call_next(request)

        duration = time.perf_counter() - started
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{duration:.3f}s request_id={request_id}"
        )
        if duration > 1.0:
            logger.warning(f"SLOW REQUEST: {request.method} {request.url.path} took {duration:.3f}s")
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not settings.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class RateLimiter:
    """Tighter per-route limit, used as a route dependency.

    Args:
        requests_per_minute: Max requests allowed per caller
        key_prefix: Redis key prefix, one per protected route
    """

    def __init__(self, requests_per_minute: int = 10, key_prefix: str = "api"):
        self.requests_per_minute = requests_per_minute
        self.key_prefix = key_prefix
        self.counter = SlidingWindowCounter(f"rate:{key_prefix}")

    async def __call__(self, request: Request) -> None:
        """Raise RateLimitExceeded once the caller is over the limit."""
        if _limits_disabled():
            return
        try:
            seen = await self.counter.hit(client_key(request))
        except redis.RedisError as e:
            logger.warning(f"Rate limiter unavailable for {self.key_prefix}: {e}")
            return
        if seen >= self.requests_per_minute:
            raise RateLimitExceeded()


# Ledger-mutating routes
checkout_limiter = RateLimiter(requests_per_minute=10, key_prefix="checkout")
cancel_limiter = RateLimiter(requests_per_minute=5, key_prefix="cancel")
