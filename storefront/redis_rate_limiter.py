"""Redis-backed rate limiter for sign-in attempts and writes."""
import logging
import time
from typing import Optional, Tuple

import redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.auth import extract_access_token
from storefront.config import AUTH_PAGES, RATE_LIMIT_AUTH_PER_MINUTE, RATE_LIMIT_WRITES_PER_MINUTE
from storefront.monitoring import rate_limit_exceeded_counter

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Sliding-window limits kept in Redis sorted sets.

    - Per client IP on the login and registration endpoints
    - Per access token on every other write request

    The Redis client is taken from ``app.state.redis_client``; without one, or
    when Redis errors, requests pass (fail open).
    """

    def __init__(
        self,
        app,
        auth_requests_per_minute: int = RATE_LIMIT_AUTH_PER_MINUTE,
        writes_per_minute: int = RATE_LIMIT_WRITES_PER_MINUTE,
        window_seconds: int = 60
    ):
        """
        Initialize Redis-backed rate limiter.

        Args:
            app: ASGI application
            auth_requests_per_minute: Max sign-in / sign-up requests per IP per window
            writes_per_minute: Max write requests per session per window
            window_seconds: Sliding window size in seconds
        """
        super().__init__(app)
        self.auth_requests_per_minute = auth_requests_per_minute
        self.writes_per_minute = writes_per_minute
        self.window_seconds = window_seconds

    def _check_rate_limit(
        self,
        client: redis.Redis,
        key: str,
        limit: int
    ) -> Tuple[bool, int]:
        """
        Check rate limit using Redis sorted set (sliding window).

        Algorithm:
        1. Remove timestamps older than window
        2. Count requests in window
        3. Add current request
        4. Set TTL

        Returns:
            Tuple of (is_allowed, current_count)
        """
        try:
            current_time = time.time()
            window_start = current_time - self.window_seconds

            pipe = client.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {str(current_time): current_time})
            pipe.expire(key, self.window_seconds + 1)
            results = pipe.execute()

            # Count BEFORE adding current request
            count = results[1]
            return count < limit, count + 1

        except redis.RedisError as e:
            logger.error(f"Redis rate limit error: {e}")
            return True, 0

    def _limit_for(self, request: Request) -> Optional[Tuple[str, int, str]]:
        if request.method not in WRITE_METHODS:
            return None

        if request.url.path in AUTH_PAGES:
            client_ip = request.client.host if request.client else "unknown"
            if "x-forwarded-for" in request.headers:
                client_ip = request.headers["x-forwarded-for"].split(",")[0].strip()
            return f"rate:auth:{client_ip}", self.auth_requests_per_minute, "auth"

        token = extract_access_token(request)
        if token:
            return f"rate:writes:{token[-16:]}", self.writes_per_minute, "writes"
        return None

    async def dispatch(self, request: Request, call_next):
        client = getattr(request.app.state, "redis_client", None)
        limit = self._limit_for(request) if client is not None else None

        if limit is not None:
            key, max_requests, limit_type = limit
            allowed, count = self._check_rate_limit(client, key, max_requests)
            if not allowed:
                rate_limit_exceeded_counter.add(1, {"limit_type": limit_type})
                logger.warning("Rate limit exceeded", extra={
                    "limit_type": limit_type,
                    "path": request.url.path,
                    "requests_in_window": count,
                    "limit": max_requests
                })
                return JSONResponse(
                    status_code=429,
                    content={"detail": f"Rate limit exceeded. Maximum {max_requests} requests per minute."},
                    headers={"Retry-After": str(self.window_seconds)}
                )

        return await call_next(request)
