"""Rate limiting middleware for the moderation API.

Sliding-window limits kept in Redis so every API worker shares them.

- Per-actor limits for authenticated requests, per-IP otherwise
- Stricter limits for submission, single decisions and bulk decisions
- HTTP 429 with Retry-After and X-RateLimit-* headers
- Health endpoints are never limited

If Redis is unreachable requests are let through uncounted; moderation
must not stop because the limiter's store is down.
"""

import hashlib
import logging
import time
import uuid
from typing import Optional, Tuple

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import redis.asyncio as redis
from redis.exceptions import RedisError

from gatekeeper.core.config import Settings, get_settings
from gatekeeper.core.security import decode_token

logger = logging.getLogger(__name__)

# Paths excluded from rate limiting
EXCLUDED_PATHS = {
    "/health",
    "/health/ready",
}


class RateLimiter:
    """Sliding window rate limiter backed by a Redis sorted set per key."""

    def __init__(self, settings: Optional[Settings] = None, redis_url: Optional[str] = None):
        self.settings = settings or get_settings()
        self.redis_url = redis_url or self.settings.redis_url
        self._redis: Optional[redis.Redis] = None

        self.enabled = self.settings.rate_limit_enabled
        self.window = self.settings.rate_limit_window
        self.limits = {
            "default": self.settings.rate_limit_default,
            "auth": self.settings.rate_limit_auth,
            "submit": self.settings.rate_limit_submit,
            "decision": self.settings.rate_limit_decision,
            "bulk": self.settings.rate_limit_bulk,
        }

    async def get_redis(self) -> Optional[redis.Redis]:
        """Get or create the Redis connection; None when Redis is down."""
        if self._redis is None:
            client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            try:
                await client.ping()
            except (RedisError, OSError) as e:
                logger.warning(f"Rate limiter store unavailable, not limiting: {e}")
                return None
            self._redis = client
        return self._redis

    def _get_key(self, identifier: str, category: str) -> str:
        # Tokens and addresses are not stored in clear
        hashed = hashlib.sha256(identifier.encode()).hexdigest()[:16]
        return f"gatekeeper:ratelimit:{category}:{hashed}"

    async def is_allowed(
        self,
        identifier: str,
        category: str = "default",
        limit: Optional[int] = None,
    ) -> Tuple[bool, int, int, int]:
        """
        Count this request against the window for ``identifier``.

        Returns:
            Tuple of (allowed, remaining, limit, reset_time)
        """
        limit = limit or self.limits.get(category, self.limits["default"])
        r = await self.get_redis()
        if r is None:
            return True, limit, limit, 0

        key = self._get_key(identifier, category)
        now = time.time()
        try:
            async with r.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, now - self.window)
                pipe.zcard(key)
                pipe.zadd(key, {f"{now}:{uuid.uuid4().hex}": now})
                pipe.expire(key, self.window)
                results = await pipe.execute()
        except (RedisError, OSError) as e:
            logger.warning(f"Rate limit check failed for {category}, allowing request: {e}")
            return True, limit, limit, 0

        current_count = results[1]
        reset_time = int(now) + self.window
        if current_count >= limit:
            return False, 0, limit, reset_time
        return True, max(0, limit - current_count - 1), limit, reset_time

    async def close(self):
        if self._redis is not None:
            await self._redis.close()
            self._redis = None


def classify_request(request: Request) -> str:
    """Limit category for a request; decision and intake endpoints are stricter."""
    if request.method != "POST":
        return "default"
    path = request.url.path.rstrip("/")
    if path.endswith("/subjects/bulk-decision"):
        return "bulk"
    if path.endswith("/decision"):
        return "decision"
    if path.endswith("/subjects") or path.endswith("/resubmit"):
        return "submit"
    return "default"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies the limiter stored on ``app.state.rate_limiter``.

    Requests carrying a valid bearer token are counted per actor; anything
    else is counted per client IP under the default limit.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
        if limiter is None or not limiter.enabled or request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        identifier, category = self._get_rate_params(request)
        allowed, remaining, total, reset_time = await limiter.is_allowed(identifier, category)

        if not allowed:
            retry_after = max(1, reset_time - int(time.time()))
            logger.warning(f"Rate limit exceeded: {category} for {identifier}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": "Rate limit exceeded. Please try again later."},
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(total),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset_time),
                },
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(total)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        if reset_time:
            response.headers["X-RateLimit-Reset"] = str(reset_time)
        return response

    def _get_rate_params(self, request: Request) -> Tuple[str, str]:
        """Returns (identifier, category)."""
        actor = None
        authorization = request.headers.get("authorization", "")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            actor = decode_token(token)

        if actor is None:
            return f"ip:{self._get_client_ip(request)}", "default"

        category = classify_request(request)
        return f"actor:{actor.id}", "auth" if category == "default" else category

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP from request, handling proxies."""
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"
