"""
API Middleware

- Request logging, with request id and caller bound into the log context
- Rate limiting per caller, shared through Redis when it is available
- Security headers
"""

import asyncio
import time
import uuid
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from storefront.serving.cache import get_redis

logger = structlog.get_logger(__name__)

QUIET_PATHS = ("/api/v1/health/live", "/api/v1/health/ready")


def caller_key(request: Request) -> str:
    """Authenticated callers are limited per user, everyone else per address."""
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its outcome and duration"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            user_id=request.headers.get("X-User-Id"),
        )

        quiet = request.url.path in QUIET_PATHS
        if not quiet:
            logger.info("Request started", method=request.method, path=request.url.path)

        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        if not quiet:
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=elapsed_ms,
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window request limit per caller.

    Counters live in Redis so that every worker shares them. Without Redis
    (or while it is failing) each process counts on its own.
    """

    def __init__(self, app, max_requests: int = 100, window_seconds: int = 60):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._local: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._clock = time.monotonic
        self._next_sweep = 0.0

    async def _count_shared(self, key: str) -> Optional[int]:
        try:
            client = get_redis()
        except RuntimeError:
            return None
        window = int(time.time() // self.window_seconds)
        redis_key = f"ratelimit:{key}:{window}"
        try:
            count = await client.incr(redis_key)
            if count == 1:
                await client.expire(redis_key, self.window_seconds)
            return count
        except RedisError as e:
            logger.warning("Shared rate limit unavailable", error=str(e))
            return None

    def _sweep(self, now: float) -> None:
        """Forget callers without a hit in the current window."""
        expired = [key for key, hits in self._local.items() if not hits or now - hits[-1] >= self.window_seconds]
        for key in expired:
            del self._local[key]
        self._next_sweep = now + self.window_seconds

    async def _count_local(self, key: str) -> int:
        now = self._clock()
        async with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            hits = self._local[key]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            hits.append(now)
            return len(hits)

    async def hit(self, key: str) -> Tuple[bool, int]:
        """Record a request; returns (allowed, remaining)."""
        count = await self._count_shared(key)
        if count is None:
            count = await self._count_local(key)
        return count <= self.max_requests, max(self.max_requests - count, 0)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        key = caller_key(request)
        allowed, remaining = await self.hit(key)
        limit_headers = {
            "X-RateLimit-Limit": str(self.max_requests),
            "X-RateLimit-Remaining": str(remaining),
        }

        if not allowed:
            logger.warning("Rate limit exceeded", caller=key, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={"error": "RateLimited", "message": "Too many requests, slow down"},
                headers={"Retry-After": str(self.window_seconds), **limit_headers},
            )

        response = await call_next(request)
        response.headers.update(limit_headers)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Hardening headers; order data must never be cached by intermediaries"""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "no-referrer",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(self.HEADERS)
        return response
