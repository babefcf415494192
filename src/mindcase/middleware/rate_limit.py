"""Redis-backed fixed window rate limiting middleware.

Requests are counted per client IP and per rule group. The first rule whose
path prefix matches wins, so the narrow groups (auth, earn) are listed before
the general API group. When Redis is missing or failing, requests pass
unlimited.
"""

import time
from dataclasses import dataclass
from typing import Any

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from mindcase.config import Settings
from mindcase.redis_client import get_redis

logger = structlog.get_logger()

# Paths exempt from rate limiting
_EXEMPT_PATHS = frozenset({"/health", "/ready"})


@dataclass(frozen=True)
class RateLimitRule:
    """A named counter applied to every path starting with one of ``prefixes``."""

    name: str
    prefixes: tuple[str, ...]
    limit: int
    window_seconds: int
    message: str = "Rate limit exceeded. Try again later."

    def matches(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.prefixes)


def build_rate_limit_rules(settings: Settings) -> list[RateLimitRule]:
    """Rule groups in match order: auth, earn, then the general API."""
    return [
        RateLimitRule(
            name="auth",
            prefixes=("/api/auth/login", "/api/auth/register"),
            limit=settings.rate_limit_auth,
            window_seconds=settings.rate_limit_auth_window_seconds,
            message="Too many authentication attempts, please try again later.",
        ),
        RateLimitRule(
            name="earn",
            prefixes=("/api/progress/minigame/", "/api/ads/reward"),
            limit=settings.rate_limit_earn,
            window_seconds=settings.rate_limit_earn_window_seconds,
            message="Too many requests, please slow down.",
        ),
        RateLimitRule(
            name="api",
            prefixes=("/api/",),
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        ),
    ]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limit requests per IP using Redis counters."""

    def __init__(self, app: Any, rules: list[RateLimitRule]) -> None:  # noqa: ANN401
        super().__init__(app)
        self.rules = rules

    def _rule_for(self, path: str) -> RateLimitRule | None:
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Check the matching rule's counter, return 429 if exceeded."""
        path = request.url.path
        rule = None if path in _EXEMPT_PATHS else self._rule_for(path)
        if rule is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        window = int(time.time()) // rule.window_seconds
        rate_key = f"ratelimit:{rule.name}:{client_ip}:{window}"

        try:
            redis = get_redis()
        except RuntimeError:
            # Redis not initialized: let the request through without rate limiting
            return await call_next(request)

        pipe = redis.pipeline()
        pipe.incr(rate_key)
        pipe.expire(rate_key, rule.window_seconds + 1)
        try:
            results: list[Any] = await pipe.execute()
        except RedisError as e:
            logger.warning("rate_limit_unavailable", group=rule.name, error=str(e))
            return await call_next(request)

        current_count: int = results[0]
        remaining = max(0, rule.limit - current_count)

        if current_count > rule.limit:
            logger.warning("rate_limit_exceeded", group=rule.name, client_ip=client_ip, path=path)
            return JSONResponse(
                status_code=429,
                content={"detail": rule.message},
                headers={
                    "Retry-After": str(rule.window_seconds),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Limit": str(rule.limit),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Limit"] = str(rule.limit)
        return response
