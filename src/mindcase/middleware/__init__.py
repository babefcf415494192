"""Middleware registration."""

from fastapi import FastAPI

from mindcase.config import Settings
from mindcase.middleware.cors import setup_cors
from mindcase.middleware.error_handler import setup_error_handlers
from mindcase.middleware.logging import setup_logging
from mindcase.middleware.rate_limit import RateLimitMiddleware, build_rate_limit_rules
from mindcase.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette executes middleware in reverse-add order (last added = outermost).
    CORS must be outermost so it wraps error responses from inner middleware (e.g. 429).
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RateLimitMiddleware, rules=build_rate_limit_rules(settings))
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
