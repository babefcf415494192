"""Structured logging configuration with structlog.

The API logs through structlog; the arq worker and third-party libraries log
through the standard library. Both end up on the root handler at the
configured level, and every structlog event carries the service environment
and version.
"""

import logging
from typing import Any

import structlog

from mindcase.config import Settings

# Libraries that log each request or query at INFO
_NOISY_LOGGERS = ("sqlalchemy.engine", "stripe", "httpx")


def _add_service_info(settings: Settings) -> structlog.types.Processor:
    def processor(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:  # noqa: ANN401
        event_dict.setdefault("environment", settings.environment)
        event_dict.setdefault("version", settings.app_version)
        return event_dict

    return processor


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON (production) or console (development) output."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _add_service_info(settings),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
