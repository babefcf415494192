"""Global error handlers returning a consistent JSON error shape.

Every error body has a ``detail``. Server-side failures also carry the
``requestId`` so a player's report can be matched to the logs.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger()

# Seconds a client should wait before retrying after the database dropped out
DATABASE_RETRY_AFTER = 5


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(OperationalError)
    async def database_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
        """Lost or refused database connections. No ledger write was committed."""
        logger.error("database_unavailable", error=str(exc.orig))
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable", "requestId": _request_id(request)},
            headers={"Retry-After": str(DATABASE_RETRY_AFTER)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all: log with context, never leak internals to the client."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "requestId": _request_id(request)},
        )
