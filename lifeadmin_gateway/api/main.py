"""FastAPI application factory"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from lifeadmin_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from lifeadmin_gateway.api.v1 import imports, renewals, rules, suggestions
from lifeadmin_gateway.domain.exceptions import (
    DomainException,
    ForbiddenError,
    HasAssociatedEntriesError,
    InvalidFormatError,
    InvalidIndexError,
    NoTransactionsFound,
    NotFoundError,
    ParseError,
    ValidationError,
)
from lifeadmin_gateway.infrastructure.observability.logging import setup_logging
from lifeadmin_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)

# Most specific first; InvalidIndexError must win over ValidationError
STATUS_BY_EXCEPTION = (
    (HasAssociatedEntriesError, 409),
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (InvalidIndexError, 400),
    (ValidationError, 400),
    (InvalidFormatError, 422),
    (ParseError, 422),
    (NoTransactionsFound, 422),
)


def status_for(exc: DomainException) -> int:
    for exc_type, status_code in STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code = status_for(exc)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, HasAssociatedEntriesError):
        body["associated_entries"] = exc.count
    if isinstance(exc, InvalidIndexError):
        body["index"] = exc.index

    logger.warning(
        "Request rejected",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "error": type(exc).__name__,
            "status_code": status_code,
        },
    )
    return JSONResponse(status_code=status_code, content=body)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Life Admin Import Gateway",
        description="Bank statement import, recurring payment detection and renewal reminders",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(imports.router, prefix="/v1", tags=["imports"])
    app.include_router(rules.router, prefix="/v1", tags=["rule-sets"])
    app.include_router(renewals.router, prefix="/v1", tags=["renewals"])
    app.include_router(suggestions.router, prefix="/v1", tags=["suggestions"])

    return app


app = create_app()
