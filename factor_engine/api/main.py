"""FastAPI application factory"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from factor_engine.api.dependencies import get_request_id
from factor_engine.api.middleware import RequestIDMiddleware, MetricsMiddleware
from factor_engine.api.v1 import factors, installments, items, operations, responses
from factor_engine.domain.exceptions import (
    DomainException,
    LedgerWriteFailure,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from factor_engine.infrastructure.observability.logging import setup_logging
from factor_engine.config import settings

# Setup structured logging
setup_logging(settings.log_level)

STATUS_CODES = [
    (ValidationError, 422),
    (StateConflictError, 409),
    (NotFoundError, 404),
    (LedgerWriteFailure, 503),
]


def status_code_for(exc: DomainException) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Render domain errors as {"error": code, "detail": message, ...identifiers}"""
    status_code = status_code_for(exc)
    log = logging.error if status_code >= 500 else logging.warning
    log(
        f"{type(exc).__name__}: {exc.message}",
        extra={"request_id": get_request_id(request), "error_code": exc.code, "path": request.url.path},
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Factor Operation Engine",
        description="Receivables discounting operations with a factor",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(factors.router, prefix="/v1", tags=["factors"])
    app.include_router(operations.router, prefix="/v1", tags=["operations"])
    app.include_router(items.router, prefix="/v1", tags=["items"])
    app.include_router(responses.router, prefix="/v1", tags=["responses"])
    app.include_router(installments.router, prefix="/v1", tags=["installments"])

    return app


app = create_app()
