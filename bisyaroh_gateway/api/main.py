"""FastAPI application factory"""

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from bisyaroh_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from bisyaroh_gateway.api.v1 import timelines, students, payments, digital
from bisyaroh_gateway.domain.exceptions import (
    DomainException,
    ValidationError,
    NotFoundError,
    ConcurrencyError,
    PersistenceError,
)
from bisyaroh_gateway.infrastructure.cache import TTLCache
from bisyaroh_gateway.infrastructure.observability.logging import setup_logging
from bisyaroh_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)

RETRY_MESSAGE = "Pembayaran gagal diproses, silakan coba lagi"


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Map domain failures to HTTP; store failures only ever show a retry prompt"""
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})
    if isinstance(exc, NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})
    if isinstance(exc, ConcurrencyError):
        logging.warning(f"Concurrency conflict: {exc}", extra={"request_id": request_id})
        return JSONResponse(status_code=409, content={"detail": RETRY_MESSAGE})
    if isinstance(exc, PersistenceError):
        logging.error(f"Persistence error: {exc}", extra={"request_id": request_id})
        return JSONResponse(status_code=503, content={"detail": RETRY_MESSAGE})

    logging.error(f"Unexpected domain error: {exc}", extra={"request_id": request_id})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Bisyaroh Payment Gateway",
        description="Payment allocation and credit carry-forward for TPQ bisyaroh",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # One cache per app instance, injected into services
    app.state.cache = TTLCache(settings.cache_ttl_seconds)

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
    app.include_router(timelines.router, prefix="/v1", tags=["timelines"])
    app.include_router(students.router, prefix="/v1", tags=["students"])
    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(digital.router, prefix="/v1", tags=["digital-payments"])

    return app


app = create_app()
