"""FastAPI application factory"""

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from facility_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from facility_ledger.api.v1 import facilities, loans
from facility_ledger.domain.exceptions import ConcurrentModificationError, DomainException, NotFoundError
from facility_ledger.infrastructure.observability.logging import setup_logging
from facility_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def domain_status_code(exc: DomainException) -> int:
    """Unknown entities are 404, lost races 409, every other rule violation 422"""
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConcurrentModificationError):
        return 409
    return 422


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    logging.warning(
        f"Domain error: {exc}",
        extra={"request_id": getattr(request.state, "request_id", "unknown"), "error": type(exc).__name__},
    )
    return JSONResponse(
        status_code=domain_status_code(exc),
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Facility Ledger",
        description="Loan ledger, lifecycle and revolving-period service for bank credit facilities",
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
    app.include_router(facilities.router, prefix="/v1", tags=["facilities"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])

    return app


app = create_app()
