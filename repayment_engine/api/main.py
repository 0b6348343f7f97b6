"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from repayment_engine.api.middleware import RequestIDMiddleware, MetricsMiddleware
from repayment_engine.api.v1 import recalculation, schedule
from repayment_engine.infrastructure.observability.logging import setup_logging
from repayment_engine.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Repayment Engine",
        description="Loan payment schedule recalculation and reconciliation service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(recalculation.router, prefix="/v1", tags=["recalculations"])
    app.include_router(schedule.router, prefix="/v1", tags=["schedules"])

    return app


app = create_app()
