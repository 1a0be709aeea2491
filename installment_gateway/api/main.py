"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from installment_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from installment_gateway.api.v1 import policies, portal, postal, references, sales
from installment_gateway.infrastructure.observability.logging import setup_logging
from installment_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Installment Gateway",
        description="Installment schedules, payment references and postal collection batches for credit sales",
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
    app.include_router(policies.router, prefix="/v1", tags=["policies"])
    app.include_router(sales.router, prefix="/v1", tags=["sales"])
    app.include_router(references.router, prefix="/v1", tags=["references"])
    app.include_router(postal.router, prefix="/v1", tags=["postal"])
    app.include_router(portal.router, prefix="/v1", tags=["portal"])

    return app


app = create_app()
