"""FastAPI application factory"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from goal_verifier.api.dependencies import build_orchestrator
from goal_verifier.api.middleware import RequestIDMiddleware, MetricsMiddleware
from goal_verifier.api.v1 import agent, goals, webhooks
from goal_verifier.infrastructure.database.models import Base
from goal_verifier.infrastructure.database.session import SessionLocal, engine
from goal_verifier.infrastructure.observability.logging import setup_logging
from goal_verifier.services.orchestrator import VerificationOrchestrator
from goal_verifier.config import Settings, settings as default_settings

# Setup structured logging
setup_logging(default_settings.log_level)


def create_app(
    orchestrator: VerificationOrchestrator | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or default_settings
    orchestrator = orchestrator or build_orchestrator(SessionLocal, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.database_auto_create:
            Base.metadata.create_all(bind=engine)
        if settings.verification_autostart:
            await orchestrator.start()
        yield
        # In-flight cycle finishes before shutdown completes
        orchestrator.stop()
        await orchestrator.join()

    app = FastAPI(
        title="Goal Verification Service",
        description="Wearable-data goal verification and automated payouts",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.webhook_secret = settings.whoop_webhook_secret

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
    app.include_router(goals.router, prefix="/v1", tags=["goals"])
    app.include_router(agent.router, prefix="/v1", tags=["agent"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])

    return app


app = create_app()
