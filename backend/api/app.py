"""
FastAPI application factory for the Pitchside API service.

Creates the app with:
- Live match REST routes and feed pause/resume controls
- Middleware stack
- Health and status endpoints
- Lifespan management: the live feed session and the prediction poller
  run in-process and are torn down on shutdown
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI

from shared.config import get_settings
from shared.prediction_store import PredictionStore
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import SERVICE_INFO, start_metrics_server

from api.dependencies import get_session, init_dependencies, reset_dependencies
from api.middleware import setup_middleware
from api.routes.live import router as live_router
from ingest.feed.session import LiveFeedSession
from ingest.matching.prediction_matcher import PredictionMatcher
from ingest.providers.predictions import PredictionPoller, PredictionSource

logger = get_logger(__name__)

SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without a hub connection."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Startup wires the prediction store, poller, matcher and feed session;
    shutdown stops the session, which cancels its timers and the poller.
    """
    settings = get_settings()
    setup_logging("api")
    start_metrics_server()
    SERVICE_INFO.info({
        "version": SERVICE_VERSION,
        "environment": settings.environment.value,
    })

    store = PredictionStore()
    source = PredictionSource(settings=settings)
    poller = PredictionPoller(source, store, settings=settings)
    session = LiveFeedSession(store, poller=poller, settings=settings)
    matcher = PredictionMatcher(store, settings=settings)
    init_dependencies(session, matcher)

    await session.start()
    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        feed_state=session.state.value,
    )

    yield

    await session.stop()
    await source.close()
    reset_dependencies()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without the hub."""
    app = FastAPI(
        title="Pitchside API",
        description="Live match feed reconciled with pre-match predictions",
        version=SERVICE_VERSION,
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware
    setup_middleware(app)

    # REST routes
    app.include_router(live_router)

    # Health check
    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/v1/status", tags=["system"])
    async def system_status() -> dict[str, Any]:
        """Feed connection flags and prediction load state."""
        session = get_session()
        store = session.store
        metadata = store.metadata
        return {
            "status": "ok" if session.connected else "degraded",
            "feed": {
                "state": session.state.value,
                "connected": session.connected,
                "paused": session.paused,
            },
            "predictions": {
                "loaded": store.is_loaded,
                "source": store.source,
                "records": len(store.get()),
                "loaded_at": store.loaded_at.isoformat() if store.loaded_at else None,
                "date": metadata.date if metadata else None,
            },
        }

    return app


app = create_app()
