"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from job_tracker.api.credentials import router as credentials_router
from job_tracker.api.processing import router as processing_router
from job_tracker.config import AppConfig, get_config
from job_tracker.database import get_session_factory, init_db
from job_tracker.enrichment.writer import reconcile_pending
from job_tracker.logging_config import setup_logging
from job_tracker.services import build_services

logger = structlog.get_logger(__name__)

# Module-level config cache
_config: AppConfig | None = None


def _get_config() -> AppConfig:
    global _config
    if _config is None:
        _config = get_config()
    return _config


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    config = app.state.config
    setup_logging(level=config.log_level, log_file=config.log_file)
    init_db(config)

    services = build_services(config, get_session_factory())
    app.state.services = services
    if config.enrichment_enabled:
        services.worker.start()
        # The queue lives in memory; rebuild it from the pending flags
        reconcile_pending(services.session_factory, services.worker)

    logger.info(
        "server_starting",
        host=config.host,
        port=config.port,
        enrichment_enabled=config.enrichment_enabled,
        requests_per_minute=config.enrichment_requests_per_minute,
    )
    yield
    logger.info("server_shutting_down")
    services.shutdown()


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Application factory: create and configure the FastAPI app."""
    config = config or _get_config()

    app = FastAPI(
        title="Job Application Tracker",
        description="Import job applications from email and enrich them from posting pages",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(credentials_router)
    app.include_router(processing_router)

    @app.get("/api/health", tags=["health"])
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = _get_config()
    uvicorn.run(
        "job_tracker.main:app",
        host=config.host,
        port=config.port,
        reload=True,
    )
