"""FamHub: FastAPI application entry point and composition root."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from famhub import __version__
from famhub.config import settings
from famhub.db.database import connect
from famhub.services.aggregation_service import DataAggregationService
from famhub.services.cache_service import DataCacheService
from famhub.services.refresh_service import RealTimeRefreshService
from famhub.services.scheduler import AsyncioScheduler

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the cache and refresh services once per process and tear them down on exit."""
    logger.info("Starting FamHub server...")
    db = await connect(settings.database_path)
    scheduler = AsyncioScheduler()

    cache = DataCacheService(settings.cache_config(), scheduler=scheduler)
    refresh_service = RealTimeRefreshService(
        cache,
        DataAggregationService(db),
        settings.refresh_config(),
        scheduler=scheduler,
    )
    app.state.db = db
    app.state.cache = cache
    app.state.refresh_service = refresh_service

    refresh_service.start()
    logger.info("FamHub server ready")
    yield

    refresh_service.dispose()
    cache.dispose()
    scheduler.cancel_all()
    await db.close()
    logger.info("FamHub server stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="FamHub",
        description="Family organizer data service with cached, auto-refreshing dashboard data",
        version=__version__,
        lifespan=lifespan,
    )

    from famhub.api.dashboard import router as dashboard_router

    app.include_router(dashboard_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "famhub", "version": __version__}

    return app


app = create_app()
