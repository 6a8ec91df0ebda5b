"""Dashboard API routes: cached family data plus cache and refresh diagnostics."""

from __future__ import annotations

import dataclasses
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from famhub.models.common import ErrorDetail, ErrorResponse
from famhub.models.family import AggregatedFamilyData
from famhub.services.cache_service import DataCacheService
from famhub.services.refresh_service import RealTimeRefreshService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["dashboard"])


def _refresh_service(request: Request) -> RealTimeRefreshService:
    return request.app.state.refresh_service


def _cache(request: Request) -> DataCacheService:
    return request.app.state.cache


def _unavailable() -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(
            code="FAMILY_DATA_UNAVAILABLE",
            message="Family data could not be loaded and nothing is cached",
        )
    )
    return JSONResponse(status_code=503, content=body.model_dump())


@router.get("/family-data", response_model=AggregatedFamilyData)
async def get_family_data(request: Request, refresh: bool = False):
    """Cached family data; ``refresh=true`` drops the cached copy first."""
    data = await _refresh_service(request).get_family_data(force_refresh=refresh)
    if data is None:
        return _unavailable()
    return data


@router.post("/family-data/refresh", response_model=AggregatedFamilyData)
async def force_refresh(request: Request):
    data = await _refresh_service(request).force_refresh()
    if data is None:
        logger.warning("Forced refresh produced no data")
        return _unavailable()
    return data


@router.get("/refresh/status")
async def refresh_status(request: Request):
    service = _refresh_service(request)
    status = service.get_status()
    return {
        **dataclasses.asdict(status),
        "errors": [dataclasses.asdict(e) for e in status.errors],
        "is_running": service.is_running,
        "is_data_stale": service.is_data_stale(),
    }


@router.get("/cache/stats")
async def cache_stats(request: Request):
    return dataclasses.asdict(_cache(request).get_stats())


@router.get("/cache/freshness")
async def cache_freshness(request: Request):
    freshness = _refresh_service(request).get_data_freshness()
    return {
        name: dataclasses.asdict(info) if info is not None else None
        for name, info in freshness.items()
    }
