"""FamHub: in-memory data cache and background refresh for the family organizer."""

__version__ = "0.1.0"

from famhub.exceptions import DataAggregationError, FamHubError, RefreshFailedError
from famhub.models.cache import CacheConfig, CacheKey, RefreshConfig
from famhub.services.cache_service import DataCacheService
from famhub.services.refresh_service import RealTimeRefreshService

__all__ = [
    "CacheConfig",
    "CacheKey",
    "DataAggregationError",
    "DataCacheService",
    "FamHubError",
    "RealTimeRefreshService",
    "RefreshConfig",
    "RefreshFailedError",
]
