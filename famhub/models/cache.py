"""Data structures shared by the data cache and the refresh coordinator."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Literal, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

CacheEvent = Literal["hit", "miss", "refresh", "eviction", "write"]
InvalidationReason = Literal["ttl_expired", "manual", "data_changed", "memory_pressure", "forced"]
RefreshEvent = Literal["started", "completed", "failed", "data_changed", "cache_updated"]

CacheEventListener = Callable[[CacheEvent, str, Any], None]
RefreshEventListener = Callable[[RefreshEvent, Any, BaseException | None], None]

MAX_STATUS_ERRORS = 10


class CacheKey(str, Generic[T]):
    """A cache key that remembers the type of value stored under it.

    Behaves exactly like ``str`` at runtime; the type parameter only
    informs static checkers, e.g. ``CacheKey[AggregatedFamilyData]("family_data")``.
    """

    __slots__ = ()


class CacheConfig(BaseModel):
    default_ttl: float = Field(default=300, gt=0)
    max_entries: int = Field(default=100, ge=1)
    # Fraction of the TTL after which a hit triggers a background refresh
    refresh_threshold: float = Field(default=0.8, gt=0, le=1)
    enable_background_refresh: bool = True
    cleanup_interval: float = Field(default=60, gt=0)
    refresh_timeout: float | None = Field(default=30, gt=0)


class RefreshConfig(BaseModel):
    family_data_interval: float = Field(default=300, gt=0)
    enable_auto_refresh: bool = True
    stale_threshold: float = Field(default=600, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=5, ge=0)
    # Time limit for a single fetch attempt inside a refresh cycle
    attempt_timeout: float | None = Field(default=30, gt=0)
    enable_smart_refresh: bool = True


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: float
    expires_at: float
    version: int = 1
    hits: int = 0

    @property
    def ttl(self) -> float:
        return self.expires_at - self.timestamp

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    refreshes: int = 0
    evictions: int = 0
    total_entries: int = 0
    hit_rate: float = 0.0
    average_age: float = 0.0


@dataclass
class EntryInfo:
    key: str
    age: float
    ttl: float
    remaining_ttl: float
    hits: int
    version: int
    is_expired: bool
    should_refresh: bool


@dataclass
class RefreshErrorRecord:
    timestamp: float
    message: str
    retry_count: int


@dataclass
class RefreshStatus:
    is_refreshing: bool = False
    last_refresh: float | None = None
    next_refresh: float | None = None
    errors: deque[RefreshErrorRecord] = field(default_factory=lambda: deque(maxlen=MAX_STATUS_ERRORS))
    refresh_count: int = 0
    success_rate: float = 1.0


@dataclass
class DataChangeSignature:
    """Cheap fingerprint of the family dataset, compared field by field."""

    todo_count: int
    event_count: int
    grocery_count: int
    document_count: int
    checksum: str
    last_modified: float = field(default=0.0, compare=False)
