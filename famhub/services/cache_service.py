"""In-memory data cache with TTL, stale-while-revalidate refresh and hit-count eviction.

Runs on a single asyncio event loop and takes no locks: every mutation of the
entry map happens between await points. The one accepted race is that a
background refresh finishing after an explicit ``invalidate``/``set`` on the
same key overwrites it (last write wins).
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, TypeVar

from famhub.models.cache import (
    CacheConfig,
    CacheEntry,
    CacheEvent,
    CacheEventListener,
    CacheKey,
    CacheStats,
    EntryInfo,
    InvalidationReason,
)
from famhub.services.scheduler import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")

RefreshFn = Callable[[], Awaitable[Any]]


class DataCacheService:
    """Key/value cache whose warm reads never wait on the data source.

    ``fetch`` serves live entries immediately and, once an entry is older than
    ``refresh_threshold`` of its TTL, refreshes it in a background task. Misses
    and expired entries are fetched inline; if that fetch fails the stale value
    (or ``None``) is returned instead of raising.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or CacheConfig()
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock

        self._cache: dict[str, CacheEntry] = {}
        self._refreshing: set[str] = set()
        self._refresh_callbacks: dict[str, RefreshFn] = {}
        # Keys whose refresh function enforces its own time limits
        self._self_timed: set[str] = set()
        self._refresh_timers: dict[str, Any] = {}
        self._background_tasks: set[asyncio.Task] = set()
        self._listeners: list[CacheEventListener] = []

        self._hits = 0
        self._misses = 0
        self._refreshes = 0
        self._evictions = 0

        # The cleanup sweep is installed on first use so the cache can be built outside an event loop.
        self._cleanup_handle: Any = None
        self._disposed = False

    @property
    def config(self) -> CacheConfig:
        return self._config

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: CacheKey[T] | str) -> T | None:
        """Return the live value for ``key`` without fetching. Counts a hit or a miss."""
        entry = self._cache.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            self._record_hit(key, entry)
            return entry.data

        self._misses += 1
        self._emit("miss", key)
        return None

    async def fetch(
        self,
        key: CacheKey[T] | str,
        refresh_fn: Callable[[], Awaitable[T]],
        ttl: float | None = None,
        *,
        self_timed: bool = False,
    ) -> T | None:
        """Return the value for ``key``, calling ``refresh_fn`` when it is missing or aging.

        Never raises because of ``refresh_fn``: failures are logged and the
        previous value (if any) or ``None`` is returned. Pass ``self_timed=True``
        when ``refresh_fn`` applies its own time limits (e.g. per retry attempt)
        so ``refresh_timeout`` does not cancel it part way.
        """
        self._ensure_cleanup()
        ttl = ttl if ttl is not None else self._config.default_ttl
        now = self._clock()
        entry = self._cache.get(key)
        self._remember_callback(key, refresh_fn, self_timed)

        if entry is not None and not entry.is_expired(now):
            self._record_hit(key, entry)
            age = now - entry.timestamp
            if (
                self._config.enable_background_refresh
                and age > ttl * self._config.refresh_threshold
                and key not in self._refreshing
            ):
                self._start_background_refresh(key, refresh_fn, ttl, self_timed)
            return entry.data

        self._misses += 1
        self._emit("miss", key)

        try:
            data = await self._call(refresh_fn, self_timed)
        except Exception as e:
            logger.error("Failed to refresh cache for key %s: %s", key, e)
            return entry.data if entry is not None else None

        self._store_refreshed(key, data, ttl)
        return data

    def has(self, key: CacheKey | str) -> bool:
        """True if ``key`` holds a live entry. Expired entries are dropped on the way."""
        entry = self._cache.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self.invalidate(key, "ttl_expired")
            return False
        return True

    def get_entry_info(self, key: CacheKey | str) -> EntryInfo | None:
        entry = self._cache.get(key)
        if entry is None:
            return None

        now = self._clock()
        age = now - entry.timestamp
        return EntryInfo(
            key=key,
            age=age,
            ttl=entry.ttl,
            remaining_ttl=max(0.0, entry.expires_at - now),
            hits=entry.hits,
            version=entry.version,
            is_expired=entry.is_expired(now),
            should_refresh=age > entry.ttl * self._config.refresh_threshold,
        )

    def get_stats(self) -> CacheStats:
        lookups = self._hits + self._misses
        now = self._clock()
        average_age = (
            sum(now - e.timestamp for e in self._cache.values()) / len(self._cache)
            if self._cache
            else 0.0
        )
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            refreshes=self._refreshes,
            evictions=self._evictions,
            total_entries=len(self._cache),
            hit_rate=self._hits / lookups if lookups else 0.0,
            average_age=average_age,
        )

    def get_keys(self) -> list[str]:
        return list(self._cache)

    def get_size(self) -> int:
        return len(self._cache)

    # ------------------------------------------------------------------
    # Writes and invalidation
    # ------------------------------------------------------------------

    def set(self, key: CacheKey[T] | str, data: T, ttl: float | None = None) -> None:
        """Store ``data`` under ``key``, bumping the version of an existing entry."""
        self._ensure_cleanup()
        ttl = ttl if ttl is not None else self._config.default_ttl
        previous = self._cache.get(key)

        if previous is None and len(self._cache) >= self._config.max_entries:
            self._evict_least_used()

        now = self._clock()
        self._cache[key] = CacheEntry(
            data=data,
            timestamp=now,
            expires_at=now + ttl,
            version=previous.version + 1 if previous is not None else 1,
        )
        self._emit("write", key, data)

    def invalidate(self, key: CacheKey | str, reason: InvalidationReason = "manual") -> bool:
        """Drop ``key`` with its refresh marker and periodic timer. Returns whether it existed."""
        if self._cache.pop(key, None) is None:
            return False
        self._refreshing.discard(key)
        self._cancel_timer(key)
        self._emit("eviction", key, {"reason": reason})
        return True

    def invalidate_pattern(
        self, pattern: str | re.Pattern[str], reason: InvalidationReason = "manual"
    ) -> int:
        """Invalidate every key the regex matches (``re.search``). Returns count removed."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        matching = [k for k in self._cache if regex.search(k)]
        return sum(1 for k in matching if self.invalidate(k, reason))

    def clear(self, reason: InvalidationReason = "manual") -> None:
        """Remove all entries, timers and stored refresh callbacks."""
        removed = len(self._cache)
        self._cache.clear()
        self._refreshing.clear()
        self._cancel_all_timers()
        self._evictions += removed
        logger.info("Cache cleared: %d entries removed (%s)", removed, reason)

    # ------------------------------------------------------------------
    # Proactive refresh
    # ------------------------------------------------------------------

    def schedule_refresh(
        self,
        key: CacheKey[T] | str,
        refresh_fn: Callable[[], Awaitable[T]],
        interval: float,
        ttl: float | None = None,
    ) -> None:
        """Re-fetch ``key`` every ``interval`` seconds, replacing any earlier schedule."""
        self._ensure_cleanup()
        self._cancel_timer(key)

        async def _scheduled() -> None:
            try:
                data = await self._call(refresh_fn)
            except Exception as e:
                logger.error("Scheduled refresh failed for key %s: %s", key, e)
                return
            self._store_refreshed(key, data, ttl)

        self._refresh_timers[key] = self._scheduler.schedule_repeating(interval, _scheduled)
        self._remember_callback(key, refresh_fn, self_timed=False)

    async def force_refresh(self, key: CacheKey[T] | str) -> T | None:
        """Re-fetch ``key`` now with its last known refresh function."""
        refresh_fn = self._refresh_callbacks.get(key)
        if refresh_fn is None:
            logger.warning("No refresh function available for key: %s", key)
            return None

        entry = self._cache.get(key)
        ttl = entry.ttl if entry is not None else None
        try:
            data = await self._call(refresh_fn, key in self._self_timed)
        except Exception as e:
            logger.error("Force refresh failed for key %s: %s", key, e)
            return None

        self._store_refreshed(key, data, ttl)
        return data

    def cleanup_expired_entries(self) -> int:
        """Invalidate every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._cache.items() if e.is_expired(now)]
        for key in expired:
            self.invalidate(key, "ttl_expired")
        if expired:
            logger.info("Cache cleanup: removed %d expired entries", len(expired))
        return len(expired)

    async def wait_for_refreshes(self) -> None:
        """Wait until every in-flight background refresh has finished."""
        while any(not t.done() for t in self._background_tasks):
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Listeners and lifecycle
    # ------------------------------------------------------------------

    def add_event_listener(self, listener: CacheEventListener) -> None:
        self._listeners.append(listener)

    def remove_event_listener(self, listener: CacheEventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def dispose(self) -> None:
        self._disposed = True
        self.clear("forced")
        if self._cleanup_handle is not None:
            self._scheduler.cancel(self._cleanup_handle)
            self._cleanup_handle = None
        for task in list(self._background_tasks):
            task.cancel()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record_hit(self, key: str, entry: CacheEntry) -> None:
        entry.hits += 1
        self._hits += 1
        self._emit("hit", key, entry.data)

    def _store_refreshed(self, key: str, data: Any, ttl: float | None) -> None:
        self.set(key, data, ttl)
        self._refreshes += 1
        self._emit("refresh", key, data)

    def _ensure_cleanup(self) -> None:
        if self._cleanup_handle is not None or self._disposed:
            return
        try:
            self._cleanup_handle = self._scheduler.schedule_repeating(
                self._config.cleanup_interval, self._run_cleanup
            )
        except RuntimeError as e:
            # No running event loop yet; the next fetch or write tries again.
            logger.debug("Cache cleanup sweep not scheduled yet: %s", e)

    def _remember_callback(self, key: str, refresh_fn: RefreshFn, self_timed: bool) -> None:
        self._refresh_callbacks[key] = refresh_fn
        if self_timed:
            self._self_timed.add(key)
        else:
            self._self_timed.discard(key)

    async def _call(self, refresh_fn: RefreshFn, self_timed: bool = False) -> Any:
        if self_timed or self._config.refresh_timeout is None:
            return await refresh_fn()
        return await asyncio.wait_for(refresh_fn(), timeout=self._config.refresh_timeout)

    def _start_background_refresh(
        self, key: str, refresh_fn: RefreshFn, ttl: float, self_timed: bool
    ) -> None:
        # Mark before the task exists so a second fetch in the same tick sees it.
        self._refreshing.add(key)
        logger.debug("Background refresh started for key %s", key)
        task = asyncio.get_running_loop().create_task(
            self._background_refresh(key, refresh_fn, ttl, self_timed)
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _background_refresh(
        self, key: str, refresh_fn: RefreshFn, ttl: float, self_timed: bool
    ) -> None:
        try:
            data = await self._call(refresh_fn, self_timed)
            self._store_refreshed(key, data, ttl)
        except Exception as e:
            logger.error("Background refresh failed for key %s: %s", key, e)
        finally:
            self._refreshing.discard(key)

    def _evict_least_used(self) -> None:
        victim: str | None = None
        fewest_hits = None
        for key, entry in self._cache.items():
            if fewest_hits is None or entry.hits < fewest_hits:
                victim, fewest_hits = key, entry.hits

        if victim is not None:
            logger.debug("Cache full, evicting %s (%d hits)", victim, fewest_hits)
            self.invalidate(victim, "memory_pressure")
            self._evictions += 1

    async def _run_cleanup(self) -> None:
        self.cleanup_expired_entries()

    def _cancel_timer(self, key: str) -> None:
        handle = self._refresh_timers.pop(key, None)
        if handle is not None:
            self._scheduler.cancel(handle)

    def _cancel_all_timers(self) -> None:
        for handle in self._refresh_timers.values():
            self._scheduler.cancel(handle)
        self._refresh_timers.clear()
        self._refresh_callbacks.clear()
        self._self_timed.clear()

    def _emit(self, event: CacheEvent, key: str, payload: Any = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, key, payload)
            except Exception:
                logger.exception("Cache event listener failed on %s for key %s", event, key)
