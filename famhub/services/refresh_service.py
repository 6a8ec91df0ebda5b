"""Refresh coordination for the aggregated family dataset.

Sits on top of ``DataCacheService`` and decides when the ``family_data`` entry
is re-fetched: periodically, on demand, or only when a cheap signature of the
dataset shows that something changed. Failed fetches are retried with a fixed
delay; exhausted cycles leave the previous cache entry in place.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import logging
import re
import time
from collections import deque
from typing import Any, Callable, Protocol, runtime_checkable

from famhub.exceptions import RefreshFailedError
from famhub.models.cache import (
    MAX_STATUS_ERRORS,
    CacheEvent,
    CacheKey,
    CacheStats,
    DataChangeSignature,
    EntryInfo,
    RefreshConfig,
    RefreshErrorRecord,
    RefreshEvent,
    RefreshEventListener,
    RefreshStatus,
)
from famhub.models.family import AggregatedFamilyData
from famhub.services.cache_service import DataCacheService
from famhub.services.scheduler import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)

FAMILY_DATA: CacheKey[AggregatedFamilyData] = CacheKey("family_data")
AI_SUMMARY: CacheKey[Any] = CacheKey("ai_summary")
MEMBER_STATS: CacheKey[Any] = CacheKey("member_stats")
TRENDS: CacheKey[Any] = CacheKey("trends_data")

# Every key derived from the family dataset; cleared together on a forced refresh.
DERIVED_KEYS_PATTERN = re.compile(r"^(family_data|ai_summary|member_stats|trends_data)")

ERROR_WINDOW_SECONDS = 60 * 60


@runtime_checkable
class FamilyDataSource(Protocol):
    """Anything that can produce a fresh family dataset."""

    async def aggregate_family_data(self) -> AggregatedFamilyData: ...


class RealTimeRefreshService:
    def __init__(
        self,
        cache: DataCacheService,
        source: FamilyDataSource,
        config: RefreshConfig | None = None,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._source = source
        self._config = config or RefreshConfig()
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock

        self._status = RefreshStatus()
        # Cycles and cache-miss loads in flight; is_refreshing stays set until all finish.
        self._active_refreshes = 0
        self._listeners: list[RefreshEventListener] = []
        self._last_signature: DataChangeSignature | None = None
        self._interval_handle: Any = None
        self._one_shot_handles: list[Any] = []

        self._cache.add_event_listener(self._on_cache_event)

    @property
    def config(self) -> RefreshConfig:
        return self._config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Load the dataset once and, if enabled, keep refreshing it periodically."""
        if self._interval_handle is not None:
            logger.warning("Real-time refresh service is already running")
            return

        logger.info("Starting real-time refresh service...")
        self._one_shot_handles.append(self._scheduler.schedule_once(0, self.refresh_family_data))

        if self._config.enable_auto_refresh:
            self._interval_handle = self._scheduler.schedule_repeating(
                self._config.family_data_interval, self.refresh_family_data
            )
            self._update_next_refresh()

        self._emit("started")

    def stop(self) -> None:
        if self._interval_handle is not None:
            self._scheduler.cancel(self._interval_handle)
            self._interval_handle = None
            logger.info("Real-time refresh service stopped")

    @property
    def is_running(self) -> bool:
        return self._interval_handle is not None

    def dispose(self) -> None:
        self.stop()
        for handle in self._one_shot_handles:
            self._scheduler.cancel(handle)
        self._one_shot_handles.clear()
        self._listeners.clear()
        self._cache.remove_event_listener(self._on_cache_event)

    def update_config(self, **changes: Any) -> None:
        """Merge new settings; a changed interval restarts a running service."""
        old_interval = self._config.family_data_interval
        self._config = RefreshConfig.model_validate({**self._config.model_dump(), **changes})

        if self._interval_handle is not None and old_interval != self._config.family_data_interval:
            self.stop()
            self.start()

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    async def get_family_data(self, force_refresh: bool = False) -> AggregatedFamilyData | None:
        """Cached family data; fetched (with retries) on a miss.

        Returns None when nothing is cached and every attempt failed.
        """
        if force_refresh:
            self._cache.invalidate(FAMILY_DATA, "forced")

        # The loader times each attempt itself, so the cache must not cut the retry loop short.
        return await self._cache.fetch(
            FAMILY_DATA,
            self._load_family_data,
            self._config.family_data_interval,
            self_timed=True,
        )

    async def force_refresh(self) -> AggregatedFamilyData | None:
        """Drop every derived cache entry and run a full refresh cycle."""
        logger.info("Force refreshing all data...")
        self._cache.invalidate_pattern(DERIVED_KEYS_PATTERN, "forced")
        return await self.refresh_family_data(force=True)

    def schedule_refresh(self, delay: float) -> None:
        """Run one refresh cycle after ``delay`` seconds."""
        self._one_shot_handles.append(self._scheduler.schedule_once(delay, self.refresh_family_data))

    async def refresh_family_data(self, force: bool = False) -> AggregatedFamilyData | None:
        """One refresh cycle. Skipped while another cycle runs, unless forced."""
        if self._status.is_refreshing and not force:
            logger.info("Refresh already in progress, skipping...")
            return None

        self._begin_refresh()
        try:
            if self._config.enable_smart_refresh and not force:
                if not await self.detect_data_changes():
                    logger.info("No data changes detected, skipping refresh")
                    self._complete_refresh()
                    return self._cache.get(FAMILY_DATA)

            data = await self._fetch_with_retries()
        except RefreshFailedError:
            return None
        finally:
            # Also reached on cancellation, e.g. stop() while a retry sleeps.
            self._end_refresh()

        self._cache.set(FAMILY_DATA, data, self._config.family_data_interval)
        self._emit("cache_updated", {"key": FAMILY_DATA, "data": data})
        return data

    async def detect_data_changes(self) -> bool:
        """Fetch the dataset and compare its signature with the last one seen.

        The first call always reports a change. Fetch errors report no change.
        """
        try:
            current = self._signature(await self._source.aggregate_family_data())
        except Exception as e:
            logger.error("Error detecting data changes: %s", e)
            return False

        if self._last_signature is None:
            self._last_signature = current
            return True

        if current == self._last_signature:
            return False

        logger.info("Data changes detected: %s -> %s", self._last_signature, current)
        self._last_signature = current
        self._emit("data_changed", {"signature": current})
        return True

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_status(self) -> RefreshStatus:
        return dataclasses.replace(
            self._status, errors=deque(self._status.errors, maxlen=MAX_STATUS_ERRORS)
        )

    def is_data_stale(self) -> bool:
        info = self._cache.get_entry_info(FAMILY_DATA)
        if info is None:
            return True
        return info.age > self._config.stale_threshold

    def get_data_freshness(self) -> dict[str, EntryInfo | None]:
        return {
            "family_data": self._cache.get_entry_info(FAMILY_DATA),
            "ai_summary": self._cache.get_entry_info(AI_SUMMARY),
            "member_stats": self._cache.get_entry_info(MEMBER_STATS),
            "trends": self._cache.get_entry_info(TRENDS),
        }

    def get_cache_stats(self) -> CacheStats:
        return self._cache.get_stats()

    def add_event_listener(self, listener: RefreshEventListener) -> None:
        self._listeners.append(listener)

    def remove_event_listener(self, listener: RefreshEventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load_family_data(self) -> AggregatedFamilyData:
        self._begin_refresh()
        try:
            return await self._fetch_with_retries()
        finally:
            self._end_refresh()

    def _begin_refresh(self) -> None:
        self._active_refreshes += 1
        self._status.is_refreshing = True
        self._emit("started")

    def _end_refresh(self) -> None:
        self._active_refreshes = max(0, self._active_refreshes - 1)
        self._status.is_refreshing = self._active_refreshes > 0

    async def _fetch_with_retries(self) -> AggregatedFamilyData:
        """Up to ``1 + max_retries`` attempts.

        Every outcome, cancellation included, completes the cycle and emits
        ``completed`` or ``failed``.
        """
        try:
            data = await self._attempt_until_success()
        except asyncio.CancelledError as e:
            logger.warning("Refresh cancelled before completing")
            self._complete_refresh()
            self._emit("failed", None, e)
            raise

        self._last_signature = self._signature(data)
        self._complete_refresh()
        self._emit("completed", data)
        return data

    async def _attempt_until_success(self) -> AggregatedFamilyData:
        max_retries = self._config.max_retries
        attempt = 0
        while True:
            try:
                return await self._fetch_once()
            except Exception as e:
                attempt += 1
                message = str(e) or type(e).__name__
                logger.error("Refresh attempt %d failed: %s", attempt, message)
                self._status.errors.append(
                    RefreshErrorRecord(timestamp=self._clock(), message=message, retry_count=attempt)
                )
                if attempt > max_retries:
                    self._complete_refresh()
                    self._emit("failed", None, e)
                    raise RefreshFailedError(attempt) from e
            logger.info("Retrying in %ss...", self._config.retry_delay)
            await asyncio.sleep(self._config.retry_delay)

    async def _fetch_once(self) -> AggregatedFamilyData:
        if self._config.attempt_timeout is None:
            return await self._source.aggregate_family_data()
        return await asyncio.wait_for(
            self._source.aggregate_family_data(), timeout=self._config.attempt_timeout
        )

    def _complete_refresh(self) -> None:
        now = self._clock()
        status = self._status
        status.last_refresh = now
        status.refresh_count += 1

        recent_errors = sum(1 for e in status.errors if now - e.timestamp < ERROR_WINDOW_SECONDS)
        recent_attempts = max(1, status.refresh_count % 10 or 10)
        status.success_rate = max(0.0, (recent_attempts - recent_errors) / recent_attempts)

        self._update_next_refresh()

    def _update_next_refresh(self) -> None:
        if self._config.enable_auto_refresh:
            self._status.next_refresh = self._clock() + self._config.family_data_interval
        else:
            self._status.next_refresh = None

    def _signature(self, data: AggregatedFamilyData) -> DataChangeSignature:
        counts = (
            data.todos.total_count,
            data.events.total_count,
            data.groceries.total_count,
            data.documents.total_count,
        )
        checksum = hashlib.md5("-".join(str(c) for c in counts).encode()).hexdigest()[:16]
        return DataChangeSignature(*counts, checksum=checksum, last_modified=self._clock())

    def _on_cache_event(self, event: CacheEvent, key: str, payload: Any) -> None:
        if event == "refresh" and key == FAMILY_DATA:
            logger.debug("Family data cache updated via cache refresh")
            self._emit("cache_updated", {"key": key, "data": payload})

    def _emit(self, event: RefreshEvent, data: Any = None, error: BaseException | None = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data, error)
            except Exception:
                logger.exception("Refresh event listener failed on %s", event)
