from __future__ import annotations

from pydantic_settings import BaseSettings

from famhub.models.cache import CacheConfig, RefreshConfig


class Settings(BaseSettings):
    # Database
    database_path: str = "./data/famhub.db"

    # Logging
    log_level: str = "info"

    # Data cache (seconds)
    cache_default_ttl: float = 300
    cache_max_entries: int = 50
    cache_refresh_threshold: float = 0.75
    cache_enable_background_refresh: bool = True
    cache_cleanup_interval: float = 60
    cache_refresh_timeout: float | None = 30

    # Family data refresh (seconds)
    refresh_interval: float = 300
    refresh_enable_auto: bool = True
    refresh_stale_threshold: float = 600
    refresh_max_retries: int = 3
    refresh_retry_delay: float = 5
    refresh_attempt_timeout: float | None = 30
    refresh_enable_smart: bool = True

    def cache_config(self) -> CacheConfig:
        return CacheConfig(
            default_ttl=self.cache_default_ttl,
            max_entries=self.cache_max_entries,
            refresh_threshold=self.cache_refresh_threshold,
            enable_background_refresh=self.cache_enable_background_refresh,
            cleanup_interval=self.cache_cleanup_interval,
            refresh_timeout=self.cache_refresh_timeout,
        )

    def refresh_config(self) -> RefreshConfig:
        return RefreshConfig(
            family_data_interval=self.refresh_interval,
            enable_auto_refresh=self.refresh_enable_auto,
            stale_threshold=self.refresh_stale_threshold,
            max_retries=self.refresh_max_retries,
            retry_delay=self.refresh_retry_delay,
            attempt_timeout=self.refresh_attempt_timeout,
            enable_smart_refresh=self.refresh_enable_smart,
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "FAMHUB_"}


settings = Settings()
