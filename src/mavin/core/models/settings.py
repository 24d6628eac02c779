"""Pydantic models describing the application configuration."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

KNOWN_PROVIDERS: tuple[str, ...] = ("spotify", "deezer", "soundcloud")


class LocalCacheConfig(BaseModel):
    """Device-local (L1) cache configuration."""

    enabled: bool = True
    directory: str = "cache/device"
    max_items: int = Field(default=100, ge=1)
    ttl_seconds: int = Field(default=86400, ge=1)
    key_prefix: str = "@mavin_cache_"


class DurableStoreConfig(BaseModel):
    """Durable relational (L2) store configuration."""

    enabled: bool = True
    url: str = "sqlite+aiosqlite:///cache/mavin.db"
    echo: bool = False
    create_schema: bool = True
    ttl_seconds: int = Field(default=2592000, ge=1)  # 30 days
    pool_size: int = Field(default=5, ge=1)


class RateLimitConfig(BaseModel):
    """Moving-window rate limit for one provider."""

    requests_per_window: int = Field(default=10, ge=1)
    window_seconds: float = Field(default=1.0, gt=0)


class SpotifyConfig(BaseModel):
    """Spotify Web API credentials."""

    client_id: str = ""
    client_secret: str = ""
    market: str = ""


class DeezerConfig(BaseModel):
    """Deezer public API settings."""

    enabled: bool = True


class SoundCloudConfig(BaseModel):
    """SoundCloud api-v2 settings."""

    client_id: str = ""


class ProvidersConfig(BaseModel):
    """External metadata provider configuration."""

    priority: list[str] = Field(default_factory=lambda: list(KNOWN_PROVIDERS))
    global_timeout_seconds: float = Field(default=8.0, gt=0)
    request_timeout_seconds: float = Field(default=5.0, gt=0)
    user_agent: str = "Mavin/1.0 (+https://github.com/mavin-music)"
    max_retries: int = Field(default=1, ge=0)
    retry_delay_seconds: float = Field(default=0.5, ge=0)
    connection_limit: int = Field(default=20, ge=1)
    spotify: SpotifyConfig = Field(default_factory=SpotifyConfig)
    deezer: DeezerConfig = Field(default_factory=DeezerConfig)
    soundcloud: SoundCloudConfig = Field(default_factory=SoundCloudConfig)
    rate_limits: dict[str, RateLimitConfig] = Field(default_factory=dict)

    @field_validator("priority")
    @classmethod
    def _validate_priority(cls, value: list[str]) -> list[str]:
        normalized = [name.strip().lower() for name in value if name.strip()]
        if unknown := [name for name in normalized if name not in KNOWN_PROVIDERS]:
            msg = f"Unknown providers in priority list: {', '.join(unknown)}"
            raise ValueError(msg)
        if len(set(normalized)) != len(normalized):
            msg = "Provider priority list contains duplicates"
            raise ValueError(msg)
        return normalized


class StreamConfig(BaseModel):
    """Stream health and expiry rules."""

    max_failures: int = Field(default=3, ge=1)
    failure_penalty: int = Field(default=20, ge=1, le=100)
    default_expiry_hours: float = Field(default=6, gt=0)
    refresh_threshold_hours: float = Field(default=6, gt=0)


class BackgroundJobsConfig(BaseModel):
    """Periodic maintenance job configuration."""

    enabled: bool = True
    run_on_start: bool = True
    refresh_interval_minutes: float = Field(default=60, gt=0)
    stats_interval_minutes: float = Field(default=15, gt=0)
    max_pre_cache: int = Field(default=50, ge=1)
    popular_threshold: int = Field(default=10, ge=1)
    related_tracks_per_search: int = Field(default=5, ge=0)
    stale_track_days: int = Field(default=90, ge=1)


class LogLevel(StrEnum):
    """Log level enumeration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogLevelsConfig(BaseModel):
    """Log level per target."""

    console: LogLevel = LogLevel.INFO
    main_file: LogLevel = LogLevel.INFO

    @field_validator("console", "main_file", mode="before")
    @classmethod
    def _upper_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value


class LoggingConfig(BaseModel):
    """Logging configuration."""

    logs_base_dir: str = "logs"
    main_log_file: str = "main/main.log"
    levels: LogLevelsConfig = Field(default_factory=LogLevelsConfig)


class AppConfig(BaseModel):
    """Main application configuration model."""

    local_cache: LocalCacheConfig = Field(default_factory=LocalCacheConfig)
    durable_store: DurableStoreConfig = Field(default_factory=DurableStoreConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    streams: StreamConfig = Field(default_factory=StreamConfig)
    background_jobs: BackgroundJobsConfig = Field(default_factory=BackgroundJobsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
