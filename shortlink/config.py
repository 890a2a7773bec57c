"""Service configuration.

All values come from environment variables (or a ``.env`` file) through
pydantic-settings and are read once; ``get_settings()`` is cached.

Groups
======
::
    service      APP_NAME, APP_ENV, BASE_URL, PORT, CORS_ORIGINS
    storage      DATABASE_URL, STORAGE_TIMEOUT_SECONDS
    cache        REDIS_URL, CACHE_TTL_SECONDS, CACHE_TIMEOUT_SECONDS
    allocation   SHORTCODE_LENGTH, DEFAULT_VALIDITY_MINUTES,
                 ALLOCATION_ATTEMPTS, INSERT_ATTEMPTS,
                 RESERVED_SHORTCODES, LIST_LIMIT
    logging      LOG_LEVEL, LOG_SINK_URL, LOG_SINK_TOKEN,
                 LOG_SINK_TIMEOUT_SECONDS, LOG_FALLBACK_FILE
    geo          GEO_LOOKUP_URL, GEO_TIMEOUT_SECONDS

Empty values switch features off:

- ``BASE_URL``: short links use the request's own base URL.
- ``REDIS_URL``: no lookup cache.
- ``LOG_SINK_URL``: no remote log sink.
- ``GEO_LOOKUP_URL``: clicks are stored with an empty ``geo``.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlink-service"
    APP_ENV: str = "development"
    BASE_URL: str = ""
    PORT: int = 4000

    # Storage
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"
    STORAGE_TIMEOUT_SECONDS: float = 5.0

    # Lookup cache
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_TTL_SECONDS: int = 3600
    CACHE_TIMEOUT_SECONDS: float = 0.25

    # Shortcode allocation
    SHORTCODE_LENGTH: int = 6
    DEFAULT_VALIDITY_MINUTES: int = 30
    ALLOCATION_ATTEMPTS: int = 8
    INSERT_ATTEMPTS: int = 5
    RESERVED_SHORTCODES: list[str] = []
    LIST_LIMIT: int = 100

    # HTTP
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Logging and the remote telemetry sink
    LOG_LEVEL: str = "INFO"
    LOG_SINK_URL: str = ""
    LOG_SINK_TOKEN: str = ""
    LOG_SINK_TIMEOUT_SECONDS: float = 4.0
    LOG_FALLBACK_FILE: str = "app-logs.ndjson"

    # Click geo enrichment
    GEO_LOOKUP_URL: str = ""
    GEO_TIMEOUT_SECONDS: float = 0.5

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
