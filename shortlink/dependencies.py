"""Dependency injection with a singleton service manager.

This module provides a centralized way to inject the database session, the
lookup cache and the other shared collaborators into API endpoints, using a
singleton for resources that live as long as the process.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shortlink.config import Settings, get_settings
from shortlink.database import get_db
from shortlink.geo import GeoLocator, HttpGeoLocator, NullGeoLocator
from shortlink.recorder import Visitor
from shortlink.reserved import ReservedNames
from shortlink.service import ShortLinkService
from shortlink.telemetry import configure_logging, shutdown_logging


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Process-wide holder of the shared collaborators.

    Holds everything that is read-only or connection-pooled after startup:
    settings, the configured logger, the Redis client, the reserved-name
    registry and the geo locator.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Return the one process-wide instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Build the shared collaborators; later calls are no-ops."""
        if not self._initialized:
            self.settings = get_settings()
            self.logger = configure_logging(self.settings)
            self.cache = self._setup_cache()
            self.reserved = ReservedNames(self.settings.RESERVED_SHORTCODES)
            self.http_client, self.geo_locator = self._setup_geo_locator()
            self._initialized = True
            self.logger.info(f"{self.settings.APP_NAME} initialized ({self.settings.APP_ENV})")

    def _setup_cache(self) -> redis.Redis | None:
        """Setup the Redis lookup cache, or nothing when REDIS_URL is empty."""
        if not self.settings.REDIS_URL:
            return None
        return redis.from_url(
            self.settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=self.settings.CACHE_TIMEOUT_SECONDS,
            socket_connect_timeout=self.settings.CACHE_TIMEOUT_SECONDS,
        )

    def _setup_geo_locator(self) -> tuple[httpx.AsyncClient | None, GeoLocator]:
        if not self.settings.GEO_LOOKUP_URL:
            return None, NullGeoLocator()
        client = httpx.AsyncClient(timeout=self.settings.GEO_TIMEOUT_SECONDS)
        locator = HttpGeoLocator(
            self.settings.GEO_LOOKUP_URL,
            client,
            timeout=self.settings.GEO_TIMEOUT_SECONDS,
        )
        return client, locator

    async def cleanup(self) -> None:
        """Close the Redis and HTTP clients and stop the log listener."""
        if getattr(self, "cache", None) is not None:
            await self.cache.aclose()
        if getattr(self, "http_client", None) is not None:
            await self.http_client.aclose()
        shutdown_logging()
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with tracking and access to shared resources.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        referrer: Referer header, if the client sent one
        request_base_url: Base URL the request arrived on
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referrer: Optional[str] = None
    request_base_url: str = ""
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def cache(self) -> redis.Redis | None:
        return self.service_manager.cache

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def reserved(self) -> ReservedNames:
        return self.service_manager.reserved

    @property
    def geo_locator(self) -> GeoLocator:
        return self.service_manager.geo_locator

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger carrying the request identifiers."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    @property
    def visitor(self) -> Visitor:
        return Visitor(ip=self.client_ip, referrer=self.referrer, user_agent=self.user_agent)

    def short_link_for(self, shortcode: str) -> str:
        """Absolute short link; BASE_URL wins over the request's own base URL."""
        base = self.settings.BASE_URL or self.request_base_url
        return f"{base.rstrip('/')}/{shortcode}"

    def get_duration(self) -> float:
        """Milliseconds since the request context was built."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    """Get the singleton service manager, initializing it on first use."""
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
        referrer=request.headers.get("referer"),
        request_base_url=str(request.base_url),
    )


def get_shortlink_service(ctx: RequestContext = Depends(get_request_context)) -> ShortLinkService:
    return ShortLinkService.from_context(ctx)
