"""Shortlink Service Layer - Core Business Logic

This module wires the allocation, resolution, recording and reporting
components together behind one request-scoped service object.

Architecture Overview
==================
::
    ┌────────────────────────────────────────────────────────┐
    │                   ShortLinkService                     │
    │  ┌─────────────┐  ┌───────────────┐  ┌──────────────┐  │
    │  │ Allocator   │  │ Resolver      │  │ Stats        │  │
    │  │ • reserved  │  │ • reserved    │  │ • details    │  │
    │  │ • pre-check │  │ • expiry      │  │ • listing    │  │
    │  │             │  │ • recorder    │  │              │  │
    │  └──────┬──────┘  └───────┬───────┘  └──────┬───────┘  │
    └─────────┼─────────────────┼─────────────────┼──────────┘
              ▼                 ▼                 ▼
    ┌────────────────────────────────────────────────────────┐
    │    ShortLinkStore (PostgreSQL, optional Redis cache)   │
    └────────────────────────────────────────────────────────┘

Creation Flow
-------------
::
    validate url / validity / shortcode   (no I/O, 400 on failure)
           ▼
    allocate(desired)                     (403 reserved, 409 taken, 503 exhausted)
           ▼
    insert, up to 5 attempts
      DuplicateKeyError + desired   → 409, no retry
      DuplicateKeyError + generated → new generated code, retry
           ▼
    ShortLink, or StorageExhaustedError (503)

Usage Examples
=============
```python
@router.post("/shorturls")
async def create(payload: ShortLinkCreate, service: ShortLinkService = Depends(get_shortlink_service)):
    link = await service.create_short_link(payload, ctx.visitor)
```
"""

import datetime
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

from shortlink.allocator import ShortcodeAllocator
from shortlink.codec import generate_candidate, validate_shortcode, validate_url
from shortlink.config import Settings
from shortlink.enums import RequestStatus
from shortlink.errors import (
    DuplicateKeyError,
    InvalidInputError,
    ReservedShortcodeError,
    ServerBusyError,
    ShortcodeConflictError,
    ShortLinkError,
    StorageExhaustedError,
)
from shortlink.geo import GeoLocator
from shortlink.models import ShortLink, utcnow
from shortlink.recorder import ClickRecorder, Visitor
from shortlink.reserved import ReservedNames
from shortlink.resolver import RedirectResolver
from shortlink.schemas import ShortLinkCreate
from shortlink.stats import ShortLinkDetails, StatsAssembler
from shortlink.store import CachedShortLinkStore, ShortLinkStore, SQLAlchemyShortLinkStore

if TYPE_CHECKING:
    from shortlink.dependencies import RequestContext

__all__ = ["ShortLinkService"]

SHORTLINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlink_creation_requests_total",
    "Total short link creation requests",
    ["status"],
)
SHORTLINK_CREATION_DURATION = Histogram(
    "shortlink_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
SHORTLINK_INSERT_RETRIES_TOTAL = Counter(
    "shortlink_insert_retries_total",
    "Inserts retried with a new generated shortcode after a duplicate key",
)


def _status_for(exc: ShortLinkError) -> RequestStatus:
    if isinstance(exc, InvalidInputError):
        return RequestStatus.VALIDATION_ERROR
    if isinstance(exc, ReservedShortcodeError):
        return RequestStatus.FORBIDDEN
    if isinstance(exc, ShortcodeConflictError):
        return RequestStatus.CONFLICT
    if isinstance(exc, ServerBusyError):
        return RequestStatus.BUSY
    return RequestStatus.ERROR


class ShortLinkService:
    """Request-scoped facade over allocation, resolution and reporting.

    Example:
        >>> service = ShortLinkService.from_context(ctx)
        >>> link = await service.create_short_link(ShortLinkCreate(url="https://example.com"))
        >>> link = await service.resolve(link.shortcode, Visitor(ip="203.0.113.9"))
    """

    def __init__(
        self,
        store: ShortLinkStore,
        reserved: ReservedNames,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        lookup_store: ShortLinkStore | None = None,
        geo_locator: GeoLocator | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
        generator: Callable[[int], str] = generate_candidate,
    ) -> None:
        self._store = store
        self._settings = settings
        self._logger = logger or logging.getLogger("shortlink.service")
        self._clock = clock
        self._allocator = ShortcodeAllocator(
            store,
            reserved,
            logger=self._logger,
            attempts=settings.ALLOCATION_ATTEMPTS,
            length=settings.SHORTCODE_LENGTH,
            generator=generator,
        )
        recorder = ClickRecorder(store, geo_locator=geo_locator, logger=self._logger, clock=clock)
        self._resolver = RedirectResolver(
            lookup_store or store, reserved, recorder, logger=self._logger, clock=clock
        )
        self._stats = StatsAssembler(store)

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "ShortLinkService":
        """Build the service from a request context.

        Storage is the request's session; point lookups on the redirect path go
        through the Redis cache when one is configured.
        """
        store = SQLAlchemyShortLinkStore(
            ctx.database,
            logger=ctx.logger,
            timeout=ctx.settings.STORAGE_TIMEOUT_SECONDS,
        )
        lookup_store: ShortLinkStore = store
        if ctx.cache is not None:
            lookup_store = CachedShortLinkStore(
                store,
                ctx.cache,
                logger=ctx.logger,
                ttl_seconds=ctx.settings.CACHE_TTL_SECONDS,
                timeout=ctx.settings.CACHE_TIMEOUT_SECONDS,
            )
        return cls(
            store,
            ctx.reserved,
            ctx.settings,
            logger=ctx.logger,
            lookup_store=lookup_store,
            geo_locator=ctx.geo_locator,
        )

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_short_link(self, request: ShortLinkCreate, creator: Visitor | None = None) -> ShortLink:
        """Validate, allocate and store a new short link.

        Args:
            request: url, optional validity in minutes, optional desired shortcode
            creator: client information kept as informational metadata

        Returns:
            ShortLink: the stored record

        Raises:
            InvalidInputError: malformed url, shortcode or validity
            ReservedShortcodeError: desired shortcode is reserved
            ShortcodeConflictError: desired shortcode is taken
            ServerBusyError: no free shortcode could be stored within the bounds
            StorageUnavailableError: storage failed or timed out
        """
        start_time = time.perf_counter()
        try:
            link = await self._create(request, creator or Visitor())
        except ShortLinkError as exc:
            SHORTLINK_CREATION_DURATION.observe(time.perf_counter() - start_time)
            SHORTLINK_CREATION_REQUESTS_TOTAL.labels(status=_status_for(exc)).inc()
            self._logger.warning(f"Short link creation failed: {exc.message}")
            raise

        duration = time.perf_counter() - start_time
        SHORTLINK_CREATION_DURATION.observe(duration)
        SHORTLINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(
            f"Short link created: {link.shortcode} -> {link.original_url} in {duration:.3f}s",
            extra={"shortcode": link.shortcode, "expiry_at": link.expiry_at.isoformat()},
        )
        return link

    async def resolve(self, shortcode: str, visitor: Visitor) -> ShortLink:
        return await self._resolver.resolve(shortcode, visitor)

    async def get_details(self, shortcode: str) -> ShortLinkDetails:
        return await self._stats.get_details(shortcode)

    async def list_summaries(self, limit: int | None = None) -> list[ShortLink]:
        return await self._stats.list_summaries(limit or self._settings.LIST_LIMIT)

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _create(self, request: ShortLinkCreate, creator: Visitor) -> ShortLink:
        url = validate_url(request.url)
        validity = self._validity_minutes(request.validity)
        desired = validate_shortcode(request.shortcode) if request.shortcode not in (None, "") else None
        created_at = self._clock()
        try:
            created_at + datetime.timedelta(minutes=validity)
        except OverflowError:
            raise InvalidInputError("validity is too large") from None

        shortcode = await self._allocator.allocate(desired)
        metadata = {"created_from_ip": creator.ip, "user_agent": creator.user_agent}

        attempts = self._settings.INSERT_ATTEMPTS
        for attempt in range(1, attempts + 1):
            link = ShortLink.build(shortcode, url, validity, created_at=created_at, link_metadata=metadata)
            try:
                return await self._store.create_short_link(link)
            except DuplicateKeyError:
                if desired is not None:
                    # A desired code is never retried.
                    raise ShortcodeConflictError() from None
                self._logger.warning(
                    f"Duplicate key on save - shortcode collision, regenerating (attempt {attempt})",
                    extra={"shortcode": shortcode},
                )
                if attempt < attempts:
                    SHORTLINK_INSERT_RETRIES_TOTAL.inc()
                    shortcode = await self._allocator.allocate(None)

        self._logger.error(f"Failed to save short link after {attempts} attempts")
        raise StorageExhaustedError()

    def _validity_minutes(self, validity: int | None) -> int:
        if validity is None:
            return self._settings.DEFAULT_VALIDITY_MINUTES
        if isinstance(validity, bool) or not isinstance(validity, int) or validity <= 0:
            raise InvalidInputError("validity must be a positive integer (minutes)")
        return validity
