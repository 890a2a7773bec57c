"""Record store gateway: the storage contract the shortlink core relies on.

The core never talks to a database directly. It depends on the
:class:`ShortLinkStore` protocol, whose semantics are:

- ``create_short_link`` inserts atomically and reports a shortcode collision
  as :class:`~shortlink.errors.DuplicateKeyError`, distinct from any other failure.
- ``increment_click_count`` is a single atomic ``clicks_count = clicks_count + 1``
  at the storage layer, never a read-modify-write from the caller.
- ``list_click_events`` is newest first; ``list_short_links`` is ``created_at`` desc.

Any relational table with a unique column, or a key-value store with
conditional puts and atomic counters, satisfies it.

Architecture Overview
=====================
::
    ┌────────────────────┐       ┌──────────────────────────┐
    │ RedirectResolver   │──────▶│ CachedShortLinkStore     │── Redis (GET/SETEX)
    └────────────────────┘       │  find_short_link only    │
                                 └────────────┬─────────────┘
    ┌────────────────────┐                    ▼
    │ Allocator / Stats  │──────▶┌──────────────────────────┐
    │ ClickRecorder      │       │ SQLAlchemyShortLinkStore │── PostgreSQL
    └────────────────────┘       │  timeout-bounded calls   │
                                 └──────────────────────────┘

Key Behaviours
===============
- Every SQLAlchemy call is bounded by ``asyncio.wait_for``; a timeout or a driver
  error is rolled back, logged with operation and shortcode, and re-raised as
  :class:`~shortlink.errors.StorageUnavailableError`.
- Reads use ``populate_existing`` so counters are never served stale from the
  session identity map.
- The Redis cache holds only immutable link fields, with a TTL that never
  outlives the link's expiry. Cache calls are bounded by their own short
  timeout; a timeout or a Redis error falls through to the store.

Classes:
    ShortLinkStore:  Protocol describing the storage contract.
    SQLAlchemyShortLinkStore:  Implementation over an ``AsyncSession``.
    CachedShortLinkStore:  Read-through Redis cache for point lookups.
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

import redis.asyncio as redis
from prometheus_client import Counter
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlink.errors import DuplicateKeyError, StorageUnavailableError
from shortlink.models import ClickEvent, ShortLink, utcnow
from shortlink.schemas import CachedShortLinkPayload

__all__ = ["ShortLinkStore", "SQLAlchemyShortLinkStore", "CachedShortLinkStore", "is_unique_violation"]

T = TypeVar("T")

STORAGE_OPERATIONS_TOTAL = Counter(
    "shortlink_storage_operations_total",
    "Storage gateway operations by outcome",
    ["operation", "status"],
)
CACHE_LOOKUPS_TOTAL = Counter(
    "shortlink_cache_lookups_total",
    "Redis lookups for short links",
    ["result"],
)


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when ``exc`` comes from a unique index, not from another constraint."""
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate == "23505"
    error_name = getattr(orig, "sqlite_errorname", None)
    if error_name:
        return error_name in ("SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY")
    return "unique" in str(orig).lower()


class ShortLinkStore(Protocol):
    async def create_short_link(self, link: ShortLink) -> ShortLink: ...

    async def find_short_link(self, shortcode: str) -> ShortLink | None: ...

    async def increment_click_count(self, shortcode: str) -> None: ...

    async def append_click_event(self, event: ClickEvent) -> ClickEvent: ...

    async def list_click_events(self, shortcode: str) -> list[ClickEvent]: ...

    async def list_short_links(self, limit: int) -> list[ShortLink]: ...


class SQLAlchemyShortLinkStore:
    """:class:`ShortLinkStore` over a single request-scoped ``AsyncSession``."""

    def __init__(
        self,
        session: AsyncSession,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._session = session
        self._logger = logger or logging.getLogger("shortlink.store")
        self._timeout = timeout

    async def create_short_link(self, link: ShortLink) -> ShortLink:
        async def insert() -> ShortLink:
            self._session.add(link)
            try:
                await self._session.commit()
            except IntegrityError as exc:
                await self._session.rollback()
                if not is_unique_violation(exc):
                    raise
                raise DuplicateKeyError(link.shortcode) from exc
            return link

        try:
            return await self._run("create_short_link", link.shortcode, insert, shield=True)
        except DuplicateKeyError:
            STORAGE_OPERATIONS_TOTAL.labels(operation="create_short_link", status="duplicate").inc()
            self._logger.warning(f"Duplicate key on insert for shortcode: {link.shortcode}")
            raise

    async def find_short_link(self, shortcode: str) -> ShortLink | None:
        async def lookup() -> ShortLink | None:
            result = await self._session.execute(
                select(ShortLink)
                .where(ShortLink.shortcode == shortcode)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

        return await self._run("find_short_link", shortcode, lookup)

    async def increment_click_count(self, shortcode: str) -> None:
        async def increment() -> None:
            result = await self._session.execute(
                update(ShortLink)
                .where(ShortLink.shortcode == shortcode)
                .values(clicks_count=ShortLink.clicks_count + 1)
                .execution_options(synchronize_session=False)
            )
            await self._session.commit()
            if result.rowcount == 0:
                self._logger.warning(f"Click count increment matched no link: {shortcode}")

        await self._run("increment_click_count", shortcode, increment, shield=True)

    async def append_click_event(self, event: ClickEvent) -> ClickEvent:
        async def insert() -> ClickEvent:
            self._session.add(event)
            await self._session.commit()
            return event

        return await self._run("append_click_event", event.shortcode, insert, shield=True)

    async def list_click_events(self, shortcode: str) -> list[ClickEvent]:
        async def query() -> list[ClickEvent]:
            result = await self._session.execute(
                select(ClickEvent)
                .where(ClickEvent.shortcode == shortcode)
                .order_by(ClickEvent.clicked_at.desc(), ClickEvent.id.desc())
            )
            return list(result.scalars().all())

        return await self._run("list_click_events", shortcode, query)

    async def list_short_links(self, limit: int) -> list[ShortLink]:
        async def query() -> list[ShortLink]:
            result = await self._session.execute(
                select(ShortLink)
                .order_by(ShortLink.created_at.desc(), ShortLink.id.desc())
                .limit(limit)
                .execution_options(populate_existing=True)
            )
            return list(result.scalars().all())

        return await self._run("list_short_links", None, query)

    async def _run(
        self,
        operation: str,
        shortcode: str | None,
        call: Callable[[], Awaitable[T]],
        shield: bool = False,
    ) -> T:
        """Run ``call`` under the storage timeout.

        With ``shield`` an issued write runs to completion (or to its timeout) even
        when the calling request is cancelled; the caller still sees
        ``CancelledError`` and performs no further step.
        """
        bounded = asyncio.wait_for(call(), timeout=self._timeout)
        try:
            result = await (asyncio.shield(bounded) if shield else bounded)
        except (TimeoutError, SQLAlchemyError) as exc:
            STORAGE_OPERATIONS_TOTAL.labels(operation=operation, status="error").inc()
            await self._rollback()
            self._logger.error(
                f"Storage operation {operation} failed for shortcode {shortcode}: {exc!r}",
                extra={"operation": operation, "shortcode": shortcode, "error": repr(exc)},
            )
            raise StorageUnavailableError(operation, shortcode) from exc
        STORAGE_OPERATIONS_TOTAL.labels(operation=operation, status="success").inc()
        return result

    async def _rollback(self) -> None:
        try:
            await self._session.rollback()
        except SQLAlchemyError as exc:
            self._logger.error(f"Session rollback failed: {exc!r}")


class CachedShortLinkStore:
    """Serves ``find_short_link`` from Redis first; everything else is delegated."""

    def __init__(
        self,
        inner: ShortLinkStore,
        cache: redis.Redis,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        ttl_seconds: int = 3600,
        timeout: float = 0.25,
    ) -> None:
        self._inner = inner
        self._timeout = timeout
        self._cache = cache
        self._logger = logger or logging.getLogger("shortlink.cache")
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def cache_key(shortcode: str) -> str:
        return f"shortlink:{shortcode}"

    async def find_short_link(self, shortcode: str) -> ShortLink | None:
        cached = await self._lookup_from_cache(shortcode)
        if cached is not None:
            CACHE_LOOKUPS_TOTAL.labels(result="hit").inc()
            return cached

        CACHE_LOOKUPS_TOTAL.labels(result="miss").inc()
        link = await self._inner.find_short_link(shortcode)
        if link is not None:
            await self._cache_link(link)
        return link

    async def create_short_link(self, link: ShortLink) -> ShortLink:
        return await self._inner.create_short_link(link)

    async def increment_click_count(self, shortcode: str) -> None:
        await self._inner.increment_click_count(shortcode)

    async def append_click_event(self, event: ClickEvent) -> ClickEvent:
        return await self._inner.append_click_event(event)

    async def list_click_events(self, shortcode: str) -> list[ClickEvent]:
        return await self._inner.list_click_events(shortcode)

    async def list_short_links(self, limit: int) -> list[ShortLink]:
        return await self._inner.list_short_links(limit)

    async def _lookup_from_cache(self, shortcode: str) -> ShortLink | None:
        try:
            cached_data = await asyncio.wait_for(self._cache.get(self.cache_key(shortcode)), timeout=self._timeout)
        except (TimeoutError, redis.RedisError) as exc:
            self._logger.warning(f"Cache read failed for {shortcode}: {exc!r}")
            return None
        if not cached_data:
            return None

        try:
            payload = CachedShortLinkPayload.model_validate_json(cached_data)
        except ValidationError as exc:
            self._logger.error(f"Cache deserialization error for {shortcode}: {exc}")
            return None
        return ShortLink(
            id=payload.id,
            shortcode=payload.shortcode,
            original_url=payload.original_url,
            created_at=payload.created_at,
            expiry_at=payload.expiry_at,
            validity_minutes=payload.validity_minutes,
            clicks_count=0,
            link_metadata={},
        )

    async def _cache_link(self, link: ShortLink) -> None:
        remaining = (link.expiry_at - utcnow()).total_seconds()
        if remaining <= 0:
            return
        ttl = min(self._ttl_seconds, math.ceil(remaining))
        payload = CachedShortLinkPayload.model_validate(link)
        try:
            await asyncio.wait_for(
                self._cache.setex(self.cache_key(link.shortcode), ttl, payload.model_dump_json()),
                timeout=self._timeout,
            )
        except (TimeoutError, redis.RedisError) as exc:
            self._logger.warning(f"Cache write failed for {link.shortcode}: {exc!r}")
