"""Shared pytest fixtures: in-memory store, frozen clock, SQLite-backed API client."""

import asyncio
import datetime
import os
from collections.abc import AsyncGenerator

# Configure before any shortlink module reads its settings.
os.environ["REDIS_URL"] = ""
os.environ["BASE_URL"] = "http://sho.rt"
os.environ["LOG_SINK_URL"] = ""
os.environ["GEO_LOOKUP_URL"] = ""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shortlink.config import Settings, get_settings
from shortlink.database import Base, get_db
from shortlink.errors import DuplicateKeyError, StorageUnavailableError
from shortlink.main import app
from shortlink.models import ClickEvent, ShortLink, utcnow
from shortlink.reserved import ReservedNames


class InMemoryShortLinkStore:
    """Store fake that enforces shortcode uniqueness at insert time.

    Every call yields to the event loop first, so concurrent callers interleave
    between an existence check and the following insert, as they would against
    a networked database.
    """

    def __init__(self) -> None:
        self.links: dict[str, ShortLink] = {}
        self.events: list[ClickEvent] = []
        self.calls: list[tuple[str, str | None]] = []
        self.fail_on: set[str] = set()
        self.stolen_on_insert: set[str] = set()
        self.always_duplicate = False

    def seed(self, link: ShortLink) -> ShortLink:
        link.id = len(self.links) + 1
        self.links[link.shortcode] = link
        return link

    async def _enter(self, operation: str, shortcode: str | None) -> None:
        self.calls.append((operation, shortcode))
        await asyncio.sleep(0)
        if operation in self.fail_on:
            raise StorageUnavailableError(operation, shortcode)

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]

    async def create_short_link(self, link: ShortLink) -> ShortLink:
        await self._enter("create_short_link", link.shortcode)
        if self.always_duplicate:
            raise DuplicateKeyError(link.shortcode)
        if link.shortcode in self.stolen_on_insert:
            # A concurrent writer wins the race between pre-check and insert.
            self.stolen_on_insert.discard(link.shortcode)
            self.seed(ShortLink.build(link.shortcode, "https://winner.example.com", 30))
        if link.shortcode in self.links:
            raise DuplicateKeyError(link.shortcode)
        return self.seed(link)

    async def find_short_link(self, shortcode: str) -> ShortLink | None:
        await self._enter("find_short_link", shortcode)
        return self.links.get(shortcode)

    async def increment_click_count(self, shortcode: str) -> None:
        await self._enter("increment_click_count", shortcode)
        link = self.links.get(shortcode)
        if link is not None:
            link.clicks_count += 1

    async def append_click_event(self, event: ClickEvent) -> ClickEvent:
        await self._enter("append_click_event", event.shortcode)
        event.id = len(self.events) + 1
        self.events.append(event)
        return event

    async def list_click_events(self, shortcode: str) -> list[ClickEvent]:
        await self._enter("list_click_events", shortcode)
        matching = [event for event in self.events if event.shortcode == shortcode]
        return sorted(matching, key=lambda event: (event.clicked_at, event.id), reverse=True)

    async def list_short_links(self, limit: int) -> list[ShortLink]:
        await self._enter("list_short_links", None)
        ordered = sorted(self.links.values(), key=lambda link: (link.created_at, link.id), reverse=True)
        return ordered[:limit]


class FrozenClock:
    def __init__(self, now: datetime.datetime) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def reserved() -> ReservedNames:
    return ReservedNames()


@pytest.fixture
def memory_store() -> InMemoryShortLinkStore:
    return InMemoryShortLinkStore()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.datetime(2026, 1, 15, 12, 0, 0, tzinfo=datetime.timezone.utc))


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def build_expired_link(shortcode: str, url: str = "https://example.com/old") -> ShortLink:
    return ShortLink.build(shortcode, url, 1, created_at=utcnow() - datetime.timedelta(hours=2))


@pytest.fixture
def expired_link():
    return build_expired_link


@pytest.fixture
def store_link(db_session: AsyncSession):
    async def _store(link: ShortLink) -> ShortLink:
        db_session.add(link)
        await db_session.commit()
        return link

    return _store
