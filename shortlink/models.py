"""SQLAlchemy ORM models for the shortlink service.

This module defines the database schema using SQLAlchemy declarative models
with the unique index that makes shortcode allocation race-safe.

Data Model Layout
=================
::
    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ shortcode (VARCHAR(30) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL)
    ├─ created_at (TIMESTAMPTZ NOT NULL)
    ├─ expiry_at (TIMESTAMPTZ NOT NULL, INDEXED)
    ├─ validity_minutes (INTEGER NOT NULL)
    ├─ clicks_count (INTEGER DEFAULT 0)
    └─ metadata (JSON)

    click_events table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ shortcode (VARCHAR(30), INDEXED)
    ├─ clicked_at (TIMESTAMPTZ NOT NULL)
    ├─ referrer (TEXT NULL)
    ├─ ip (VARCHAR(64))
    ├─ user_agent (TEXT NULL)
    └─ geo (JSON)

How to Use
===========
**Step 1 — Build a record**::
    link = ShortLink.build("abc123", "https://example.com", validity_minutes=30)

**Step 2 — Classify it**::
    link.is_expired(utcnow())

Key Behaviours
===============
- ``shortcode`` carries a unique index; a second insert raises IntegrityError.
- Timestamps are always timezone-aware UTC, also on backends that store naive values.
- ``clicks_count`` is only ever changed by an atomic ``clicks_count + 1`` UPDATE.
- ``click_events`` references links by shortcode value, without a foreign key.

Classes:
    ShortLink:  A shortcode bound to its original URL and expiry.
    ClickEvent:  One recorded redirect of a ShortLink.
"""

import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text, TypeDecorator
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.database import Base

__all__ = ["ShortLink", "ClickEvent", "UTCDateTime", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always hands back UTC values."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime.datetime | None, dialect: Any) -> datetime.datetime | None:
        if value is not None and value.tzinfo is None:
            raise ValueError("naive datetime values are not accepted")
        return value

    def process_result_value(self, value: datetime.datetime | None, dialect: Any) -> datetime.datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc)


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shortcode: Mapped[str] = mapped_column(String(30), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, nullable=False)
    expiry_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, index=True, nullable=False)
    validity_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    clicks_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # ``metadata`` is taken by the declarative base, hence the attribute name.
    link_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)

    @classmethod
    def build(
        cls,
        shortcode: str,
        original_url: str,
        validity_minutes: int,
        created_at: datetime.datetime | None = None,
        link_metadata: dict[str, Any] | None = None,
    ) -> "ShortLink":
        created = created_at or utcnow()
        return cls(
            shortcode=shortcode,
            original_url=original_url,
            created_at=created,
            expiry_at=created + datetime.timedelta(minutes=validity_minutes),
            validity_minutes=validity_minutes,
            clicks_count=0,
            link_metadata=link_metadata or {},
        )

    def is_expired(self, now: datetime.datetime) -> bool:
        # Equality with expiry_at still counts as active.
        return now > self.expiry_at

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, shortcode='{self.shortcode}', clicks={self.clicks_count})>"


class ClickEvent(Base):
    __tablename__ = "click_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shortcode: Mapped[str] = mapped_column(String(30), index=True, nullable=False)
    clicked_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    geo: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<ClickEvent(id={self.id}, shortcode='{self.shortcode}', clicked_at={self.clicked_at})>"
