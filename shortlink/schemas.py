"""Pydantic schemas for request/response validation in the shortlink service.

This module defines Pydantic models for API input validation and output serialization,
ensuring type safety and automatic OpenAPI documentation generation. Wire names are
camelCase (``shortLink``, ``clicksTotal``); Python attributes stay snake_case.

Schema Hierarchy
=================
::
    ShortLinkCreate (Input)
    ├─ url: str | None
    ├─ validity: int | None (minutes)
    └─ shortcode: str | None

    ShortLinkCreated (Output, 201)
    ├─ shortLink: str
    └─ expiry: datetime

    ShortLinkSummary (Output, list item)
    ├─ shortcode, shortLink, originalUrl
    ├─ createdAt, expiryAt
    └─ clicksTotal

    ShortLinkDetail (Output)
    ├─ shortcode, originalUrl, createdAt, expiryAt, clicksTotal
    └─ clicks: list[ClickDetail]

    HealthResponse (Output)
    ├─ status
    ├─ database
    └─ cache

Key Behaviours
===============
- Field-level rules for ``url`` and ``shortcode`` live in ``shortlink.codec`` so
  the service layer rejects them with the same messages whatever the transport.
- All datetime fields are timezone-aware UTC.
- Output models accept snake_case names when built in Python.
"""

import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shortlink.enums import HealthStatus

__all__ = [
    "ShortLinkCreate",
    "ShortLinkCreated",
    "ShortLinkSummary",
    "ShortLinkDetail",
    "ClickDetail",
    "HealthResponse",
    "CachedShortLinkPayload",
]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ShortLinkCreate(BaseModel):
    url: str | None = Field(None, description="Absolute http(s) URL to shorten.")
    validity: int | None = Field(None, description="Minutes the short link stays valid (default 30).")
    shortcode: str | None = Field(None, description="Desired shortcode, 3-30 chars of [A-Za-z0-9_-].")


class ShortLinkCreated(CamelModel):
    short_link: str
    expiry: datetime.datetime


class ShortLinkSummary(CamelModel):
    shortcode: str
    short_link: str
    original_url: str
    created_at: datetime.datetime
    expiry_at: datetime.datetime
    clicks_total: int


class ClickDetail(CamelModel):
    timestamp: datetime.datetime
    referrer: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    geo: dict[str, Any] = Field(default_factory=dict)


class ShortLinkDetail(CamelModel):
    shortcode: str
    original_url: str
    created_at: datetime.datetime
    expiry_at: datetime.datetime
    clicks_total: int
    clicks: list[ClickDetail]


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class CachedShortLinkPayload(BaseModel):
    """Redis cache payload for a ShortLink. Only immutable fields are cached."""

    id: int
    shortcode: str
    original_url: str
    created_at: datetime.datetime
    expiry_at: datetime.datetime
    validity_minutes: int

    model_config = {"from_attributes": True}
