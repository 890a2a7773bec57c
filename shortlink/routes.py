"""FastAPI route definitions for the shortlink REST API.

This module provides all HTTP endpoints with dependency injection, error
mapping and response serialization.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /shorturls
        ├─ ShortLinkCreate (request body)
        └─ ShortLinkCreated (201) or 400/403/409/503

    GET  /shorturls
        └─ list[ShortLinkSummary] (200), newest first, max 100

    GET  /shorturls/:shortcode
        └─ ShortLinkDetail (200) or 404

    GET  /:shortcode
        └─ 302 Redirect, 404 or 410

Key Behaviours
===============
- The redirect route is registered last so it never shadows the others.
- Service errors carry their own HTTP status; storage failures answer a plain
  ``internal server error`` and are logged with operation and shortcode.
- Click recording happens before the 302 is sent but can never fail it.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from shortlink.database import ping_db
from shortlink.dependencies import RequestContext, get_request_context, get_shortlink_service
from shortlink.enums import HealthStatus
from shortlink.errors import ShortLinkError, StorageUnavailableError
from shortlink.schemas import (
    ClickDetail,
    HealthResponse,
    ShortLinkCreate,
    ShortLinkCreated,
    ShortLinkDetail,
    ShortLinkSummary,
)
from shortlink.service import ShortLinkService

__all__ = ["router"]

router = APIRouter()


def _http_error(ctx: RequestContext, exc: ShortLinkError, operation: str) -> HTTPException:
    if isinstance(exc, StorageUnavailableError):
        ctx.logger.error(
            f"{operation} failed: storage unavailable during {exc.operation}",
            extra={"operation": exc.operation, "shortcode": exc.shortcode, "duration_ms": ctx.get_duration()},
        )
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.DISABLED

    try:
        await ping_db(ctx.database)
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    if ctx.cache is not None:
        cache_status = HealthStatus.HEALTHY
        try:
            await ctx.cache.ping()
        except Exception as e:
            ctx.logger.error(f"Cache health check failed: {e}")
            cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is not HealthStatus.UNHEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/shorturls", response_model=ShortLinkCreated, status_code=201, tags=["shorturls"])
async def create_short_link(
    payload: ShortLinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_shortlink_service),
) -> ShortLinkCreated:
    try:
        link = await service.create_short_link(payload, ctx.visitor)
    except ShortLinkError as exc:
        raise _http_error(ctx, exc, "create_short_link") from exc

    return ShortLinkCreated(short_link=ctx.short_link_for(link.shortcode), expiry=link.expiry_at)


@router.get("/shorturls", response_model=list[ShortLinkSummary], tags=["shorturls"])
async def list_short_links(
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_shortlink_service),
) -> list[ShortLinkSummary]:
    try:
        links = await service.list_summaries()
    except ShortLinkError as exc:
        raise _http_error(ctx, exc, "list_short_links") from exc

    return [
        ShortLinkSummary(
            shortcode=link.shortcode,
            short_link=ctx.short_link_for(link.shortcode),
            original_url=link.original_url,
            created_at=link.created_at,
            expiry_at=link.expiry_at,
            clicks_total=link.clicks_count,
        )
        for link in links
    ]


@router.get("/shorturls/{shortcode}", response_model=ShortLinkDetail, tags=["shorturls"])
async def get_short_link_details(
    shortcode: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_shortlink_service),
) -> ShortLinkDetail:
    try:
        details = await service.get_details(shortcode)
    except ShortLinkError as exc:
        if exc.status_code == 404:
            ctx.logger.warning(f"Stats not found for shortcode: {shortcode}")
        raise _http_error(ctx, exc, "get_short_link_details") from exc

    return ShortLinkDetail(
        shortcode=details.link.shortcode,
        original_url=details.link.original_url,
        created_at=details.link.created_at,
        expiry_at=details.link.expiry_at,
        clicks_total=details.clicks_total,
        clicks=[
            ClickDetail(
                timestamp=click.clicked_at,
                referrer=click.referrer,
                ip=click.ip,
                user_agent=click.user_agent,
                geo=click.geo or {},
            )
            for click in details.clicks
        ],
    )


@router.get("/{shortcode}", tags=["redirect"])
async def redirect_to_url(
    shortcode: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_shortlink_service),
) -> RedirectResponse:
    try:
        link = await service.resolve(shortcode, ctx.visitor)
    except ShortLinkError as exc:
        raise _http_error(ctx, exc, "redirect") from exc

    ctx.logger.info(
        f"Redirect successful: {shortcode} -> {link.original_url}",
        extra={"shortcode": shortcode, "target_url": link.original_url, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=link.original_url, status_code=302)
