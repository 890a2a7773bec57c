"""Click recording for successful redirects.

Write order is event first, counter second::

    append_click_event(event)      # click_events row
    increment_click_count(code)    # short_links.clicks_count + 1

A crash between the two leaves the aggregate under-counted, never
over-counted, and ``click_events`` stays the source of truth for
reconciliation. At quiescent points ``clicks_count`` equals the number of
events for the shortcode.
"""

import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter

from shortlink.errors import StorageUnavailableError
from shortlink.geo import GeoLocator, NullGeoLocator
from shortlink.models import ClickEvent, utcnow
from shortlink.store import ShortLinkStore

__all__ = ["Visitor", "ClickRecorder"]

CLICKS_RECORDED_TOTAL = Counter(
    "shortlink_clicks_recorded_total",
    "Click events recorded",
    ["status"],
)


@dataclass(frozen=True)
class Visitor:
    """What the server observed about the client following a short link."""

    ip: str | None = None
    referrer: str | None = None
    user_agent: str | None = None


class ClickRecorder:
    def __init__(
        self,
        store: ShortLinkStore,
        geo_locator: GeoLocator | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._store = store
        self._geo = geo_locator or NullGeoLocator()
        self._logger = logger or logging.getLogger("shortlink.recorder")
        self._clock = clock

    async def record_click(self, shortcode: str, visitor: Visitor) -> bool:
        """Record one click. Returns ``False`` instead of raising on storage failure."""
        event = ClickEvent(
            shortcode=shortcode,
            clicked_at=self._clock(),
            referrer=visitor.referrer or None,
            ip=visitor.ip,
            user_agent=visitor.user_agent,
            geo=await self._locate(visitor.ip),
        )
        try:
            await self._store.append_click_event(event)
            await self._store.increment_click_count(shortcode)
        except StorageUnavailableError as exc:
            CLICKS_RECORDED_TOTAL.labels(status="failed").inc()
            self._logger.error(
                f"Click recording failed for {shortcode} during {exc.operation}",
                extra={"operation": exc.operation, "shortcode": shortcode, "error": repr(exc.__cause__)},
            )
            return False

        CLICKS_RECORDED_TOTAL.labels(status="recorded").inc()
        return True

    async def _locate(self, ip: str | None) -> dict:
        try:
            return await self._geo.locate(ip)
        except Exception as exc:
            self._logger.warning(f"Geo locator raised for {ip}: {exc!r}")
            return {}
