"""Redirect resolution.

State machine per request, nothing persisted of its own::

    ReservedCheck ──reserved / malformed──▶ NotFound
         │
    Lookup ─────────absent─────────────────▶ NotFound
         │
    ExpiryCheck ────now > expiry_at────────▶ Expired (Gone)
         │
    RecordClick  (failures logged, never surfaced)
         │
    Redirect ──▶ ShortLink (caller answers 302)

Expiry is computed, not stored: expired links stay in storage and keep
answering Gone. Reserved names never resolve, whatever storage holds.
"""

import datetime
import logging
from collections.abc import Callable

from prometheus_client import Counter

from shortlink.codec import is_valid_shortcode
from shortlink.enums import RedirectOutcome
from shortlink.errors import ShortLinkExpiredError, ShortLinkNotFoundError, StorageUnavailableError
from shortlink.models import ShortLink, utcnow
from shortlink.recorder import ClickRecorder, Visitor
from shortlink.reserved import ReservedNames
from shortlink.store import ShortLinkStore

__all__ = ["RedirectResolver"]

REDIRECT_REQUESTS_TOTAL = Counter(
    "shortlink_redirect_requests_total",
    "Redirect resolutions by outcome",
    ["outcome"],
)


class RedirectResolver:
    def __init__(
        self,
        store: ShortLinkStore,
        reserved: ReservedNames,
        recorder: ClickRecorder,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._store = store
        self._reserved = reserved
        self._recorder = recorder
        self._logger = logger or logging.getLogger("shortlink.resolver")
        self._clock = clock

    async def resolve(self, shortcode: str, visitor: Visitor) -> ShortLink:
        """Return the active link for ``shortcode`` after recording the click.

        Raises:
            ShortLinkNotFoundError: reserved, malformed or unknown shortcode.
            ShortLinkExpiredError: the link exists but ``now > expiry_at``.
            StorageUnavailableError: the lookup itself failed.
        """
        if self._reserved.is_reserved(shortcode):
            self._logger.warning(f"Redirect attempt on reserved shortcode: {shortcode}")
            REDIRECT_REQUESTS_TOTAL.labels(outcome=RedirectOutcome.NOT_FOUND).inc()
            raise ShortLinkNotFoundError()
        if not is_valid_shortcode(shortcode):
            REDIRECT_REQUESTS_TOTAL.labels(outcome=RedirectOutcome.NOT_FOUND).inc()
            raise ShortLinkNotFoundError()

        try:
            link = await self._store.find_short_link(shortcode)
        except StorageUnavailableError:
            REDIRECT_REQUESTS_TOTAL.labels(outcome=RedirectOutcome.ERROR).inc()
            raise
        if link is None:
            self._logger.warning(f"Redirect failed - shortcode not found: {shortcode}")
            REDIRECT_REQUESTS_TOTAL.labels(outcome=RedirectOutcome.NOT_FOUND).inc()
            raise ShortLinkNotFoundError()

        if link.is_expired(self._clock()):
            self._logger.info(f"Redirect refused - shortcode expired at {link.expiry_at.isoformat()}: {shortcode}")
            REDIRECT_REQUESTS_TOTAL.labels(outcome=RedirectOutcome.EXPIRED).inc()
            raise ShortLinkExpiredError()

        await self._record(shortcode, visitor)
        REDIRECT_REQUESTS_TOTAL.labels(outcome=RedirectOutcome.REDIRECTED).inc()
        return link

    async def _record(self, shortcode: str, visitor: Visitor) -> None:
        # Recording failures never reach the caller.
        try:
            await self._recorder.record_click(shortcode, visitor)
        except Exception as exc:
            self._logger.error(f"Click recorder raised for {shortcode}: {exc!r}")
