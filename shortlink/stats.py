"""Read-side composition for the detail and listing views."""

from dataclasses import dataclass, field

from shortlink.errors import ShortLinkNotFoundError
from shortlink.models import ClickEvent, ShortLink
from shortlink.store import ShortLinkStore

__all__ = ["ShortLinkDetails", "StatsAssembler", "DEFAULT_LIST_LIMIT"]

DEFAULT_LIST_LIMIT = 100


@dataclass
class ShortLinkDetails:
    link: ShortLink
    clicks: list[ClickEvent] = field(default_factory=list)

    @property
    def clicks_total(self) -> int:
        return self.link.clicks_count


class StatsAssembler:
    def __init__(self, store: ShortLinkStore) -> None:
        self._store = store

    async def get_details(self, shortcode: str) -> ShortLinkDetails:
        link = await self._store.find_short_link(shortcode)
        if link is None:
            raise ShortLinkNotFoundError()
        clicks = await self._store.list_click_events(shortcode)
        return ShortLinkDetails(link=link, clicks=clicks)

    async def list_summaries(self, limit: int = DEFAULT_LIST_LIMIT) -> list[ShortLink]:
        return await self._store.list_short_links(limit)
