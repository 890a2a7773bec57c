"""Click recorder tests."""

from unittest.mock import AsyncMock

import pytest

from shortlink.models import ShortLink
from shortlink.recorder import ClickRecorder, Visitor


@pytest.fixture
def seeded_store(memory_store):
    memory_store.seed(ShortLink.build("promo1", "https://example.com", 30))
    return memory_store


@pytest.mark.asyncio
async def test_event_is_appended_before_counter_increment(seeded_store, clock) -> None:
    recorder = ClickRecorder(seeded_store, clock=clock)

    assert await recorder.record_click("promo1", Visitor(ip="198.51.100.4")) is True
    assert seeded_store.operations() == ["append_click_event", "increment_click_count"]


@pytest.mark.asyncio
async def test_failed_append_leaves_counter_untouched(seeded_store, clock) -> None:
    seeded_store.fail_on.add("append_click_event")
    recorder = ClickRecorder(seeded_store, clock=clock)

    assert await recorder.record_click("promo1", Visitor()) is False
    assert seeded_store.links["promo1"].clicks_count == 0
    assert "increment_click_count" not in seeded_store.operations()


@pytest.mark.asyncio
async def test_failed_increment_undercounts_never_overcounts(seeded_store, clock) -> None:
    seeded_store.fail_on.add("increment_click_count")
    recorder = ClickRecorder(seeded_store, clock=clock)

    assert await recorder.record_click("promo1", Visitor()) is False
    assert len(seeded_store.events) == 1
    assert seeded_store.links["promo1"].clicks_count == 0


@pytest.mark.asyncio
async def test_empty_referrer_stored_as_absent(seeded_store, clock) -> None:
    recorder = ClickRecorder(seeded_store, clock=clock)
    await recorder.record_click("promo1", Visitor(ip="198.51.100.4", referrer=""))
    assert seeded_store.events[0].referrer is None


@pytest.mark.asyncio
async def test_geo_locator_called_once_per_click(seeded_store, clock) -> None:
    locator = AsyncMock()
    locator.locate.return_value = {"country": "NL"}
    recorder = ClickRecorder(seeded_store, geo_locator=locator, clock=clock)

    await recorder.record_click("promo1", Visitor(ip="198.51.100.4"))

    locator.locate.assert_awaited_once_with("198.51.100.4")
    assert seeded_store.events[0].geo == {"country": "NL"}


@pytest.mark.asyncio
async def test_raising_geo_locator_leaves_geo_empty(seeded_store, clock) -> None:
    locator = AsyncMock()
    locator.locate.side_effect = RuntimeError("geo backend down")
    recorder = ClickRecorder(seeded_store, geo_locator=locator, clock=clock)

    assert await recorder.record_click("promo1", Visitor(ip="198.51.100.4")) is True
    assert seeded_store.events[0].geo == {}
