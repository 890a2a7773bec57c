"""Creation flow and reporting tests for ShortLinkService."""

import asyncio
import datetime
import itertools

import pytest

from shortlink.codec import ALPHABET
from shortlink.errors import (
    AllocationExhaustedError,
    InvalidInputError,
    ReservedShortcodeError,
    ShortcodeConflictError,
    ShortLinkNotFoundError,
    StorageExhaustedError,
)
from shortlink.recorder import Visitor
from shortlink.schemas import ShortLinkCreate
from shortlink.service import ShortLinkService


def scripted(*codes: str):
    sequence = iter(codes)
    return lambda length: next(sequence)


@pytest.fixture
def service(memory_store, reserved, settings, clock) -> ShortLinkService:
    return ShortLinkService(memory_store, reserved, settings, clock=clock)


@pytest.mark.asyncio
async def test_generated_link_with_one_minute_validity(service, memory_store, clock) -> None:
    link = await service.create_short_link(
        ShortLinkCreate(url="https://example.com", validity=1),
        Visitor(ip="192.0.2.1", user_agent="curl/8.0"),
    )

    assert len(link.shortcode) == 6
    assert all(c in ALPHABET for c in link.shortcode)
    assert link.created_at == clock()
    assert link.expiry_at == clock() + datetime.timedelta(minutes=1)
    assert link.clicks_count == 0
    assert link.link_metadata == {"created_from_ip": "192.0.2.1", "user_agent": "curl/8.0"}
    assert memory_store.links[link.shortcode] is link


@pytest.mark.asyncio
async def test_validity_defaults_to_thirty_minutes(service, clock) -> None:
    link = await service.create_short_link(ShortLinkCreate(url="https://example.com"))
    assert link.validity_minutes == 30
    assert link.expiry_at - link.created_at == datetime.timedelta(minutes=30)


@pytest.mark.asyncio
async def test_desired_shortcode_used_verbatim(service) -> None:
    link = await service.create_short_link(ShortLinkCreate(url="https://example.com", shortcode=" promo1 "))
    assert link.shortcode == "promo1"


@pytest.mark.asyncio
async def test_empty_shortcode_means_generated(service) -> None:
    link = await service.create_short_link(ShortLinkCreate(url="https://example.com", shortcode=""))
    assert len(link.shortcode) == 6


@pytest.mark.asyncio
async def test_second_create_with_same_shortcode_conflicts(service) -> None:
    await service.create_short_link(ShortLinkCreate(url="https://example.com", shortcode="promo1"))
    with pytest.raises(ShortcodeConflictError):
        await service.create_short_link(ShortLinkCreate(url="https://example.org", shortcode="promo1"))


@pytest.mark.asyncio
async def test_reserved_shortcode_forbidden(service, memory_store) -> None:
    with pytest.raises(ReservedShortcodeError):
        await service.create_short_link(ShortLinkCreate(url="https://example.com", shortcode="ShortURLs"))
    assert memory_store.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"url": None},
        {"url": "not-a-url"},
        {"url": "ftp://example.com"},
        {"url": "https://example.com", "shortcode": "ab"},
        {"url": "https://example.com", "shortcode": "has space"},
        {"url": "https://example.com", "validity": 0},
        {"url": "https://example.com", "validity": -5},
        {"url": "https://example.com", "validity": 10**12},
    ],
)
async def test_invalid_input_rejected_before_storage(service, memory_store, payload: dict) -> None:
    with pytest.raises(InvalidInputError):
        await service.create_short_link(ShortLinkCreate(**payload))
    assert memory_store.calls == []


@pytest.mark.asyncio
async def test_insert_collision_retries_with_new_generated_code(memory_store, reserved, settings, clock) -> None:
    memory_store.stolen_on_insert.add("race01")
    service = ShortLinkService(memory_store, reserved, settings, clock=clock, generator=scripted("race01", "next01"))

    link = await service.create_short_link(ShortLinkCreate(url="https://example.com"))

    assert link.shortcode == "next01"
    assert memory_store.links["race01"].original_url == "https://winner.example.com"


@pytest.mark.asyncio
async def test_insert_collision_on_desired_code_is_conflict_without_retry(memory_store, service) -> None:
    memory_store.stolen_on_insert.add("promo1")

    with pytest.raises(ShortcodeConflictError):
        await service.create_short_link(ShortLinkCreate(url="https://example.com", shortcode="promo1"))
    assert memory_store.operations().count("create_short_link") == 1


@pytest.mark.asyncio
async def test_insert_retries_bounded_to_five(memory_store, reserved, settings, clock) -> None:
    memory_store.always_duplicate = True
    counter = itertools.count()
    service = ShortLinkService(
        memory_store, reserved, settings, clock=clock, generator=lambda length: f"code{next(counter):02d}"
    )

    with pytest.raises(StorageExhaustedError):
        await service.create_short_link(ShortLinkCreate(url="https://example.com"))
    assert memory_store.operations().count("create_short_link") == 5


@pytest.mark.asyncio
async def test_allocation_exhaustion_is_server_busy(memory_store, reserved, settings, clock) -> None:
    service = ShortLinkService(memory_store, reserved, settings, clock=clock, generator=lambda length: "admin")
    with pytest.raises(AllocationExhaustedError):
        await service.create_short_link(ShortLinkCreate(url="https://example.com"))


@pytest.mark.asyncio
async def test_concurrent_same_desired_shortcode_exactly_one_wins(service, memory_store) -> None:
    results = await asyncio.gather(
        service.create_short_link(ShortLinkCreate(url="https://a.example.com", shortcode="promo1")),
        service.create_short_link(ShortLinkCreate(url="https://b.example.com", shortcode="promo1")),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, ShortcodeConflictError)]
    created = [r for r in results if not isinstance(r, BaseException)]
    assert len(conflicts) == 1
    assert len(created) == 1
    assert memory_store.links["promo1"] is created[0]


@pytest.mark.asyncio
async def test_concurrent_generated_creations_are_distinct(service, memory_store) -> None:
    n = 200
    links = await asyncio.gather(
        *(service.create_short_link(ShortLinkCreate(url=f"https://example.com/{i}")) for i in range(n))
    )
    assert len({link.shortcode for link in links}) == n
    assert len(memory_store.links) == n


@pytest.mark.asyncio
async def test_concurrent_generated_creations_with_forced_collisions(memory_store, reserved, settings, clock) -> None:
    # every candidate is handed to two callers
    pool = itertools.chain.from_iterable((f"dup{i:03d}", f"dup{i:03d}") for i in itertools.count())
    service = ShortLinkService(memory_store, reserved, settings, clock=clock, generator=lambda length: next(pool))

    results = await asyncio.gather(
        *(service.create_short_link(ShortLinkCreate(url=f"https://example.com/{i}")) for i in range(20)),
        return_exceptions=True,
    )

    created = [r for r in results if not isinstance(r, BaseException)]
    assert len({link.shortcode for link in created}) == len(created)
    assert len(memory_store.links) == len(created)


@pytest.mark.asyncio
async def test_details_include_clicks_newest_first(service, clock) -> None:
    link = await service.create_short_link(ShortLinkCreate(url="https://example.com", shortcode="promo1"))
    for ip in ["192.0.2.1", "192.0.2.2", "192.0.2.3"]:
        clock.advance(seconds=10)
        await service.resolve("promo1", Visitor(ip=ip))

    details = await service.get_details("promo1")

    assert details.link is link
    assert details.clicks_total == 3
    assert [click.ip for click in details.clicks] == ["192.0.2.3", "192.0.2.2", "192.0.2.1"]


@pytest.mark.asyncio
async def test_details_for_unknown_shortcode_not_found(service) -> None:
    with pytest.raises(ShortLinkNotFoundError):
        await service.get_details("nothere")


@pytest.mark.asyncio
async def test_list_summaries_newest_first_and_limited(service, clock) -> None:
    for i in range(5):
        clock.advance(seconds=1)
        await service.create_short_link(ShortLinkCreate(url="https://example.com", shortcode=f"code{i}"))

    assert [link.shortcode for link in await service.list_summaries()] == ["code4", "code3", "code2", "code1", "code0"]
    assert [link.shortcode for link in await service.list_summaries(limit=2)] == ["code4", "code3"]
