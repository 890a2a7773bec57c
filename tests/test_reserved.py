"""Reserved-name registry tests."""

import pytest

from shortlink.reserved import DEFAULT_RESERVED_NAMES, ReservedNames


@pytest.mark.parametrize("name", ["shorturls", "SHORTURLS", "ShortUrls", "api", "Admin", "HEALTH", "favicon.ico"])
def test_default_names_reserved_in_any_case(name: str) -> None:
    assert ReservedNames().is_reserved(name)


def test_ordinary_names_not_reserved() -> None:
    names = ReservedNames()
    assert not names.is_reserved("promo1")
    assert not names.is_reserved("apis")


def test_extra_names_from_configuration() -> None:
    names = ReservedNames(["Login", "  signup ", ""])
    assert names.is_reserved("login")
    assert names.is_reserved("SIGNUP")
    assert len(names) == len(DEFAULT_RESERVED_NAMES) + 2


def test_membership_operator() -> None:
    names = ReservedNames()
    assert "Api" in names
    assert "promo1" not in names
    assert 42 not in names
