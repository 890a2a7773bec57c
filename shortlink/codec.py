"""Shortcode and URL validation plus random shortcode generation.

Pure functions, no I/O. Validation rejects malformed input before any storage
call is made; generation only produces *candidates*; uniqueness is the job of
the allocator and, finally, of the storage unique index.

Key Behaviours
===============
- Shortcodes are trimmed, then must match ``^[A-Za-z0-9_-]{3,30}$``.
- Generated candidates use the 62-char alphanumeric alphabet via nanoid,
  which draws from ``os.urandom``; candidates are not guessable.
- URLs must be absolute ``http``/``https`` URLs accepted by ``validators.url``.
"""

import re
from urllib.parse import urlsplit

import validators
from nanoid import generate

from shortlink.errors import InvalidInputError

__all__ = [
    "ALPHABET",
    "SHORTCODE_PATTERN",
    "DEFAULT_CANDIDATE_LENGTH",
    "validate_shortcode",
    "is_valid_shortcode",
    "generate_candidate",
    "validate_url",
]

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
SHORTCODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,30}$")
DEFAULT_CANDIDATE_LENGTH = 6
ALLOWED_SCHEMES = frozenset({"http", "https"})


def validate_shortcode(value: object) -> str:
    """Return the trimmed shortcode or raise :class:`InvalidInputError`."""
    if not isinstance(value, str):
        raise InvalidInputError("shortcode must be a string")
    cleaned = value.strip()
    if not SHORTCODE_PATTERN.fullmatch(cleaned):
        raise InvalidInputError("invalid shortcode: only A-Z a-z 0-9 _ - allowed, length 3..30")
    return cleaned


def is_valid_shortcode(value: object) -> bool:
    try:
        validate_shortcode(value)
    except InvalidInputError:
        return False
    return True


def generate_candidate(length: int = DEFAULT_CANDIDATE_LENGTH) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


def validate_url(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError("url is required and must be a string")
    url = value.strip()
    scheme = urlsplit(url).scheme.lower()
    if scheme not in ALLOWED_SCHEMES or not validators.url(url):
        raise InvalidInputError("url must include protocol (http/https) and be a valid URL")
    return url
