"""Names that can never be allocated or resolved as shortcodes.

They collide with the service's own top-level routes. The registry is built
once at startup and is read-only afterwards.
"""

from collections.abc import Iterable

__all__ = ["DEFAULT_RESERVED_NAMES", "ReservedNames"]

DEFAULT_RESERVED_NAMES = frozenset(
    {
        "shorturls",
        "api",
        "admin",
        "health",
        "favicon.ico",
        "metrics",
        "docs",
        "redoc",
        "openapi.json",
    }
)


class ReservedNames:
    """Case-insensitive, immutable set of reserved names."""

    __slots__ = ("_names",)

    def __init__(self, extra: Iterable[str] = ()) -> None:
        names = set(DEFAULT_RESERVED_NAMES)
        names.update(name.strip().casefold() for name in extra if name and name.strip())
        self._names = frozenset(name.casefold() for name in names)

    def is_reserved(self, name: str) -> bool:
        return name.strip().casefold() in self._names

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.is_reserved(name)

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self):
        return iter(sorted(self._names))
