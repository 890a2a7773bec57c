"""Shortcode allocation.

Flow Diagram — allocate(desired)
================================
::
                 ┌──────────────┐
                 │  allocate()  │
                 └──────┬───────┘
                desired supplied?
              ┌─────────┴─────────┐
              │ YES               │ NO
              ▼                   ▼
       ┌─────────────┐     ┌────────────────┐
       │ reserved?   │     │ loop ≤ 8:      │
       │   → 403     │     │  generate      │
       │ exists?     │     │  skip reserved │
       │   → 409     │     │  exists?       │
       │ return it   │     └───────┬────────┘
       └─────────────┘             ▼
                          first free code, or
                          AllocationExhaustedError

The existence check and the later insert are two separate storage calls, so
two concurrent allocations can still pick the same code. The allocator only
narrows that window; the storage unique index decides.
"""

import logging
from collections.abc import Callable

from shortlink.codec import DEFAULT_CANDIDATE_LENGTH, generate_candidate
from shortlink.errors import AllocationExhaustedError, ReservedShortcodeError, ShortcodeConflictError
from shortlink.reserved import ReservedNames
from shortlink.store import ShortLinkStore

__all__ = ["ShortcodeAllocator", "DEFAULT_ALLOCATION_ATTEMPTS"]

DEFAULT_ALLOCATION_ATTEMPTS = 8


class ShortcodeAllocator:
    def __init__(
        self,
        store: ShortLinkStore,
        reserved: ReservedNames,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        attempts: int = DEFAULT_ALLOCATION_ATTEMPTS,
        length: int = DEFAULT_CANDIDATE_LENGTH,
        generator: Callable[[int], str] = generate_candidate,
    ) -> None:
        assert attempts > 0, f"attempts must be positive, got {attempts!r}"
        self._store = store
        self._reserved = reserved
        self._logger = logger or logging.getLogger("shortlink.allocator")
        self._attempts = attempts
        self._length = length
        self._generate = generator

    async def allocate(self, desired: str | None = None) -> str:
        """Return a shortcode that was free at the time of the check.

        ``desired`` must already have passed :func:`shortlink.codec.validate_shortcode`.
        A desired shortcode is a hard request: it is returned as-is or the call
        fails, it never degrades to a generated one.

        Raises:
            ReservedShortcodeError: ``desired`` is a reserved name (any case).
            ShortcodeConflictError: ``desired`` is already stored.
            AllocationExhaustedError: no free generated code within the attempt bound.
            StorageUnavailableError: the existence check failed.
        """
        if desired:
            return await self._claim_desired(desired)
        return await self._generate_free()

    async def _claim_desired(self, desired: str) -> str:
        if self._reserved.is_reserved(desired):
            self._logger.warning(f"Rejected reserved shortcode: {desired}")
            raise ReservedShortcodeError()
        if await self._store.find_short_link(desired) is not None:
            raise ShortcodeConflictError()
        return desired

    async def _generate_free(self) -> str:
        for attempt in range(1, self._attempts + 1):
            candidate = self._generate(self._length)
            if self._reserved.is_reserved(candidate):
                continue
            if await self._store.find_short_link(candidate) is None:
                return candidate
            self._logger.debug(f"Generated shortcode {candidate} taken (attempt {attempt})")

        self._logger.error(f"Unable to generate a free shortcode after {self._attempts} attempts")
        raise AllocationExhaustedError()
