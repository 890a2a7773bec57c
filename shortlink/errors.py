"""Error taxonomy for the shortlink service.

Every failure a caller can observe is a subclass of :class:`ShortLinkError`
carrying the HTTP status the route layer answers with. ``DuplicateKeyError``
sits outside that hierarchy: it is a storage-level signal consumed
by the creation flow and never reaches a client.

Hierarchy
=========
::
    ShortLinkError
    ├─ InvalidInputError          400
    ├─ ReservedShortcodeError     403
    ├─ ShortcodeConflictError     409
    ├─ ServerBusyError            503
    │  ├─ AllocationExhaustedError
    │  └─ StorageExhaustedError
    ├─ ShortLinkNotFoundError     404
    ├─ ShortLinkExpiredError      410
    └─ StorageUnavailableError    500

    DuplicateKeyError   (store -> creation flow only)
"""

__all__ = [
    "ShortLinkError",
    "InvalidInputError",
    "ReservedShortcodeError",
    "ShortcodeConflictError",
    "ServerBusyError",
    "AllocationExhaustedError",
    "StorageExhaustedError",
    "ShortLinkNotFoundError",
    "ShortLinkExpiredError",
    "StorageUnavailableError",
    "DuplicateKeyError",
]


class ShortLinkError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_message: str = "internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInputError(ShortLinkError):
    status_code = 400
    default_message = "invalid input"


class ReservedShortcodeError(ShortLinkError):
    status_code = 403
    default_message = "shortcode not allowed"


class ShortcodeConflictError(ShortLinkError):
    status_code = 409
    default_message = "shortcode already exists"


class ServerBusyError(ShortLinkError):
    """Allocation gave up; the whole request is safe to retry later."""

    status_code = 503
    default_message = "unable to generate unique shortcode, try again"


class AllocationExhaustedError(ServerBusyError):
    pass


class StorageExhaustedError(ServerBusyError):
    pass


class ShortLinkNotFoundError(ShortLinkError):
    status_code = 404
    default_message = "shortcode not found"


class ShortLinkExpiredError(ShortLinkError):
    status_code = 410
    default_message = "shortcode expired"


class StorageUnavailableError(ShortLinkError):
    """Transient storage failure. The message never carries the driver error."""

    status_code = 500

    def __init__(self, operation: str, shortcode: str | None = None) -> None:
        super().__init__()
        self.operation = operation
        self.shortcode = shortcode


class DuplicateKeyError(Exception):
    """Raised by a store when an insert violates the shortcode unique constraint."""

    def __init__(self, shortcode: str) -> None:
        super().__init__(f"shortcode '{shortcode}' already stored")
        self.shortcode = shortcode
