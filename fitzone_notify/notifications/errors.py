"""Error taxonomy for the notification subsystem.

``FetchFailure`` and ``ParseFailure`` are raised by the low-level clients and
codecs and recovered by the stores (logged, never surfaced to the UI).
``NotFound`` exists for callers that want to ask explicitly; the stores
themselves treat an unknown id as a no-op.
"""
from __future__ import annotations


class NotificationError(Exception):
    """Base class for every error raised by this package."""


class FetchFailure(NotificationError):
    """A remote service was unreachable, timed out, or answered with an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseFailure(NotificationError):
    """Stored or remote data could not be decoded."""


class NotFound(NotificationError):
    """A mutation referenced an id the store does not hold."""

    def __init__(self, notification_id: str) -> None:
        super().__init__(f"notification {notification_id!r} not found")
        self.notification_id = notification_id
