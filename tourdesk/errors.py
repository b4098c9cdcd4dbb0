"""
Error taxonomy for tourdesk.

Remote failures are split into retryable (network, timeouts, overloaded
backend) and terminal (bad input, permissions, stale writes). Only the
retryable branch is ever retried by RetryingFetcher.
"""
from __future__ import annotations


class TourDeskError(Exception):
    """Base class for all tourdesk errors."""


class RetryableError(TourDeskError):
    """A transient failure that may succeed when attempted again."""


class TerminalError(TourDeskError):
    """A failure that retrying cannot fix."""


class ValidationError(TerminalError):
    """Input rejected before any write was issued."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        self.fields = list(fields or [])
        super().__init__(message)


class StaleWriteError(TerminalError):
    """The row changed remotely since the client last saw it."""

    def __init__(self, table: str, entity_id: str, expected_updated_at: str | None) -> None:
        self.table = table
        self.entity_id = entity_id
        self.expected_updated_at = expected_updated_at
        super().__init__(
            f"{table}/{entity_id} was modified remotely (expected updated_at={expected_updated_at})"
        )


class SubscriptionError(RetryableError):
    """Subscribing to (or joining) a change stream failed."""


class SettingsError(TourDeskError):
    """Configuration could not be loaded or validated."""
