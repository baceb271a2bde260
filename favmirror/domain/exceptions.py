"""Domain-specific exceptions.

Per-item failures are caught where they happen and counted; only
``RecordStoreError`` and programming errors are meant to reach the tick
level. ``SyncCancelledError`` is a shutdown signal, not a failure.
"""

from __future__ import annotations

# Error names the destination returns when a create collides with an existing entity.
ALREADY_EXISTS_ERROR_NAMES = frozenset(
    {
        "UserAlreadyExistsError",
        "TagAlreadyExistsError",
        "TagCategoryAlreadyExistsError",
    }
)


class FavMirrorError(Exception):
    """Base exception for all favmirror errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SourceError(FavMirrorError):
    """Raised when the source service cannot serve a request."""


class SourceHTTPError(SourceError):
    """Permanent non-2xx answer from the source (never retried)."""

    def __init__(self, message: str, status_code: int, url: str | None = None) -> None:
        super().__init__(message, {"status_code": status_code, "url": url})
        self.status_code = status_code
        self.url = url


class PageUnavailableError(SourceError):
    """Retries exhausted on throttling or transport errors; callers skip the page."""

    def __init__(self, message: str, attempts: int, url: str | None = None) -> None:
        super().__init__(message, {"attempts": attempts, "url": url})
        self.attempts = attempts
        self.url = url


class DestinationError(FavMirrorError):
    """Non-2xx answer from the destination API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        error_name: str | None = None,
        description: str | None = None,
    ) -> None:
        super().__init__(
            message,
            {"status_code": status_code, "error_name": error_name, "description": description},
        )
        self.status_code = status_code
        self.error_name = error_name
        self.description = description

    @property
    def already_exists(self) -> bool:
        return self.error_name in ALREADY_EXISTS_ERROR_NAMES


class DestinationAuthError(FavMirrorError):
    """First-user bootstrap or token retrieval failed."""


class RecordStoreError(FavMirrorError):
    """Underlying storage failed; fatal for the current tick."""


class SyncCancelledError(FavMirrorError):
    """The process-wide stop signal was observed at a checkpoint."""
