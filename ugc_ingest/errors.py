from __future__ import annotations

from typing import Any


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class ScrapeError(RuntimeError):
    """Raised when the scraping provider cannot produce a usable result set."""


class AuthError(ScrapeError):
    """The provider rejected the token (HTTP 401/403). Never retried."""


class NotFoundError(ScrapeError):
    """The actor or resource does not exist (HTTP 404). A configuration problem."""


class BadRequestError(ScrapeError):
    """The provider rejected the run input (HTTP 400)."""

    def __init__(self, message: str, *, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class TransientError(ScrapeError):
    """Network failure or unexpected non-2xx status; eligible for the async fallback."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RunFailedError(ScrapeError):
    """An async provider run reached a failed terminal state."""

    def __init__(self, message: str, *, status: str | None = None) -> None:
        super().__init__(message)
        self.status = status


class RunTimeoutError(ScrapeError):
    """An async provider run did not finish before the hard poll timeout."""


class ProviderItemError(ScrapeError):
    """The result set consists solely of provider error sentinel items."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class EmptyResultError(ProviderItemError):
    """The provider reported that no items exist for the given input."""


class PerItemParseError(ValueError):
    """A single raw item could not be normalized. Always caught by the normalizer."""


class MediaRehostError(RuntimeError):
    """Fetching or uploading a media asset failed. Always caught by the rehoster."""


class StorageError(RuntimeError):
    """Raised when reading or writing state in SQLite fails."""


class DedupLookupError(StorageError):
    """The batched permalink existence check failed; fatal for the run."""


class PersistenceError(StorageError):
    """A single post could not be inserted; captured per item."""
