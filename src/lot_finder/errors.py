"""Exception taxonomy and error records."""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum


class FailureClass(str, Enum):
    """Classified outcome of a failed page visit."""

    SOFT_BLOCKED = "soft_blocked"  # identity-level block (HTTP 403)
    RATE_LIMITED = "rate_limited"  # pacing violation (HTTP 429)
    TIMEOUT = "timeout"  # navigation timed out
    TRANSIENT = "transient"  # anything else


class LotFinderError(Exception):
    """Base class for all lot_finder errors."""


class ConfigurationError(LotFinderError):
    """Invalid or missing configuration (not retryable)."""


class StorageError(LotFinderError):
    """Persistence I/O failure."""


class ScrapeFailure(LotFinderError):
    """Terminal failure after the retry policy was exhausted."""

    failure_class: FailureClass = FailureClass.TRANSIENT

    def __init__(self, url: str, attempts: int, detail: str | None = None):
        self.url = url
        self.attempts = attempts
        self.detail = detail
        message = f"{self.failure_class.value} after {attempts} attempt(s): {url}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class SoftBlockedError(ScrapeFailure):
    failure_class = FailureClass.SOFT_BLOCKED


class RateLimitedError(ScrapeFailure):
    failure_class = FailureClass.RATE_LIMITED


class FetchTimeoutError(ScrapeFailure):
    failure_class = FailureClass.TIMEOUT


class TransientFetchError(ScrapeFailure):
    failure_class = FailureClass.TRANSIENT


_FAILURE_ERRORS: dict[FailureClass, type[ScrapeFailure]] = {
    FailureClass.SOFT_BLOCKED: SoftBlockedError,
    FailureClass.RATE_LIMITED: RateLimitedError,
    FailureClass.TIMEOUT: FetchTimeoutError,
    FailureClass.TRANSIENT: TransientFetchError,
}


def error_for(failure: FailureClass, url: str, attempts: int, detail: str | None = None) -> ScrapeFailure:
    """Build the typed terminal error for a failure class."""
    return _FAILURE_ERRORS[failure](url, attempts, detail)


@dataclass
class ScrapeError:
    """Record of a scan error."""

    url: str
    error_type: str
    error_message: str
    traceback: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_exception(cls, url: str, exc: Exception) -> "ScrapeError":
        """Create a ScrapeError from an exception."""
        return cls(
            url=url,
            error_type=type(exc).__name__,
            error_message=str(exc),
            traceback="".join(traceback.format_exception(exc)),
        )
