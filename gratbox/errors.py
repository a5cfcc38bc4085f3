"""Exception types shared across GratBox.

The transport layer raises typed errors carrying the HTTP status code and a coarse category so
retry decisions never depend on parsing free text. Message matching is kept only as a fallback
for opaque exceptions (see `backoff.classify_exception`).
"""

from typing import Optional


class GratBoxError(Exception):
    """Base class for every error raised by this package."""


class TransientError(GratBoxError):
    """A failure likely to succeed if retried (throttling, timeouts, 5xx)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        category: str = "transient",
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.category = category
        self.retry_after = retry_after


class FatalError(GratBoxError):
    """A failure retrying will not fix (auth failure, malformed request, permanent 4xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None, category: str = "fatal"):
        super().__init__(message)
        self.status_code = status_code
        self.category = category


class RetriesExhaustedError(FatalError):
    """Raised by the backoff caller once a transient failure outlived every retry."""

    def __init__(self, last_error: TransientError, attempts: int):
        super().__init__(
            f"Gave up after {attempts} attempts. Last error: {last_error}",
            status_code=last_error.status_code,
            category="retries_exhausted",
        )
        self.last_error = last_error
        self.attempts = attempts


class AuthError(FatalError):
    """Token acquisition failed or the granted token lacks required scopes."""

    def __init__(self, message: str):
        super().__init__(message, category="auth")


class MalformedInputError(GratBoxError):
    """A CSV input file is missing, unreadable, or has no usable rows."""


class ReportWriteError(GratBoxError, OSError):
    """The outcome report could not be persisted. The in-memory rows are still valid."""
