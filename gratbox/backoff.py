"""Exponential-backoff wrapper for single remote calls.

Transient failures (throttling, 5xx gateways, timeouts) are retried with a delay of
`min(max_delay, base_delay * 2 ** (attempt - 1))`; everything else propagates immediately.
"""

import logging
import re
import time
from typing import Any, Callable, Optional

import requests

from .config import RetrySettings
from .errors import FatalError, GratBoxError, RetriesExhaustedError, TransientError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Fallback only: used for exceptions that carry no status code
TRANSIENT_MESSAGE_PATTERN = re.compile(
    r"throttl|too many requests|rate limit|timed? ?out|temporar|service unavailable|gateway",
    re.IGNORECASE,
)


def is_transient_status(status_code: Optional[int]) -> bool:
    return status_code in TRANSIENT_STATUS_CODES


def classify_exception(exc: Exception) -> GratBoxError:
    """Map an arbitrary exception onto TransientError or FatalError.

    Already-typed errors pass through unchanged. `requests` connection failures and timeouts
    are transient. For anything else the message is matched against throttling/timeout
    patterns as a last resort.
    """
    if isinstance(exc, (TransientError, FatalError)):
        return exc
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return TransientError(f"{type(exc).__name__}: {exc}", category="network")
    status = getattr(getattr(exc, "response", None), "status_code", None)
    if status is not None:
        if is_transient_status(status):
            return TransientError(str(exc), status_code=status)
        return FatalError(str(exc), status_code=status)
    if TRANSIENT_MESSAGE_PATTERN.search(str(exc)):
        return TransientError(str(exc), category="message_match")
    return FatalError(f"{type(exc).__name__}: {exc}", category="unclassified")


class BackoffCaller:
    """Calls a function, retrying transient failures with capped exponential backoff."""

    def __init__(
        self,
        max_retries: int = 5,
        base_delay: float = 2,
        max_delay: float = 60,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings: RetrySettings, sleep: Callable[[float], None] = time.sleep) -> "BackoffCaller":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay_sec,
            max_delay=settings.max_delay_sec,
            sleep=sleep,
        )

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before retry number `attempt` (1-based). Never exceeds max_delay."""
        delay = self.base_delay * (2 ** (attempt - 1))
        if retry_after:
            delay = max(delay, retry_after)
        return min(self.max_delay, delay)

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Invoke `fn(*args, **kwargs)` and return its result.

        Raises:
            FatalError: immediately for non-retryable failures.
            RetriesExhaustedError: when a transient failure persists past max_retries.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                error = classify_exception(exc)
                if isinstance(error, FatalError):
                    if error is exc:
                        raise
                    raise error from exc
                if attempt > self.max_retries:
                    raise RetriesExhaustedError(error, attempt) from exc
                delay = self.delay_for(attempt, error.retry_after)
                logger.warning(
                    "Transient failure (attempt %d/%d): %s. Retrying in %.1fs",
                    attempt,
                    self.max_retries + 1,
                    error,
                    delay,
                )
                self.sleep(delay)
