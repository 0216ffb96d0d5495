"""Exceptions raised by the remote directory client and the backup run."""

from enum import Enum

import requests


class ApiError(Exception):
    """Raised when the remote service returns a non-2xx response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        url: str = "",
        retry_after: str | None = None,
    ) -> None:
        super().__init__(f"API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.url = url
        self.retry_after = retry_after


class AuthError(ApiError):
    """401 or 403. Never retried; the cached token is dropped."""


class NotFoundError(ApiError):
    """404. Never retried."""


class RateLimitError(ApiError):
    """429, optionally carrying a Retry-After value."""


class BackupCancelled(Exception):
    """Raised at a suspension point once the cancellation signal is set."""


class RetryKind(Enum):
    """How the retry policy treats a failed attempt."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FATAL = "fatal"


def error_for_status(
    status_code: int,
    message: str,
    url: str = "",
    retry_after: str | None = None,
) -> ApiError:
    """Build the most specific ApiError subclass for a status code."""
    if status_code in (401, 403):
        return AuthError(status_code, message, url)
    if status_code == 404:
        return NotFoundError(status_code, message, url)
    if status_code == 429:
        return RateLimitError(status_code, message, url, retry_after)
    return ApiError(status_code, message, url, retry_after)


def classify(exc: BaseException) -> RetryKind:
    """
    Classify a failed attempt.

    429 is rate-limited. 5xx and network-level failures are transient.
    401/403, 404 and every other 4xx are fatal. Anything that is not an
    HTTP response error is treated as transient.
    """
    if isinstance(exc, BackupCancelled):
        return RetryKind.FATAL
    if isinstance(exc, ApiError):
        if exc.status_code == 429:
            return RetryKind.RATE_LIMITED
        if 500 <= exc.status_code < 600:
            return RetryKind.TRANSIENT
        return RetryKind.FATAL
    if isinstance(exc, requests.exceptions.HTTPError) and exc.response is not None:
        return classify(error_for_status(exc.response.status_code, str(exc)))
    return RetryKind.TRANSIENT
