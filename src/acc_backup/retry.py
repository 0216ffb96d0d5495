"""Retry and backoff policy shared by every remote call."""

import logging
import time
from collections.abc import Callable
from threading import Event, Lock
from typing import Any, TypeVar

from .errors import ApiError, BackupCancelled, RetryKind, classify
from .utils import parse_retry_after

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRY_AFTER_SECONDS = 600
RETRY_AFTER_BUFFER_SECONDS = 1


class RetryPolicy:
    """
    Retry a callable according to how its failures are classified.

    - Rate-limited (429): honour Retry-After (capped at 600s, plus a 1s
      buffer), otherwise back off ``attempt * initial_delay``
    - Transient (5xx, network errors): back off ``attempt * initial_delay``
    - Fatal (401/403, 404, other 4xx): raise immediately

    Thread-safe; a single policy is shared by every worker of a run.
    """

    def __init__(
        self,
        max_retries: int = 15,
        initial_delay: float = 2.0,
        max_delay: float = MAX_RETRY_AFTER_SECONDS,
        stop_event: Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        """
        Initialize the retry policy.

        Args:
            max_retries: Retries allowed after the first attempt
            initial_delay: Backoff unit in seconds
            max_delay: Upper bound for any computed delay
            stop_event: Cancellation signal, checked before every attempt
                and used as an interruptible sleep
            sleep: Override for the sleep function (tests)
        """
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.stop_event = stop_event
        self._sleep = sleep

        self.lock = Lock()
        self.retries_total = 0
        self.rate_limit_hits = 0

    def delay_for(self, exc: BaseException, kind: RetryKind, attempt: int) -> float:
        """
        Compute the wait before retry number ``attempt`` (1-based).

        Args:
            exc: The failure of the previous attempt
            kind: Its classification
            attempt: Retry number about to be made

        Returns:
            Delay in seconds
        """
        backoff = min(self.max_delay, attempt * self.initial_delay)
        if kind is not RetryKind.RATE_LIMITED:
            return backoff

        raw = exc.retry_after if isinstance(exc, ApiError) else None
        if raw is None:
            return backoff

        retry_after = parse_retry_after(raw)
        if retry_after is None:
            logger.debug("Failed to parse RetryAfter value %r, using exponential backoff", raw)
            return backoff

        return min(retry_after, MAX_RETRY_AFTER_SECONDS) + RETRY_AFTER_BUFFER_SECONDS

    def execute(
        self,
        func: Callable[..., T],
        *args: Any,
        before_attempt: Callable[[], Any] | None = None,
        **kwargs: Any,
    ) -> T:
        """
        Call ``func`` until it succeeds, fails fatally or retries run out.

        Args:
            func: Callable performing one attempt
            before_attempt: Run before every attempt (token refresh,
                re-signing a download URL). Its failures are classified
                like those of ``func``.

        Returns:
            Whatever ``func`` returns

        Raises:
            The last exception once retries are exhausted, a fatal
            exception immediately, or BackupCancelled.
        """
        attempt = 0
        while True:
            self._check_cancelled()
            try:
                if before_attempt is not None:
                    before_attempt()
                return func(*args, **kwargs)
            except Exception as exc:
                kind = classify(exc)
                if kind is RetryKind.FATAL or attempt >= self.max_retries:
                    raise

                attempt += 1
                delay = self.delay_for(exc, kind, attempt)
                self._record(kind)
                self._log_retry(exc, kind, attempt, delay)
                self._wait(delay)

    def _record(self, kind: RetryKind) -> None:
        with self.lock:
            self.retries_total += 1
            if kind is RetryKind.RATE_LIMITED:
                self.rate_limit_hits += 1

    def _log_retry(self, exc: BaseException, kind: RetryKind, attempt: int, delay: float) -> None:
        if kind is RetryKind.RATE_LIMITED:
            has_header = isinstance(exc, ApiError) and exc.retry_after is not None
            reason = "Rate limit (429)" if has_header else "Rate limit (429), no Retry-After header"
        else:
            reason = "Error communicating with the API, expecting this to be a transient error"
        logger.warning(
            "%s: %s. Retry %d/%d in %g seconds.",
            reason,
            exc,
            attempt,
            self.max_retries,
            delay,
        )

    def _wait(self, delay: float) -> None:
        if self._sleep is not None:
            self._sleep(delay)
        elif self.stop_event is not None:
            # Event.wait doubles as a sleep that wakes on cancellation
            self.stop_event.wait(delay)
        else:
            time.sleep(delay)
        self._check_cancelled()

    def _check_cancelled(self) -> None:
        if self.stop_event is not None and self.stop_event.is_set():
            raise BackupCancelled("Backup cancelled")
