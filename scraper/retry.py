"""Bounded retries with exponential backoff and jitter."""
import logging
import random
import threading
import time
from enum import Enum
from typing import Callable, Optional, TypeVar

from errors import (
    ParseError, RetriesExhausted, RunCancelled, StorageUnavailable, TransientNetworkError
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Classification(Enum):
    """How a failure should be treated by RetryPolicy."""
    RETRYABLE = 'retryable'
    RETRY_ONCE = 'retry_once'
    FATAL = 'fatal'


def default_classify(error: Exception) -> Classification:
    """Transient network and storage outages retry; parse errors retry once."""
    if isinstance(error, (TransientNetworkError, StorageUnavailable)):
        return Classification.RETRYABLE
    if isinstance(error, ParseError):
        return Classification.RETRY_ONCE
    return Classification.FATAL


class RetryPolicy:
    """Wraps a fallible operation with bounded exponential backoff."""

    JITTER = 0.2

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.0,
                 max_delay: float = 30.0,
                 sleep: Optional[Callable[[float], None]] = None,
                 rng: Optional[random.Random] = None):
        """
        Initialize the retry policy.

        Args:
            max_attempts: Hard ceiling on calls, including the first
            base_delay: Delay before the first retry, in seconds
            max_delay: Cap on the un-jittered delay
            sleep: Sleep function (injectable for tests)
            rng: Random source for jitter
        """
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._rng = rng or random.Random()

    def delay_for(self, retry_number: int) -> float:
        """
        Backoff before retry ``retry_number`` (1-based), with ±20% jitter.
        """
        delay = min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)
        return delay * self._rng.uniform(1 - self.JITTER, 1 + self.JITTER)

    def execute(self, op: Callable[[], T],
                classify: Callable[[Exception], Classification] = default_classify,
                on_retry: Optional[Callable[[int, Exception, float], None]] = None,
                cancel_event: Optional[threading.Event] = None) -> T:
        """
        Run ``op`` until it succeeds, fails fatally or attempts run out.

        Args:
            op: Zero-argument callable to run
            classify: Maps an exception to a Classification
            on_retry: Called with (retry_number, error, delay) before each retry
            cancel_event: Set to stop retrying

        Returns:
            Whatever ``op`` returns

        Raises:
            RetriesExhausted: When retryable failures hit the attempt ceiling
            Exception: Fatal errors propagate unchanged on first occurrence
        """
        attempt = 0
        retried_once = False

        while True:
            attempt += 1
            try:
                return op()
            except RunCancelled:
                raise
            except Exception as e:
                kind = classify(e)
                if kind is Classification.FATAL:
                    raise

                out_of_attempts = attempt >= self.max_attempts
                if kind is Classification.RETRY_ONCE:
                    out_of_attempts = out_of_attempts or retried_once
                    retried_once = True

                if out_of_attempts:
                    logger.error(
                        f"All {attempt} attempt(s) failed. Last error: {e}",
                        extra={'error_type': type(e).__name__}
                    )
                    raise RetriesExhausted(e, attempt) from e

                delay = self.delay_for(attempt)
                retry_after = getattr(e, 'retry_after', None)
                if retry_after:
                    delay = max(delay, min(float(retry_after), self.max_delay))

                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f} seconds..."
                )
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                self._wait(delay, cancel_event)

    def _wait(self, delay: float, cancel_event: Optional[threading.Event]) -> None:
        if self._sleep is not None:
            self._sleep(delay)
        elif cancel_event is not None:
            if cancel_event.wait(delay):
                raise RunCancelled("Cancelled during retry backoff")
        else:
            time.sleep(delay)
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled("Cancelled during retry backoff")
