"""Per-source request spacing and a global in-flight cap."""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from errors import RunCancelled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateToken:
    """Grant returned by RateLimiter.acquire; pass it back to release."""
    source_id: str
    ticket: int
    granted_at: float


class RateLimiter:
    """
    Enforces a minimum interval between requests to the same source and caps
    the number of requests in flight across all sources.

    Each source keeps a single monotonic "next allowed" time. A caller
    reserves its slot under the lock, which hands out slots strictly in
    arrival order, then sleeps outside the lock until the slot opens. Once
    it holds a global slot it checks the source's last grant again, since
    waiters that queued on the global cap can be released together.
    """

    def __init__(self, intervals: Optional[Dict[str, float]] = None,
                 default_interval: float = 1.0, max_concurrent: int = 2,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the rate limiter.

        Args:
            intervals: Minimum seconds between requests, per source id
            default_interval: Interval for sources not listed in intervals
            max_concurrent: Maximum requests in flight across all sources
            clock: Monotonic clock (injectable for tests)
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.intervals = dict(intervals or {})
        self.default_interval = default_interval
        self.max_concurrent = max_concurrent
        self._clock = clock
        self._lock = threading.Lock()
        self._next_allowed: Dict[str, float] = {}
        self._last_granted: Dict[str, float] = {}
        self._tickets: Dict[str, int] = {}
        self._in_flight = threading.BoundedSemaphore(max_concurrent)

    def interval_for(self, source_id: str) -> float:
        return self.intervals.get(source_id, self.default_interval)

    def acquire(self, source_id: str,
                cancel_event: Optional[threading.Event] = None) -> RateToken:
        """
        Block until the caller may issue a request to ``source_id``.

        Args:
            source_id: Source the request targets
            cancel_event: Set to abandon the wait

        Returns:
            RateToken to pass to release()

        Raises:
            RunCancelled: If cancel_event is set while waiting
        """
        interval = self.interval_for(source_id)

        with self._lock:
            now = self._clock()
            slot = max(now, self._next_allowed.get(source_id, now))
            self._next_allowed[source_id] = slot + interval
            ticket = self._tickets.get(source_id, 0) + 1
            self._tickets[source_id] = ticket

        try:
            self._wait(slot - self._clock(), source_id, cancel_event)
            while not self._in_flight.acquire(timeout=0.1):
                if cancel_event is not None and cancel_event.is_set():
                    raise RunCancelled(f"Cancelled while waiting for {source_id}", source=source_id)
        except RunCancelled:
            self._cancel_reservation(source_id, slot, interval)
            raise

        try:
            granted_at = self._grant(source_id, interval, cancel_event)
        except RunCancelled:
            self._in_flight.release()
            raise
        return RateToken(source_id=source_id, ticket=ticket, granted_at=granted_at)

    def _grant(self, source_id: str, interval: float,
               cancel_event: Optional[threading.Event]) -> float:
        while True:
            with self._lock:
                now = self._clock()
                last = self._last_granted.get(source_id)
                if last is None or now - last >= interval:
                    self._last_granted[source_id] = now
                    self._next_allowed[source_id] = max(self._next_allowed.get(source_id, now), now + interval)
                    return now
                delay = last + interval - now
            self._wait(delay, source_id, cancel_event)

    def _wait(self, delay: float, source_id: str,
              cancel_event: Optional[threading.Event]) -> None:
        if delay <= 0:
            return
        logger.debug(f"Waiting {delay:.2f}s before next {source_id} request")
        if cancel_event is not None:
            if cancel_event.wait(delay):
                raise RunCancelled(f"Cancelled while waiting for {source_id}", source=source_id)
        else:
            time.sleep(delay)

    def _cancel_reservation(self, source_id: str, slot: float, interval: float) -> None:
        # Only the newest reservation can be handed back; later tickets keep their slots.
        with self._lock:
            if self._next_allowed.get(source_id) == slot + interval:
                self._next_allowed[source_id] = slot

    def release(self, token: RateToken) -> None:
        """Return the global in-flight slot held by ``token``."""
        self._in_flight.release()

    @contextmanager
    def slot(self, source_id: str,
             cancel_event: Optional[threading.Event] = None) -> Iterator[RateToken]:
        """Context manager wrapping acquire() and release()."""
        token = self.acquire(source_id, cancel_event)
        try:
            yield token
        finally:
            self.release(token)
