"""Structure health monitoring for ticketing sources."""
import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from errors import RetriesExhausted, ScraperError, StorageUnavailable
from processor.models import HealthState, SourceHealth
from scraper.base import Extractor
from scraper.retry import RetryPolicy

logger = logging.getLogger(__name__)


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def _copy(health: SourceHealth) -> SourceHealth:
    return replace(health, landmarks=dict(health.landmarks))


class StructureMonitor:
    """
    Probes each source's landmark selectors and tracks a health state machine.

    A probe scoring at least ``threshold`` is Healthy and clears the failure
    count. A lower score, or a probe whose fetch still fails after retries, is
    Degraded and adds a consecutive failure. A fetched page scoring zero or
    ``failure_limit`` consecutive failures is Failing, which holds until a
    healthy probe or an operator acknowledgement.
    """

    def __init__(self, extractors: Dict[str, Extractor], store=None,
                 threshold: float = 70.0, failure_limit: int = 3,
                 retry_policy: Optional[RetryPolicy] = None,
                 now: Optional[Callable[[], str]] = None):
        """
        Initialize the monitor.

        Args:
            extractors: Extractors to probe, by source id
            store: Optional HealthStore shared with other processes
            threshold: Minimum healthy score, 0 to 100
            failure_limit: Consecutive failures that make a source Failing
            retry_policy: Retries for the probe fetch
            now: Callable returning the ISO timestamp for checked_at
        """
        self.extractors = extractors
        self.store = store
        self.threshold = threshold
        self.failure_limit = failure_limit
        self.retry_policy = retry_policy or RetryPolicy()
        self._now = now or _utc_stamp
        self._lock = threading.Lock()
        self._states: Dict[str, SourceHealth] = {}
        self._empty_streaks: Dict[str, int] = {}
        self._pending_warnings: Dict[str, List[str]] = {}

    def refresh(self) -> None:
        """Reload stored health so that state written by other processes is seen."""
        if self.store is None:
            return
        stored = self.store.load_all()
        with self._lock:
            self._states.update(stored)
        logger.debug(f"Loaded stored health for {sorted(stored)}")

    def probe_source(self, source_id: str) -> SourceHealth:
        """
        Probe one source and advance its state machine.

        Args:
            source_id: Registered source id

        Returns:
            Copy of the new SourceHealth
        """
        extractor = self.extractors[source_id]
        error = None
        try:
            landmarks = self.retry_policy.execute(extractor.probe)
        except ScraperError as e:
            if isinstance(e, RetriesExhausted):
                e = e.last_error
            logger.warning(f"Structure probe failed for {source_id}: {e}", extra={'source': source_id})
            landmarks = {}
            error = str(e)

        health = self.score(landmarks)

        with self._lock:
            previous = self._states.get(source_id)
            current = self._transition(source_id, previous, landmarks, health, error)
            self._states[source_id] = current

        logger.info(
            f"Structure probe for {source_id}: {health}% ({current.state.value})",
            extra={
                'source': source_id,
                'overall_health': health,
                'state': current.state.value,
                'failed_landmarks': current.failed_landmarks,
            }
        )
        self._persist(current)
        return _copy(current)

    def probe_all(self) -> Dict[str, SourceHealth]:
        """Probe every registered source in turn."""
        return {source_id: self.probe_source(source_id) for source_id in self.extractors}

    @staticmethod
    def score(landmarks: Dict[str, bool]) -> float:
        """Percentage of passing landmarks, rounded to one decimal."""
        if not landmarks:
            return 0.0
        passed = sum(1 for ok in landmarks.values() if ok)
        return round(passed / len(landmarks) * 100, 1)

    def acknowledge(self, source_id: str) -> SourceHealth:
        """
        Manually reset a source to Healthy.

        Raises:
            KeyError: If the source is not registered
        """
        if source_id not in self.extractors:
            raise KeyError(source_id)

        with self._lock:
            previous = self._states.get(source_id)
            current = SourceHealth(
                source=source_id,
                checked_at=self._now(),
                landmarks=dict(previous.landmarks) if previous else {},
                overall_health=previous.overall_health if previous else 0.0,
                consecutive_failures=0,
                state=HealthState.HEALTHY,
                acknowledged=True
            )
            self._states[source_id] = current
            self._empty_streaks.pop(source_id, None)

        logger.info(f"Health of {source_id} acknowledged by operator", extra={'source': source_id})
        self._persist(current)
        return _copy(current)

    def record_parse_failure(self, source_id: str, detail: str) -> SourceHealth:
        """
        Escalate an exhausted ParseError from a scrape.

        Adds a consecutive failure; reaching ``failure_limit`` makes the source
        Failing for the next run.
        """
        with self._lock:
            previous = self._states.get(source_id)
            failures = (previous.consecutive_failures if previous else 0) + 1
            state = previous.state if previous else HealthState.HEALTHY
            if failures >= self.failure_limit:
                state = HealthState.FAILING

            current = SourceHealth(
                source=source_id,
                checked_at=self._now(),
                landmarks=dict(previous.landmarks) if previous else {},
                overall_health=previous.overall_health if previous else 0.0,
                consecutive_failures=failures,
                state=state,
                acknowledged=False,
                error=detail
            )
            self._states[source_id] = current

        logger.warning(
            f"Parse failure recorded for {source_id} ({failures} consecutive): {detail}",
            extra={'source': source_id}
        )
        if state is HealthState.FAILING and (previous is None or previous.state is not HealthState.FAILING):
            self._alert(current)
        self._persist(current)
        return _copy(current)

    def record_empty_result(self, source_id: str) -> int:
        """Count an empty listing; warns once the streak reaches failure_limit."""
        with self._lock:
            streak = self._empty_streaks.get(source_id, 0) + 1
            self._empty_streaks[source_id] = streak

        if streak >= self.failure_limit:
            logger.warning(
                f"{source_id} returned no events {streak} runs in a row",
                extra={'source': source_id}
            )
        return streak

    def reset_empty_streak(self, source_id: str) -> None:
        with self._lock:
            self._empty_streaks.pop(source_id, None)

    def take_warnings(self, source_id: str) -> List[str]:
        """Return and clear warnings queued for the next run report."""
        with self._lock:
            return self._pending_warnings.pop(source_id, [])

    def status(self, source_id: str) -> Optional[SourceHealth]:
        with self._lock:
            health = self._states.get(source_id)
            return _copy(health) if health else None

    def snapshot(self) -> Dict[str, SourceHealth]:
        with self._lock:
            return {source_id: _copy(health) for source_id, health in self._states.items()}

    def health_report(self) -> dict:
        """
        Summarize the health of every registered source.

        Returns:
            Dict with per-source entries, the mean score and failing sources
        """
        snapshot = self.snapshot()
        sources = {}
        for source_id in self.extractors:
            health = snapshot.get(source_id)
            if health is None:
                sources[source_id] = {'state': 'unknown', 'overall_health': None}
                continue
            sources[source_id] = {
                'state': health.state.value,
                'overall_health': health.overall_health,
                'consecutive_failures': health.consecutive_failures,
                'failed_landmarks': health.failed_landmarks,
                'checked_at': health.checked_at,
                'acknowledged': health.acknowledged,
                'error': health.error,
            }

        scores = [entry['overall_health'] for entry in sources.values() if entry['overall_health'] is not None]
        return {
            'generated_at': self._now(),
            'sources': sources,
            'average_health': round(sum(scores) / len(scores), 1) if scores else None,
            'failing': sorted(s for s, entry in sources.items() if entry['state'] == HealthState.FAILING.value),
        }

    def _transition(self, source_id: str, previous: Optional[SourceHealth],
                    landmarks: Dict[str, bool], health: float,
                    error: Optional[str]) -> SourceHealth:
        prev_state = previous.state if previous else HealthState.HEALTHY
        prev_failures = previous.consecutive_failures if previous else 0

        if error is None and health >= self.threshold:
            state = HealthState.HEALTHY
            failures = 0
        else:
            failures = prev_failures + 1
            state = HealthState.DEGRADED
            if prev_state is HealthState.FAILING or failures >= self.failure_limit:
                state = HealthState.FAILING
            elif error is None and health == 0:
                state = HealthState.FAILING

        current = SourceHealth(
            source=source_id,
            checked_at=self._now(),
            landmarks=dict(landmarks),
            overall_health=health,
            consecutive_failures=failures,
            state=state,
            acknowledged=False,
            error=error
        )

        if state is HealthState.DEGRADED and prev_state is HealthState.HEALTHY:
            if error is not None:
                message = f"{source_id} structure probe failed: {error}"
            else:
                message = (
                    f"{source_id} structure degraded to {health}% "
                    f"(failed landmarks: {', '.join(current.failed_landmarks) or 'none'})"
                )
            logger.warning(message, extra={'source': source_id})
            self._pending_warnings.setdefault(source_id, []).append(message)
        elif state is HealthState.FAILING and prev_state is not HealthState.FAILING:
            self._alert(current)
        elif state is HealthState.HEALTHY and prev_state is not HealthState.HEALTHY:
            logger.info(f"{source_id} structure recovered at {health}%", extra={'source': source_id})

        return current

    def _alert(self, health: SourceHealth) -> None:
        logger.error(
            f"ALERT: {health.source} is failing after {health.consecutive_failures} "
            f"consecutive failure(s); scraping will be skipped until it recovers",
            extra={
                'source': health.source,
                'overall_health': health.overall_health,
                'failed_landmarks': health.failed_landmarks,
            }
        )

    def _persist(self, health: SourceHealth) -> None:
        if self.store is None:
            return
        try:
            self.store.save(health)
        except StorageUnavailable as e:
            logger.error(f"Could not persist health for {health.source}: {e}", extra={'source': health.source})
