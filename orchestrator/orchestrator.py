"""Run orchestration: probe, scrape, process, persist and report."""
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from errors import (
    ConfigurationError, ConstraintViolation, ParseError, RetriesExhausted, RunCancelled,
    ScraperError, StorageUnavailable
)
from monitor.structure_monitor import StructureMonitor
from processor.event_processor import EventProcessor
from processor.models import (
    HealthState, RawEventRecord, Region, RunStatus, ScrapeRunReport, UpsertOutcome
)
from scraper.base import Extractor
from scraper.retry import RetryPolicy

logger = logging.getLogger(__name__)


class RunPhase(Enum):
    IDLE = 'idle'
    PROBING = 'probing'
    SCRAPING = 'scraping'
    PROCESSING = 'processing'
    PERSISTING = 'persisting'
    REPORTING = 'reporting'


@dataclass
class SourceFetch:
    """What one scraping worker brought back."""
    source: str
    records: List[RawEventRecord] = field(default_factory=list)
    retries: int = 0
    error: Optional[Exception] = None


@dataclass
class RunResult:
    """Outcome of one orchestrator pass."""
    run_id: str
    reports: List[ScrapeRunReport]
    storage_failed: bool = False
    cancelled: bool = False

    @property
    def exit_code(self) -> int:
        """
        0 when every source is ok, 1 when storage was unreachable or every
        source failed, 2 for any other mix (including all skipped).
        """
        if self.storage_failed:
            return 1
        statuses = [report.status for report in self.reports]
        if all(status is RunStatus.OK for status in statuses):
            return 0
        if all(status is RunStatus.FAILED for status in statuses):
            return 1
        return 2

    @property
    def status(self) -> str:
        return {0: 'ok', 1: 'failed', 2: 'partial'}[self.exit_code]

    def to_dict(self) -> dict:
        return {
            'run_id': self.run_id,
            'status': self.status,
            'storage_failed': self.storage_failed,
            'cancelled': self.cancelled,
            'reports': [report.to_dict() for report in self.reports],
        }


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


class Orchestrator:
    """
    Drives one scrape run across all eligible sources.

    Sources are scraped concurrently up to ``max_concurrency``; processing
    and persistence happen on the calling thread once the workers finish.
    """

    def __init__(self, settings, extractors: Dict[str, Extractor], processor: EventProcessor,
                 storage, monitor: Optional[StructureMonitor] = None, run_log=None,
                 sleep: Optional[Callable[[float], None]] = None,
                 now: Optional[Callable[[], str]] = None):
        """
        Initialize the orchestrator.

        Args:
            settings: Settings instance
            extractors: Extractors by source id
            processor: EventProcessor
            storage: DynamoDBManager (anything with upsert)
            monitor: StructureMonitor consulted at run start
            run_log: RunLog receiving every report
            sleep: Backoff sleep for retry policies (injectable for tests)
            now: Callable returning ISO timestamps for reports
        """
        self.settings = settings
        self.extractors = extractors
        self.processor = processor
        self.storage = storage
        self.monitor = monitor
        self.run_log = run_log
        self._sleep = sleep
        self._now = now or _utc_stamp
        self._state = RunPhase.IDLE
        self._state_lock = threading.Lock()

    @property
    def state(self) -> RunPhase:
        with self._state_lock:
            return self._state

    def _enter(self, phase: RunPhase, run_id: str) -> None:
        with self._state_lock:
            self._state = phase
        logger.debug(f"Run {run_id} entering {phase.value}", extra={'run_id': run_id})

    def run(self, sources: Optional[List[str]] = None, region: Optional[Region] = None,
            cancel_event: Optional[threading.Event] = None) -> RunResult:
        """
        Execute one pass over the requested sources.

        Args:
            sources: Source ids (default: every registered extractor)
            region: Target region (default: settings.default_region)
            cancel_event: Set to stop starting new work

        Returns:
            RunResult with one report per source

        Raises:
            ConfigurationError: If a requested source has no extractor
        """
        source_ids = list(sources) if sources else list(self.extractors)
        unknown = [s for s in source_ids if s not in self.extractors]
        if unknown:
            raise ConfigurationError(f"No extractor registered for: {', '.join(unknown)}")

        region = region or Region.parse(self.settings.default_region)
        cancel_event = cancel_event or threading.Event()
        run_id = uuid.uuid4().hex[:12]
        started_at = self._now()

        reports = {
            source_id: ScrapeRunReport(run_id=run_id, source=source_id, started_at=started_at)
            for source_id in source_ids
        }
        result = RunResult(run_id=run_id, reports=list(reports.values()))
        finalized = set()

        logger.info(
            f"Starting run {run_id} for {', '.join(source_ids)} in {region}",
            extra={'run_id': run_id}
        )

        try:
            self._enter(RunPhase.PROBING, run_id)
            eligible, degraded = self._probe(source_ids, reports)

            self._enter(RunPhase.SCRAPING, run_id)
            fetches = self._scrape(eligible, region, cancel_event, run_id)

            self._enter(RunPhase.PROCESSING, run_id)
            accepted = self._process(fetches, reports, region)

            self._enter(RunPhase.PERSISTING, run_id)
            result.storage_failed = self._persist(accepted, reports, run_id)

            for source_id in eligible:
                self._finalize(reports[source_id], fetches[source_id], source_id in degraded)
                finalized.add(source_id)
            result.cancelled = cancel_event.is_set()
        except Exception as e:
            logger.error(f"Run {run_id} aborted: {e}", extra={'run_id': run_id}, exc_info=True)
            self._fail_unfinished(result, finalized, e)
            raise
        finally:
            self._enter(RunPhase.REPORTING, run_id)
            self._report(result)
            self._enter(RunPhase.IDLE, run_id)

        return result

    def _probe(self, source_ids: List[str], reports: Dict[str, ScrapeRunReport]):
        eligible = []
        degraded = set()

        snapshot = {}
        if self.monitor is not None:
            try:
                self.monitor.refresh()
            except StorageUnavailable as e:
                logger.warning(f"Could not load stored health, using in-memory state: {e}")
            snapshot = self.monitor.snapshot()

        for source_id in source_ids:
            health = snapshot.get(source_id)
            if health is not None and health.state is HealthState.FAILING:
                report = reports[source_id]
                report.status = RunStatus.SKIPPED
                report.detail = (
                    f"structure health {health.overall_health}% after "
                    f"{health.consecutive_failures} consecutive failure(s)"
                )
                logger.warning(f"Skipping {source_id}: source is failing", extra={'source': source_id})
                continue
            if health is not None and health.state is HealthState.DEGRADED:
                degraded.add(source_id)
            eligible.append(source_id)

        return eligible, degraded

    def _scrape(self, source_ids: List[str], region: Region,
                cancel_event: threading.Event, run_id: str) -> Dict[str, SourceFetch]:
        fetches = {}
        if not source_ids:
            return fetches

        workers = min(self.settings.max_concurrency, len(source_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='scrape') as executor:
            futures = {
                executor.submit(self._scrape_source, source_id, region, cancel_event): source_id
                for source_id in source_ids
            }
            for future in as_completed(futures):
                source_id = futures[future]
                fetches[source_id] = future.result()
                logger.info(
                    f"Finished scraping {source_id}: {len(fetches[source_id].records)} records",
                    extra={'run_id': run_id, 'source': source_id}
                )
        return fetches

    def _scrape_source(self, source_id: str, region: Region,
                       cancel_event: threading.Event) -> SourceFetch:
        fetch = SourceFetch(source=source_id)

        if cancel_event.is_set():
            fetch.error = RunCancelled("Run cancelled before scraping started", source=source_id)
            return fetch

        source_settings = self.settings.source(source_id)
        policy = RetryPolicy(
            max_attempts=source_settings.max_retries,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
            sleep=self._sleep
        )
        extractor = self.extractors[source_id]

        def count_retry(attempt, error, delay):
            fetch.retries += 1

        try:
            fetch.records = policy.execute(
                lambda: extractor.fetch_events(region),
                on_retry=count_retry,
                cancel_event=cancel_event
            )
        except RetriesExhausted as e:
            logger.error(f"Giving up on {source_id}: {e}", extra={'source': source_id})
            fetch.error = e
        except ScraperError as e:
            logger.error(f"Scraping {source_id} failed: {e}", extra={'source': source_id})
            fetch.error = e
        except Exception as e:
            logger.error(f"Unexpected error scraping {source_id}: {e}", extra={'source': source_id}, exc_info=True)
            fetch.error = e

        return fetch

    def _process(self, fetches: Dict[str, SourceFetch], reports: Dict[str, ScrapeRunReport],
                 region: Region) -> Dict[str, list]:
        accepted = {}
        for source_id, fetch in fetches.items():
            report = reports[source_id]
            report.fetched = len(fetch.records)
            report.retries = fetch.retries

            if not fetch.records:
                accepted[source_id] = []
                continue

            result = self.processor.process(fetch.records, region)
            report.accepted = len(result.accepted)
            report.rejected = len(result.rejections)
            report.duplicates = result.duplicates
            report.rejections = [
                {'title': r.record.title or '', 'source_url': r.record.source_url or '', 'reason': r.reason}
                for r in result.rejections
            ]
            accepted[source_id] = result.accepted
        return accepted

    def _persist(self, accepted: Dict[str, list], reports: Dict[str, ScrapeRunReport],
                 run_id: str) -> bool:
        """Upsert accepted events; returns True if storage became unavailable."""
        policy = RetryPolicy(
            max_attempts=self.settings.max_retries,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
            sleep=self._sleep
        )

        for source_id, events in accepted.items():
            report = reports[source_id]

            def count_retry(attempt, error, delay, report=report):
                report.retries += 1

            for index, event in enumerate(events):
                try:
                    outcome = policy.execute(lambda: self.storage.upsert(event), on_retry=count_retry)
                except ConstraintViolation as e:
                    logger.warning(f"Storage rejected event {event.id}: {e}", extra={'source': source_id})
                    report.accepted -= 1
                    report.rejected += 1
                    report.rejections.append({
                        'title': event.title,
                        'source_url': event.source_url or '',
                        'reason': 'constraint_violation',
                    })
                    continue
                except RetriesExhausted as e:
                    if not isinstance(e.last_error, StorageUnavailable):
                        self._reject_unstored(report, event, e.last_error)
                        continue
                    logger.error(
                        f"Storage unavailable, aborting persistence for run {run_id}: {e}",
                        extra={'run_id': run_id, 'source': source_id},
                        exc_info=True
                    )
                    self._abort_persistence(accepted, reports, source_id, index)
                    return True
                except Exception as e:
                    self._reject_unstored(report, event, e)
                    continue

                if outcome is UpsertOutcome.INSERTED:
                    report.inserted += 1
                elif outcome is UpsertOutcome.UPDATED:
                    report.updated += 1
                else:
                    report.unchanged += 1

        return False

    def _reject_unstored(self, report: ScrapeRunReport, event, error: Exception) -> None:
        logger.error(
            f"Could not store event {event.id}: {type(error).__name__}: {error}",
            extra={'source': report.source},
            exc_info=error
        )
        report.accepted -= 1
        report.rejected += 1
        report.rejections.append({
            'title': event.title,
            'source_url': event.source_url or '',
            'reason': 'storage_error',
        })

    def _abort_persistence(self, accepted: Dict[str, list], reports: Dict[str, ScrapeRunReport],
                           failed_source: str, written: int) -> None:
        reached = False
        for source_id, events in accepted.items():
            if source_id == failed_source:
                reached = True
                pending = len(events) - written
            elif reached:
                pending = len(events)
            else:
                continue
            if not events:
                continue
            report = reports[source_id]
            report.status = RunStatus.FAILED
            report.detail = f"storage unavailable; {pending} event(s) not persisted"

    def _finalize(self, report: ScrapeRunReport, fetch: SourceFetch, degraded: bool) -> None:
        source_id = report.source

        if self.monitor is not None:
            report.warnings.extend(self.monitor.take_warnings(source_id))

        if report.status is RunStatus.FAILED:
            return

        if fetch.error is not None:
            report.status = RunStatus.FAILED
            error = fetch.error
            if isinstance(error, RetriesExhausted):
                error = error.last_error
            report.detail = f"{type(error).__name__}: {error}"
            if isinstance(error, ParseError) and self.monitor is not None:
                self.monitor.record_parse_failure(source_id, str(error))
            return

        if self.monitor is not None:
            if report.fetched == 0:
                self.monitor.record_empty_result(source_id)
            else:
                self.monitor.reset_empty_streak(source_id)

        if degraded:
            report.status = RunStatus.DEGRADED
            report.warnings.append(f"{source_id} scraped while structure health is degraded")
        else:
            report.status = RunStatus.OK

    def _fail_unfinished(self, result: RunResult, finalized: set, error: Exception) -> None:
        """Mark every source the run did not get to finish as failed."""
        for report in result.reports:
            if report.source in finalized or report.status is not RunStatus.OK:
                continue
            report.status = RunStatus.FAILED
            report.detail = f"run aborted: {type(error).__name__}: {error}"

    def _report(self, result: RunResult) -> None:
        finished_at = self._now()
        for report in result.reports:
            report.finished_at = finished_at
            logger.info('scrape_run_report', extra=report.to_dict())
            if self.run_log is None:
                continue
            try:
                self.run_log.append(report)
            except StorageUnavailable as e:
                logger.error(f"Could not store run report for {report.source}: {e}", extra={'source': report.source})

        logger.info(
            f"Run {result.run_id} finished with status {result.status}",
            extra={'run_id': result.run_id, 'status': result.status}
        )
