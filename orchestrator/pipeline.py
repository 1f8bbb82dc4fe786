"""Wiring of settings into a ready-to-run pipeline."""
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from monitor.structure_monitor import StructureMonitor
from orchestrator.orchestrator import Orchestrator
from processor.event_processor import EventProcessor
from scraper.base import Extractor
from scraper.http_client import PageFetcher
from scraper.registry import build_extractors, build_fetcher
from scraper.retry import RetryPolicy
from storage.dynamodb_manager import DynamoDBManager
from storage.health_store import HealthStore
from storage.run_log import RunLog
from storage.schema import dynamodb_resource


@dataclass
class Pipeline:
    """Every component of one process, sharing a fetcher and a cancel event."""
    settings: object
    cancel_event: threading.Event
    fetcher: PageFetcher
    extractors: Dict[str, Extractor]
    storage: DynamoDBManager
    run_log: RunLog
    health_store: HealthStore
    monitor: StructureMonitor
    orchestrator: Orchestrator


def build_pipeline(settings, source_ids: Optional[Iterable[str]] = None,
                   cancel_event: Optional[threading.Event] = None,
                   dynamodb=None, sleep=None) -> Pipeline:
    """
    Build all components from settings.

    Args:
        settings: Validated Settings
        source_ids: Sources to wire (default: every enabled source)
        cancel_event: Shared cancellation signal
        dynamodb: DynamoDB resource to reuse (default: from settings)
        sleep: Retry backoff sleep (injectable for tests)

    Returns:
        Pipeline
    """
    cancel_event = cancel_event or threading.Event()
    dynamodb = dynamodb or dynamodb_resource(settings.aws_region, settings.dynamodb_endpoint_url)

    fetcher = build_fetcher(settings, cancel_event=cancel_event)
    extractors = build_extractors(settings, fetcher, source_ids)

    storage = DynamoDBManager.from_settings(settings, dynamodb=dynamodb)
    run_log = RunLog.from_settings(settings, dynamodb=dynamodb)
    health_store = HealthStore.from_settings(settings, dynamodb=dynamodb)

    monitor = StructureMonitor(
        extractors,
        store=health_store,
        threshold=settings.health_threshold,
        failure_limit=settings.health_failure_limit,
        retry_policy=RetryPolicy(
            max_attempts=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            sleep=sleep
        )
    )
    processor = EventProcessor(
        settings.timezone,
        max_past_days=settings.max_past_days,
        max_future_days=settings.max_future_days
    )
    orchestrator = Orchestrator(
        settings, extractors, processor, storage,
        monitor=monitor, run_log=run_log, sleep=sleep
    )

    return Pipeline(
        settings=settings,
        cancel_event=cancel_event,
        fetcher=fetcher,
        extractors=extractors,
        storage=storage,
        run_log=run_log,
        health_store=health_store,
        monitor=monitor,
        orchestrator=orchestrator
    )
