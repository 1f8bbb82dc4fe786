"""Registry of available extractors."""
import logging
from typing import Dict, Iterable, Optional, Type

from errors import ConfigurationError
from scraper.base import Extractor
from scraper.eventbrite import EventbriteExtractor
from scraper.http_client import PageFetcher
from scraper.rate_limiter import RateLimiter
from scraper.sympla import SymplaExtractor

logger = logging.getLogger(__name__)

EXTRACTORS: Dict[str, Type[Extractor]] = {
    EventbriteExtractor.SOURCE_ID: EventbriteExtractor,
    SymplaExtractor.SOURCE_ID: SymplaExtractor,
}


def build_rate_limiter(settings) -> RateLimiter:
    """Build the shared rate limiter from per-source intervals."""
    intervals = {
        source_id: settings.source(source_id).min_interval
        for source_id in EXTRACTORS
    }
    return RateLimiter(intervals=intervals, max_concurrent=settings.max_concurrency)


def build_fetcher(settings, rate_limiter: Optional[RateLimiter] = None,
                  cancel_event=None) -> PageFetcher:
    """Build the shared PageFetcher for all extractors."""
    timeouts = {
        source_id: settings.source(source_id).timeout
        for source_id in EXTRACTORS
    }
    return PageFetcher(
        rate_limiter or build_rate_limiter(settings),
        timeout=settings.request_timeout,
        timeouts=timeouts,
        user_agent=settings.user_agent,
        cancel_event=cancel_event
    )


def build_extractors(settings, fetcher: PageFetcher,
                     source_ids: Optional[Iterable[str]] = None) -> Dict[str, Extractor]:
    """
    Instantiate extractors for the requested sources.

    Args:
        settings: Settings instance
        fetcher: Shared PageFetcher
        source_ids: Sources to build (default: every enabled source)

    Returns:
        Dict of source id to Extractor, in request order

    Raises:
        ConfigurationError: If a requested source is unknown
    """
    if source_ids is None:
        source_ids = settings.enabled_sources()

    extractors = {}
    for source_id in source_ids:
        extractor_cls = EXTRACTORS.get(source_id)
        if extractor_cls is None:
            raise ConfigurationError(
                f"Unknown source '{source_id}'. Available: {', '.join(sorted(EXTRACTORS))}"
            )
        extractors[source_id] = extractor_cls(fetcher, max_events=settings.max_events_per_source)

    logger.debug(f"Built extractors: {list(extractors)}")
    return extractors
