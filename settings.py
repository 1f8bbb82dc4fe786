"""Configuration loaded from environment variables."""
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import pytz
from dotenv import load_dotenv

from errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)

# Per-source defaults: minimum spacing between requests in milliseconds.
SOURCE_DEFAULTS = {
    'eventbrite': {'rate_limit_ms': 2000},
    'sympla': {'rate_limit_ms': 1500},
}


@dataclass
class SourceSettings:
    """Settings for a single ticketing source."""
    source_id: str
    rate_limit_ms: int = 2000
    max_retries: int = 3
    timeout: float = 30.0
    enabled: bool = True

    @property
    def min_interval(self) -> float:
        """Minimum seconds between two requests to this source."""
        return self.rate_limit_ms / 1000.0


@dataclass
class Settings:
    """Explicit configuration passed into every component constructor."""
    log_level: str = 'INFO'
    aws_region: str = 'us-east-1'
    dynamodb_endpoint_url: Optional[str] = None
    events_table: str = 'event-catalog'
    runs_table: str = 'scrape-runs'
    health_table: str = 'source-health'
    max_concurrency: int = 2
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    health_threshold: float = 70.0
    health_failure_limit: int = 3
    probe_interval: float = 86400.0
    default_region: str = 'Ji-Paraná,RO'
    timezone: str = 'America/Sao_Paulo'
    max_events_per_source: int = 50
    max_past_days: int = 1
    max_future_days: int = 730
    merge_cross_source: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    sources: Dict[str, SourceSettings] = field(default_factory=dict)

    def enabled_sources(self) -> List[str]:
        """Return ids of enabled sources, in configuration order."""
        return [s.source_id for s in self.sources.values() if s.enabled]

    def source(self, source_id: str) -> SourceSettings:
        """Return the settings for a source, or defaults if unconfigured."""
        if source_id not in self.sources:
            self.sources[source_id] = SourceSettings(
                source_id=source_id,
                max_retries=self.max_retries,
                timeout=self.request_timeout
            )
        return self.sources[source_id]

    def validate(self) -> None:
        """
        Check that settings are usable.

        Raises:
            ConfigurationError: Listing every problem found
        """
        errors = []

        if not 0 <= self.health_threshold <= 100:
            errors.append(f"HEALTH_THRESHOLD must be 0-100, got {self.health_threshold}")
        if self.max_concurrency < 1:
            errors.append("SCRAPING_MAX_CONCURRENCY must be at least 1")
        if self.max_retries < 1:
            errors.append("SCRAPING_MAX_RETRIES must be at least 1")
        if self.health_failure_limit < 1:
            errors.append("HEALTH_FAILURE_LIMIT must be at least 1")
        if self.request_timeout <= 0:
            errors.append("SCRAPING_TIMEOUT must be positive")
        if self.timezone not in pytz.all_timezones_set:
            errors.append(f"Unknown TIMEZONE: {self.timezone}")
        if ',' not in self.default_region or not self.default_region.split(',', 1)[1].strip():
            errors.append(f"DEFAULT_REGION must look like 'city,state', got {self.default_region!r}")
        if not self.enabled_sources():
            errors.append("At least one source must be enabled")

        for source in self.sources.values():
            if source.rate_limit_ms < 0:
                errors.append(f"{source.source_id}: rate limit must not be negative")
            if source.max_retries < 1:
                errors.append(f"{source.source_id}: max retries must be at least 1")

        if errors:
            raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}")


def _get(env: Mapping[str, str], key: str, default, cast=str):
    value = env.get(key)
    if value is None or value == '':
        return default
    if cast is bool:
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    try:
        return cast(value)
    except ValueError:
        raise ConfigurationError(f"Invalid value for {key}: {value!r}")


def load_settings(env: Optional[Mapping[str, str]] = None,
                  dotenv: bool = True) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        env: Mapping to read from (default: os.environ)
        dotenv: Whether to load a local .env file first

    Returns:
        Populated Settings instance (not yet validated)
    """
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    max_retries = _get(env, 'SCRAPING_MAX_RETRIES', 3, int)
    timeout = _get(env, 'SCRAPING_TIMEOUT', 30.0, float)

    sources = {}
    for source_id, defaults in SOURCE_DEFAULTS.items():
        prefix = source_id.upper()
        sources[source_id] = SourceSettings(
            source_id=source_id,
            rate_limit_ms=_get(env, f'{prefix}_RATE_LIMIT', defaults['rate_limit_ms'], int),
            max_retries=_get(env, f'{prefix}_MAX_RETRIES', max_retries, int),
            timeout=_get(env, f'{prefix}_TIMEOUT', timeout, float),
            enabled=_get(env, f'{prefix}_ENABLED', True, bool)
        )

    settings = Settings(
        log_level=_get(env, 'LOG_LEVEL', 'INFO'),
        aws_region=_get(env, 'AWS_REGION', 'us-east-1'),
        dynamodb_endpoint_url=_get(env, 'DYNAMODB_ENDPOINT_URL', None),
        events_table=_get(env, 'EVENTS_TABLE', 'event-catalog'),
        runs_table=_get(env, 'RUNS_TABLE', 'scrape-runs'),
        health_table=_get(env, 'HEALTH_TABLE', 'source-health'),
        max_concurrency=_get(env, 'SCRAPING_MAX_CONCURRENCY', 2, int),
        request_timeout=timeout,
        max_retries=max_retries,
        retry_base_delay=_get(env, 'RETRY_BASE_DELAY', 1.0, float),
        retry_max_delay=_get(env, 'RETRY_MAX_DELAY', 30.0, float),
        health_threshold=_get(env, 'HEALTH_THRESHOLD', 70.0, float),
        health_failure_limit=_get(env, 'HEALTH_FAILURE_LIMIT', 3, int),
        probe_interval=_get(env, 'PROBE_INTERVAL', 86400.0, float),
        default_region=_get(env, 'DEFAULT_REGION', 'Ji-Paraná,RO'),
        timezone=_get(env, 'TIMEZONE', 'America/Sao_Paulo'),
        max_events_per_source=_get(env, 'MAX_EVENTS_PER_SOURCE', 50, int),
        max_past_days=_get(env, 'MAX_PAST_DAYS', 1, int),
        max_future_days=_get(env, 'MAX_FUTURE_DAYS', 730, int),
        merge_cross_source=_get(env, 'MERGE_CROSS_SOURCE', False, bool),
        user_agent=_get(env, 'SCRAPING_USER_AGENT', DEFAULT_USER_AGENT),
        sources=sources
    )

    logger.debug(f"Loaded settings for sources: {settings.enabled_sources()}")
    return settings
