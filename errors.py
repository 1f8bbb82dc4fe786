"""Error taxonomy shared by extractors, storage and the orchestrator."""
from typing import Optional


class ScraperError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, source: Optional[str] = None,
                 url: Optional[str] = None):
        super().__init__(message)
        self.source = source
        self.url = url


class NotFoundError(ScraperError):
    """Target page does not exist (404/410). Never retried."""


class ParseError(ScraperError):
    """An expected page landmark was missing from the fetched markup."""

    def __init__(self, message: str, landmark: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.landmark = landmark


class TransientNetworkError(ScraperError):
    """Timeouts, connection resets, 429 and 5xx responses."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.retry_after = retry_after


class ValidationError(ScraperError):
    """A raw record failed validation; it is rejected and counted."""

    def __init__(self, reason: str, **kwargs):
        super().__init__(f"Validation failed: {reason}", **kwargs)
        self.reason = reason


class StorageUnavailable(ScraperError):
    """Catalog store unreachable (connection, credentials, throttling)."""


class ConstraintViolation(ScraperError):
    """Catalog store rejected a record because of schema constraints."""


class RetriesExhausted(ScraperError):
    """A retryable operation kept failing until the attempt ceiling."""

    def __init__(self, last_error: Exception, attempts: int):
        super().__init__(
            f"Gave up after {attempts} attempt(s): {last_error}",
            source=getattr(last_error, 'source', None),
            url=getattr(last_error, 'url', None)
        )
        self.last_error = last_error
        self.attempts = attempts


class RunCancelled(ScraperError):
    """The run received an external cancellation signal."""


class ConfigurationError(ScraperError):
    """Invalid or incomplete configuration."""
