"""Rate-limited HTTP fetcher shared by all extractors."""
import logging
import threading
from typing import Dict, Optional

import requests

from errors import NotFoundError, TransientNetworkError
from scraper.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'Accept-Language': 'pt-BR,pt;q=0.9,en;q=0.8',
}

TRANSIENT_STATUS = {408, 425, 429}


class PageFetcher:
    """
    Fetches pages through a RateLimiter, mapping failures onto the
    scraper error taxonomy:

    * 404/410 -> NotFoundError
    * timeouts, connection errors, 408/429/5xx -> TransientNetworkError
    * any other 4xx -> NotFoundError (the page is not available to us)
    """

    def __init__(self, rate_limiter: RateLimiter, timeout: float = 30.0,
                 timeouts: Optional[Dict[str, float]] = None,
                 user_agent: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize the fetcher.

        Args:
            rate_limiter: Shared limiter for all sources
            timeout: Default request timeout in seconds
            timeouts: Per-source timeout overrides
            user_agent: User-Agent header value
            session: requests session (default: a new one)
            cancel_event: Run-wide cancellation signal
        """
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.timeouts = dict(timeouts or {})
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        if user_agent:
            self.session.headers['User-Agent'] = user_agent
        self.cancel_event = cancel_event

    def get(self, source_id: str, url: str, params: Optional[dict] = None) -> str:
        """
        Fetch a page and return its body.

        Args:
            source_id: Source the URL belongs to (selects the rate limit)
            url: Absolute URL
            params: Optional query parameters

        Returns:
            Response body as text

        Raises:
            NotFoundError: Page absent or refused
            TransientNetworkError: Timeout, connection failure, 429 or 5xx
        """
        timeout = self.timeouts.get(source_id, self.timeout)

        with self.rate_limiter.slot(source_id, self.cancel_event):
            logger.debug(f"GET {url}", extra={'source': source_id})
            try:
                response = self.session.get(url, params=params, timeout=timeout)
            except requests.Timeout as e:
                raise TransientNetworkError(
                    f"Timed out after {timeout}s fetching {url}", source=source_id, url=url
                ) from e
            except requests.ConnectionError as e:
                raise TransientNetworkError(
                    f"Connection error fetching {url}: {e}", source=source_id, url=url
                ) from e
            except requests.RequestException as e:
                raise TransientNetworkError(
                    f"Request failed for {url}: {e}", source=source_id, url=url
                ) from e

        status = response.status_code
        if status in (404, 410):
            raise NotFoundError(f"HTTP {status} for {url}", source=source_id, url=url)
        if status in TRANSIENT_STATUS or status >= 500:
            raise TransientNetworkError(
                f"HTTP {status} for {url}",
                status_code=status,
                retry_after=self._retry_after(response),
                source=source_id,
                url=url
            )
        if status >= 400:
            raise NotFoundError(f"HTTP {status} for {url}", source=source_id, url=url)

        return response.text

    @staticmethod
    def _retry_after(response: requests.Response) -> Optional[float]:
        value = response.headers.get('Retry-After')
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None
