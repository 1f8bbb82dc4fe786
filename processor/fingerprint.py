"""Stable fingerprints used to decide insert-vs-update."""
import hashlib
import re
import unicodedata
from typing import Optional
from urllib.parse import urlsplit, urlunsplit


def normalize_text(text: Optional[str]) -> str:
    """
    Reduce free text to a comparison form.

    Strips accents and punctuation, lowercases and collapses whitespace, so
    "Show  de Rock!" and "show de rock" compare equal.
    """
    if not text:
        return ''
    ascii_text = unicodedata.normalize('NFKD', text).encode('ascii', 'ignore').decode('ascii')
    ascii_text = re.sub(r'[^\w\s]', ' ', ascii_text.lower())
    return re.sub(r'\s+', ' ', ascii_text).strip()


def normalize_url(url: Optional[str]) -> Optional[str]:
    """
    Canonicalize a listing URL.

    Query strings and fragments carry tracking noise on both sources, so they
    are dropped along with "www.", trailing slashes and the http/https split.
    """
    if not url or not url.strip():
        return None
    parts = urlsplit(url.strip())
    if not parts.netloc:
        return None
    host = parts.netloc.lower()
    if host.startswith('www.'):
        host = host[4:]
    path = parts.path.rstrip('/') or '/'
    return urlunsplit(('https', host, path, '', ''))


def _digest(*parts: str) -> str:
    composite = '|'.join(parts)
    return hashlib.sha256(composite.encode('utf-8')).hexdigest()


def content_key(title: str, date: str, venue: Optional[str]) -> str:
    """
    Fingerprint of the normalized (title, date, venue) triple.

    Args:
        title: Event title
        date: ISO date (YYYY-MM-DD)
        venue: Venue name, if known

    Returns:
        SHA256 hex digest
    """
    return _digest('content', normalize_text(title), date, normalize_text(venue))


def event_fingerprint(source: str, source_url: Optional[str], title: str,
                      date: str, venue: Optional[str]) -> str:
    """
    Compute the catalog id for an event.

    Uses (source, normalized source URL) when a URL is present and falls back
    to (source, content key) otherwise.

    Args:
        source: Source id (e.g. "sympla")
        source_url: Listing URL, may be None
        title: Event title
        date: ISO date
        venue: Venue name, may be None

    Returns:
        SHA256 hex digest
    """
    url = normalize_url(source_url)
    if url:
        return _digest('url', source, url)
    return _digest('triple', source, content_key(title, date, venue))
