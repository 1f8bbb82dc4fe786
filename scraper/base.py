"""Shared extractor contract and HTML helpers."""
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

from errors import ParseError
from processor.models import RawEventRecord, Region
from scraper.http_client import PageFetcher

logger = logging.getLogger(__name__)

EVENT_TYPES = ('Event', 'MusicEvent', 'TheaterEvent', 'Festival', 'ComedyEvent',
               'SportsEvent', 'EducationEvent', 'BusinessEvent', 'SocialEvent',
               'DanceEvent', 'ExhibitionEvent', 'FoodEvent', 'ChildrensEvent')


def select_first(node: Tag, selectors: Iterable[str]) -> Optional[Tag]:
    """Return the first element matched by any selector, trying in order."""
    for selector in selectors:
        element = node.select_one(selector)
        if element is not None:
            return element
    return None


def select_text(node: Tag, selectors: Iterable[str]) -> Optional[str]:
    """Return stripped text of the first selector that yields non-empty text."""
    for selector in selectors:
        for element in node.select(selector):
            text = element.get_text(' ', strip=True)
            if text:
                return text
    return None


def select_attr(node: Tag, selectors: Iterable[str], attrs: Iterable[str]) -> Optional[str]:
    """Return the first non-empty attribute value among matched elements."""
    attrs = list(attrs)
    for selector in selectors:
        for element in node.select(selector):
            for attr in attrs:
                value = element.get(attr)
                if value:
                    return value.strip()
    return None


class Extractor(ABC):
    """
    Turns a ticketing site's pages into RawEventRecords.

    Subclasses declare their source id, URLs and landmark selectors; the
    base class handles fetching, JSON-LD parsing and landmark checks. An
    extractor keeps no state between calls and issues one request at a time.
    """

    SOURCE_ID: str = ''
    BASE_URL: str = ''
    PROBE_URL: str = ''

    # Landmark name -> fallback CSS selectors. Used for health probes.
    LANDMARKS: Dict[str, List[str]] = {}

    # Selectors inside a listing card.
    CARD_SELECTORS: Dict[str, List[str]] = {}

    # Selectors on a single event page.
    DETAIL_SELECTORS: Dict[str, List[str]] = {}

    # Markers shown when a search genuinely has no events.
    NO_RESULTS_SELECTORS: List[str] = []

    def __init__(self, fetcher: PageFetcher, max_events: int = 50):
        self.fetcher = fetcher
        self.max_events = max_events

    @abstractmethod
    def listing_url(self, region: Region) -> str:
        """URL of the event listing for a region."""

    @property
    def card_landmark(self) -> List[str]:
        return self.LANDMARKS['eventCard']

    def fetch_events(self, region: Region) -> List[RawEventRecord]:
        """
        Fetch raw event records for a region.

        Args:
            region: Target city and state

        Returns:
            Raw records, possibly empty

        Raises:
            NotFoundError: Listing page absent
            ParseError: Listing markup lacks every expected landmark
            TransientNetworkError: Network failure
        """
        url = self.listing_url(region)
        logger.info(f"Fetching {self.SOURCE_ID} events for {region}", extra={'source': self.SOURCE_ID})
        html = self.fetcher.get(self.SOURCE_ID, url)
        records = self.parse_listing(html, url)
        logger.info(
            f"Extracted {len(records)} raw records from {self.SOURCE_ID}",
            extra={'source': self.SOURCE_ID}
        )
        return records

    def fetch_event_detail(self, source_url: str) -> RawEventRecord:
        """
        Fetch a single listing page.

        Args:
            source_url: Absolute event URL

        Returns:
            Raw record for the event

        Raises:
            NotFoundError: Page absent
            ParseError: No title could be found on the page
            TransientNetworkError: Network failure
        """
        html = self.fetcher.get(self.SOURCE_ID, source_url)
        return self.parse_detail(html, source_url)

    def probe(self, region: Optional[Region] = None) -> Dict[str, bool]:
        """
        Fetch a page and report which landmarks are present.

        Uses the region listing when given, otherwise the broad PROBE_URL
        listing, which should always carry events.
        """
        url = self.listing_url(region) if region else self.PROBE_URL
        html = self.fetcher.get(self.SOURCE_ID, url)
        return self.check_landmarks(html)

    def check_landmarks(self, html: str) -> Dict[str, bool]:
        """
        Check each landmark against a page.

        A landmark passes when any of its fallback selectors matches.
        """
        soup = BeautifulSoup(html, 'html.parser')
        results = {}
        for name, selectors in self.LANDMARKS.items():
            results[name] = select_first(soup, selectors) is not None
        return results

    def parse_listing(self, html: str, page_url: str) -> List[RawEventRecord]:
        """
        Parse a listing page, preferring JSON-LD over CSS cards.

        Raises:
            ParseError: No JSON-LD events, no cards and no "no results" marker
        """
        soup = BeautifulSoup(html, 'html.parser')

        records = []
        for obj in self._json_ld_events(soup):
            record = self.record_from_json_ld(obj, page_url)
            if record is not None:
                records.append(record)

        if not records:
            cards = []
            for selector in self.card_landmark:
                cards = soup.select(selector)
                if cards:
                    break

            if not cards:
                if select_first(soup, self.NO_RESULTS_SELECTORS) is not None:
                    logger.info(f"{self.SOURCE_ID} reports no events at {page_url}")
                    return []
                raise ParseError(
                    f"No event cards or structured data found at {page_url}",
                    landmark='eventCard',
                    source=self.SOURCE_ID,
                    url=page_url
                )

            for card in cards:
                try:
                    record = self.parse_card(card, page_url)
                except (AttributeError, KeyError, ValueError) as e:
                    logger.warning(f"Failed to parse {self.SOURCE_ID} card: {e}")
                    continue
                if record is not None:
                    records.append(record)

        return self._dedupe(records)[:self.max_events]

    def parse_card(self, card: Tag, page_url: str) -> Optional[RawEventRecord]:
        """Build a record from one listing card using CARD_SELECTORS."""
        sel = self.CARD_SELECTORS
        href = card.get('href') if card.name == 'a' else None
        href = href or select_attr(card, sel.get('link', ['a[href]']), ['href'])
        title = select_text(card, sel.get('title', []))
        if not title and not href:
            return None

        return RawEventRecord(
            title=title,
            source=self.SOURCE_ID,
            source_url=urljoin(self.BASE_URL, href) if href else None,
            description=select_text(card, sel.get('description', [])) or '',
            date_text=select_text(card, sel.get('date', [])),
            location_text=select_text(card, sel.get('location', [])),
            price_text=select_text(card, sel.get('price', [])),
            image_url=select_attr(card, sel.get('image', []), ['src', 'data-src']),
            organizer=select_text(card, sel.get('organizer', [])),
            category_hint=select_text(card, sel.get('category', []))
        )

    def parse_detail(self, html: str, source_url: str) -> RawEventRecord:
        """Parse an event page, preferring JSON-LD over DETAIL_SELECTORS."""
        soup = BeautifulSoup(html, 'html.parser')

        for obj in self._json_ld_events(soup):
            record = self.record_from_json_ld(obj, source_url)
            if record is not None and record.title:
                return record

        sel = self.DETAIL_SELECTORS
        title = select_text(soup, sel.get('title', ['h1']))
        if not title:
            raise ParseError(
                f"No event title found at {source_url}",
                landmark='title',
                source=self.SOURCE_ID,
                url=source_url
            )

        return RawEventRecord(
            title=title,
            source=self.SOURCE_ID,
            source_url=source_url,
            description=select_text(soup, sel.get('description', [])) or '',
            date_text=select_text(soup, sel.get('date', [])),
            location_text=select_text(soup, sel.get('location', [])),
            price_text=select_text(soup, sel.get('price', [])),
            image_url=select_attr(soup, sel.get('image', []), ['src', 'content']),
            organizer=select_text(soup, sel.get('organizer', [])),
            category_hint=select_text(soup, sel.get('category', []))
        )

    def record_from_json_ld(self, obj: dict, page_url: str) -> Optional[RawEventRecord]:
        """Build a record from a schema.org Event object."""
        title = obj.get('name')
        url = obj.get('url') or None
        if not title and not url:
            return None

        organizer = obj.get('organizer')
        if isinstance(organizer, list):
            organizer = organizer[0] if organizer else None
        if isinstance(organizer, dict):
            organizer = organizer.get('name')

        return RawEventRecord(
            title=title,
            source=self.SOURCE_ID,
            source_url=urljoin(page_url, url) if url else page_url,
            description=obj.get('description') or '',
            date_text=obj.get('startDate'),
            location_text=self._json_ld_location(obj.get('location')),
            price_text=self._json_ld_price(obj.get('offers')),
            image_url=self._json_ld_image(obj.get('image')),
            organizer=organizer if isinstance(organizer, str) else None,
            category_hint=None
        )

    def _json_ld_events(self, soup: BeautifulSoup) -> Iterator[dict]:
        for script in soup.find_all('script', type='application/ld+json'):
            content = script.string or script.get_text()
            if not content or not content.strip():
                continue
            try:
                data = json.loads(content)
            except json.JSONDecodeError:
                logger.warning(f"Could not parse JSON-LD block on {self.SOURCE_ID} page")
                continue
            yield from self._walk_json_ld(data)

    def _walk_json_ld(self, data) -> Iterator[dict]:
        if isinstance(data, list):
            for item in data:
                yield from self._walk_json_ld(item)
            return
        if not isinstance(data, dict):
            return

        if '@graph' in data:
            yield from self._walk_json_ld(data['@graph'])

        types = data.get('@type')
        types = types if isinstance(types, list) else [types]

        if 'ItemList' in types:
            for element in data.get('itemListElement', []):
                if isinstance(element, dict) and 'item' in element:
                    yield from self._walk_json_ld(element['item'])
                else:
                    yield from self._walk_json_ld(element)
        elif any(t in EVENT_TYPES for t in types):
            yield data

    @staticmethod
    def _json_ld_location(location) -> Optional[str]:
        if isinstance(location, list):
            location = location[0] if location else None
        if isinstance(location, str):
            return location
        if not isinstance(location, dict):
            return None

        parts = []
        if location.get('name'):
            parts.append(location['name'])
        address = location.get('address')
        if isinstance(address, str):
            parts.append(address)
        elif isinstance(address, dict):
            if address.get('streetAddress'):
                parts.append(address['streetAddress'])
            locality = address.get('addressLocality')
            region = address.get('addressRegion')
            if locality and region:
                parts.append(f"{locality}, {region}")
            elif locality or region:
                parts.append(locality or region)
        return ' - '.join(parts) or None

    @staticmethod
    def _json_ld_price(offers) -> Optional[str]:
        if not offers:
            return None
        offers = offers if isinstance(offers, list) else [offers]

        values = []
        currency = None
        for offer in offers:
            if not isinstance(offer, dict):
                continue
            currency = currency or offer.get('priceCurrency')
            for key in ('lowPrice', 'highPrice', 'price'):
                value = offer.get(key)
                if value in (None, ''):
                    continue
                try:
                    values.append(float(value))
                except (TypeError, ValueError):
                    continue

        if not values:
            return None
        if max(values) == 0:
            return 'Grátis'

        currency = currency or 'BRL'
        low, high = min(values), max(values)
        if low == high:
            return f"{currency} {low:.2f}"
        return f"{currency} {low:.2f} - {high:.2f}"

    @staticmethod
    def _json_ld_image(image) -> Optional[str]:
        if isinstance(image, list):
            image = image[0] if image else None
        if isinstance(image, dict):
            image = image.get('url')
        return image if isinstance(image, str) else None

    @staticmethod
    def _dedupe(records: List[RawEventRecord]) -> List[RawEventRecord]:
        seen = set()
        unique = []
        for record in records:
            key = record.source_url or record.title
            if key in seen:
                continue
            seen.add(key)
            unique.append(record)
        return unique
