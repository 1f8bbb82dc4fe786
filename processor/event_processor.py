"""Event processor for validating, normalizing and deduplicating raw records."""
import logging
import re
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from errors import ValidationError
from processor.category_classifier import CategoryClassifier
from processor.date_parser import DateParser
from processor.fingerprint import content_key, event_fingerprint, normalize_text, normalize_url
from processor.models import (
    Event, PriceRange, ProcessingResult, RawEventRecord, Region, Rejection
)

logger = logging.getLogger(__name__)

STATE_CODES = {
    'AC', 'AL', 'AP', 'AM', 'BA', 'CE', 'DF', 'ES', 'GO', 'MA', 'MT', 'MS',
    'MG', 'PA', 'PB', 'PR', 'PE', 'PI', 'RJ', 'RN', 'RS', 'RO', 'RR', 'SC',
    'SP', 'SE', 'TO',
}

STATE_NAMES = {
    'acre': 'AC', 'alagoas': 'AL', 'amapa': 'AP', 'amazonas': 'AM',
    'bahia': 'BA', 'ceara': 'CE', 'distrito federal': 'DF',
    'espirito santo': 'ES', 'goias': 'GO', 'maranhao': 'MA',
    'mato grosso do sul': 'MS', 'mato grosso': 'MT', 'minas gerais': 'MG',
    'para': 'PA', 'paraiba': 'PB', 'parana': 'PR', 'pernambuco': 'PE',
    'piaui': 'PI', 'rio de janeiro': 'RJ', 'rio grande do norte': 'RN',
    'rio grande do sul': 'RS', 'rondonia': 'RO', 'roraima': 'RR',
    'santa catarina': 'SC', 'sao paulo': 'SP', 'sergipe': 'SE',
    'tocantins': 'TO',
}

FREE_MARKERS = ('gratis', 'gratuito', 'gratuita', 'free', 'entrada franca')
PRICE_NUMBER = re.compile(r'(\d{1,3}(?:\.\d{3})+(?:,\d{1,2})?|\d+(?:[.,]\d{1,2})?)')
LOCATION_SEPARATOR = re.compile(r'\s+[-–|]\s+|,\s*|\s*/\s*')


class EventProcessor:
    """Processor for validating and normalizing raw event records."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000
    MIN_TITLE_LENGTH = 3

    def __init__(self, timezone_name: str = 'America/Sao_Paulo',
                 max_past_days: int = 1, max_future_days: int = 730,
                 classifier: Optional[CategoryClassifier] = None,
                 today: Optional[Callable[[], date]] = None,
                 now: Optional[Callable[[], datetime]] = None):
        """
        Initialize the processor.

        Args:
            timezone_name: Timezone policy for dates and times
            max_past_days: Oldest accepted event date, in days before today
            max_future_days: Furthest accepted event date, in days after today
            classifier: Category classifier (default: keyword classifier)
            today: Callable returning today's date (injectable for tests)
            now: Callable returning the current UTC datetime
        """
        self.date_parser = DateParser(timezone_name, today=today)
        self.classifier = classifier or CategoryClassifier()
        self.max_past_days = max_past_days
        self.max_future_days = max_future_days
        self._today = self.date_parser.today
        self._now = now or (lambda: datetime.now(timezone.utc))

    def process(self, records: List[RawEventRecord],
                region: Optional[Region] = None) -> ProcessingResult:
        """
        Validate, normalize, enrich and deduplicate raw records.

        Invalid records are rejected with a reason rather than raised.

        Args:
            records: Raw records from an extractor
            region: Region the records were scraped for, used as a location
                fallback when the location text names no city

        Returns:
            ProcessingResult with accepted events and rejections
        """
        accepted: Dict[str, Event] = {}
        rejections = []
        duplicates = 0

        for record in records:
            try:
                event = self._process_single_record(record, region)
            except ValidationError as e:
                logger.info(
                    f"Rejected record '{record.title}': {e.reason}",
                    extra={'source': record.source, 'reason': e.reason}
                )
                rejections.append(Rejection(record=record, reason=e.reason))
                continue
            except Exception as e:
                logger.warning(
                    f"Failed to process record '{record.title}': {e}",
                    extra={'source': record.source}
                )
                rejections.append(Rejection(record=record, reason='processing_error'))
                continue

            existing = accepted.get(event.id)
            if existing:
                duplicates += 1
                accepted[event.id] = merge_events(existing, event)
            else:
                accepted[event.id] = event

        logger.info(
            f"Processed {len(accepted)} valid events out of "
            f"{len(records)} raw records ({len(rejections)} rejected, {duplicates} merged)"
        )
        return ProcessingResult(accepted=list(accepted.values()), rejections=rejections,
                                duplicates=duplicates)

    def _process_single_record(self, record: RawEventRecord,
                               region: Optional[Region]) -> Event:
        event_date, event_time = self.validate(record)

        title = self.normalize_title(record.title)
        description = self.normalize_description(record.description)
        venue, city, state = self.parse_location(record.location_text, region)
        iso_date = event_date.isoformat()
        stamp = self._now().strftime('%Y-%m-%dT%H:%M:%SZ')

        return Event(
            id=event_fingerprint(record.source, record.source_url, title, iso_date, venue),
            title=title,
            description=description,
            date=iso_date,
            time=event_time,
            venue=venue,
            city=city,
            state=state,
            category=self.classifier.classify(title, description, record.category_hint),
            price=self.parse_price(record.price_text),
            source=record.source,
            source_url=normalize_url(record.source_url),
            image_url=self.normalize_image_url(record.image_url),
            organizer=self._clean(record.organizer) or None,
            content_key=content_key(title, iso_date, venue),
            created_at=stamp,
            updated_at=stamp
        )

    def validate(self, record: RawEventRecord) -> Tuple[date, Optional[str]]:
        """
        Validate required fields and the event date.

        Args:
            record: Raw record

        Returns:
            Tuple of (parsed date, HH:MM time or None)

        Raises:
            ValidationError: With a machine-readable reason
        """
        if not record.title or not record.title.strip():
            raise ValidationError('missing_title', source=record.source, url=record.source_url)

        if len(self._clean(record.title)) < self.MIN_TITLE_LENGTH:
            raise ValidationError('title_too_short', source=record.source, url=record.source_url)

        if not record.date_text or not record.date_text.strip():
            raise ValidationError('missing_date', source=record.source, url=record.source_url)

        if not record.source_url or not normalize_url(record.source_url):
            raise ValidationError('missing_source_url', source=record.source)

        parsed = self.date_parser.parse(record.date_text, record.time_text)
        if parsed is None:
            raise ValidationError('invalid_date', source=record.source, url=record.source_url)

        event_date, event_time = parsed
        today = self._today()
        if event_date < today - timedelta(days=self.max_past_days):
            raise ValidationError('past_event', source=record.source, url=record.source_url)
        if event_date > today + timedelta(days=self.max_future_days):
            raise ValidationError('event_too_far_future', source=record.source, url=record.source_url)

        return event_date, event_time

    def normalize_title(self, title: str) -> str:
        return self._clean(title)[:self.MAX_TITLE_LENGTH]

    def normalize_description(self, description: Optional[str]) -> str:
        return self._clean(description)[:self.MAX_DESCRIPTION_LENGTH]

    def normalize_image_url(self, url: Optional[str]) -> Optional[str]:
        """Force image URLs onto https."""
        if not url or not url.strip():
            return None
        url = url.strip()
        if url.startswith('//'):
            return 'https:' + url
        if url.startswith('http://'):
            return 'https://' + url[len('http://'):]
        return url

    def parse_location(self, text: Optional[str],
                       region: Optional[Region] = None) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """
        Split free-text location into venue, city and state.

        Handles "Venue - Street, 123 - City, UF" and "Venue, City - UF"
        shapes. When no city can be determined the region is used.

        Args:
            text: Raw location text
            region: Fallback region

        Returns:
            Tuple of (venue, city, state); any may be None
        """
        fallback_city = region.city if region else None
        fallback_state = region.state if region else None

        cleaned = self._clean(text)
        if not cleaned:
            return None, fallback_city, fallback_state

        parts = [p.strip() for p in LOCATION_SEPARATOR.split(cleaned) if p and p.strip()]
        state = None
        city = None

        # State: trailing UF code or state name.
        if parts and parts[-1].upper() in STATE_CODES:
            state = parts.pop().upper()
        elif parts and normalize_text(parts[-1]) in STATE_NAMES:
            state = STATE_NAMES[normalize_text(parts.pop())]

        if region and normalize_text(region.city) in normalize_text(cleaned):
            city = region.city
            parts = [p for p in parts if normalize_text(p) != normalize_text(region.city)]
            state = state or region.state
        elif state and len(parts) > 1:
            candidate = parts[-1]
            # Street numbers and CEPs are not city names.
            if not re.search(r'\d', candidate):
                city = parts.pop()

        venue = parts[0] if parts else None
        if city is None:
            city = fallback_city if state in (None, fallback_state) else None
        if state is None:
            state = fallback_state if city == fallback_city else None

        return venue, city, state

    def parse_price(self, text: Optional[str]) -> Optional[PriceRange]:
        """
        Parse price text into a PriceRange.

        "Grátis" becomes a free range; "R$ 50,00 - R$ 120,00" becomes
        min=50.0, max=120.0. Returns None when no price is stated.
        """
        cleaned = self._clean(text)
        if not cleaned:
            return None

        lowered = normalize_text(cleaned)
        currency = self._detect_currency(cleaned)

        values = [self._to_number(match) for match in PRICE_NUMBER.findall(cleaned)]
        values = [v for v in values if v is not None]

        if any(marker in lowered for marker in FREE_MARKERS) and not any(values):
            return PriceRange(min=0.0, max=0.0, currency=currency, is_free=True)
        if not values:
            return None
        if max(values) == 0:
            return PriceRange(min=0.0, max=0.0, currency=currency, is_free=True)

        return PriceRange(min=min(values), max=max(values), currency=currency, is_free=False)

    @staticmethod
    def _detect_currency(text: str) -> str:
        upper = text.upper()
        if 'US$' in upper or 'USD' in upper:
            return 'USD'
        if '€' in text or 'EUR' in upper:
            return 'EUR'
        return 'BRL'

    @staticmethod
    def _to_number(raw: str) -> Optional[float]:
        if ',' in raw:
            raw = raw.replace('.', '').replace(',', '.')
        elif re.fullmatch(r'\d{1,3}(?:\.\d{3})+', raw):
            raw = raw.replace('.', '')
        try:
            return float(raw)
        except ValueError:
            return None

    @staticmethod
    def _clean(text: Optional[str]) -> str:
        if not text:
            return ''
        return re.sub(r'\s+', ' ', text).strip()


def merge_events(existing: Event, incoming: Event) -> Event:
    """
    Merge two versions of the same event.

    Non-empty fields from ``incoming`` win; ``created_at`` is kept from
    ``existing``.

    Args:
        existing: Previously known version
        incoming: Newer version with the same id

    Returns:
        Merged Event
    """
    updates = {}
    for name in ('title', 'description', 'date', 'time', 'venue', 'city', 'state',
                 'category', 'price', 'source_url', 'image_url', 'organizer',
                 'content_key', 'updated_at'):
        value = getattr(incoming, name)
        if value not in (None, ''):
            updates[name] = value
    return replace(existing, **updates)
