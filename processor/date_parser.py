"""Parser for the date and time formats used by Brazilian ticketing sites."""
import logging
import re
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Tuple

import pytz
from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)

MONTHS = {
    # Portuguese
    'janeiro': 1, 'fevereiro': 2, 'marco': 3, 'março': 3, 'abril': 4,
    'maio': 5, 'junho': 6, 'julho': 7, 'agosto': 8, 'setembro': 9,
    'outubro': 10, 'novembro': 11, 'dezembro': 12,
    'jan': 1, 'fev': 2, 'mar': 3, 'abr': 4, 'mai': 5, 'jun': 6,
    'jul': 7, 'ago': 8, 'set': 9, 'out': 10, 'nov': 11, 'dez': 12,
    # English
    'january': 1, 'february': 2, 'march': 3, 'april': 4, 'may': 5,
    'june': 6, 'july': 7, 'august': 8, 'september': 9, 'october': 10,
    'november': 11, 'december': 12,
    'feb': 2, 'apr': 4, 'aug': 8, 'sep': 9, 'sept': 9, 'oct': 10, 'dec': 12,
}

WEEKDAY_PREFIX = re.compile(
    r'^(domingo|segunda|terça|terca|quarta|quinta|sexta|sábado|sabado|'
    r'dom|seg|ter|qua|qui|sex|sáb|sab|'
    r'sunday|monday|tuesday|wednesday|thursday|friday|saturday|'
    r'sun|mon|tue|tues|wed|thu|thur|thurs|fri|sat)'
    r'(-feira)?\.?,?\s+'
)

ISO_DATETIME = re.compile(r'^\d{4}-\d{2}-\d{2}T')
NUMERIC_DATE = re.compile(r'\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b')
ISO_DATE = re.compile(r'\b(\d{4})-(\d{1,2})-(\d{1,2})\b')
DAY_DE_MONTH = re.compile(r'\b(\d{1,2})\s+de\s+([a-zç]+)\.?(?:\s+de\s+(\d{4}))?')
DAY_MONTH = re.compile(r'\b(\d{1,2})\s+([a-zç]{3,9})\.?(?:,?\s+(\d{4}))?\b')
MONTH_DAY = re.compile(r'\b([a-zç]{3,9})\.?\s+(\d{1,2})(?:,?\s+(\d{4}))?\b')

TIME_COLON = re.compile(r'\b(\d{1,2}):(\d{2})(?::\d{2})?\s*(am|pm)?\b')
TIME_H = re.compile(r'\b(\d{1,2})h(\d{2})?\b')
TIME_AMPM = re.compile(r'\b(\d{1,2})\s*(am|pm)\b')


class DateParser:
    """
    Converts raw date/time strings to an ISO date and an HH:MM time.

    Times carrying a UTC offset are converted into the configured timezone
    before the calendar date is taken, so "2025-03-15T01:00:00Z" is the
    14th in São Paulo.
    """

    def __init__(self, timezone: str = 'America/Sao_Paulo',
                 today: Optional[Callable[[], date]] = None):
        self.tz = pytz.timezone(timezone)
        self.today = today or (lambda: datetime.now(self.tz).date())

    def parse(self, date_text: Optional[str],
              time_text: Optional[str] = None) -> Optional[Tuple[date, Optional[str]]]:
        """
        Parse a raw date (and optional separate time) string.

        Args:
            date_text: Raw date text, possibly including a time
            time_text: Raw time text, if the source splits them

        Returns:
            Tuple of (date, "HH:MM" or None), or None if no date was found
        """
        if not date_text or not date_text.strip():
            return None

        text = date_text.strip()

        if ISO_DATETIME.match(text):
            parsed = self._parse_iso_datetime(text)
            if parsed:
                return parsed

        cleaned = self._clean(text)
        event_date = self._match_date(cleaned)
        if event_date is None:
            event_date = self._fallback(cleaned)
            if event_date is None:
                logger.debug(f"Could not parse date: {date_text!r}")
                return None

        event_time = None
        if time_text:
            event_time = self.parse_time(time_text)
        if event_time is None:
            event_time = self.parse_time(self._strip_dates(cleaned))

        return event_date, event_time

    def parse_time(self, text: Optional[str]) -> Optional[str]:
        """
        Extract a time of day as HH:MM.

        Accepts "19:30", "7:30 PM", "20h", "20h30" and "8pm".
        """
        if not text:
            return None
        lowered = text.lower()

        match = TIME_COLON.search(lowered)
        if match:
            return self._format_time(int(match.group(1)), int(match.group(2)), match.group(3))

        match = TIME_H.search(lowered)
        if match:
            return self._format_time(int(match.group(1)), int(match.group(2) or 0), None)

        match = TIME_AMPM.search(lowered)
        if match:
            return self._format_time(int(match.group(1)), 0, match.group(2))

        return None

    def _parse_iso_datetime(self, text: str) -> Optional[Tuple[date, Optional[str]]]:
        try:
            parsed = dateutil_parser.isoparse(text)
        except (ValueError, OverflowError):
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(self.tz)
        return parsed.date(), parsed.strftime('%H:%M')

    def _clean(self, text: str) -> str:
        cleaned = re.sub(r'\s+', ' ', text.lower()).strip()
        cleaned = WEEKDAY_PREFIX.sub('', cleaned)
        cleaned = re.sub(r'\s+(às|as|at|a partir das)\s+', ' ', cleaned)
        cleaned = cleaned.replace(' · ', ' ').replace('•', ' ')
        return cleaned

    def _strip_dates(self, text: str) -> str:
        return ISO_DATE.sub(' ', NUMERIC_DATE.sub(' ', text))

    def _match_date(self, text: str) -> Optional[date]:
        match = ISO_DATE.search(text)
        if match:
            return self._build(int(match.group(1)), int(match.group(2)), int(match.group(3)))

        match = NUMERIC_DATE.search(text)
        if match:
            year = int(match.group(3)) if match.group(3) else None
            if year is not None and year < 100:
                year += 2000
            return self._build(year, int(match.group(2)), int(match.group(1)))

        match = DAY_DE_MONTH.search(text)
        if match and match.group(2) in MONTHS:
            year = int(match.group(3)) if match.group(3) else None
            return self._build(year, MONTHS[match.group(2)], int(match.group(1)))

        match = DAY_MONTH.search(text)
        if match and match.group(2) in MONTHS:
            year = int(match.group(3)) if match.group(3) else None
            return self._build(year, MONTHS[match.group(2)], int(match.group(1)))

        match = MONTH_DAY.search(text)
        if match and match.group(1) in MONTHS:
            year = int(match.group(3)) if match.group(3) else None
            return self._build(year, MONTHS[match.group(1)], int(match.group(2)))

        return None

    def _fallback(self, text: str) -> Optional[date]:
        if not re.search(r'\d', text):
            return None
        try:
            parsed = dateutil_parser.parse(text, dayfirst=True)
        except (ValueError, OverflowError):
            return None
        return parsed.date()

    def _build(self, year: Optional[int], month: int, day: int) -> Optional[date]:
        """Build a date, inferring a missing year from today's date."""
        today = self.today()
        infer_year = year is None
        try:
            result = date(year or today.year, month, day)
        except ValueError:
            return None

        # Listings without a year show upcoming dates, so a month long past
        # belongs to next year.
        if infer_year and result < today - timedelta(days=30):
            try:
                result = result.replace(year=result.year + 1)
            except ValueError:
                return None
        return result

    @staticmethod
    def _format_time(hour: int, minute: int, meridiem: Optional[str]) -> Optional[str]:
        if meridiem == 'pm' and hour < 12:
            hour += 12
        elif meridiem == 'am' and hour == 12:
            hour = 0
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            return None
        return f"{hour:02d}:{minute:02d}"
