"""Eventbrite Brazil extractor."""
from processor.models import Region
from scraper.base import Extractor


class EventbriteExtractor(Extractor):
    """
    Extractor for eventbrite.com.br city listings.

    Listing pages embed an ItemList of Event objects as JSON-LD; the card
    selectors are the fallback when that block is missing.
    """

    SOURCE_ID = 'eventbrite'
    BASE_URL = 'https://www.eventbrite.com.br'
    PROBE_URL = 'https://www.eventbrite.com.br/d/brazil/events/'

    CARD_SELECTORS = {
        'title': ['[data-testid="event-title"]', '.event-title', '.event-card__title', 'h3 a', 'h3', 'h2'],
        'link': ['a[href*="/e/"]', 'a.event-card-link', 'a[href]'],
        'date': ['[data-testid="event-date"]', '.event-date', '.date-info', '.event-card__date'],
        'location': ['[data-testid="event-location"]', '.event-location', '.venue-info',
                     '.event-card__location'],
        'image': ['[data-testid="event-image"] img', '.event-image img', '.event-card__image img', 'img'],
        'price': ['[data-testid="event-price"]', '.event-price', '.price-info', '.event-card__price'],
        'description': ['[data-testid="event-description"]', '.event-description', '.event-summary'],
        'organizer': ['.organizer-name', '.event-organizer'],
        'category': ['.event-category', '.category-tag'],
    }

    LANDMARKS = {
        'eventCard': ['[data-testid="event-card"]', '.event-card', '.search-event-card',
                      '.discover-search-desktop-card'],
        'title': CARD_SELECTORS['title'][:4],
        'date': CARD_SELECTORS['date'],
        'location': CARD_SELECTORS['location'],
        'image': CARD_SELECTORS['image'][:3],
        'price': CARD_SELECTORS['price'],
        'page_title': ['title'],
        'navigation': ['nav', 'header', '[role="navigation"]'],
    }

    DETAIL_SELECTORS = {
        'title': ['h1.event-title', '[data-testid="event-title"]', 'h1'],
        'date': ['[data-testid="event-date"]', '.date-info', 'time', '.event-details__data'],
        'location': ['[data-testid="event-location"]', '.location-info__address', '.venue-info'],
        'price': ['[data-testid="event-price"]', '.conversion-bar__panel-info', '.event-price'],
        'image': ['meta[property="og:image"]', '.event-hero img'],
        'description': ['[data-testid="event-description"]', '.event-description', '.structured-content'],
        'organizer': ['[data-testid="organizer-name"]', '.organizer-name'],
        'category': ['.event-category', '.category-tag'],
    }

    NO_RESULTS_SELECTORS = [
        '[data-testid="search-no-results"]',
        '.search-no-results',
        '.eds-empty-state',
    ]

    def listing_url(self, region: Region) -> str:
        return f"{self.BASE_URL}/d/brazil--{region.city_slug}/events/"
