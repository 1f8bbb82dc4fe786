"""Sympla extractor."""
from processor.models import Region
from scraper.base import Extractor


class SymplaExtractor(Extractor):
    """Extractor for sympla.com.br city listings."""

    SOURCE_ID = 'sympla'
    BASE_URL = 'https://www.sympla.com.br'
    PROBE_URL = 'https://www.sympla.com.br/eventos'

    CARD_SELECTORS = {
        'title': ['.sympla-card__title', '.event-title', '.EventCardstyles__Title',
                  '[data-testid="event-title"]', 'h3', 'h2'],
        'link': ['a[href*="/evento/"]', 'a[href]'],
        'date': ['.sympla-card__date', '.event-date', '.EventCardstyles__Date', '[data-testid="event-date"]'],
        'location': ['.sympla-card__location', '.event-location', '.EventCardstyles__Location',
                     '[data-testid="event-location"]'],
        'image': ['.sympla-card__image img', '.event-image img', '.EventCardstyles__Image img',
                  '[data-testid="event-image"] img', 'img'],
        'price': ['.sympla-card__price', '.event-price', '.EventCardstyles__Price', '[data-testid="event-price"]'],
        'description': ['.sympla-card__description', '.event-description', '[data-testid="event-description"]'],
        'organizer': ['.event-organizer', '.organizer-name', '[data-testid="event-organizer"]'],
        'category': ['.event-category', '.category-name', '[data-testid="event-category"]'],
    }

    LANDMARKS = {
        'eventCard': ['.sympla-card', '.event-item', '.EventCardstyles__Container', '[data-testid="event-card"]'],
        'title': CARD_SELECTORS['title'][:4],
        'date': CARD_SELECTORS['date'],
        'location': CARD_SELECTORS['location'],
        'image': CARD_SELECTORS['image'][:4],
        'price': CARD_SELECTORS['price'],
        'page_title': ['title'],
        'navigation': ['nav', 'header', '[role="navigation"]'],
    }

    DETAIL_SELECTORS = {
        'title': ['h1'],
        'date': ['.event-info-calendar', '.event-date', '[data-testid="event-date"]', 'time'],
        'location': ['.event-info-location', '.event-location', '[data-testid="event-location"]'],
        'price': ['.event-price', '[data-testid="event-price"]'],
        'image': ['meta[property="og:image"]', '.event-image img'],
        'description': ['#event-description', '.event-description', '[data-testid="event-description"]'],
        'organizer': ['.event-organizer', '.organizer-name', '[data-testid="event-organizer"]'],
        'category': ['.event-category', '.category-name'],
    }

    NO_RESULTS_SELECTORS = [
        '.empty-state',
        '.no-results',
        '[data-testid="empty-state"]',
    ]

    def listing_url(self, region: Region) -> str:
        return f"{self.BASE_URL}/eventos/{region.city_slug}-{region.state.lower()}"
