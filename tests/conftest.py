"""Shared fixtures for the scraper test suite."""
import json
import os
from datetime import date, datetime, timezone
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from processor.event_processor import EventProcessor
from processor.models import RawEventRecord
from settings import load_settings
from storage.schema import create_tables

FIXED_TODAY = date(2025, 3, 1)
FIXED_NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

TEST_ENV = {
    'AWS_REGION': 'us-east-1',
    'EVENTS_TABLE': 'test-event-catalog',
    'RUNS_TABLE': 'test-scrape-runs',
    'HEALTH_TABLE': 'test-source-health',
    'EVENTBRITE_RATE_LIMIT': '0',
    'SYMPLA_RATE_LIMIT': '0',
    'RETRY_BASE_DELAY': '0',
    'LOG_LEVEL': 'DEBUG',
}


@pytest.fixture(autouse=True)
def aws_credentials():
    """Fake credentials so boto3 never reaches a real account."""
    with patch.dict(os.environ, {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1',
    }):
        yield


@pytest.fixture
def settings():
    """Settings for tests: no rate-limit spacing, no backoff."""
    return load_settings(env=dict(TEST_ENV), dotenv=False)


@pytest.fixture
def dynamodb(settings):
    """Mock DynamoDB with the catalog, runs and health tables created."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        create_tables(settings, resource)
        yield resource


@pytest.fixture
def processor():
    """EventProcessor pinned to 2025-03-01."""
    return EventProcessor(
        'America/Sao_Paulo',
        today=lambda: FIXED_TODAY,
        now=lambda: FIXED_NOW
    )


def make_record(source='sympla', n=1, **overrides):
    """Build a valid RawEventRecord; keyword overrides replace fields."""
    fields = {
        'title': f"Show de Rock {n}",
        'source': source,
        'source_url': f"https://www.{source}.com.br/evento/show-de-rock-{n}/{1000 + n}",
        'description': 'Bandas locais no palco principal',
        'date_text': '15/03/2025',
        'time_text': '20:00',
        'location_text': 'Teatro Municipal - Ji-Paraná, RO',
        'price_text': 'R$ 50,00',
    }
    fields.update(overrides)
    return RawEventRecord(**fields)


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def eventbrite_json_ld_page():
    """Eventbrite listing with an ItemList of two events."""
    item_list = {
        '@context': 'https://schema.org',
        '@type': 'ItemList',
        'itemListElement': [
            {
                '@type': 'ListItem',
                'position': 1,
                'item': {
                    '@type': 'Event',
                    'name': 'Festival de Jazz de Ji-Paraná',
                    'url': 'https://www.eventbrite.com.br/e/festival-de-jazz-tickets-111?aff=ebdssbdestsearch',
                    'startDate': '2025-03-15T20:00:00-03:00',
                    'description': 'Três noites de jazz ao vivo',
                    'image': 'http://img.evbuc.com/jazz.jpg',
                    'location': {
                        '@type': 'Place',
                        'name': 'Teatro Dominguinhos',
                        'address': {
                            '@type': 'PostalAddress',
                            'streetAddress': 'Av. Brasil, 100',
                            'addressLocality': 'Ji-Paraná',
                            'addressRegion': 'RO',
                        },
                    },
                    'offers': [
                        {'@type': 'Offer', 'lowPrice': '40.00', 'highPrice': '120.00', 'priceCurrency': 'BRL'}
                    ],
                    'organizer': {'@type': 'Organization', 'name': 'Jazz RO'},
                },
            },
            {
                '@type': 'ListItem',
                'position': 2,
                'item': {
                    '@type': 'Event',
                    'name': 'Workshop de Python',
                    'url': 'https://www.eventbrite.com.br/e/workshop-python-tickets-222',
                    'startDate': '2025-03-20T19:00:00-03:00',
                    'location': {'@type': 'Place', 'name': 'Sala 3 - Ji-Paraná, RO'},
                    'offers': {'@type': 'Offer', 'price': '0', 'priceCurrency': 'BRL'},
                },
            },
        ],
    }
    return f"""
    <html>
      <head>
        <title>Eventos em Ji-Paraná | Eventbrite</title>
        <script type="application/ld+json">{json.dumps(item_list)}</script>
      </head>
      <body><header><nav>Eventbrite</nav></header></body>
    </html>
    """


@pytest.fixture
def eventbrite_cards_page():
    """Eventbrite listing without JSON-LD, only event cards."""
    return """
    <html>
      <head><title>Eventos | Eventbrite</title></head>
      <body>
        <nav>menu</nav>
        <div data-testid="event-card">
          <a href="/e/noite-de-forro-tickets-333">
            <h3 data-testid="event-title">Noite de Forró</h3>
          </a>
          <p data-testid="event-date">sáb, 15 mar, 21:00</p>
          <p data-testid="event-location">Clube Vip - Ji-Paraná, RO</p>
          <p data-testid="event-price">R$ 30,00</p>
          <div data-testid="event-image"><img src="//img.evbuc.com/forro.jpg"></div>
        </div>
        <div data-testid="event-card">
          <a href="/e/corrida-de-rua-tickets-444">
            <h3 data-testid="event-title">Corrida de Rua 10K</h3>
          </a>
          <p data-testid="event-date">22/03/2025 07:00</p>
          <p data-testid="event-location">Praça Central - Ji-Paraná, RO</p>
          <p data-testid="event-price">Grátis</p>
        </div>
      </body>
    </html>
    """


@pytest.fixture
def sympla_cards_page():
    """Sympla listing with anchor cards, one of them duplicated."""
    card = """
        <a class="sympla-card" href="https://www.sympla.com.br/evento/{slug}/{id}">
          <div class="sympla-card__image"><img src="https://images.sympla.com.br/{slug}.png"></div>
          <h3 class="sympla-card__title">{title}</h3>
          <div class="sympla-card__date">{when}</div>
          <div class="sympla-card__location">{where}</div>
        </a>
    """
    cards = [
        card.format(slug='stand-up-comedy', id=901, title='Stand Up Comedy Night',
                    when='Sáb, 15 Mar · 20:00', where='Teatro Municipal - Ji-Paraná, RO'),
        card.format(slug='feira-gastronomica', id=902, title='Feira Gastronômica',
                    when='Dom, 16 Mar · 11:00', where='Parque Ecológico - Ji-Paraná, RO'),
        card.format(slug='stand-up-comedy', id=901, title='Stand Up Comedy Night',
                    when='Sáb, 15 Mar · 20:00', where='Teatro Municipal - Ji-Paraná, RO'),
    ]
    return f"""
    <html>
      <head><title>Eventos em Ji-Paraná - Sympla</title></head>
      <body><header>Sympla</header><main>{''.join(cards)}</main></body>
    </html>
    """


@pytest.fixture
def sympla_empty_page():
    return """
    <html>
      <head><title>Eventos - Sympla</title></head>
      <body><header>Sympla</header><div class="empty-state">Nenhum evento encontrado</div></body>
    </html>
    """


@pytest.fixture
def broken_page():
    """Markup after a redesign: no cards, no JSON-LD, no empty-state marker."""
    return """
    <html>
      <head><title>Algo mudou</title></head>
      <body><div class="new-layout-grid"><span>Carregando...</span></div></body>
    </html>
    """
