"""Unit tests for DateParser."""
from datetime import date

import pytest

from processor.date_parser import DateParser


@pytest.fixture
def parser():
    return DateParser('America/Sao_Paulo', today=lambda: date(2025, 3, 1))


class TestDateParser:
    """Test cases for DateParser class."""

    @pytest.mark.parametrize('text, expected_date, expected_time', [
        ('15/03/2025', date(2025, 3, 15), None),
        ('15/03/25 19:30', date(2025, 3, 15), '19:30'),
        ('2025-03-15', date(2025, 3, 15), None),
        ('15 de março de 2025', date(2025, 3, 15), None),
        ('sábado, 15 de março de 2025 às 21h', date(2025, 3, 15), '21:00'),
        ('Sáb, 15 Mar · 20:00', date(2025, 3, 15), '20:00'),
        ('sexta-feira, 21 mar 2025, 20h30', date(2025, 3, 21), '20:30'),
        ('Sat, Nov 15, 7:00 PM', date(2025, 11, 15), '19:00'),
        ('March 20, 2025 8pm', date(2025, 3, 20), '20:00'),
    ])
    def test_formats(self, parser, text, expected_date, expected_time):
        assert parser.parse(text) == (expected_date, expected_time)

    def test_iso_datetime_with_offset_is_converted(self, parser):
        assert parser.parse('2025-03-15T20:00:00-03:00') == (date(2025, 3, 15), '20:00')
        assert parser.parse('2025-03-15T01:30:00+00:00') == (date(2025, 3, 14), '22:30')

    def test_separate_time_text_wins(self, parser):
        assert parser.parse('15/03/2025', '18h') == (date(2025, 3, 15), '18:00')

    def test_missing_year_rolls_into_next_year_when_long_past(self, parser):
        assert parser.parse('10 jan')[0] == date(2026, 1, 10)

    def test_missing_year_keeps_recent_dates(self, parser):
        assert parser.parse('20 fev')[0] == date(2025, 2, 20)

    @pytest.mark.parametrize('text', [None, '', '   ', 'em breve', '31/02/2025'])
    def test_unparseable(self, parser, text):
        assert parser.parse(text) is None

    @pytest.mark.parametrize('text, expected', [
        ('19:30', '19:30'),
        ('7:30 PM', '19:30'),
        ('12:15 am', '00:15'),
        ('20h', '20:00'),
        ('20h30', '20:30'),
        ('8pm', '20:00'),
        ('25:00', None),
        ('sem horário', None),
    ])
    def test_parse_time(self, parser, text, expected):
        assert parser.parse_time(text) == expected
