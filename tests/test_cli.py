"""End-to-end tests for the command-line interface."""
import boto3
import pytest
import responses
from moto import mock_aws

from cli import build_parser, main
from conftest import TEST_ENV
from orchestrator.pipeline import build_pipeline
from scraper.eventbrite import EventbriteExtractor
from scraper.sympla import SymplaExtractor
from storage.dynamodb_manager import DynamoDBManager

EVENTBRITE_LISTING = 'https://www.eventbrite.com.br/d/brazil--ji-parana/events/'
SYMPLA_LISTING = 'https://www.sympla.com.br/eventos/ji-parana-ro'
BLANK_PAGE = '<html><body><p>Em manutenção</p></body></html>'


@pytest.fixture
def factory(dynamodb, processor):
    """Pipeline factory bound to the mock tables, with dates pinned to 2025-03-01."""
    def _factory(settings, source_ids=None):
        pipeline = build_pipeline(settings, source_ids, dynamodb=dynamodb, sleep=lambda delay: None)
        pipeline.orchestrator.processor = processor
        return pipeline
    return _factory


@pytest.fixture
def run_cli(factory):
    def _run(*argv, env=None):
        return main(list(argv), env=env or dict(TEST_ENV), pipeline_factory=factory)
    return _run


@pytest.fixture
def listings(eventbrite_json_ld_page, sympla_cards_page):
    """Serve healthy listing pages for both sources."""
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, EVENTBRITE_LISTING, body=eventbrite_json_ld_page, status=200)
        rsps.add(responses.GET, SYMPLA_LISTING, body=sympla_cards_page, status=200)
        yield rsps


class TestParser:
    """Test cases for argument parsing."""

    def test_repeatable_source(self):
        args = build_parser().parse_args(['scrape', '--source', 'sympla', '--source', 'eventbrite'])

        assert args.sources == ['sympla', 'eventbrite']
        assert args.region is None

    def test_report_defaults(self):
        args = build_parser().parse_args(['report'])

        assert args.limit == 20
        assert args.source is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestScrapeCommand:
    """Test cases for `scrape`."""

    def test_scrape_all_sources(self, run_cli, listings, settings, dynamodb, capsys):
        exit_code = run_cli('scrape')

        assert exit_code == 0
        out = capsys.readouterr().out
        assert ': ok' in out.splitlines()[0]
        assert 'eventbrite' in out and 'sympla' in out
        assert DynamoDBManager.from_settings(settings, dynamodb=dynamodb).count_events() == 4

    def test_scrape_is_idempotent(self, run_cli, listings, settings, dynamodb):
        run_cli('scrape')
        run_cli('scrape')

        assert DynamoDBManager.from_settings(settings, dynamodb=dynamodb).count_events() == 4

    def test_scrape_one_source_in_other_region(self, run_cli, sympla_cards_page):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, 'https://www.sympla.com.br/eventos/porto-velho-ro',
                     body=sympla_cards_page, status=200)

            exit_code = run_cli('scrape', '--source', 'sympla', '--region', 'Porto Velho,RO')

        assert exit_code == 0

    def test_broken_source_gives_partial_exit(self, run_cli, eventbrite_json_ld_page, broken_page, capsys):
        with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
            rsps.add(responses.GET, EVENTBRITE_LISTING, body=eventbrite_json_ld_page, status=200)
            rsps.add(responses.GET, SYMPLA_LISTING, body=broken_page, status=200)

            exit_code = run_cli('scrape')

        assert exit_code == 2
        assert 'ParseError' in capsys.readouterr().out

    def test_bad_region(self, run_cli, capsys):
        assert run_cli('scrape', '--region', 'Porto Velho') == 1
        assert 'Configuration error' in capsys.readouterr().err

    def test_unknown_source(self, run_cli, capsys):
        assert run_cli('scrape', '--source', 'ticketmaster') == 1
        assert 'Unknown source' in capsys.readouterr().err

    def test_invalid_configuration(self, run_cli, capsys):
        env = dict(TEST_ENV, SCRAPING_MAX_CONCURRENCY='0')

        assert run_cli('scrape', env=env) == 1
        assert 'SCRAPING_MAX_CONCURRENCY' in capsys.readouterr().err

    def test_missing_tables(self, capsys):
        with mock_aws():
            bare = boto3.resource('dynamodb', region_name='us-east-1')

            def factory(settings, source_ids=None):
                return build_pipeline(settings, source_ids, dynamodb=bare)

            exit_code = main(['scrape'], env=dict(TEST_ENV), pipeline_factory=factory)

        assert exit_code == 1
        assert 'Storage unavailable' in capsys.readouterr().err


class TestMonitorCommand:
    """Test cases for `monitor`."""

    def test_check_sites_reports_blank_page_as_failing(self, run_cli, sympla_cards_page, capsys):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, EventbriteExtractor.PROBE_URL, body=BLANK_PAGE, status=200)
            rsps.add(responses.GET, SymplaExtractor.PROBE_URL, body=sympla_cards_page, status=200)

            exit_code = run_cli('monitor', '--check-sites')

        assert exit_code == 2
        out = capsys.readouterr().out
        assert 'FAILING: eventbrite' in out

    def test_check_sites_with_unreachable_source_is_degraded(self, run_cli, sympla_cards_page, capsys):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, EventbriteExtractor.PROBE_URL, status=503)
            rsps.add(responses.GET, SymplaExtractor.PROBE_URL, body=sympla_cards_page, status=200)

            exit_code = run_cli('monitor', '--check-sites')
            eventbrite_calls = [c for c in rsps.calls if c.request.url == EventbriteExtractor.PROBE_URL]

        assert exit_code == 0
        assert len(eventbrite_calls) == 3
        out = capsys.readouterr().out
        assert 'eventbrite   degraded' in out
        assert 'FAILING' not in out

    def test_failing_source_is_skipped_by_next_scrape(self, run_cli, listings, capsys):
        listings.add(responses.GET, EventbriteExtractor.PROBE_URL, body=BLANK_PAGE, status=200)
        listings.add(responses.GET, SymplaExtractor.PROBE_URL, body=BLANK_PAGE, status=200)
        run_cli('monitor', '--check-sites')
        capsys.readouterr()

        exit_code = run_cli('scrape')

        assert exit_code == 2
        assert 'skipped: degraded' in capsys.readouterr().out

    def test_ack_resets_failing_source(self, run_cli, listings, capsys):
        listings.add(responses.GET, EventbriteExtractor.PROBE_URL, body=BLANK_PAGE, status=200)
        listings.add(responses.GET, SymplaExtractor.PROBE_URL, body=BLANK_PAGE, status=200)
        run_cli('monitor', '--check-sites')

        assert run_cli('monitor', '--ack', 'eventbrite') == 0
        assert 'eventbrite acknowledged and reset to healthy' in capsys.readouterr().out

        run_cli('monitor')
        out = capsys.readouterr().out
        assert 'FAILING: sympla' in out
        assert '(acknowledged)' in out

    def test_ack_unknown_source(self, run_cli, capsys):
        assert run_cli('monitor', '--ack', 'ticketmaster') == 1
        assert 'Unknown source: ticketmaster' in capsys.readouterr().err

    def test_never_probed(self, run_cli, capsys):
        assert run_cli('monitor') == 0
        assert 'never probed' in capsys.readouterr().out


class TestCheckAndReportCommands:
    """Test cases for `check` and `report`."""

    def test_check(self, run_cli, eventbrite_cards_page, sympla_cards_page, capsys):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, EventbriteExtractor.PROBE_URL, body=eventbrite_cards_page, status=200)
            rsps.add(responses.GET, SymplaExtractor.PROBE_URL, body=sympla_cards_page, status=200)

            exit_code = run_cli('check')

        assert exit_code == 0
        out = capsys.readouterr().out
        assert 'Configuration: ok' in out
        assert 'Table test-event-catalog: ok' in out
        assert 'Source eventbrite: reachable' in out

    def test_check_unreachable_source(self, run_cli, sympla_cards_page, capsys):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, EventbriteExtractor.PROBE_URL, status=503)
            rsps.add(responses.GET, SymplaExtractor.PROBE_URL, body=sympla_cards_page, status=200)

            exit_code = run_cli('check')

        assert exit_code == 1
        assert 'Source eventbrite: UNREACHABLE' in capsys.readouterr().out

    def test_report_after_scrape(self, run_cli, listings, capsys):
        run_cli('scrape')
        capsys.readouterr()

        assert run_cli('report') == 0
        out = capsys.readouterr().out
        assert out.startswith('Overall status: ok (2 report(s))')

    def test_report_for_one_source(self, run_cli, listings, capsys):
        run_cli('scrape')
        run_cli('scrape')
        capsys.readouterr()

        run_cli('report', '--source', 'sympla', '--limit', '5')

        assert 'Overall status: ok (2 report(s))' in capsys.readouterr().out
