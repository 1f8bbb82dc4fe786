"""Unit tests for settings loading and validation."""
import os
from unittest.mock import patch

import pytest

from errors import ConfigurationError
from settings import load_settings


class TestLoadSettings:
    """Test cases for load_settings."""

    def test_defaults(self):
        settings = load_settings(env={}, dotenv=False)

        assert settings.events_table == 'event-catalog'
        assert settings.max_concurrency == 2
        assert settings.health_threshold == 70.0
        assert settings.default_region == 'Ji-Paraná,RO'
        assert settings.merge_cross_source is False
        assert settings.enabled_sources() == ['eventbrite', 'sympla']
        assert settings.source('eventbrite').min_interval == 2.0
        assert settings.source('sympla').min_interval == 1.5

    def test_environment_overrides(self):
        settings = load_settings(env={
            'EVENTS_TABLE': 'catalog-prod',
            'SCRAPING_MAX_RETRIES': '5',
            'SYMPLA_MAX_RETRIES': '2',
            'SYMPLA_ENABLED': 'false',
            'MERGE_CROSS_SOURCE': 'yes',
            'DYNAMODB_ENDPOINT_URL': 'http://localhost:8000',
        }, dotenv=False)

        assert settings.events_table == 'catalog-prod'
        assert settings.source('eventbrite').max_retries == 5
        assert settings.source('sympla').max_retries == 2
        assert settings.enabled_sources() == ['eventbrite']
        assert settings.merge_cross_source is True
        assert settings.dynamodb_endpoint_url == 'http://localhost:8000'

    def test_reads_process_environment(self):
        with patch.dict(os.environ, {'RUNS_TABLE': 'runs-from-env'}):
            assert load_settings(dotenv=False).runs_table == 'runs-from-env'

    def test_bad_number(self):
        with pytest.raises(ConfigurationError, match='SCRAPING_TIMEOUT'):
            load_settings(env={'SCRAPING_TIMEOUT': 'soon'}, dotenv=False)

    def test_unconfigured_source_gets_global_defaults(self):
        settings = load_settings(env={'SCRAPING_MAX_RETRIES': '4'}, dotenv=False)

        assert settings.source('ingresso').max_retries == 4


class TestValidate:
    """Test cases for Settings.validate."""

    def test_defaults_are_valid(self):
        load_settings(env={}, dotenv=False).validate()

    @pytest.mark.parametrize('env, message', [
        ({'HEALTH_THRESHOLD': '101'}, 'HEALTH_THRESHOLD'),
        ({'SCRAPING_MAX_CONCURRENCY': '0'}, 'SCRAPING_MAX_CONCURRENCY'),
        ({'SCRAPING_MAX_RETRIES': '0'}, 'SCRAPING_MAX_RETRIES'),
        ({'TIMEZONE': 'Mars/Olympus'}, 'TIMEZONE'),
        ({'DEFAULT_REGION': 'Ji-Paraná'}, 'DEFAULT_REGION'),
        ({'EVENTBRITE_ENABLED': 'false', 'SYMPLA_ENABLED': '0'}, 'At least one source'),
        ({'SYMPLA_RATE_LIMIT': '-1'}, 'sympla: rate limit'),
    ])
    def test_invalid(self, env, message):
        settings = load_settings(env=env, dotenv=False)

        with pytest.raises(ConfigurationError, match=message):
            settings.validate()

    def test_reports_every_problem(self):
        settings = load_settings(env={'HEALTH_THRESHOLD': '-5', 'SCRAPING_TIMEOUT': '0'}, dotenv=False)

        with pytest.raises(ConfigurationError) as exc_info:
            settings.validate()

        assert 'HEALTH_THRESHOLD' in str(exc_info.value)
        assert 'SCRAPING_TIMEOUT' in str(exc_info.value)
