"""Unit tests for the run log and health store."""
import pytest

from errors import StorageUnavailable
from processor.models import HealthState, RunStatus, ScrapeRunReport, SourceHealth
from storage.health_store import HealthStore
from storage.run_log import RunLog


@pytest.fixture
def run_log(settings, dynamodb):
    return RunLog.from_settings(settings, dynamodb=dynamodb)


@pytest.fixture
def health_store(settings, dynamodb):
    return HealthStore.from_settings(settings, dynamodb=dynamodb)


def _report(run_id, source, started_at, **kwargs):
    return ScrapeRunReport(run_id=run_id, source=source, started_at=started_at, **kwargs)


class TestRunLog:
    """Test cases for RunLog class."""

    def test_append_and_read_back(self, run_log):
        report = _report(
            'run-1', 'sympla', '2025-03-01T12:00:00Z',
            finished_at='2025-03-01T12:00:05Z', fetched=10, accepted=8, rejected=2,
            rejections=[{'title': 'Sem data', 'source_url': 'https://x', 'reason': 'missing_date'}],
            inserted=8, status=RunStatus.OK, warnings=['sympla structure degraded']
        )

        run_log.append(report)
        stored = run_log.recent()

        assert len(stored) == 1
        assert stored[0] == report

    def test_recent_is_newest_first(self, run_log):
        run_log.append(_report('run-1', 'sympla', '2025-03-01T10:00:00Z'))
        run_log.append(_report('run-2', 'eventbrite', '2025-03-01T11:00:00Z'))
        run_log.append(_report('run-3', 'sympla', '2025-03-01T12:00:00Z', status=RunStatus.FAILED))

        assert [r.run_id for r in run_log.recent()] == ['run-3', 'run-2', 'run-1']
        assert [r.run_id for r in run_log.recent(limit=2)] == ['run-3', 'run-2']

    def test_recent_for_one_source(self, run_log):
        run_log.append(_report('run-1', 'sympla', '2025-03-01T10:00:00Z'))
        run_log.append(_report('run-2', 'eventbrite', '2025-03-01T11:00:00Z'))
        run_log.append(_report('run-3', 'sympla', '2025-03-01T12:00:00Z', status=RunStatus.FAILED))

        reports = run_log.recent(source='sympla')

        assert [r.run_id for r in reports] == ['run-3', 'run-1']
        assert reports[0].status == RunStatus.FAILED

    def test_reports_are_never_overwritten(self, run_log):
        run_log.append(_report('run-1', 'sympla', '2025-03-01T10:00:00Z', fetched=3))
        run_log.append(_report('run-2', 'sympla', '2025-03-01T10:00:00Z', fetched=5))

        assert len(run_log.recent()) == 2

    def test_ping(self, run_log):
        assert run_log.ping() is True

    def test_missing_table(self, dynamodb):
        run_log = RunLog('no-such-table', dynamodb=dynamodb)

        with pytest.raises(StorageUnavailable):
            run_log.append(_report('run-1', 'sympla', '2025-03-01T10:00:00Z'))


class TestHealthStore:
    """Test cases for HealthStore class."""

    def test_save_and_load(self, health_store):
        health = SourceHealth(
            source='eventbrite',
            checked_at='2025-03-01T12:00:00Z',
            landmarks={'eventCard': True, 'price': False},
            overall_health=50.0,
            consecutive_failures=2,
            state=HealthState.DEGRADED,
            error=None
        )

        health_store.save(health)

        assert health_store.load_all() == {'eventbrite': health}

    def test_save_replaces_previous(self, health_store):
        health_store.save(SourceHealth('sympla', '2025-03-01T12:00:00Z', {}, 0.0, 1,
                                       HealthState.FAILING, error='TransientNetworkError: 503'))
        health_store.save(SourceHealth('sympla', '2025-03-02T12:00:00Z', {'eventCard': True}, 100.0))

        stored = health_store.load_all()['sympla']
        assert stored.state == HealthState.HEALTHY
        assert stored.error is None
        assert stored.checked_at == '2025-03-02T12:00:00Z'

    def test_empty_table(self, health_store):
        assert health_store.load_all() == {}

    def test_ping(self, health_store):
        assert health_store.ping() is True
