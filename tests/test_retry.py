"""Unit tests for RetryPolicy."""
import random
import threading

import pytest

from errors import (
    NotFoundError, ParseError, RetriesExhausted, RunCancelled, StorageUnavailable,
    TransientNetworkError
)
from scraper.retry import Classification, RetryPolicy, default_classify


class FlakyOperation:
    """Fails ``failures`` times with ``error`` and then returns 'ok'."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or TransientNetworkError("HTTP 503", status_code=503)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return 'ok'


def no_sleep(delay):
    pass


class TestDefaultClassify:

    def test_transient_and_storage_errors_are_retryable(self):
        assert default_classify(TransientNetworkError("timeout")) is Classification.RETRYABLE
        assert default_classify(StorageUnavailable("down")) is Classification.RETRYABLE

    def test_parse_error_retries_once(self):
        assert default_classify(ParseError("no cards")) is Classification.RETRY_ONCE

    def test_everything_else_is_fatal(self):
        assert default_classify(NotFoundError("404")) is Classification.FATAL
        assert default_classify(ValueError("bug")) is Classification.FATAL


class TestRetryPolicy:
    """Test cases for RetryPolicy class."""

    @pytest.mark.parametrize('failures', [0, 1, 2])
    def test_k_failures_then_success_makes_k_plus_one_calls(self, failures):
        op = FlakyOperation(failures)
        policy = RetryPolicy(max_attempts=3, sleep=no_sleep)

        assert policy.execute(op) == 'ok'
        assert op.calls == failures + 1

    def test_exhaustion_raises_with_last_error_and_attempts(self):
        op = FlakyOperation(10)
        policy = RetryPolicy(max_attempts=3, sleep=no_sleep)

        with pytest.raises(RetriesExhausted) as exc_info:
            policy.execute(op)

        assert op.calls == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is op.error

    def test_fatal_error_propagates_on_first_attempt(self):
        op = FlakyOperation(5, NotFoundError("HTTP 404"))
        policy = RetryPolicy(max_attempts=5, sleep=no_sleep)

        with pytest.raises(NotFoundError):
            policy.execute(op)
        assert op.calls == 1

    def test_parse_error_is_retried_only_once(self):
        op = FlakyOperation(5, ParseError("no cards", landmark='eventCard'))
        policy = RetryPolicy(max_attempts=5, sleep=no_sleep)

        with pytest.raises(RetriesExhausted) as exc_info:
            policy.execute(op)
        assert op.calls == 2
        assert isinstance(exc_info.value.last_error, ParseError)

    def test_max_attempts_is_at_least_one(self):
        op = FlakyOperation(1)
        policy = RetryPolicy(max_attempts=0, sleep=no_sleep)

        with pytest.raises(RetriesExhausted):
            policy.execute(op)
        assert op.calls == 1

    def test_on_retry_receives_attempt_and_delay(self):
        op = FlakyOperation(2)
        seen = []
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=no_sleep, rng=random.Random(7))

        policy.execute(op, on_retry=lambda attempt, error, delay: seen.append((attempt, delay)))

        assert [attempt for attempt, _ in seen] == [1, 2]
        assert 0.8 <= seen[0][1] <= 1.2
        assert 1.6 <= seen[1][1] <= 2.4

    def test_delays_are_capped_and_jittered(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, rng=random.Random(1))

        for retry_number in range(1, 10):
            expected = min(2 ** (retry_number - 1), 5.0)
            delay = policy.delay_for(retry_number)
            assert expected * 0.8 <= delay <= expected * 1.2

    def test_retry_after_raises_the_delay(self):
        op = FlakyOperation(1, TransientNetworkError("HTTP 429", status_code=429, retry_after=4))
        slept = []
        policy = RetryPolicy(max_attempts=2, base_delay=0.1, max_delay=30.0, sleep=slept.append)

        policy.execute(op)
        assert slept == [4.0]

    def test_cancel_during_backoff(self):
        op = FlakyOperation(3)
        cancel = threading.Event()
        cancel.set()
        policy = RetryPolicy(max_attempts=3, base_delay=10.0)

        with pytest.raises(RunCancelled):
            policy.execute(op, cancel_event=cancel)
        assert op.calls == 1

    def test_custom_classifier(self):
        op = FlakyOperation(1, KeyError('flaky'))
        policy = RetryPolicy(max_attempts=2, sleep=no_sleep)

        assert policy.execute(op, classify=lambda e: Classification.RETRYABLE) == 'ok'
        assert op.calls == 2
