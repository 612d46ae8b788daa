"""
Tests for retry with exponential backoff.
"""

import pytest
from unittest.mock import Mock

from phasegate.config import RetryConfig
from phasegate.errors import (
    CatalogueLockViolation,
    ConcurrentModification,
    RetryableError,
    VoteTimeout,
)
from phasegate.retry import RetryHandler, RetryPolicy


class TestRetryPolicy:
    """Tests for RetryPolicy"""

    def test_default_policy(self):
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.retryable_exceptions == (RetryableError,)

    def test_from_config(self):
        """Should copy backoff settings and take attempts separately"""
        policy = RetryPolicy.from_config(RetryConfig(initial_delay_ms=10, jitter=False), max_attempts=4)

        assert policy.max_attempts == 4
        assert policy.initial_delay_ms == 10
        assert policy.jitter is False


class TestRetryHandler:
    """Tests for RetryHandler"""

    @pytest.fixture
    def sleep(self):
        return Mock()

    def test_succeeds_first_attempt(self, sleep):
        """Should succeed on first attempt"""
        handler = RetryHandler(sleep=sleep)
        func = Mock(return_value="success")

        assert handler.execute(func, "a", key="b") == "success"
        func.assert_called_once_with("a", key="b")
        sleep.assert_not_called()

    def test_retries_on_retryable_error(self, sleep):
        """Should retry and call on_retry before each new attempt"""
        handler = RetryHandler(RetryPolicy(max_attempts=3, jitter=False), sleep=sleep)
        error = VoteTimeout("prop-1", ["architect"])
        func = Mock(side_effect=[error, "success"])
        on_retry = Mock()

        assert handler.execute(func, on_retry=on_retry) == "success"
        assert func.call_count == 2
        on_retry.assert_called_once_with(1, error)
        sleep.assert_called_once_with(0.1)

    def test_gives_up_after_max_attempts(self, sleep):
        """Should raise the last error once attempts run out"""
        handler = RetryHandler(RetryPolicy(max_attempts=3, jitter=False), sleep=sleep)
        func = Mock(side_effect=ConcurrentModification("rule-1", 1, 2))

        with pytest.raises(ConcurrentModification):
            handler.execute(func)

        assert func.call_count == 3
        assert sleep.call_count == 2

    def test_non_retryable_raises_immediately(self, sleep):
        """Protocol violations are never retried"""
        handler = RetryHandler(sleep=sleep)
        func = Mock(side_effect=CatalogueLockViolation("rule-1", "locked"))

        with pytest.raises(CatalogueLockViolation):
            handler.execute(func)

        func.assert_called_once()
        sleep.assert_not_called()

    def test_unlisted_exception_propagates(self, sleep):
        handler = RetryHandler(RetryPolicy(retryable_exceptions=(VoteTimeout,)), sleep=sleep)
        func = Mock(side_effect=ConcurrentModification("rule-1", 1, 2))

        with pytest.raises(ConcurrentModification):
            handler.execute(func)

        func.assert_called_once()


class TestBackoff:

    def test_exponential_delay(self):
        handler = RetryHandler(RetryPolicy(initial_delay_ms=100, jitter=False))

        assert handler._calculate_delay(1) == 100
        assert handler._calculate_delay(2) == 200
        assert handler._calculate_delay(3) == 400

    def test_delay_capped(self):
        handler = RetryHandler(RetryPolicy(initial_delay_ms=100, max_delay_ms=300, jitter=False))

        assert handler._calculate_delay(5) == 300

    def test_jitter_bounded(self):
        handler = RetryHandler(RetryPolicy(initial_delay_ms=100, jitter=True))

        for _ in range(20):
            assert 100 <= handler._calculate_delay(1) <= 125
