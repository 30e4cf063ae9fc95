"""Tests for retry logic with exponential backoff."""

from unittest import mock

import pytest

from services.common.retry import compute_backoff_delay, retry_with_backoff


class TransientError(Exception):
    def __init__(self, message, retryable=True):
        super().__init__(message)
        self.retryable = retryable


class TestRetryLogic:
    """Tests for the retry decorator."""

    def test_retry_succeeds_on_first_attempt(self):
        """Function that succeeds immediately should not retry."""
        call_count = {"count": 0}

        @retry_with_backoff(max_retries=3)
        def successful_function():
            call_count["count"] += 1
            return "success"

        result = successful_function()
        assert result == "success"
        assert call_count["count"] == 1

    def test_retry_succeeds_after_failures(self):
        """Function should retry until it succeeds."""
        call_count = {"count": 0}

        @retry_with_backoff(max_retries=3, initial_delay=0.01, backoff_factor=2.0)
        def fails_twice_then_succeeds():
            call_count["count"] += 1
            if call_count["count"] < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        result = fails_twice_then_succeeds()
        assert result == "success"
        assert call_count["count"] == 3

    def test_retry_exhausts_all_attempts(self):
        """Function should retry max_retries times then raise exception."""
        call_count = {"count": 0}

        @retry_with_backoff(max_retries=2, initial_delay=0.01)
        def always_fails():
            call_count["count"] += 1
            raise ConnectionError("Always fails")

        with pytest.raises(ConnectionError, match="Always fails"):
            always_fails()

        # Initial attempt + 2 retries
        assert call_count["count"] == 3

    def test_retry_sleeps_with_capped_exponential_delays(self):
        """Delays double each retry and never exceed max_delay."""

        @retry_with_backoff(max_retries=4, initial_delay=1.0, backoff_factor=2.0, max_delay=5.0)
        def fails_always():
            raise ConnectionError("Fail")

        with mock.patch("services.common.retry.time.sleep") as sleep_mock:
            with pytest.raises(ConnectionError):
                fails_always()

        assert [c.args[0] for c in sleep_mock.call_args_list] == [1.0, 2.0, 4.0, 5.0]

    def test_retry_only_catches_specified_exceptions(self):
        """Retry should only catch exceptions in the exceptions tuple."""
        call_count = {"count": 0}

        @retry_with_backoff(max_retries=2, exceptions=(ConnectionError,))
        def raises_value_error():
            call_count["count"] += 1
            raise ValueError("Wrong exception type")

        with pytest.raises(ValueError, match="Wrong exception type"):
            raises_value_error()
        assert call_count["count"] == 1

    def test_should_retry_false_raises_immediately(self):
        """A non-retryable error (e.g. HTTP 401) is raised without sleeping."""
        call_count = {"count": 0}

        @retry_with_backoff(
            max_retries=3,
            initial_delay=0.01,
            exceptions=(TransientError,),
            should_retry=lambda exc: exc.retryable,
        )
        def unauthorized():
            call_count["count"] += 1
            raise TransientError("401", retryable=False)

        with mock.patch("services.common.retry.time.sleep") as sleep_mock:
            with pytest.raises(TransientError):
                unauthorized()

        assert call_count["count"] == 1
        sleep_mock.assert_not_called()

    def test_should_retry_true_keeps_retrying(self):
        call_count = {"count": 0}

        @retry_with_backoff(
            max_retries=2,
            initial_delay=0.01,
            exceptions=(TransientError,),
            should_retry=lambda exc: exc.retryable,
        )
        def flaky():
            call_count["count"] += 1
            if call_count["count"] < 3:
                raise TransientError("503")
            return "ok"

        assert flaky() == "ok"
        assert call_count["count"] == 3

    def test_retry_preserves_function_metadata(self):
        """Decorator should preserve function name and docstring."""

        @retry_with_backoff(max_retries=1)
        def my_function():
            """This is my function."""
            return "result"

        assert my_function.__name__ == "my_function"
        assert my_function.__doc__ == "This is my function."

    def test_retry_with_function_arguments(self):
        """Retry should work with functions that take arguments."""
        call_count = {"count": 0}

        @retry_with_backoff(max_retries=2, initial_delay=0.01)
        def function_with_args(x, y, z=3):
            call_count["count"] += 1
            if call_count["count"] < 2:
                raise ConnectionError("Fail")
            return x + y + z

        result = function_with_args(1, 2, z=4)
        assert result == 7
        assert call_count["count"] == 2

    def test_retry_with_no_retries(self):
        """max_retries=0 means try once, no retries."""
        call_count = {"count": 0}

        @retry_with_backoff(max_retries=0)
        def fails_once():
            call_count["count"] += 1
            raise ConnectionError("Fail")

        with pytest.raises(ConnectionError):
            fails_once()

        assert call_count["count"] == 1


class TestComputeBackoffDelay:

    def test_exponential_growth(self):
        assert compute_backoff_delay(0) == 1.0
        assert compute_backoff_delay(1) == 2.0
        assert compute_backoff_delay(2) == 4.0

    def test_capped_at_max_delay(self):
        assert compute_backoff_delay(10, max_delay=5.0) == 5.0

    def test_jitter_stays_within_bounds(self):
        for _ in range(20):
            delay = compute_backoff_delay(0, initial_delay=1.0, jitter=0.5)
            assert 1.0 <= delay <= 1.5


# ============================================================================
# Mark all tests as unit tests
# ============================================================================

pytestmark = pytest.mark.unit
