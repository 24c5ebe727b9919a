"""Tests for retry logic."""

import pytest

from saasguard.core.exceptions import AuthenticationError, ConnectionError
from saasguard.core.utils.retry import (
    CONNECTOR_RETRY,
    REVOCATION_RETRY,
    RetryConfig,
    calculate_backoff_delay,
    is_retryable_error,
    retry_async,
)


class FlakyCall:
    """Coroutine callable that fails a fixed number of times."""

    def __init__(self, failures: int, error: Exception):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestBackoff:
    """Tests for backoff delay calculation."""

    def test_exponential_growth(self):
        config = RetryConfig(initial_delay=1.0, exponential_base=2.0)
        assert calculate_backoff_delay(0, config) == 1.0
        assert calculate_backoff_delay(1, config) == 2.0
        assert calculate_backoff_delay(2, config) == 4.0

    def test_capped_at_max_delay(self):
        config = RetryConfig(initial_delay=1.0, max_delay=5.0)
        assert calculate_backoff_delay(10, config) == 5.0

    def test_jitter_stays_within_half_and_full_delay(self):
        config = RetryConfig(initial_delay=4.0, jitter=True)
        for _ in range(20):
            assert 2.0 <= calculate_backoff_delay(0, config) <= 4.0

    def test_default_policies(self):
        assert CONNECTOR_RETRY.max_attempts == 4
        assert CONNECTOR_RETRY.initial_delay == 1.0
        assert REVOCATION_RETRY.max_attempts == 3
        assert REVOCATION_RETRY.initial_delay == 0.5


class TestRetryableErrors:
    def test_connection_errors_are_retryable(self):
        assert is_retryable_error(ConnectionError("timeout"))

    def test_authentication_errors_are_not(self):
        assert not is_retryable_error(AuthenticationError("401"))

    def test_plain_exceptions_are_not(self):
        assert not is_retryable_error(ValueError("bad"))


class TestRetryAsync:
    """Tests for retry_async."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        call = FlakyCall(failures=2, error=ConnectionError("503"))

        result = await retry_async(call, config=RetryConfig(max_attempts=3, initial_delay=0.0))

        assert result == "ok"
        assert call.calls == 3

    @pytest.mark.asyncio
    async def test_raises_after_max_attempts(self):
        call = FlakyCall(failures=10, error=ConnectionError("503"))

        with pytest.raises(ConnectionError):
            await retry_async(call, config=RetryConfig(max_attempts=4, initial_delay=0.0))

        assert call.calls == 4

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self):
        call = FlakyCall(failures=1, error=AuthenticationError("403"))

        with pytest.raises(AuthenticationError):
            await retry_async(call, config=RetryConfig(max_attempts=4, initial_delay=0.0))

        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_custom_predicate(self):
        call = FlakyCall(failures=1, error=ValueError("flaky"))

        result = await retry_async(
            call,
            config=RetryConfig(max_attempts=2, initial_delay=0.0),
            is_retryable=lambda e: isinstance(e, ValueError),
        )

        assert result == "ok"
        assert call.calls == 2
