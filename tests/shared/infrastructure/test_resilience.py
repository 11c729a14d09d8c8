"""
Tests for the retry resilience pattern.

Transport failures are retried with backoff, up to a fixed bound.
"""

import pytest

from deployer.shared.domain.exceptions import CancellationError, CommandError, SecretNotFoundError, TransportError
from deployer.shared.infrastructure.config import settings
from deployer.shared.infrastructure.resilience import RetryConfig, RetryExhausted, with_retry_async


def _config(max_attempts=3):
    return RetryConfig(
        max_attempts=max_attempts,
        initial_delay=0.01,
        jitter=False,
        retryable_exceptions=(TransportError,),
    )


class TestRetryConfig:
    """Test RetryConfig defaults and transport policy."""

    def test_default_options(self):
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.initial_delay == 1.0
        assert config.exponential_base == 2.0
        assert config.jitter is True
        assert config.max_delay == 30.0

    def test_transport_config_follows_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "transport_max_attempts", 5)
        monkeypatch.setattr(settings, "transport_retry_delay", 0.25)

        config = RetryConfig.for_transport()

        assert config.max_attempts == 5
        assert config.initial_delay == 0.25
        assert config.is_retryable(TransportError("reset"))
        assert not config.is_retryable(CommandError("make", 2))

    def test_non_retryable_errors(self):
        config = RetryConfig.for_transport()

        assert not config.is_retryable(SecretNotFoundError("no key"))
        assert not config.is_retryable(CancellationError("cancelled"))

    def test_backoff_is_capped(self):
        config = RetryConfig(initial_delay=1.0, max_delay=5.0, jitter=False)

        assert [config.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


class TestWithRetry:
    """Test with_retry_async."""

    @pytest.mark.asyncio
    async def test_successful_execution_no_retry(self):
        call_count = 0

        async def successful():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await with_retry_async(successful, _config()) == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_on_transport_error_then_success(self):
        call_count = 0

        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise TransportError("connection reset")
            return "success"

        assert await with_retry_async(flaky, _config()) == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_never_exceeds_bound(self):
        call_count = 0

        async def down():
            nonlocal call_count
            call_count += 1
            raise TransportError("no route to host")

        with pytest.raises(RetryExhausted) as exc:
            await with_retry_async(down, _config(max_attempts=4), operation_name="connect")

        assert call_count == 4
        assert exc.value.attempts == 4
        assert isinstance(exc.value.last_error, TransportError)
        assert "connect" in str(exc.value)

    @pytest.mark.asyncio
    async def test_command_errors_are_not_retried(self):
        call_count = 0

        async def failing():
            nonlocal call_count
            call_count += 1
            raise CommandError("make", 2)

        with pytest.raises(CommandError):
            await with_retry_async(failing, _config())
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_non_retryable_marker(self):
        call_count = 0

        async def missing_client():
            nonlocal call_count
            call_count += 1
            error = TransportError("ssh not installed")
            error.non_retryable = True
            raise error

        with pytest.raises(TransportError):
            await with_retry_async(missing_client, _config())
        assert call_count == 1

    def test_cancellation_is_never_retryable(self):
        assert CancellationError.non_retryable is True
