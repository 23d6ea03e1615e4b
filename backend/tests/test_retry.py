"""Tests for retry with exponential backoff."""

from unittest.mock import AsyncMock, patch

import pytest

from syncengine.services.providers import ProviderError
from syncengine.services.retry import (
    AGGRESSIVE,
    FAST,
    RETRYABLE_ERRORS,
    STANDARD,
    RetryPolicy,
    is_retryable_error,
    retry_with_backoff,
)

QUICK = RetryPolicy(max_attempts=3, initial_delay_ms=1, max_delay_ms=1)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_named_policies(self):
        assert (FAST.max_attempts, FAST.initial_delay_ms, FAST.max_delay_ms) == (2, 500, 5_000)
        assert (STANDARD.max_attempts, STANDARD.initial_delay_ms, STANDARD.max_delay_ms) == (
            3,
            1_000,
            30_000,
        )
        assert (AGGRESSIVE.max_attempts, AGGRESSIVE.initial_delay_ms, AGGRESSIVE.max_delay_ms) == (
            5,
            2_000,
            60_000,
        )

    def test_delay_grows_and_caps(self):
        policy = RetryPolicy(max_attempts=10, initial_delay_ms=1_000, max_delay_ms=5_000)

        assert policy.delay_ms(1) == 1_000
        assert policy.delay_ms(2) == 2_000
        assert policy.delay_ms(3) == 4_000
        assert policy.delay_ms(4) == 5_000

    def test_with_retryable_keeps_timing(self):
        policy = STANDARD.with_retryable(RETRYABLE_ERRORS["HTTP"], ["custom"])

        assert policy.max_attempts == STANDARD.max_attempts
        assert "429" in policy.retryable_errors
        assert "custom" in policy.retryable_errors
        assert STANDARD.retryable_errors == ()


class TestIsRetryableError:
    """Tests for signature matching."""

    def test_matches_message_case_insensitively(self):
        assert is_retryable_error(Exception("Rate_Limit_Exceeded"), RETRYABLE_ERRORS["CRM"])

    def test_matches_code_attribute(self):
        error = ProviderError("upstream failure", status_code=503, code="503")
        assert is_retryable_error(error, RETRYABLE_ERRORS["HTTP"])

    def test_matches_class_name(self):
        class ReadTimeout(Exception):
            pass

        assert is_retryable_error(ReadTimeout("slow"), RETRYABLE_ERRORS["NETWORK"])

    def test_no_match(self):
        error = ProviderError("forbidden", status_code=403, code="403")
        assert not is_retryable_error(error, RETRYABLE_ERRORS["HTTP"])


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        fn = AsyncMock(return_value="done")

        assert await retry_with_backoff(fn, QUICK) == "done"
        fn.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fails_m_times_then_succeeds(self):
        """An operation failing M < A times is invoked exactly M + 1 times."""
        fn = AsyncMock(side_effect=[RuntimeError("1"), RuntimeError("2"), "ok"])

        assert await retry_with_backoff(fn, QUICK) == "ok"
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_always_failing_invoked_exactly_a_times(self):
        fn = AsyncMock(side_effect=RuntimeError("down"))

        with pytest.raises(RuntimeError, match="down"):
            await retry_with_backoff(fn, QUICK)
        assert fn.await_count == QUICK.max_attempts

    @pytest.mark.asyncio
    async def test_non_matching_error_invoked_once(self):
        policy = QUICK.with_retryable(RETRYABLE_ERRORS["HTTP"])
        fn = AsyncMock(side_effect=ProviderError("unauthorized", status_code=401, code="401"))

        with pytest.raises(ProviderError):
            await retry_with_backoff(fn, policy)
        fn.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_authorization_error_never_retried_despite_matching_text(self):
        policy = QUICK.with_retryable(RETRYABLE_ERRORS["HTTP"], RETRYABLE_ERRORS["NETWORK"])
        error = ProviderError(
            "payments-primary HTTP 401: Invalid API Key provided: sk_live_****5002",
            status_code=401,
            code="401",
            message="Invalid API Key provided: sk_live_****5002",
        )
        fn = AsyncMock(side_effect=error)

        assert not is_retryable_error(error, policy.retryable_errors)
        with pytest.raises(ProviderError):
            await retry_with_backoff(fn, policy)
        fn.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_matching_error_is_retried(self):
        policy = QUICK.with_retryable(RETRYABLE_ERRORS["HTTP"])
        fn = AsyncMock(side_effect=[ProviderError("busy", status_code=429, code="429"), "ok"])

        assert await retry_with_backoff(fn, policy) == "ok"
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_sleeps_with_exponential_backoff(self):
        fn = AsyncMock(side_effect=RuntimeError("down"))

        with patch("syncengine.services.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(RuntimeError):
                await retry_with_backoff(fn, STANDARD)

        # No sleep after the final attempt
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            await retry_with_backoff(AsyncMock(), RetryPolicy(0, 1, 1))
