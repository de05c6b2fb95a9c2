"""Tests for RetryPolicy classification and backoff."""
import pytest

from volunteer_sync.sync.errors import (
    AuthenticationError,
    ConnectivityError,
    RecordValidationError,
    RemoteApiError,
)
from volunteer_sync.sync.retry import RetryPolicy


@pytest.fixture
def policy():
    return RetryPolicy(max_retries=3, base_delay_ms=5000, max_delay_ms=30000)


class TestShouldRetry:
    @pytest.mark.parametrize("message", [
        "Network unreachable",
        "Request timed out",
        "connection reset by peer",
        "Rate limit exceeded",
        "Quota exceeded for quota metric",
        "Service temporarily unavailable",
        "Internal Server Error",
        "connection to oauth2.googleapis.com timed out",
    ])
    def test_retryable_messages(self, policy, message):
        assert policy.should_retry(RuntimeError(message)) is True

    @pytest.mark.parametrize("message", [
        "Unauthorized",
        "The caller does not have permission",
        "Forbidden",
        "Validation failed for row 3",
        "invalid_grant",
        "Request had invalid authentication credentials",
        "Authorization header missing",
        "auth token expired",
    ])
    def test_non_retryable_messages(self, policy, message):
        assert policy.should_retry(RuntimeError(message)) is False

    def test_non_retryable_keyword_beats_retryable(self, policy):
        assert policy.should_retry(RuntimeError("auth server timeout")) is False

    def test_unknown_message_not_retried(self, policy):
        assert policy.should_retry(RuntimeError("something odd")) is False
        assert policy.should_retry(RuntimeError()) is False

    def test_builtin_network_errors(self, policy):
        assert policy.should_retry(TimeoutError()) is True
        assert policy.should_retry(ConnectionResetError()) is True

    def test_explicit_flags_win(self, policy):
        assert policy.should_retry(ConnectivityError("spreadsheet not configured")) is True
        assert policy.should_retry(AuthenticationError("network hiccup")) is False

    def test_validation_errors_never_retried(self, policy):
        error = RecordValidationError("volunteers", "V1", ["connection field timeout"])
        assert policy.should_retry(error) is False

    @pytest.mark.parametrize("status,expected", [(429, True), (500, True), (503, True), (400, False), (404, False)])
    def test_remote_api_status(self, policy, status, expected):
        assert policy.should_retry(RemoteApiError("boom", status=status)) is expected

    def test_remote_api_without_status_uses_message(self, policy):
        assert policy.should_retry(RemoteApiError("backend unavailable")) is True
        assert policy.should_retry(RemoteApiError("bad request")) is False


class TestComputeDelay:
    def test_exponential(self, policy):
        assert [policy.compute_delay(n) for n in (1, 2, 3)] == [5000, 10000, 20000]

    def test_capped(self, policy):
        assert policy.compute_delay(4) == 30000
        assert policy.compute_delay(10) == 30000

    def test_increases_until_cap(self):
        policy = RetryPolicy(base_delay_ms=100, max_delay_ms=10_000)
        delays = [policy.compute_delay(n) for n in range(1, 7)]
        assert all(b > a for a, b in zip(delays, delays[1:]))

    def test_attempt_below_one_clamped(self, policy):
        assert policy.compute_delay(0) == 5000
