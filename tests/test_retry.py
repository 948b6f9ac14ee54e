"""Tests for the retry executor."""
import httpx
import pytest

from studio.errors import ProviderError, RequestCancelledError, ValidationError
from studio.services.retry import CancelToken, RetryPolicy, is_retryable_error, retry


class Flaky:
    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or ConnectionError("connection reset")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)

    return _sleep


@pytest.mark.asyncio
async def test_succeeds_after_two_transient_failures(fake_sleep, sleeps):
    op = Flaky(failures=2)
    result = await retry(op, is_retryable=lambda e: True, sleep=fake_sleep, jitter=False)
    assert result == "ok"
    assert op.calls == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_after_one_call(fake_sleep):
    op = Flaky(failures=5, error=ProviderError("bad request", status=400))
    with pytest.raises(ProviderError):
        await retry(op, is_retryable=is_retryable_error, sleep=fake_sleep)
    assert op.calls == 1


@pytest.mark.asyncio
async def test_last_error_propagates_when_retries_run_out(fake_sleep):
    op = Flaky(failures=10)
    with pytest.raises(ConnectionError):
        await retry(op, max_retries=2, sleep=fake_sleep)
    assert op.calls == 3


@pytest.mark.asyncio
async def test_delay_is_capped(fake_sleep, sleeps):
    op = Flaky(failures=10)
    policy = RetryPolicy(max_retries=4, initial_delay=1.0, max_delay=3.0, jitter=False)
    with pytest.raises(ConnectionError):
        await retry(op, policy=policy, sleep=fake_sleep)
    assert sleeps == [1.0, 2.0, 3.0, 3.0]


def test_jitter_stays_within_half_to_full_delay():
    policy = RetryPolicy(initial_delay=2.0, max_delay=10.0)
    for _ in range(50):
        assert 2.0 <= policy.delay_for(1) <= 4.0


@pytest.mark.asyncio
async def test_cancelled_token_stops_before_first_attempt(fake_sleep):
    op = Flaky(failures=0)
    token = CancelToken()
    token.cancel()
    with pytest.raises(RequestCancelledError):
        await retry(op, cancel=token, sleep=fake_sleep)
    assert op.calls == 0


@pytest.mark.asyncio
async def test_probe_cancels_between_attempts(fake_sleep):
    op = Flaky(failures=10)
    token = CancelToken(probe=lambda: op.calls >= 2)
    with pytest.raises(ConnectionError):
        await retry(op, cancel=token, sleep=fake_sleep)
    assert op.calls == 2


def test_policy_from_config():
    policy = RetryPolicy.from_config(
        {"RETRY_MAX_RETRIES": 5, "RETRY_INITIAL_DELAY": 0.5, "RETRY_MAX_DELAY": 4.0},
        jitter=False,
    )
    assert policy.max_retries == 5
    assert policy.initial_delay == 0.5
    assert policy.max_delay == 4.0
    assert policy.jitter is False


@pytest.mark.parametrize(
    "error, expected",
    [
        (httpx.ConnectError("boom"), True),
        (ProviderError("server error", status=503), True),
        (ProviderError("too many requests", status=429), True),
        (ProviderError("invalid argument", status=400), False),
        (ProviderError("Temporary failure in name resolution"), True),
        (ValidationError("network field is invalid"), False),
        (ValueError("Connection reset by peer"), True),
        (ValueError("ETIMEDOUT"), True),
        (ValueError("something else"), False),
        (RequestCancelledError(), False),
    ],
)
def test_is_retryable_error(error, expected):
    assert is_retryable_error(error) is expected


def test_http_status_errors_are_classified_by_status():
    request = httpx.Request("GET", "https://example.com")
    server = httpx.HTTPStatusError("x", request=request, response=httpx.Response(502, request=request))
    client = httpx.HTTPStatusError("x", request=request, response=httpx.Response(404, request=request))
    assert is_retryable_error(server) is True
    assert is_retryable_error(client) is False
