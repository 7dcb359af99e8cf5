"""Retry policy, status classification and the retryable fetcher."""

from __future__ import annotations

import httpx
import pytest

from CivitaiDownloader.errors import (
    HttpStatusError,
    NotFoundError,
    RateLimitedError,
    TransportError,
    UnauthorizedError,
)
from CivitaiDownloader.net.retry import (
    RetryPolicy,
    fetch_with_retry,
    is_retryable_exception,
    is_retryable_status,
)

URL = "https://civitai.com/api/v1/models"
PATH = "/api/v1/models"


def test_policy_normalises_bad_inputs():
    policy = RetryPolicy(max_retries=-2, initial_delay_ms=0)
    assert policy.max_retries == 0
    assert policy.initial_delay_ms == 500
    assert policy.attempts == 1


def test_policy_total_wait_bound():
    policy = RetryPolicy(max_retries=3, initial_delay_ms=100)
    assert policy.max_total_wait_s() == pytest.approx(0.7)


@pytest.mark.parametrize("status", [500, 502, 503, 504, 408, 429])
def test_retryable_statuses(status):
    assert is_retryable_status(status)


@pytest.mark.parametrize("status", [200, 400, 401, 403, 404])
def test_final_statuses(status):
    assert not is_retryable_status(status)


def test_transport_exceptions_are_retryable():
    request = httpx.Request("GET", URL)
    assert is_retryable_exception(httpx.ConnectError("boom", request=request))
    assert is_retryable_exception(httpx.ReadTimeout("slow", request=request))
    assert not is_retryable_exception(httpx.UnsupportedProtocol("ftp", request=request))
    assert not is_retryable_exception(ValueError("nope"))


def test_rate_limited_twice_then_success(router, http_client, sleeps, fake_sleep):
    router.add(PATH, 429, b"slow down").add(PATH, 429, b"slow down").add(PATH, 200, b'{"ok": true}')

    body = fetch_with_retry(
        http_client,
        "GET",
        URL,
        policy=RetryPolicy(max_retries=3, initial_delay_ms=100),
        sleep=fake_sleep,
    )

    assert body == b'{"ok": true}'
    assert sleeps == pytest.approx([0.1, 0.2])
    assert len(router.calls(PATH)) == 3


def test_exhausted_server_errors_raise_with_status(router, http_client, sleeps, fake_sleep):
    router.add(PATH, 503, b"unavailable")

    with pytest.raises(HttpStatusError) as excinfo:
        fetch_with_retry(
            http_client, "GET", URL, policy=RetryPolicy(2, 50), sleep=fake_sleep
        )

    assert excinfo.value.status_code == 503
    assert excinfo.value.retryable is True
    assert "unavailable" in excinfo.value.body_sample
    assert len(router.calls(PATH)) == 3
    assert sleeps == pytest.approx([0.05, 0.1])


def test_rate_limit_exhaustion_is_rate_limited_error(router, http_client, fake_sleep):
    router.add(PATH, 429)
    with pytest.raises(RateLimitedError):
        fetch_with_retry(http_client, "GET", URL, policy=RetryPolicy(1, 10), sleep=fake_sleep)
    assert len(router.calls(PATH)) == 2


@pytest.mark.parametrize("status", [401, 403])
def test_unauthorized_is_not_retried(router, http_client, sleeps, fake_sleep, status):
    router.add(PATH, status, b"denied")
    with pytest.raises(UnauthorizedError) as excinfo:
        fetch_with_retry(http_client, "GET", URL, policy=RetryPolicy(3, 10), sleep=fake_sleep)
    assert excinfo.value.status_code == status
    assert sleeps == []
    assert len(router.calls(PATH)) == 1


def test_not_found_is_terminal(router, http_client, fake_sleep):
    router.add(PATH, 404, b"missing")
    with pytest.raises(NotFoundError):
        fetch_with_retry(http_client, "GET", URL, policy=RetryPolicy(3, 10), sleep=fake_sleep)
    assert len(router.calls(PATH)) == 1


def test_body_sample_is_truncated(router, http_client, fake_sleep):
    router.add(PATH, 400, b"x" * 500)
    with pytest.raises(HttpStatusError) as excinfo:
        fetch_with_retry(http_client, "GET", URL, policy=RetryPolicy(0, 10), sleep=fake_sleep)
    sample = excinfo.value.body_sample
    assert sample.endswith("...")
    assert len(sample) == 203


def test_transport_failure_retried_then_wrapped(router, http_client, sleeps, fake_sleep):
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    router.add_handler(PATH, _refuse)

    with pytest.raises(TransportError) as excinfo:
        fetch_with_retry(http_client, "GET", URL, policy=RetryPolicy(2, 10), sleep=fake_sleep)

    assert excinfo.value.url == URL
    assert len(router.calls(PATH)) == 3
    assert len(sleeps) == 2


def test_request_rebuilt_with_body_each_attempt(router, http_client, fake_sleep):
    seen = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request.read())
        return httpx.Response(500 if len(seen) == 1 else 200, content=b"done")

    router.add_handler(PATH, _record)
    body = fetch_with_retry(
        http_client, "POST", URL, policy=RetryPolicy(2, 10), content=b"payload", sleep=fake_sleep
    )
    assert body == b"done"
    assert seen == [b"payload", b"payload"]


@pytest.mark.parametrize("max_retries, initial_delay_ms", [(1, 10), (3, 100), (4, 250)])
def test_exhausted_backoff_stays_within_total_wait_bound(
    router, http_client, sleeps, fake_sleep, max_retries, initial_delay_ms
):
    router.add(PATH, 502)
    policy = RetryPolicy(max_retries, initial_delay_ms)

    with pytest.raises(HttpStatusError):
        fetch_with_retry(http_client, "GET", URL, policy=policy, sleep=fake_sleep)

    assert len(sleeps) == max_retries
    assert sum(sleeps) == pytest.approx(policy.max_total_wait_s())
