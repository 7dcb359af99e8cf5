"""Tenacity retry policy and the retryable HTTP fetcher.

Provides:
- Retryability classification for statuses and httpx transport exceptions
- A doubling wait strategy (``initial * 2^(attempt-1)``)
- A Tenacity controller builder shared by API calls and file downloads
- ``fetch_with_retry``: one logical request returning the 200 body or a
  classified error carrying the status and a truncated body sample
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Union

import httpx
import tenacity
from tenacity import RetryCallState, retry_if_exception, retry_if_result

from ..errors import (
    HttpStatusError,
    NotFoundError,
    RateLimitedError,
    TransportError,
    UnauthorizedError,
    truncate_body,
)

__all__ = [
    "DEFAULT_INITIAL_DELAY_MS",
    "RetryPolicy",
    "is_retryable_status",
    "is_retryable_exception",
    "build_retrying",
    "error_for_response",
    "fetch_with_retry",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_INITIAL_DELAY_MS = 500

SleepFn = Callable[[float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff inputs.

    ``max_retries < 0`` is treated as 0 and ``initial_delay_ms <= 0`` as 500.
    """

    max_retries: int = 3
    initial_delay_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            object.__setattr__(self, "max_retries", 0)
        if self.initial_delay_ms <= 0:
            object.__setattr__(self, "initial_delay_ms", DEFAULT_INITIAL_DELAY_MS)

    @classmethod
    def from_config(cls, config: Any) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            initial_delay_ms=config.initial_retry_delay_ms,
        )

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    @property
    def initial_delay_s(self) -> float:
        return self.initial_delay_ms / 1000.0

    def max_total_wait_s(self) -> float:
        """Upper bound of all sleeps for one request: ``initial * (2^maxRetries - 1)``."""
        return self.initial_delay_s * ((2**self.max_retries) - 1)


def is_retryable_status(status: int) -> bool:
    """5xx, 408 and 429 are transient; everything else is final."""

    return status >= 500 or status in (408, 429)


def is_retryable_exception(exception: BaseException) -> bool:
    """Connection, DNS, TLS, timeout and read failures are retried."""

    if isinstance(exception, (httpx.LocalProtocolError, httpx.UnsupportedProtocol)):
        return False
    return isinstance(exception, httpx.TransportError)


def _result_predicate(value: Any) -> bool:
    status = getattr(value, "status_code", None)
    if status is None:
        return False
    return is_retryable_status(status)


class _WaitDoubling(tenacity.wait.wait_base):
    """Wait ``initial * 2^(attempt-1)`` seconds after the n-th failed attempt."""

    def __init__(self, initial_s: float) -> None:
        self.initial_s = initial_s

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.initial_s * (2 ** (retry_state.attempt_number - 1))


def _close_retried_response(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    if outcome is None or outcome.failed:
        return
    response = outcome.result()
    if isinstance(response, httpx.Response):
        response.close()


def _make_before_sleep_hook(label: str) -> Callable[[RetryCallState], None]:
    def _hook(retry_state: RetryCallState) -> None:
        _close_retried_response(retry_state)
        next_action = retry_state.next_action
        wait_ms = int(next_action.sleep * 1000) if next_action is not None else 0
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            reason = f"error={outcome.exception()!r}"
        elif outcome is not None:
            reason = f"status={getattr(outcome.result(), 'status_code', '?')}"
        else:
            reason = "unknown"
        LOGGER.warning(
            f"[{label}] retry attempt={retry_state.attempt_number} {reason} wait_ms={wait_ms}"
        )

    return _hook


def _last_outcome(retry_state: RetryCallState) -> Any:
    # Returns the final response, or re-raises the final exception.
    return retry_state.outcome.result()  # type: ignore[union-attr]


def build_retrying(
    policy: RetryPolicy,
    *,
    sleep: SleepFn = time.sleep,
    label: str = "http",
    before_sleep_hook: Optional[Callable[[RetryCallState], None]] = None,
) -> tenacity.Retrying:
    """Build a Tenacity Retrying controller for one logical request.

    Args:
        policy: Normalised retry policy
        sleep: Sleep function (tests inject a mock)
        label: Prefix used in retry log lines
        before_sleep_hook: Optional hook replacing the default logging hook

    Returns:
        Controller whose call returns the last response once attempts run out,
        or re-raises the last transport exception
    """
    if before_sleep_hook is None:
        before_sleep_hook = _make_before_sleep_hook(label)

    return tenacity.Retrying(
        retry=retry_if_exception(is_retryable_exception) | retry_if_result(_result_predicate),
        stop=tenacity.stop_after_attempt(policy.attempts),
        wait=_WaitDoubling(policy.initial_delay_s),
        sleep=sleep,
        before_sleep=before_sleep_hook,
        retry_error_callback=_last_outcome,
        reraise=True,
    )


def error_for_response(
    response: httpx.Response, *, url: str, body: Union[bytes, str, None] = None
) -> HttpStatusError:
    """Map a non-200 response onto the error taxonomy."""

    status = response.status_code
    sample = truncate_body(body)
    if status in (401, 403):
        return UnauthorizedError(
            f"unauthorized request to {url}", status_code=status, body_sample=sample, url=url
        )
    if status == 429:
        return RateLimitedError(
            f"rate limited by {url}",
            status_code=status,
            body_sample=sample,
            url=url,
            retryable=True,
        )
    if status == 404:
        return NotFoundError(
            f"resource not found: {url}", status_code=status, body_sample=sample, url=url
        )
    return HttpStatusError(
        f"unexpected HTTP status from {url}",
        status_code=status,
        body_sample=sample,
        url=url,
        retryable=is_retryable_status(status),
    )


def fetch_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    policy: RetryPolicy,
    params: Any = None,
    headers: Optional[Mapping[str, str]] = None,
    content: Union[bytes, str, Iterable[bytes], None] = None,
    sleep: SleepFn = time.sleep,
    label: str = "http",
) -> bytes:
    """Perform one logical request with bounded exponential backoff.

    The request is rebuilt for every attempt. ``bytes``/``str`` bodies are
    restartable; any other iterable body can only be consumed once, so a
    warning is logged and retries resend whatever remains.

    Returns:
        Body bytes of the ``200`` response

    Raises:
        TransportError: Transport failures persisted through every attempt
        UnauthorizedError: 401/403
        RateLimitedError: 429 on exhaustion
        NotFoundError: 404
        HttpStatusError: Any other non-200 status
    """
    if content is not None and not isinstance(content, (bytes, str)):
        LOGGER.warning(f"[{label}] request body for {url} is not restartable; retries are best-effort")

    def _attempt() -> httpx.Response:
        request = client.build_request(method, url, params=params, headers=headers, content=content)
        response = client.send(request)
        response.read()
        return response

    retrying = build_retrying(policy, sleep=sleep, label=label)
    try:
        response = retrying(_attempt)
    except httpx.HTTPError as exc:
        raise TransportError(f"{method} {url} failed: {exc}", url=url) from exc

    if response.status_code == 200:
        return response.content

    raise error_for_response(response, url=str(response.request.url), body=response.content)
