"""HTTP client construction and the retryable fetcher."""

from .client import auth_headers, build_http_client
from .retry import (
    RetryPolicy,
    build_retrying,
    error_for_response,
    fetch_with_retry,
    is_retryable_exception,
    is_retryable_status,
)

__all__ = [
    "RetryPolicy",
    "auth_headers",
    "build_http_client",
    "build_retrying",
    "error_for_response",
    "fetch_with_retry",
    "is_retryable_exception",
    "is_retryable_status",
]
