"""
HTTPX client factory for the catalog API and file downloads.

One ``httpx.Client`` is shared by the paginator, every worker and the image
downloader; its connection pool is thread-safe. The factory:
- applies the configured timeout and a browser-like User-Agent
- follows redirects (download URLs bounce to a CDN)
- optionally attaches request/response event hooks that trace each exchange
  to the ``CivitaiDownloader.api_trace`` logger (``--log-api``)
- accepts an explicit transport so tests can plug in ``httpx.MockTransport``
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

import httpx

from ..config.models import DownloaderConfig
from ..logging_utils import API_TRACE_LOGGER, mask_sensitive_data

__all__ = ["build_http_client", "auth_headers"]

logger = logging.getLogger(__name__)
trace_logger = logging.getLogger(API_TRACE_LOGGER)


def auth_headers(api_key: str) -> Dict[str, str]:
    """Return the ``Authorization`` header for ``api_key`` (empty when unset)."""

    if api_key:
        return {"Authorization": f"Bearer {api_key}"}
    return {}


def build_http_client(
    config: DownloaderConfig,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """
    Build the shared HTTPX client from ``config``.

    Args:
        config: Resolved downloader configuration
        transport: Optional transport override (tests use ``httpx.MockTransport``)

    Returns:
        Configured ``httpx.Client``; the caller owns closing it
    """
    timeout_s = float(config.api_client_timeout_sec) if config.api_client_timeout_sec > 0 else None
    timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, 30.0) if timeout_s else 30.0)

    client_kwargs: Dict[str, Any] = {
        "timeout": timeout,
        "follow_redirects": True,
        "headers": {
            "User-Agent": config.user_agent,
            "Accept": "*/*",
        },
    }
    if transport is not None:
        client_kwargs["transport"] = transport

    client = httpx.Client(**client_kwargs)

    if config.log_api_requests:
        client.event_hooks["request"] = [_on_request]
        client.event_hooks["response"] = [_on_response]

    logger.debug(
        f"HTTPX client created: timeout={timeout_s}s trace={config.log_api_requests}"
    )
    return client


def _on_request(request: httpx.Request) -> None:
    """Hook: stamp the request and trace it."""
    request.extensions["t0_perf"] = time.perf_counter()
    request.extensions["request_id"] = os.urandom(6).hex()
    trace_logger.debug(
        "request",
        extra={
            "extra_fields": mask_sensitive_data(
                {
                    "event": "request",
                    "request_id": request.extensions["request_id"],
                    "method": request.method,
                    "url": str(request.url),
                    "headers": {k: v for k, v in request.headers.items()},
                }
            )
        },
    )


def _on_response(response: httpx.Response) -> None:
    """Hook: trace status, latency and headers (bodies may be streamed, never read here)."""
    req = response.request
    t0 = req.extensions.get("t0_perf", time.perf_counter())
    elapsed_ms = (time.perf_counter() - t0) * 1000.0
    trace_logger.debug(
        "response",
        extra={
            "extra_fields": mask_sensitive_data(
                {
                    "event": "response",
                    "request_id": req.extensions.get("request_id"),
                    "method": req.method,
                    "url": str(req.url),
                    "status": response.status_code,
                    "elapsed_ms": round(elapsed_ms, 1),
                    "headers": {k: v for k, v in response.headers.items()},
                }
            )
        },
    )
