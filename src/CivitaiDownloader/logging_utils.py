"""Structured logging helpers shared across the downloader components."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

__all__ = [
    "API_TRACE_LOGGER",
    "JSONFormatter",
    "mask_sensitive_data",
    "resolve_level",
    "setup_logging",
    "setup_api_trace",
]

ROOT_LOGGER = "CivitaiDownloader"
API_TRACE_LOGGER = "CivitaiDownloader.api_trace"

_SENSITIVE_KEYS = {"authorization", "api_key", "apikey", "token", "cookie", "password"}

_LEVEL_ALIASES = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
}


def resolve_level(level: Union[str, int]) -> int:
    """Map a level name (including ``trace``/``warn``/``fatal``) to a logging constant."""

    if isinstance(level, int):
        return level
    return _LEVEL_ALIASES.get(level.strip().lower(), logging.INFO)


def mask_sensitive_data(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``payload`` with secret-looking fields masked."""

    def _mask(value: Any, key_hint: Optional[str] = None) -> Any:
        if isinstance(value, dict):
            return {k: _mask(v, str(k).lower()) for k, v in value.items()}
        if isinstance(value, list):
            return [_mask(item, key_hint) for item in value]
        if key_hint in _SENSITIVE_KEYS and value:
            return "***masked***"
        if isinstance(value, str) and value.lower().startswith("bearer "):
            return "Bearer ***masked***"
        return value

    return _mask(payload)


class JSONFormatter(logging.Formatter):
    """Formatter emitting masked JSON log entries."""

    def format(self, record: logging.LogRecord) -> str:
        """Render ``record`` as a JSON string."""

        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            payload.update(record.extra_fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str)


def _drop_managed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, "_civitai_managed", False):
            logger.removeHandler(handler)
            stream = getattr(handler, "stream", None)
            if stream not in (sys.stdout, sys.stderr):
                handler.close()


def setup_logging(
    *,
    level: Union[str, int] = "info",
    fmt: str = "text",
    stream: Any = None,
    propagate: bool = False,
) -> logging.Logger:
    """Configure the package logger with one managed console handler.

    Calling it again replaces the previously installed handler, so CLI
    invocations in the same process (tests) do not stack output.
    """

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolve_level(level))
    _drop_managed_handlers(logger)

    handler = logging.StreamHandler(stream or sys.stderr)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    handler._civitai_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    logger.propagate = propagate
    return logger


def setup_api_trace(path: Union[str, Path]) -> logging.Logger:
    """Route HTTP request/response traces to ``path`` (one JSON object per line)."""

    trace_logger = logging.getLogger(API_TRACE_LOGGER)
    trace_logger.setLevel(logging.DEBUG)
    _drop_managed_handlers(trace_logger)

    target = Path(path)
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(target, encoding="utf-8")
    handler.setFormatter(JSONFormatter())
    handler._civitai_managed = True  # type: ignore[attr-defined]
    trace_logger.addHandler(handler)
    trace_logger.propagate = False
    return trace_logger
