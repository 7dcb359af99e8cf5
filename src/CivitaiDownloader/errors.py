# === NAVMAP v1 ===
# {
#   "module": "CivitaiDownloader.errors",
#   "purpose": "Exception hierarchy for catalog traversal, downloads and the entry store.",
#   "sections": [
#     {
#       "id": "civitaidownloadererror",
#       "name": "CivitaiDownloaderError",
#       "anchor": "class-civitaidownloadererror",
#       "kind": "class"
#     },
#     {
#       "id": "httpstatuserror",
#       "name": "HttpStatusError",
#       "anchor": "class-httpstatuserror",
#       "kind": "class"
#     },
#     {
#       "id": "truncate-body",
#       "name": "truncate_body",
#       "anchor": "function-truncate-body",
#       "kind": "function"
#     },
#     {
#       "id": "is-fatal-to-traversal",
#       "name": "is_fatal_to_traversal",
#       "anchor": "function-is-fatal-to-traversal",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared across the fetcher, paginator, workers and store.

The downloader spans HTTP retrieval, JSON decoding, filesystem installation and
a small key/value store. This module groups those failure modes so callers can
react to broad categories (a traversal-fatal ``UnauthorizedError`` versus a
per-job ``FilesystemError``) while still reaching the specific attributes each
kind carries, such as the HTTP status and a truncated response body.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

__all__ = [
    "BODY_SAMPLE_LIMIT",
    "HASH_MISMATCH_MESSAGE",
    "CivitaiDownloaderError",
    "ConfigError",
    "TransportError",
    "HttpStatusError",
    "UnauthorizedError",
    "RateLimitedError",
    "NotFoundError",
    "DecodeError",
    "FilesystemError",
    "HashMismatchError",
    "StoreError",
    "StoreGetError",
    "StorePutError",
    "KeyNotFoundError",
    "PathPatternError",
    "truncate_body",
    "is_fatal_to_traversal",
]

BODY_SAMPLE_LIMIT = 200

HASH_MISMATCH_MESSAGE = "downloaded file hash mismatch"


def truncate_body(body: Union[bytes, str, None], limit: int = BODY_SAMPLE_LIMIT) -> str:
    """Return at most ``limit`` characters of ``body`` followed by ``...`` when cut."""

    if body is None:
        return ""
    if isinstance(body, bytes):
        text = body.decode("utf-8", errors="replace")
    else:
        text = body
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class CivitaiDownloaderError(RuntimeError):
    """Base exception for every failure raised by this package."""


class ConfigError(CivitaiDownloaderError):
    """Raised when configuration files, environment or flags are invalid."""


class TransportError(CivitaiDownloaderError):
    """Raised when a request fails below HTTP (connect, DNS, TLS, read)."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class HttpStatusError(CivitaiDownloaderError):
    """Raised when the server answers with anything other than ``200``."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body_sample: str = "",
        url: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body_sample = body_sample
        self.url = url
        self.retryable = retryable

    def __str__(self) -> str:
        base = super().__str__()
        if self.body_sample:
            return f"{base} (status {self.status_code}, body: {self.body_sample})"
        return f"{base} (status {self.status_code})"


class UnauthorizedError(HttpStatusError):
    """Raised for 401/403 responses; fatal to the enclosing traversal."""


class RateLimitedError(HttpStatusError):
    """Raised when 429 responses persist after every retry was spent."""


class NotFoundError(HttpStatusError):
    """Raised for 404 responses."""


class DecodeError(CivitaiDownloaderError):
    """Raised when a response body cannot be decoded into the expected shape."""

    def __init__(self, message: str, *, body_sample: str = "") -> None:
        super().__init__(message)
        self.body_sample = body_sample


class FilesystemError(CivitaiDownloaderError):
    """Raised when creating, writing, renaming or removing files fails."""

    def __init__(self, message: str, *, path: Union[str, Path, None] = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class HashMismatchError(CivitaiDownloaderError):
    """Raised when a freshly installed file fails hash verification."""

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        super().__init__(HASH_MISMATCH_MESSAGE)
        self.path = Path(path) if path is not None else None


class StoreError(CivitaiDownloaderError):
    """Base class for key/value store failures."""

    def __init__(self, message: str, *, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key


class StoreGetError(StoreError):
    """Raised when reading a key fails for a reason other than absence."""


class StorePutError(StoreError):
    """Raised when writing or deleting a key fails."""


class KeyNotFoundError(StoreError):
    """Raised when a key is absent from the store."""


class PathPatternError(CivitaiDownloaderError):
    """Raised when a path pattern cannot be expanded into a safe relative path."""

    def __init__(self, message: str, *, pattern: str = "") -> None:
        super().__init__(message)
        self.pattern = pattern


def is_fatal_to_traversal(exc: BaseException) -> bool:
    """Return True when ``exc`` must abort catalog traversal instead of truncating it."""

    return isinstance(exc, (UnauthorizedError, RateLimitedError))
