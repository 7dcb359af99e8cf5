# === NAVMAP v1 ===
# {
#   "module": "CivitaiDownloader.downloader",
#   "purpose": "Atomic file download with extension-tolerant skip, MIME correction and hash verification.",
#   "sections": [
#     {
#       "id": "parse-content-disposition",
#       "name": "parse_content_disposition",
#       "anchor": "function-parse-content-disposition",
#       "kind": "function"
#     },
#     {
#       "id": "find-existing-file",
#       "name": "find_existing_file",
#       "anchor": "function-find-existing-file",
#       "kind": "function"
#     },
#     {
#       "id": "filedownloader",
#       "name": "FileDownloader",
#       "anchor": "class-filedownloader",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Download finalizer for model files and preview images.

Provides one operation, :meth:`FileDownloader.download_file`, which:
- skips the download when a file with the same base name already exists
  (and, when hashes are declared, has the same extension and verifies)
- streams the body to ``<basename>.<random>.tmp`` in the target directory
- renames the result after the ``Content-Disposition`` filename, prefixed
  with ``<versionId>_``
- corrects the extension from the first 512 bytes of content
- installs with ``os.replace`` and syncs the directory
- verifies declared hashes, deleting the installed file on mismatch

The temp file is removed on every failure path, so a failed call never leaves
a file under the final name.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import unquote

import httpx

from .errors import FilesystemError, HashMismatchError, TransportError
from .hashing import check_hash
from .models import Hashes
from .net.client import auth_headers
from .net.retry import RetryPolicy, build_retrying, error_for_response
from .paths import bytes_to_size
from .sniff import SNIFF_BYTES, sniff_extension

__all__ = [
    "FileDownloader",
    "parse_content_disposition",
    "construct_final_path",
    "find_existing_file",
]

logger = logging.getLogger(__name__)

_CD_EXTENDED_RE = re.compile(r"filename\*\s*=\s*(?:UTF-8'[^']*'|)([^;]+)", re.IGNORECASE)
_CD_QUOTED_RE = re.compile(r'filename\s*=\s*"([^"]+)"', re.IGNORECASE)
_CD_BARE_RE = re.compile(r"filename\s*=\s*([^;]+)", re.IGNORECASE)


def parse_content_disposition(header: Optional[str]) -> str:
    """
    Extract a filename from a ``Content-Disposition`` header.

    Supports ``filename*=UTF-8''...`` (percent-decoded), quoted and bare
    ``filename=`` forms. Directory components are stripped.

    Returns:
        The filename, or ``""`` when the header carries none
    """
    if not header:
        return ""
    name = ""
    match = _CD_EXTENDED_RE.search(header)
    if match:
        name = unquote(match.group(1).strip().strip('"'))
    else:
        match = _CD_QUOTED_RE.search(header) or _CD_BARE_RE.search(header)
        if match:
            name = match.group(1).strip().strip('"')
    name = name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if name in (".", ".."):
        return ""
    return name


def construct_final_path(target: Path, header_filename: str, version_id: int) -> Path:
    """Apply the server filename and the ``<versionId>_`` prefix to ``target``."""

    base = header_filename or target.name
    if version_id > 0:
        prefix = f"{version_id}_"
        if not base.startswith(prefix):
            base = prefix + base
    return target.parent / base


def find_existing_file(target: Path, hashes: Hashes) -> Optional[Path]:
    """
    Look for an installed copy of ``target`` in its directory.

    Base names are compared case-insensitively, ignoring the extension. With
    declared hashes a candidate must also share the extension and verify;
    without hashes a base-name match is enough.

    Raises:
        FilesystemError: The directory exists but cannot be listed
    """
    directory = target.parent
    wanted_base = target.stem.lower()
    wanted_ext = target.suffix.lower()
    try:
        entries = sorted(directory.iterdir())
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise FilesystemError(f"cannot list {directory}: {exc}", path=directory) from exc

    hashed = hashes.has_any()
    for entry in entries:
        if not entry.is_file() or entry.name.endswith(".tmp"):
            continue
        if entry.stem.lower() != wanted_base:
            continue
        if not hashed:
            logger.debug(f"Existing file matches by base name: {entry}")
            return entry
        if entry.suffix.lower() != wanted_ext:
            continue
        if check_hash(entry, hashes):
            logger.debug(f"Existing file verified: {entry}")
            return entry
        logger.debug(f"Existing file fails hash check: {entry}")
    return None


def _fsync_directory(directory: Path) -> None:
    try:
        dir_fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


class FileDownloader:
    """Stream files over the shared client into their final location."""

    def __init__(
        self,
        http_client: httpx.Client,
        api_key: str = "",
        *,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        chunk_size: int = 1024 * 1024,
    ) -> None:
        self._client = http_client
        self._headers = auth_headers(api_key)
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._chunk_size = chunk_size

    def _open(self, url: str) -> httpx.Response:
        def _attempt() -> httpx.Response:
            request = self._client.build_request("GET", url, headers=self._headers)
            return self._client.send(request, stream=True)

        retrying = build_retrying(self._policy, sleep=self._sleep, label="download")
        try:
            response = retrying(_attempt)
        except httpx.HTTPError as exc:
            raise TransportError(f"download request for {url} failed: {exc}", url=url) from exc

        if response.status_code != 200:
            try:
                body = response.read()
            except httpx.HTTPError:
                body = b""
            finally:
                response.close()
            raise error_for_response(response, url=url, body=body)
        return response

    def download_file(
        self,
        target_path: Union[str, Path],
        url: str,
        hashes: Optional[Hashes] = None,
        version_id: int = 0,
    ) -> Path:
        """
        Download ``url`` to (a possibly renamed) ``target_path``.

        Args:
            target_path: Intended destination; the directory is created
            url: Source URL
            hashes: Declared hashes; empty for images
            version_id: Prefix applied to the final basename when positive

        Returns:
            Path of the installed (or already present) file

        Raises:
            TransportError: Transport failure after retries
            HttpStatusError: Non-200 response
            FilesystemError: Directory, temp file, write or rename failure
            HashMismatchError: The installed file failed verification
        """
        target = Path(target_path)
        expected = hashes or Hashes()

        existing = find_existing_file(target, expected)
        if existing is not None:
            logger.info(f"Found existing file {existing}; skipping download")
            return existing

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"cannot create {target.parent}: {exc}", path=target.parent) from exc

        logger.info(f"Downloading {url}")
        response = self._open(url)
        temp_path: Optional[Path] = None
        try:
            header_name = parse_content_disposition(response.headers.get("Content-Disposition"))
            final_path = construct_final_path(target, header_name, version_id)

            if final_path != target:
                existing = find_existing_file(final_path, expected)
                if existing is not None:
                    logger.info(f"Found existing file {existing}; skipping download")
                    return existing

            temp_path = self._stream_to_temp(response, final_path)
            final_path = self._corrected_path(temp_path, final_path)

            try:
                os.replace(temp_path, final_path)
            except OSError as exc:
                raise FilesystemError(
                    f"cannot rename {temp_path} to {final_path}: {exc}", path=final_path
                ) from exc
            temp_path = None
            _fsync_directory(final_path.parent)
        except BaseException:
            if temp_path is not None:
                try:
                    temp_path.unlink(missing_ok=True)
                except OSError as cleanup_exc:
                    logger.warning(f"Failed to remove temp file {temp_path}: {cleanup_exc}")
            raise
        finally:
            response.close()

        if expected.has_any() and not check_hash(final_path, expected):
            logger.error(f"Hash mismatch for {final_path}; removing it")
            try:
                final_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning(f"Failed to remove mismatched file {final_path}: {exc}")
            raise HashMismatchError(final_path)

        logger.info(f"Installed {final_path}")
        return final_path

    def _stream_to_temp(self, response: httpx.Response, final_path: Path) -> Path:
        try:
            handle = tempfile.NamedTemporaryFile(
                dir=final_path.parent, prefix=f"{final_path.name}.", suffix=".tmp", delete=False
            )
        except OSError as exc:
            raise FilesystemError(f"cannot create temp file in {final_path.parent}: {exc}", path=final_path) from exc

        temp_path = Path(handle.name)
        written = 0
        try:
            with handle:
                for chunk in response.iter_bytes(chunk_size=self._chunk_size):
                    if chunk:
                        handle.write(chunk)
                        written += len(chunk)
                handle.flush()
                os.fsync(handle.fileno())
        except httpx.HTTPError as exc:
            temp_path.unlink(missing_ok=True)
            raise TransportError(f"reading body for {final_path.name} failed: {exc}", url=str(response.url)) from exc
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise FilesystemError(f"cannot write {temp_path}: {exc}", path=temp_path) from exc

        logger.debug(f"Wrote {bytes_to_size(written)} to {temp_path}")
        return temp_path

    @staticmethod
    def _corrected_path(temp_path: Path, final_path: Path) -> Path:
        try:
            with temp_path.open("rb") as stream:
                head = stream.read(SNIFF_BYTES)
        except OSError as exc:
            raise FilesystemError(f"cannot read {temp_path}: {exc}", path=temp_path) from exc

        detected = sniff_extension(head)
        if detected is None or detected.lower() == final_path.suffix.lower():
            return final_path
        if detected == ".jpg" and final_path.suffix.lower() == ".jpeg":
            return final_path
        corrected = final_path.with_name(final_path.stem + detected)
        logger.info(f"Content is {detected}; saving as {corrected.name}")
        return corrected
