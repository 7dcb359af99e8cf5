"""Re-fetch a stored entry's file to its recorded location.

Used by ``db redownload <versionId>`` and by the redownload phase of
``db verify``. The entry is updated after every attempt: ``Downloaded`` with
the installed filename on success, ``Error`` with the failure text otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..downloader import FileDownloader
from ..errors import CivitaiDownloaderError, StoreError
from ..models import PersistentEntry
from ..orchestrator.workers import DIR_MODE
from ..store import KVStore, entry_key, load_entry, save_entry

__all__ = ["RedownloadOutcome", "expected_path", "redownload_entry", "redownload_version"]

logger = logging.getLogger(__name__)


@dataclass
class RedownloadOutcome:
    key: str
    ok: bool
    final_path: Optional[Path] = None
    error: str = ""


def expected_path(save_root: Path, entry: PersistentEntry) -> Path:
    """Where ``entry`` says its file lives."""

    return Path(save_root) / entry.folder / entry.filename


def _record(store: KVStore, key: str, entry: PersistentEntry) -> None:
    try:
        save_entry(store, key, entry)
    except StoreError as exc:
        logger.error(f"Failed to update {key} after redownload attempt: {exc}")


def redownload_entry(
    store: KVStore,
    key: str,
    entry: PersistentEntry,
    downloader: FileDownloader,
    save_root: Path,
) -> RedownloadOutcome:
    """
    Download ``entry.file`` to its stored path and record the outcome.

    Args:
        store: Entry store updated with the result
        key: Store key of ``entry``
        entry: Entry to refresh; mutated in place
        downloader: Shared downloader
        save_root: Root the entry folder is relative to

    Returns:
        RedownloadOutcome; failures never raise
    """
    target = expected_path(save_root, entry)
    url = entry.file.download_url
    logger.info(f"Attempting redownload: {url} -> {target}")

    if not url:
        message = "entry has no download URL"
        entry.mark_error(message)
        _record(store, key, entry)
        return RedownloadOutcome(key=key, ok=False, error=message)

    try:
        target.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    except OSError as exc:
        message = f"cannot create directory {target.parent}: {exc}"
        logger.error(message)
        entry.mark_error(message)
        _record(store, key, entry)
        return RedownloadOutcome(key=key, ok=False, error=message)

    try:
        final_path = downloader.download_file(target, url, entry.file.hashes, entry.version_id)
    except (CivitaiDownloaderError, OSError) as exc:
        logger.error(f"Redownload failed for {target}: {exc}")
        entry.mark_error(str(exc))
        _record(store, key, entry)
        return RedownloadOutcome(key=key, ok=False, error=str(exc))

    entry.mark_downloaded()
    entry.filename = final_path.name
    _record(store, key, entry)
    logger.info(f"Redownload successful: {final_path}")
    return RedownloadOutcome(key=key, ok=True, final_path=final_path)


def redownload_version(
    store: KVStore,
    version_id: int,
    downloader: FileDownloader,
    save_root: Path,
) -> RedownloadOutcome:
    """Look up ``v_<version_id>`` and redownload it.

    Raises:
        KeyNotFoundError: No entry for ``version_id``
        StoreGetError: The entry cannot be read
    """
    key = entry_key(version_id)
    entry = load_entry(store, key)
    return redownload_entry(store, key, entry, downloader, save_root)
