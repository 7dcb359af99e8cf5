"""
``db verify``: compare stored entries against the files on disk.

Scan phase, per ``v_*`` entry:

1. Expect the file at ``save_root/folder/filename``
2. Missing file, or (with hash checking) a file that fails verification, is
   a problem; a ``Downloaded`` entry with a problem is rewritten as ``Error``
3. A healthy file missing its metadata sidecar gets one regenerated when
   ``save_metadata`` is enabled

Redownload phase: each problem is offered for redownload, automatically with
``auto_redownload`` and otherwise through the injected prompt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from rich.console import Console
from rich.table import Table

from ..config.models import DownloaderConfig
from ..downloader import FileDownloader
from ..errors import CivitaiDownloaderError, StoreError
from ..hashing import check_hash
from ..models import EntryStatus, PersistentEntry
from ..orchestrator.sidecars import metadata_path_for, save_version_metadata
from ..store import KVStore, iter_entries, save_entry
from .redownload import expected_path, redownload_entry

__all__ = ["REASON_MISSING", "REASON_MISMATCH", "VerifyProblem", "VerifyStats", "verify_entries"]

logger = logging.getLogger(__name__)

REASON_MISSING = "Missing"
REASON_MISMATCH = "Hash Mismatch"

PromptFn = Callable[[str], bool]


@dataclass
class VerifyProblem:
    key: str
    entry: PersistentEntry
    reason: str


@dataclass
class VerifyStats:
    """Scan and redownload counters for one verify run."""

    total: int = 0
    ok: int = 0
    missing: int = 0
    mismatch: int = 0
    unreadable: int = 0
    metadata_regenerated: int = 0
    redownload_attempts: int = 0
    redownload_succeeded: int = 0
    redownload_failed: int = 0


def _check_file(path: Path, entry: PersistentEntry, check_hashes: bool) -> str:
    """Return ``""`` for a healthy file, else the problem reason."""

    if not path.is_file():
        logger.error(f"[MISSING] {path} (status {entry.status.value})")
        return REASON_MISSING
    if check_hashes and not check_hash(path, entry.file.hashes):
        logger.warning(f"[MISMATCH] {path} (status {entry.status.value})")
        return REASON_MISMATCH
    logger.info(f"[OK] {path}")
    return ""


def _ensure_metadata(path: Path, entry: PersistentEntry) -> bool:
    if metadata_path_for(path).exists():
        return False
    try:
        save_version_metadata(path, entry.version)
    except CivitaiDownloaderError as exc:
        logger.error(f"Failed to regenerate metadata for {path}: {exc}")
        return False
    logger.warning(f"[METADATA CREATED] {metadata_path_for(path)}")
    return True


def _demote(store: KVStore, key: str, entry: PersistentEntry, reason: str) -> None:
    entry.mark_error(f"verify: {reason.lower()}")
    try:
        save_entry(store, key, entry)
    except StoreError as exc:
        logger.error(f"Failed to mark {key} as Error: {exc}")


def _scan(
    store: KVStore, config: DownloaderConfig, check_hashes: bool, stats: VerifyStats
) -> List[VerifyProblem]:
    save_root = Path(config.save_path)
    problems: List[VerifyProblem] = []

    for key, entry in iter_entries(store):
        stats.total += 1
        if entry is None:
            stats.unreadable += 1
            continue

        path = expected_path(save_root, entry)
        reason = _check_file(path, entry, check_hashes)
        if not reason:
            stats.ok += 1
            if config.download.save_metadata and _ensure_metadata(path, entry):
                stats.metadata_regenerated += 1
            continue

        if reason == REASON_MISSING:
            stats.missing += 1
        else:
            stats.mismatch += 1
        if entry.status == EntryStatus.DOWNLOADED:
            _demote(store, key, entry, reason)
        problems.append(VerifyProblem(key=key, entry=entry, reason=reason))

    return problems


def _summary_table(stats: VerifyStats) -> Table:
    table = Table(title="Verification summary")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    table.add_row("Total entries", str(stats.total))
    table.add_row("OK", str(stats.ok))
    table.add_row("Missing", str(stats.missing))
    table.add_row("Hash mismatch", str(stats.mismatch))
    if stats.unreadable:
        table.add_row("Unreadable", str(stats.unreadable))
    if stats.metadata_regenerated:
        table.add_row("Metadata regenerated", str(stats.metadata_regenerated))
    return table


def verify_entries(
    store: KVStore,
    config: DownloaderConfig,
    *,
    downloader: Optional[FileDownloader],
    console: Console,
    check_hashes: Optional[bool] = None,
    auto_redownload: Optional[bool] = None,
    prompt: Optional[PromptFn] = None,
) -> VerifyStats:
    """
    Verify every stored entry and offer problems for redownload.

    Args:
        store: Entry store
        config: Resolved configuration (save root, ``db.verify`` defaults)
        downloader: Used for redownloads; ``None`` disables that phase
        console: Output for the summaries
        check_hashes: Overrides ``db.verify.check_hash``
        auto_redownload: Overrides ``db.verify.auto_redownload``
        prompt: Asked per problem when not automatic; ``None`` declines

    Returns:
        VerifyStats
    """
    verify_settings = config.db.verify
    if check_hashes is None:
        check_hashes = verify_settings.check_hash
    if auto_redownload is None:
        auto_redownload = verify_settings.auto_redownload

    stats = VerifyStats()
    logger.info("Scanning database entries...")
    problems = _scan(store, config, check_hashes, stats)
    console.print(_summary_table(stats))
    logger.info(
        f"Initial scan: total={stats.total} ok={stats.ok} "
        f"missing={stats.missing} mismatch={stats.mismatch}"
    )

    if not problems:
        console.print("[green]All files verified.[/green]")
        return stats

    console.print(f"Found {len(problems)} file(s) that are missing or have hash mismatches.")
    if downloader is None:
        return stats

    save_root = Path(config.save_path)
    for problem in problems:
        entry = problem.entry
        if auto_redownload:
            logger.info(f"Auto-redownloading {entry.filename} ({entry.folder})")
            wanted = True
        else:
            question = (
                f"File '{entry.filename}' ({entry.folder}) - {problem.reason}. Redownload? (y/N)"
            )
            wanted = prompt(question) if prompt is not None else False
        if not wanted:
            logger.info(f"Skipping redownload for {entry.filename} ({entry.folder})")
            continue

        stats.redownload_attempts += 1
        outcome = redownload_entry(store, problem.key, entry, downloader, save_root)
        if outcome.ok:
            stats.redownload_succeeded += 1
        else:
            stats.redownload_failed += 1

    if stats.redownload_attempts:
        console.print(
            f"Redownload: attempts={stats.redownload_attempts} "
            f"succeeded={stats.redownload_succeeded} failed={stats.redownload_failed}"
        )
    return stats
