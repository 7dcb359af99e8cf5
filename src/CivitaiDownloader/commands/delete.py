# === NAVMAP v1 ===
# {
#   "module": "CivitaiDownloader.commands.delete",
#   "purpose": "Select stored entries and remove them from the store and disk",
#   "sections": [
#     {"id": "selection", "name": "Selection", "anchor": "SEL", "kind": "functions"},
#     {"id": "display", "name": "Display", "anchor": "DSP", "kind": "functions"},
#     {"id": "removal", "name": "Removal", "anchor": "RMV", "kind": "functions"}
#   ]
# }
# === /NAVMAP ===

"""``delete``: remove downloaded versions by model id, version id, creator or name search.

Selection is the union of every given criterion. For ``Downloaded`` entries
the file and the folder's ``images/`` directory are removed, then empty
parent directories are pruned up to (never including) the save root. The
store key is deleted for every selected entry, unless the run is a dry run.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Tuple

from rich.console import Console
from rich.table import Table

from ..errors import StoreError
from ..models import EntryStatus, PersistentEntry
from ..orchestrator.sidecars import IMAGES_DIRNAME
from ..pipeline import format_total_size
from ..store import KVStore, iter_entries
from .redownload import expected_path

__all__ = [
    "DeleteCriteria",
    "DeleteStats",
    "cleanup_empty_dirs",
    "delete_entries",
    "entries_table",
    "estimated_size",
    "find_entries",
    "parse_selection",
    "print_plan",
    "truncate",
]

logger = logging.getLogger(__name__)

Selected = Tuple[str, PersistentEntry]


@dataclass
class DeleteCriteria:
    model_ids: List[int] = field(default_factory=list)
    version_ids: List[int] = field(default_factory=list)
    username: str = ""
    search: str = ""

    def is_empty(self) -> bool:
        return not (self.model_ids or self.version_ids or self.username or self.search)

    def matches(self, entry: PersistentEntry) -> bool:
        if entry.model_id in self.model_ids:
            return True
        if entry.version_id in self.version_ids:
            return True
        if self.username and entry.creator.username.lower() == self.username.lower():
            return True
        if self.search and self.search.lower() in entry.model_name.lower():
            return True
        return False


@dataclass
class DeleteStats:
    deleted: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


# ============================================================================
# SELECTION (SEL)
# ============================================================================


def find_entries(store: KVStore, criteria: DeleteCriteria) -> List[Selected]:
    """Entries matching any criterion, sorted by model name then version name."""

    selected: List[Selected] = []
    for key, entry in iter_entries(store):
        if entry is not None and criteria.matches(entry):
            selected.append((key, entry))
    selected.sort(key=lambda item: (item[1].model_name, item[1].version.name))
    return selected


def parse_selection(text: str, count: int) -> List[int]:
    """
    Parse an interactive selection into sorted zero-based indices.

    Accepts ``all``, comma-separated numbers and inclusive ``a-b`` ranges,
    all one-based. Out-of-range numbers and malformed parts are ignored.

    >>> parse_selection("1,3-4,9", 5)
    [0, 2, 3]
    """
    text = text.strip().lower()
    if text == "all":
        return list(range(count))

    chosen = set()
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            bounds = part.split("-")
            if len(bounds) != 2:
                continue
            try:
                start, end = int(bounds[0].strip()), int(bounds[1].strip())
            except ValueError:
                continue
            if 1 <= start <= end <= count:
                chosen.update(range(start - 1, end))
            continue
        try:
            number = int(part)
        except ValueError:
            continue
        if 1 <= number <= count:
            chosen.add(number - 1)
    return sorted(chosen)


# ============================================================================
# DISPLAY (DSP)
# ============================================================================


def truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    if limit <= 3:
        return value[:limit]
    return value[: limit - 3] + "..."


def entries_table(entries: Sequence[Selected], *, title: str, numbered: bool = False) -> Table:
    table = Table(title=title)
    if numbered:
        table.add_column("#", justify="right")
    table.add_column("Model Name", style="cyan")
    table.add_column("Version")
    table.add_column("Creator")
    table.add_column("Type")
    table.add_column("Status")
    if not numbered:
        table.add_column("Folder")
    table.add_column("Version ID", justify="right")

    for index, (_, entry) in enumerate(entries, start=1):
        cells = [
            truncate(entry.model_name, 30),
            truncate(entry.version.name, 15),
            truncate(entry.creator.username, 15),
            entry.model_type,
            entry.status.value,
        ]
        if numbered:
            cells.insert(0, str(index))
        else:
            cells.append(truncate(entry.folder, 30))
        cells.append(str(entry.version_id))
        table.add_row(*cells)
    return table


def estimated_size(entries: Sequence[Selected]) -> int:
    return sum(entry.file.size_bytes for _, entry in entries)


# ============================================================================
# REMOVAL (RMV)
# ============================================================================


def cleanup_empty_dirs(directory: Path, stop_at: Path) -> None:
    """Remove ``directory`` and its empty ancestors, stopping at ``stop_at``."""

    stop = os.path.abspath(stop_at)
    current = os.path.abspath(directory)
    while current != stop and current.startswith(stop + os.sep):
        try:
            if any(os.scandir(current)):
                return
            os.rmdir(current)
        except OSError as exc:
            logger.debug(f"Stopped pruning at {current}: {exc}")
            return
        logger.debug(f"Removed empty directory {current}")
        current = os.path.dirname(current)


def _remove_files(entry: PersistentEntry, save_root: Path, stats: DeleteStats) -> None:
    path = expected_path(save_root, entry)
    if path.is_file():
        try:
            path.unlink()
            logger.info(f"Deleted file {path}")
        except OSError as exc:
            stats.errors.append(f"failed to delete file {path}: {exc}")
    else:
        logger.warning(f"File already missing: {path}")
        stats.skipped += 1

    images_dir = path.parent / IMAGES_DIRNAME
    if images_dir.is_dir():
        try:
            shutil.rmtree(images_dir)
            logger.debug(f"Removed images directory {images_dir}")
        except OSError as exc:
            logger.warning(f"Failed to remove images directory {images_dir}: {exc}")

    cleanup_empty_dirs(path.parent, save_root)


def delete_entries(
    store: KVStore,
    entries: Sequence[Selected],
    save_root: Path,
    *,
    keep_files: bool = False,
) -> DeleteStats:
    """
    Delete ``entries`` from the store and (unless ``keep_files``) from disk.

    Args:
        store: Entry store
        entries: ``(key, entry)`` pairs from :func:`find_entries`
        save_root: Root the entry folders are relative to
        keep_files: Only remove store keys

    Returns:
        DeleteStats; ``skipped`` counts entries with no file to remove
    """
    stats = DeleteStats()
    for key, entry in entries:
        if not keep_files:
            if entry.status == EntryStatus.DOWNLOADED:
                _remove_files(entry, save_root, stats)
            else:
                stats.skipped += 1
        try:
            store.delete(key)
        except StoreError as exc:
            stats.errors.append(f"failed to delete entry {key}: {exc}")
            continue
        stats.deleted += 1
        logger.debug(f"Deleted entry {key} ({entry.model_name} - {entry.version.name})")
    return stats


def print_plan(console: Console, entries: Sequence[Selected]) -> None:
    """Show the deletion table and the estimated disk space."""

    console.print(entries_table(entries, title=f"Entries to be deleted ({len(entries)} total)"))
    total = estimated_size(entries)
    if total > 0:
        console.print(f"Estimated disk space: {format_total_size(total)}")
