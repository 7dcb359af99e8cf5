"""``db view``: tabulate every stored version entry."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

from rich.console import Console
from rich.table import Table

from ..models import EntryStatus, PersistentEntry
from ..store import KVStore, iter_entries

__all__ = ["build_entries_table", "view_entries"]

logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    EntryStatus.DOWNLOADED: "green",
    EntryStatus.PENDING: "yellow",
    EntryStatus.ERROR: "red",
}


def build_entries_table(rows: Iterable[Tuple[str, Optional[PersistentEntry]]]) -> Table:
    """Build the ``db view`` table; unreadable entries get a placeholder row."""

    table = Table(title="Stored entries")
    table.add_column("Model Name", style="cyan")
    table.add_column("Version Name")
    table.add_column("Filename")
    table.add_column("Folder")
    table.add_column("Type")
    table.add_column("Base Model")
    table.add_column("Creator")
    table.add_column("Status")
    table.add_column("Version ID", justify="right")

    for key, entry in rows:
        if entry is None:
            table.add_row("[red]<unreadable>[/red]", "", "", "", "", "", "", "", key)
            continue
        style = _STATUS_STYLES.get(entry.status, "")
        table.add_row(
            entry.model_name,
            entry.version.name,
            entry.filename,
            entry.folder,
            entry.model_type,
            entry.version.base_model,
            entry.creator.username,
            f"[{style}]{entry.status.value}[/{style}]" if style else entry.status.value,
            str(entry.version_id),
        )
    return table


def view_entries(store: KVStore, console: Console) -> int:
    """Print all ``v_*`` entries; return how many were listed."""

    rows = list(iter_entries(store))
    if not rows:
        console.print("No entries in the database.")
        return 0
    console.print(build_entries_table(rows))
    console.print(f"Total entries: {len(rows)}")
    logger.debug(f"Listed {len(rows)} entries")
    return len(rows)
