"""Store maintenance commands: ``db view``, ``db verify``, ``db redownload`` and ``delete``.

Each command is a plain function over a :class:`~CivitaiDownloader.store.KVStore`
and a rich :class:`~rich.console.Console`; interactive prompts are injected as
callables so the CLI layer owns stdin.
"""

from .delete import DeleteCriteria, DeleteStats, delete_entries, find_entries, parse_selection
from .redownload import RedownloadOutcome, redownload_entry, redownload_version
from .verify import VerifyProblem, VerifyStats, verify_entries
from .view import build_entries_table, view_entries

__all__ = [
    "DeleteCriteria",
    "DeleteStats",
    "RedownloadOutcome",
    "VerifyProblem",
    "VerifyStats",
    "build_entries_table",
    "delete_entries",
    "find_entries",
    "parse_selection",
    "redownload_entry",
    "redownload_version",
    "verify_entries",
    "view_entries",
]
