"""
Store reconciliation: decide skip, enqueue-new or re-enqueue per candidate.

Every emitted :class:`Job` has a persistent entry under its key written before
the job is returned, and each key is emitted at most once per reconciler, so
a worker is the only writer of its entry for the duration of the run.

Decision table for a candidate keyed ``v_<versionId>``:

- absent or undecodable entry: write a fresh Pending entry, emit
- same file id and CRC32, Downloaded, no image flags: skip
- same file id and CRC32, Downloaded, image flags set: emit unchanged
- same file id and CRC32, any other status: reset to Pending (correcting a
  drifted folder and refreshing snapshots), emit
- different file id or CRC32: write a fresh Pending entry, emit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from .candidates import Candidate
from .config.models import DownloadSettings
from .errors import KeyNotFoundError, StoreError
from .filters import version_ignored
from .models import EntryStatus, PersistentEntry
from .store import KVStore, save_entry

__all__ = ["Job", "Reconciler", "new_pending_entry"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Job:
    """A candidate handed to a worker together with its store key."""

    candidate: Candidate
    key: str


def new_pending_entry(candidate: Candidate) -> PersistentEntry:
    """Build the Pending entry recorded before a candidate is queued."""

    return PersistentEntry(
        creator=candidate.creator,
        model_name=candidate.model_name,
        model_type=candidate.model_type,
        filename=candidate.target_path.name,
        folder=candidate.rel_folder,
        status=EntryStatus.PENDING,
        file=candidate.file,
        version=candidate.version.trimmed(),
        model_id=candidate.model_id,
    )


class Reconciler:
    """Turns candidates into jobs against a :class:`KVStore`.

    Args:
        store: Entry store
        settings: Download settings (image flags, base-model ignores)
        limit: Maximum jobs to emit; ``0`` means unbounded
    """

    def __init__(self, store: KVStore, settings: DownloadSettings, *, limit: int = 0) -> None:
        self._store = store
        self._settings = settings
        self._limit = max(limit, 0)
        self._seen: Set[str] = set()
        self.jobs: List[Job] = []
        self.total_bytes = 0
        self.skipped = 0

    @property
    def limit_reached(self) -> bool:
        return bool(self._limit) and len(self.jobs) >= self._limit

    def offer(self, candidate: Candidate) -> Optional[Job]:
        """Reconcile one candidate; return the emitted job or None when skipped."""

        if self.limit_reached:
            return None

        key = candidate.key
        if key in self._seen:
            logger.debug(f"Dropping duplicate candidate {key} ({candidate.file.name})")
            return None
        # Only the first candidate per key is reconciled, whatever the decision.
        self._seen.add(key)

        if version_ignored(candidate.version, self._settings):
            self.skipped += 1
            return None

        try:
            emit = self._reconcile(key, candidate)
        except StoreError as exc:
            logger.error(f"Store error for {key}; skipping {candidate.file.name}: {exc}")
            self.skipped += 1
            return None

        if not emit:
            self.skipped += 1
            return None

        job = Job(candidate=candidate, key=key)
        self.jobs.append(job)
        self.total_bytes += candidate.size_bytes
        if self.limit_reached:
            logger.info(f"Download limit of {self._limit} reached")
        return job

    def offer_all(self, candidates: Iterable[Candidate]) -> List[Job]:
        emitted: List[Job] = []
        for candidate in candidates:
            if self.limit_reached:
                break
            job = self.offer(candidate)
            if job is not None:
                emitted.append(job)
        return emitted

    def _reconcile(self, key: str, candidate: Candidate) -> bool:
        existing = self._read(key)
        if existing is None:
            save_entry(self._store, key, new_pending_entry(candidate))
            logger.debug(f"Created Pending entry {key}")
            return True

        same_content = (
            existing.file.id == candidate.file.id
            and existing.file.hashes.crc32 == candidate.file.hashes.crc32
        )
        if not same_content:
            logger.debug(f"Content identity changed for {key}; re-queuing")
            save_entry(self._store, key, new_pending_entry(candidate))
            return True

        if existing.status == EntryStatus.DOWNLOADED:
            if self._settings.image_saving_requested:
                logger.debug(f"Queuing downloaded {key} for image reconciliation")
                return True
            logger.debug(f"Skipping {key}: already downloaded")
            return False

        previous = existing.status.value
        if existing.folder != candidate.rel_folder:
            logger.debug(f"Correcting folder for {key}: {existing.folder!r} -> {candidate.rel_folder!r}")
            existing.folder = candidate.rel_folder
        existing.mark_pending()
        existing.version = candidate.version.trimmed()
        existing.file = candidate.file
        save_entry(self._store, key, existing)
        logger.debug(f"Re-queuing {key} (previous status {previous})")
        return True

    def _read(self, key: str) -> Optional[PersistentEntry]:
        try:
            raw = self._store.get(key)
        except KeyNotFoundError:
            return None
        try:
            return PersistentEntry.from_json(raw)
        except ValueError as exc:
            logger.warning(f"Cannot decode entry {key}; treating as new: {exc}")
            return None
