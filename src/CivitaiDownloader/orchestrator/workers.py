# === NAVMAP v1 ===
# {
#   "module": "CivitaiDownloader.orchestrator.workers",
#   "purpose": "Per-job download execution and the bounded worker pool",
#   "sections": [
#     {"id": "jobresult", "name": "JobResult", "anchor": "#class-jobresult", "kind": "class"},
#     {"id": "downloadcoordinator", "name": "DownloadCoordinator", "anchor": "#class-downloadcoordinator", "kind": "class"},
#     {"id": "workerpool", "name": "WorkerPool", "anchor": "#class-workerpool", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Job execution for the download run.

This module provides:
- ``DownloadCoordinator``: the long-lived object holding the store, settings,
  downloaders and the "model images already processed" set; its
  ``process_job`` runs one job end to end
- ``WorkerPool``: ``concurrency`` threads draining a queue that holds every
  job followed by one sentinel per worker

**Per-job sequence:**

1. Re-read the entry; a Downloaded entry contributes its stored filename
2. Create the target directory (mode 0750)
3. Download (existence check, temp file, rename, MIME fix, hash check)
4. Record ``Downloaded`` with the final filename and relative folder
5. Write sidecars; failures are logged and never change the entry status

Any failure before step 4 records ``Error`` with the failure message. A store
write failure after a successful download is logged and the file is kept.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set, cast

from ..config.models import DownloadSettings
from ..downloader import FileDownloader
from ..errors import CivitaiDownloaderError, KeyNotFoundError, StoreError
from ..models import EntryStatus, PersistentEntry
from ..reconciler import Job, new_pending_entry
from ..store import KVStore, load_entry, save_entry
from . import sidecars

__all__ = ["DIR_MODE", "JobResult", "DownloadCoordinator", "WorkerPool", "relative_folder"]

logger = logging.getLogger(__name__)

DIR_MODE = 0o750


@dataclass
class JobResult:
    """Outcome of one job."""

    key: str
    ok: bool
    final_path: Optional[Path] = None
    error: str = ""


def relative_folder(save_root: Path, directory: Path) -> str:
    """``directory`` relative to ``save_root``; the absolute path when that fails."""

    try:
        return os.path.relpath(directory, save_root)
    except ValueError:
        absolute = str(directory.resolve())
        logger.warning(f"Cannot express {directory} relative to {save_root}; storing {absolute}")
        return absolute


class DownloadCoordinator:
    """Shared state for one download run.

    Attributes:
        save_root: Root directory for every artifact
        settings: Download settings (sidecar flags, concurrency)
    """

    def __init__(
        self,
        *,
        store: KVStore,
        settings: DownloadSettings,
        save_root: Path,
        downloader: FileDownloader,
        image_downloader: Optional[FileDownloader] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.save_root = Path(save_root)
        self.downloader = downloader
        self.image_downloader = image_downloader or downloader
        self._model_images_done: Set[int] = set()
        self._lock = threading.Lock()

    def claim_model_images(self, model_id: int) -> bool:
        """True for the first caller per model id in this process."""

        with self._lock:
            if model_id in self._model_images_done:
                return False
            self._model_images_done.add(model_id)
            return True

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def process_job(self, job: Job) -> JobResult:
        """Run one job to a terminal entry status."""

        candidate = job.candidate
        entry = self._current_entry(job)

        target = candidate.target_path
        if entry.status == EntryStatus.DOWNLOADED and entry.filename:
            target = target.parent / entry.filename

        try:
            target.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            return self._fail(job, f"cannot create directory {target.parent}: {exc}")

        try:
            final_path = self.downloader.download_file(
                target, candidate.file.download_url, candidate.file.hashes, candidate.version_id
            )
        except (CivitaiDownloaderError, OSError) as exc:
            return self._fail(job, str(exc))

        self._mark_downloaded(job, final_path)
        logger.info(f"Downloaded {job.key}: {final_path.name}")
        self.write_sidecars(job, final_path)
        return JobResult(key=job.key, ok=True, final_path=final_path)

    def _current_entry(self, job: Job) -> PersistentEntry:
        try:
            return load_entry(self.store, job.key)
        except KeyNotFoundError:
            logger.warning(f"Entry {job.key} vanished before processing; recreating it")
        except StoreError as exc:
            logger.warning(f"Cannot read entry {job.key} ({exc}); using a fresh one")
        return new_pending_entry(job.candidate)

    def _fail(self, job: Job, message: str) -> JobResult:
        logger.error(f"Job {job.key} failed: {message}")
        entry = self._current_entry(job)
        entry.mark_error(message)
        try:
            save_entry(self.store, job.key, entry)
        except StoreError as exc:
            logger.error(f"Failed to record error for {job.key}: {exc}")
        return JobResult(key=job.key, ok=False, error=message)

    def _mark_downloaded(self, job: Job, final_path: Path) -> None:
        candidate = job.candidate
        entry = self._current_entry(job)
        entry.mark_downloaded()
        entry.filename = final_path.name
        entry.folder = relative_folder(self.save_root, final_path.parent)
        entry.file = candidate.file
        entry.version = candidate.version.trimmed()
        try:
            save_entry(self.store, job.key, entry)
        except StoreError as exc:
            logger.error(
                f"Downloaded {final_path} but failed to update {job.key}; store and disk disagree: {exc}"
            )

    # ------------------------------------------------------------------
    # Sidecars
    # ------------------------------------------------------------------

    def write_sidecars(self, job: Job, final_path: Path) -> None:
        """Write every enabled sidecar for ``job``; failures are logged only."""

        candidate = job.candidate
        settings = self.settings

        if settings.save_metadata:
            try:
                sidecars.save_version_metadata(final_path, candidate.version)
            except CivitaiDownloaderError as exc:
                logger.warning(f"Failed to save metadata for {job.key}: {exc}")

        if settings.save_model_info:
            if candidate.full_model is None:
                logger.warning(f"Cannot save model info for {job.key}: full model data is missing")
            else:
                try:
                    sidecars.save_model_info(candidate.full_model, settings, self.save_root)
                except CivitaiDownloaderError as exc:
                    logger.warning(f"Failed to save model info for {job.key}: {exc}")

        if settings.save_version_images:
            sidecars.download_images(
                self.image_downloader,
                list(candidate.images),
                final_path.parent / sidecars.IMAGES_DIRNAME,
                concurrency=settings.concurrency,
                label=f"{job.key}-images",
            )

        if settings.save_model_images and self.claim_model_images(candidate.model_id):
            sidecars.download_images(
                self.image_downloader,
                sidecars.model_images(candidate.full_model, candidate.images),
                final_path.parent.parent / sidecars.IMAGES_DIRNAME,
                concurrency=settings.concurrency,
                label=f"model-{candidate.model_id}-images",
            )


_SENTINEL = object()


class WorkerPool:
    """Fixed pool of threads consuming a pre-filled job queue.

    The queue holds every job followed by one sentinel per worker, so the
    producer never blocks and each worker exits after its sentinel.
    """

    def __init__(
        self,
        concurrency: int,
        handler: Callable[[Job], JobResult],
        *,
        on_result: Optional[Callable[[JobResult], None]] = None,
    ) -> None:
        self.concurrency = max(concurrency, 1)
        self._handler = handler
        self._on_result = on_result
        self._lock = threading.Lock()

    def run(self, jobs: Sequence[Job]) -> List[JobResult]:
        if not jobs:
            return []

        workers = min(self.concurrency, len(jobs))
        work: "queue.Queue[object]" = queue.Queue(maxsize=len(jobs) + workers)
        for job in jobs:
            work.put(job)
        for _ in range(workers):
            work.put(_SENTINEL)

        results: List[JobResult] = []

        def _drain(worker_id: int) -> None:
            while True:
                item = work.get()
                if item is _SENTINEL:
                    logger.debug(f"Worker {worker_id} finished")
                    return
                job = cast(Job, item)
                try:
                    result = self._handler(job)
                except Exception as exc:
                    logger.exception(f"Worker {worker_id}: unexpected error in {job.key}")
                    result = JobResult(key=job.key, ok=False, error=str(exc))
                with self._lock:
                    results.append(result)
                    if self._on_result is not None:
                        self._on_result(result)

        threads = [
            threading.Thread(target=_drain, args=(i,), name=f"download-worker-{i}", daemon=True)
            for i in range(workers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results
