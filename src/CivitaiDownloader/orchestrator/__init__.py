"""Worker pool, per-job execution and sidecar writers for download runs."""

from .workers import DownloadCoordinator, JobResult, WorkerPool

__all__ = ["DownloadCoordinator", "JobResult", "WorkerPool"]
