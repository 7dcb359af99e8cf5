"""CivitaiDownloader: catalog-driven downloader for Civitai model files.

The package is organised bottom-up:

- ``net``: shared HTTPX client and the tenacity-backed retry policy
- ``api`` / ``paginator``: typed catalog requests and cursor traversal
- ``filters`` / ``candidates`` / ``paths``: file selection and on-disk layout
- ``store`` / ``reconciler``: persistent entries and the skip/enqueue decision
- ``downloader`` / ``orchestrator``: atomic downloads, workers and sidecars
- ``pipeline`` / ``commands`` / ``cli``: user-facing runs
"""

from .config import DownloaderConfig, DownloadSettings, load_config
from .errors import CivitaiDownloaderError
from .pipeline import RunSummary, run_download

__version__ = "0.4.0"

__all__ = [
    "__version__",
    "CivitaiDownloaderError",
    "DownloadSettings",
    "DownloaderConfig",
    "RunSummary",
    "load_config",
    "run_download",
]
