"""
End-to-end ``download`` run: select targets, reconcile, confirm, execute.

Target selection has three modes, checked in order:

1. ``model_version_id``: one version fetched from ``/model-versions/{id}``
2. ``model_id``: one model fetched from ``/models/{id}``
3. otherwise a paginated ``/models`` search, refreshing each listed model
   from ``/models/{id}`` and falling back to the listing when that fails

Unauthorized and rate-limited failures propagate to the caller. Any other
traversal failure keeps the jobs gathered so far, unless nothing was fetched
at all, in which case it propagates too.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from .api import CatalogClient, build_models_query
from .candidates import build_candidates, build_version_candidates
from .config.models import DownloaderConfig
from .downloader import FileDownloader
from .errors import CivitaiDownloaderError
from .filters import model_ignored
from .net.retry import RetryPolicy
from .orchestrator.workers import DownloadCoordinator, JobResult, WorkerPool
from .paginator import CatalogPaginator
from .paths import bytes_to_size
from .reconciler import Job, Reconciler
from .store import KVStore

__all__ = ["RunSummary", "collect_jobs", "format_total_size", "run_download"]

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[str], bool]


@dataclass
class RunSummary:
    """Counters reported at the end of a download run."""

    queued: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    total_bytes: int = 0
    cancelled: bool = False


def format_total_size(num_bytes: int) -> str:
    """Size for the confirmation prompt: GB above 1 GiB, MB otherwise."""

    gib = num_bytes / (1024**3)
    if gib >= 1:
        return f"{gib:.2f} GB"
    return f"{num_bytes / (1024 ** 2):.2f} MB"


def collect_jobs(
    config: DownloaderConfig,
    paginator: CatalogPaginator,
    reconciler: Reconciler,
) -> List[Job]:
    """Run target selection and reconciliation; return the emitted jobs."""

    settings = config.download
    save_root = Path(config.save_path)

    if settings.model_version_id:
        logger.info(f"Processing model version {settings.model_version_id}")
        version = paginator.fetch_version(settings.model_version_id)
        reconciler.offer_all(build_version_candidates(version, settings, save_root))
        return reconciler.jobs

    if settings.model_id:
        logger.info(f"Processing model {settings.model_id}")
        model = paginator.fetch_model(settings.model_id)
        if not model.model_versions:
            logger.warning(f"Model {settings.model_id} has no versions")
        reconciler.offer_all(build_candidates(model, settings, save_root))
        return reconciler.jobs

    params = build_models_query(settings)
    for listed in paginator.iter_models(params, settings.max_pages):
        if model_ignored(listed, settings):
            continue
        model = paginator.refresh_model(listed)
        reconciler.offer_all(build_candidates(model, settings, save_root))
        if reconciler.limit_reached:
            break
        if (
            settings.all_versions
            and settings.limit
            and paginator.pages_fetched > 1
            and not reconciler.jobs
        ):
            logger.warning("No matching files after several pages with --all-versions; stopping")
            break

    if paginator.stopped_by is not None and paginator.pages_fetched == 0:
        raise paginator.stopped_by
    return reconciler.jobs


def _print_plan(console: Console, jobs: List[Job], total_bytes: int, meta_only: bool) -> None:
    action = "write metadata for" if meta_only else "download"
    console.print(
        Panel.fit(
            f"Ready to {action} [bold]{len(jobs)}[/bold] file(s)\n"
            f"Estimated size: [bold]{format_total_size(total_bytes)}[/bold]",
            title="Download plan",
        )
    )


def _run_meta_only(coordinator: DownloadCoordinator, jobs: List[Job]) -> RunSummary:
    summary = RunSummary(queued=len(jobs))
    for job in jobs:
        try:
            coordinator.write_sidecars(job, job.candidate.target_path)
        except CivitaiDownloaderError as exc:
            logger.warning(f"Metadata pass failed for {job.key}: {exc}")
            summary.failed += 1
            continue
        summary.succeeded += 1
    return summary


def run_download(
    config: DownloaderConfig,
    *,
    client: httpx.Client,
    store: KVStore,
    confirm: Optional[ConfirmFn] = None,
    console: Optional[Console] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunSummary:
    """
    Execute one ``download`` run.

    Args:
        config: Fully-resolved configuration
        client: Shared HTTP client
        store: Entry store
        confirm: Prompt callback; ``None`` or ``skip_confirmation`` proceeds
        console: Rich console for the plan, progress and per-job lines
        sleep: Sleep used for retries and page delays

    Returns:
        RunSummary with queue, outcome and size counters

    Raises:
        UnauthorizedError: Credentials rejected during traversal
        RateLimitedError: Rate limiting persisted through every retry
        CivitaiDownloaderError: Target selection failed before any work
    """
    console = console or Console(stderr=True)
    settings = config.download
    save_root = Path(config.save_path)

    api = CatalogClient(client, config, sleep=sleep)
    paginator = CatalogPaginator(api, api_delay_ms=config.api_delay_ms, sleep=sleep)
    limit = 0 if settings.model_version_id else settings.limit
    reconciler = Reconciler(store, settings, limit=limit)

    jobs = collect_jobs(config, paginator, reconciler)
    summary = RunSummary(
        queued=len(jobs), skipped=reconciler.skipped, total_bytes=reconciler.total_bytes
    )
    if not jobs:
        console.print("Nothing to download.")
        return summary

    _print_plan(console, jobs, reconciler.total_bytes, settings.download_meta_only)
    if not settings.skip_confirmation and confirm is not None:
        if not confirm("Proceed?"):
            console.print("Aborted.")
            summary.cancelled = True
            return summary

    downloader = FileDownloader(
        client, config.api_key, policy=RetryPolicy.from_config(config), sleep=sleep
    )
    coordinator = DownloadCoordinator(
        store=store, settings=settings, save_root=save_root, downloader=downloader
    )

    if settings.download_meta_only:
        meta = _run_meta_only(coordinator, jobs)
        meta.skipped = summary.skipped
        meta.total_bytes = summary.total_bytes
        console.print(f"Metadata written for {meta.succeeded} file(s), {meta.failed} failed.")
        return meta

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Downloading", total=len(jobs))

        def _on_result(result: JobResult) -> None:
            if result.ok:
                name = result.final_path.name if result.final_path else result.key
                progress.console.print(f"[green]OK[/green] {result.key} {name}")
            else:
                progress.console.print(f"[red]FAILED[/red] {result.key}: {result.error}")
            progress.advance(task)

        results = WorkerPool(settings.concurrency, coordinator.process_job, on_result=_on_result).run(jobs)

    summary.succeeded = sum(1 for r in results if r.ok)
    summary.failed = len(results) - summary.succeeded
    console.print(
        f"Attempted: {summary.queued}  Succeeded: {summary.succeeded}  Failed: {summary.failed}"
    )
    logger.info(
        f"Download run finished: queued={summary.queued} ok={summary.succeeded} "
        f"failed={summary.failed} skipped={summary.skipped} size={bytes_to_size(summary.total_bytes)}"
    )
    return summary
