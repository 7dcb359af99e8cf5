"""Typer-based CLI for CivitaiDownloader.

Commands:
    download          Query the catalog and download matching model files
    db view           List stored entries
    db verify         Check stored entries against the files on disk
    db redownload ID  Re-fetch one stored version
    delete            Remove entries from the store and disk

Global options live on the app callback and are merged into the loaded
configuration with the highest precedence; only flags actually given
override the config file and environment.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel

from .commands import (
    DeleteCriteria,
    delete_entries,
    find_entries,
    parse_selection,
    redownload_version,
    verify_entries,
    view_entries,
)
from .commands.delete import entries_table, print_plan
from .config import find_default_config, load_config
from .config.models import DownloaderConfig
from .downloader import FileDownloader
from .errors import CivitaiDownloaderError, KeyNotFoundError
from .logging_utils import mask_sensitive_data, setup_api_trace, setup_logging
from .net.client import build_http_client
from .net.retry import RetryPolicy
from .pipeline import format_total_size, run_download
from .store import SQLiteKVStore

__all__ = ["app", "db_app", "main"]

logger = logging.getLogger(__name__)

console = Console()
app = typer.Typer(help="Download models, previews and metadata from the Civitai catalog.", no_args_is_help=True)
db_app = typer.Typer(help="Inspect and repair the download database.", no_args_is_help=True)
app.add_typer(db_app, name="db")


@dataclass
class CLIState:
    config_path: Optional[str] = None
    overrides: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Setup
# ============================================================================


def _state(ctx: typer.Context) -> CLIState:
    root = ctx.find_root()
    if not isinstance(root.obj, CLIState):
        root.obj = CLIState()
    return root.obj


def _load(ctx: typer.Context, download: Optional[Dict[str, Any]] = None) -> DownloaderConfig:
    """Resolve the configuration and install logging for this invocation."""

    state = _state(ctx)
    overrides: Dict[str, Any] = dict(state.overrides)
    if download:
        overrides["download"] = download
    try:
        config = load_config(path=state.config_path or find_default_config(), cli_overrides=overrides)
    except CivitaiDownloaderError as e:
        console.print(f"[red]✗ Configuration error: {e}[/red]")
        raise typer.Exit(code=1)

    setup_logging(level=config.log_level, fmt=config.log_format)
    if config.log_api_requests:
        setup_api_trace(config.api_log_path)
    return config


def _open_store(config: DownloaderConfig) -> SQLiteKVStore:
    try:
        return SQLiteKVStore(config.database_path)
    except CivitaiDownloaderError as e:
        console.print(f"[red]✗ Cannot open database {config.database_path}: {e}[/red]")
        raise typer.Exit(code=1)


def _confirm(question: str) -> bool:
    return typer.confirm(question, default=False)


# ============================================================================
# Global options
# ============================================================================


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to a YAML/JSON config file", envvar="CIVITAI_CONFIG"
    ),
    save_path: Optional[str] = typer.Option(None, "--save-path", help="Root directory for downloads"),
    api_delay: Optional[int] = typer.Option(None, "--api-delay", help="Delay between catalog pages (ms)"),
    api_timeout: Optional[int] = typer.Option(None, "--api-timeout", help="HTTP client timeout (s)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="trace|debug|info|warn|error"),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="text or json"),
    log_api: Optional[bool] = typer.Option(
        None, "--log-api/--no-log-api", help="Trace HTTP requests to the API log file"
    ),
) -> None:
    """Global options shared by every command."""
    ctx.obj = CLIState(
        config_path=config,
        overrides={
            "save_path": save_path,
            "api_delay_ms": api_delay,
            "api_client_timeout_sec": api_timeout,
            "log_level": log_level,
            "log_format": log_format,
            "log_api_requests": log_api,
        },
    )


# ============================================================================
# download
# ============================================================================


@app.command()
def download(
    ctx: typer.Context,
    concurrency: Optional[int] = typer.Option(None, "--concurrency", help="Parallel downloads"),
    tag: Optional[str] = typer.Option(None, "--tag", help="Filter by tag"),
    query: Optional[str] = typer.Option(None, "--query", help="Free-text search"),
    model_types: Optional[str] = typer.Option(None, "--model-types", help="Comma-separated model types"),
    base_models: Optional[str] = typer.Option(None, "--base-models", help="Comma-separated base models"),
    username: Optional[str] = typer.Option(None, "--username", help="Creator username"),
    nsfw: Optional[bool] = typer.Option(None, "--nsfw/--no-nsfw", help="Include NSFW models"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum files to queue (0 = no limit)"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", help="Maximum catalog pages"),
    sort: Optional[str] = typer.Option(None, "--sort", help="Highest Rated | Most Downloaded | Newest"),
    period: Optional[str] = typer.Option(None, "--period", help="AllTime | Year | Month | Week | Day"),
    model_id: Optional[int] = typer.Option(None, "--model-id", help="Download a single model"),
    model_version_id: Optional[int] = typer.Option(
        None, "--model-version-id", help="Download a single model version"
    ),
    all_versions: Optional[bool] = typer.Option(
        None, "--all-versions/--latest-only", help="Consider every version of each model"
    ),
    primary_only: Optional[bool] = typer.Option(
        None, "--primary-only/--any-file", help="Only the primary file of each version"
    ),
    pruned: Optional[bool] = typer.Option(None, "--pruned/--no-pruned", help="Checkpoints must be pruned"),
    fp16: Optional[bool] = typer.Option(None, "--fp16/--no-fp16", help="Checkpoints must be fp16"),
    ignore_base_models: Optional[str] = typer.Option(
        None, "--ignore-base-models", help="Comma-separated base models to skip"
    ),
    ignore_filename_strings: Optional[str] = typer.Option(
        None, "--ignore-filename-strings", help="Comma-separated filename substrings to skip"
    ),
    metadata: Optional[bool] = typer.Option(None, "--metadata/--no-metadata", help="Write version metadata"),
    model_info: Optional[bool] = typer.Option(None, "--model-info/--no-model-info", help="Write model info"),
    version_images: Optional[bool] = typer.Option(
        None, "--version-images/--no-version-images", help="Download version preview images"
    ),
    model_images: Optional[bool] = typer.Option(
        None, "--model-images/--no-model-images", help="Download the model image gallery"
    ),
    meta_only: Optional[bool] = typer.Option(
        None, "--meta-only/--with-files", help="Write sidecars only, skip model files"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    show_config: bool = typer.Option(False, "--show-config", help="Print the resolved config and exit"),
) -> None:
    """Query the catalog and download matching model files."""
    config = _load(
        ctx,
        {
            "concurrency": concurrency,
            "tag": tag,
            "query": query,
            "model_types": model_types,
            "base_models": base_models,
            "usernames": username,
            "nsfw": nsfw,
            "limit": limit,
            "max_pages": max_pages,
            "sort": sort,
            "period": period,
            "model_id": model_id,
            "model_version_id": model_version_id,
            "all_versions": all_versions,
            "primary_only": primary_only,
            "pruned": pruned,
            "fp16": fp16,
            "ignore_base_models": ignore_base_models,
            "ignore_filename_strings": ignore_filename_strings,
            "save_metadata": metadata,
            "save_model_info": model_info,
            "save_version_images": version_images,
            "save_model_images": model_images,
            "download_meta_only": meta_only,
            "skip_confirmation": True if yes else None,
        },
    )

    if show_config:
        data = mask_sensitive_data(config.model_dump(mode="json"))
        console.print(Panel(json.dumps(data, indent=2), title="Effective configuration", expand=False))
        return

    try:
        with build_http_client(config) as client, _open_store(config) as store:
            summary = run_download(config, client=client, store=store, confirm=_confirm, console=console)
    except CivitaiDownloaderError as e:
        console.print(f"[red]✗ Download failed: {e}[/red]")
        raise typer.Exit(code=1)

    if summary.queued:
        console.print(
            Panel(
                f"Queued: {summary.queued}\n"
                f"Succeeded: {summary.succeeded}\n"
                f"Failed: {summary.failed}\n"
                f"Skipped: {summary.skipped}\n"
                f"Size: {format_total_size(summary.total_bytes)}",
                title="Download summary",
                expand=False,
            )
        )


# ============================================================================
# db
# ============================================================================


@db_app.command("view")
def db_view(ctx: typer.Context) -> None:
    """List every stored version entry."""
    config = _load(ctx)
    try:
        with _open_store(config) as store:
            view_entries(store, console)
    except CivitaiDownloaderError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)


@db_app.command("verify")
def db_verify(
    ctx: typer.Context,
    check_hash: Optional[bool] = typer.Option(
        None, "--check-hash/--no-check-hash", help="Recompute hashes of existing files"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Redownload problems without prompting"),
) -> None:
    """Check stored entries against the files on disk and offer redownloads."""
    config = _load(ctx)
    try:
        with build_http_client(config) as client, _open_store(config) as store:
            downloader = FileDownloader(client, config.api_key, policy=RetryPolicy.from_config(config))
            verify_entries(
                store,
                config,
                downloader=downloader,
                console=console,
                check_hashes=check_hash,
                auto_redownload=True if yes else None,
                prompt=_confirm,
            )
    except CivitaiDownloaderError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)


@db_app.command("redownload")
def db_redownload(
    ctx: typer.Context,
    version_id: int = typer.Argument(..., help="Model version ID to redownload"),
) -> None:
    """Re-fetch the stored file of one model version."""
    config = _load(ctx)
    try:
        with build_http_client(config) as client, _open_store(config) as store:
            downloader = FileDownloader(client, config.api_key, policy=RetryPolicy.from_config(config))
            outcome = redownload_version(store, version_id, downloader, Path(config.save_path))
    except KeyNotFoundError:
        console.print(f"[red]✗ No database entry found for model version {version_id}[/red]")
        raise typer.Exit(code=1)
    except CivitaiDownloaderError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    if not outcome.ok:
        console.print(f"[red]✗ Redownload failed: {outcome.error}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Redownloaded {outcome.final_path}[/green]")


# ============================================================================
# delete
# ============================================================================


def _interactive_select(entries: List, search: str) -> List:
    console.print(entries_table(entries, title=f'Entries matching "{search}"', numbered=True))
    answer = typer.prompt(
        "Enter numbers to delete (e.g. 1,3,5 or 1-3 or 'all', 'q' to cancel)",
        default="",
        show_default=False,
    )
    answer = answer.strip().lower()
    if answer in ("", "q", "quit", "cancel"):
        return []
    indices = parse_selection(answer, len(entries))
    if not indices:
        console.print("No valid selection made.")
    return [entries[i] for i in indices]


@app.command()
def delete(
    ctx: typer.Context,
    model_id: Optional[List[int]] = typer.Option(None, "--model-id", "-m", help="Model ID (all versions)"),
    version_id: Optional[List[int]] = typer.Option(None, "--version-id", "-v", help="Version ID"),
    username: str = typer.Option("", "--username", "-u", help="Creator username (case-insensitive)"),
    search: str = typer.Option("", "--search", "-s", help="Model name substring, then pick interactively"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would be deleted"),
    keep_files: bool = typer.Option(False, "--keep-files", help="Only remove database entries"),
) -> None:
    """Delete downloaded models from the database and disk."""
    criteria = DeleteCriteria(
        model_ids=list(model_id or []),
        version_ids=list(version_id or []),
        username=username,
        search=search,
    )
    if criteria.is_empty():
        console.print(
            "[red]✗ At least one selection is required: --model-id, --version-id, --username or --search[/red]"
        )
        raise typer.Exit(code=1)

    config = _load(ctx)
    try:
        with _open_store(config) as store:
            entries = find_entries(store, criteria)
            if not entries:
                console.print("No entries found matching the given criteria.")
                return
            if search:
                entries = _interactive_select(entries, search)
                if not entries:
                    console.print("No entries selected for deletion.")
                    return

            print_plan(console, entries)
            if dry_run:
                console.print("[yellow][DRY RUN] No changes were made.[/yellow]")
                return
            if force:
                logger.info("Skipping confirmation due to --force")
            elif not _confirm(f"Delete {len(entries)} entries? This cannot be undone."):
                console.print("Deletion cancelled.")
                return

            stats = delete_entries(store, entries, Path(config.save_path), keep_files=keep_files)
    except CivitaiDownloaderError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    for message in stats.errors:
        logger.error(message)
    summary = f"Deletion complete: {stats.deleted} deleted"
    if stats.skipped:
        summary += f", {stats.skipped} skipped (no file)"
    if stats.errors:
        summary += f", {len(stats.errors)} errors"
    console.print(summary)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
