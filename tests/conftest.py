"""
Pytest Configuration

Puts ``src`` on ``sys.path`` for source checkouts, registers the HTTP mocking
fixtures, and provides config/store factories shared across the suite.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Callable, Generator, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from CivitaiDownloader.config.models import DownloaderConfig  # noqa: E402
from CivitaiDownloader.store import SQLiteKVStore  # noqa: E402
from fixtures.http_mocking import http_client, router  # noqa: E402,F401


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ``CIVITAI_*`` variables from the developer shell out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("CIVITAI_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _propagate_package_logs() -> Generator[None, None, None]:
    """Let ``caplog`` see package records even after ``setup_logging`` ran."""
    logger = logging.getLogger("CivitaiDownloader")
    previous = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = previous


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., DownloaderConfig]:
    """Build a config rooted in ``tmp_path`` with zero delays."""

    def _make(**download: Any) -> DownloaderConfig:
        save_root = tmp_path / "downloads"
        return DownloaderConfig(
            save_path=str(save_root),
            database_path=str(tmp_path / "civitai.db"),
            api_delay_ms=0,
            max_retries=2,
            initial_retry_delay_ms=10,
            download=download,
        )

    return _make


@pytest.fixture
def store(tmp_path: Path) -> Generator[SQLiteKVStore, None, None]:
    kv = SQLiteKVStore(tmp_path / "civitai.db")
    yield kv
    kv.close()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: List[float]) -> Callable[[float], None]:
    """Sleep replacement that records requested delays."""
    return sleeps.append
