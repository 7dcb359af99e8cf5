"""Sidecar artifacts written next to downloaded versions.

- version metadata: ``<final path without extension>.json``
- model info: ``<model info dir>/<modelId>-<slug>.json``
- preview images: ``<dir>/images/<imageId><ext>``

JSON sidecars are written atomically with mode 0600. Image downloads run on a
bounded thread pool and skip names that already exist under any extension.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

from ..config.models import DownloadSettings
from ..downloader import FileDownloader, find_existing_file
from ..errors import CivitaiDownloaderError, FilesystemError
from ..models import CatalogModel, Hashes, ModelImage, ModelVersion
from ..paths import UNKNOWN_BASE_MODEL, build_path_data, generate_path, model_info_filename

__all__ = [
    "SIDECAR_MODE",
    "IMAGES_DIRNAME",
    "write_json_atomic",
    "metadata_path_for",
    "save_version_metadata",
    "model_info_dir",
    "save_model_info",
    "image_filename",
    "download_images",
    "collect_model_images",
    "model_images",
]

logger = logging.getLogger(__name__)

SIDECAR_MODE = 0o600
IMAGES_DIRNAME = "images"


def write_json_atomic(path: Path, payload: Any, *, mode: int = SIDECAR_MODE) -> Path:
    """Write ``payload`` as indented JSON via a temp file and ``os.replace``.

    Raises:
        FilesystemError: The directory, temp file or rename failed
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.", suffix=".tmp")
    except OSError as exc:
        raise FilesystemError(f"cannot prepare {path}: {exc}", path=path) from exc

    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise FilesystemError(f"cannot write {path}: {exc}", path=path) from exc
    return path


def metadata_path_for(final_path: Path) -> Path:
    return final_path.with_suffix(".json")


def save_version_metadata(final_path: Path, version: ModelVersion) -> Path:
    """Write the full version snapshot beside the downloaded file."""

    target = metadata_path_for(final_path)
    write_json_atomic(target, version.snapshot())
    logger.debug(f"Saved version metadata {target}")
    return target


def model_info_dir(model: CatalogModel, settings: DownloadSettings, save_root: Path) -> Path:
    """Resolve the model-info directory; a missing base model becomes ``unknown_baseModel``."""

    data = build_path_data(model, None)
    if not data.get("baseModel"):
        data["baseModel"] = UNKNOWN_BASE_MODEL
    return save_root / generate_path(settings.model_info_path_pattern, data)


def save_model_info(model: CatalogModel, settings: DownloadSettings, save_root: Path) -> Path:
    """Write the full model snapshot under the model-info path pattern.

    Raises:
        PathPatternError: The pattern cannot be expanded
        FilesystemError: The file cannot be written
    """
    target = model_info_dir(model, settings, save_root) / model_info_filename(model)
    write_json_atomic(target, model.snapshot())
    logger.debug(f"Saved model info {target}")
    return target


def image_filename(image: ModelImage, index: int) -> str:
    """``<imageId><ext>`` using the URL extension when it is 1-5 characters, else ``.jpg``."""

    url_path = urlparse(image.url).path if image.url else ""
    if image.id:
        ext = os.path.splitext(url_path)[1]
        if not (2 <= len(ext) <= 6):
            ext = ".jpg"
        return f"{image.id}{ext}"
    last_segment = unquote(url_path.rstrip("/").rsplit("/", 1)[-1]) if url_path else ""
    if last_segment and last_segment not in (".", ".."):
        return last_segment
    return f"image_{index}.jpg"


def download_images(
    downloader: FileDownloader,
    images: Sequence[ModelImage],
    dest_dir: Path,
    *,
    concurrency: int = 1,
    label: str = "images",
) -> Tuple[int, int]:
    """
    Download ``images`` into ``dest_dir`` concurrently.

    Args:
        downloader: Shared file downloader (no hashes are passed)
        images: Image manifest
        dest_dir: Target directory, created when needed
        concurrency: Thread pool size
        label: Log prefix

    Returns:
        ``(succeeded, failed)``; images already present count as succeeded
    """
    if not images:
        return 0, 0

    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error(f"[{label}] cannot create {dest_dir}: {exc}")
        return 0, len(images)

    lock = threading.Lock()
    counts = {"ok": 0, "failed": 0}

    def _one(item: Tuple[int, ModelImage]) -> None:
        index, image = item
        if not image.url:
            logger.warning(f"[{label}] image {image.id or index} has no URL")
            with lock:
                counts["failed"] += 1
            return
        target = dest_dir / image_filename(image, index)
        try:
            if find_existing_file(target, Hashes()) is None:
                downloader.download_file(target, image.url, Hashes(), 0)
            else:
                logger.debug(f"[{label}] {target.name} already present")
        except CivitaiDownloaderError as exc:
            logger.warning(f"[{label}] failed to download {image.url}: {exc}")
            with lock:
                counts["failed"] += 1
            return
        with lock:
            counts["ok"] += 1

    with ThreadPoolExecutor(max_workers=max(concurrency, 1)) as pool:
        list(pool.map(_one, enumerate(images)))

    logger.info(f"[{label}] images saved: {counts['ok']}, failed: {counts['failed']}")
    return counts["ok"], counts["failed"]


def collect_model_images(model: CatalogModel) -> List[ModelImage]:
    """All images across every version of ``model``."""

    collected: List[ModelImage] = []
    for version in model.model_versions:
        collected.extend(version.images)
    return collected


def _unique(images: Iterable[ModelImage]) -> List[ModelImage]:
    seen = set()
    unique: List[ModelImage] = []
    for image in images:
        marker = image.id or image.url
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(image)
    return unique


def model_images(model: Optional[CatalogModel], fallback: Sequence[ModelImage]) -> List[ModelImage]:
    """De-duplicated model gallery; ``fallback`` is used when the full model is unknown."""

    if model is not None:
        return _unique(collect_model_images(model))
    return _unique(fallback)
