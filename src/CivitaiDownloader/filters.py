"""File, version and model predicates applied before reconciliation."""

from __future__ import annotations

import logging

from .config.models import DownloadSettings
from .models import CatalogModel, ModelFile, ModelVersion

__all__ = ["REQUIRED_FORMAT", "passes_file_filters", "version_ignored", "model_ignored"]

logger = logging.getLogger(__name__)

REQUIRED_FORMAT = "safetensor"


def passes_file_filters(file: ModelFile, model_type: str, settings: DownloadSettings) -> bool:
    """Return True when ``file`` survives the CRC32, format, primary, checkpoint and name checks."""

    if not file.hashes.crc32:
        logger.debug(f"Skipping {file.name}: missing CRC32 hash")
        return False
    if settings.primary_only and not file.primary:
        logger.debug(f"Skipping non-primary file {file.name}")
        return False
    if file.metadata.format.lower() != REQUIRED_FORMAT:
        logger.debug(f"Skipping {file.name}: format {file.metadata.format!r}")
        return False

    if model_type.lower() == "checkpoint":
        if settings.pruned and file.metadata.size.lower() != "pruned":
            logger.debug(f"Skipping non-pruned checkpoint file {file.name}")
            return False
        if settings.fp16 and file.metadata.fp.lower() != "fp16":
            logger.debug(f"Skipping non-fp16 checkpoint file {file.name}")
            return False

    lowered_name = file.name.lower()
    for needle in settings.ignore_filename_strings:
        if needle and needle.lower() in lowered_name:
            logger.debug(f"Skipping {file.name}: contains ignored string {needle!r}")
            return False
    return True


def version_ignored(version: ModelVersion, settings: DownloadSettings) -> bool:
    """True when the version's base model contains an ignored substring."""

    base_model = version.base_model.lower()
    if not base_model:
        return False
    for needle in settings.ignore_base_models:
        if needle and needle.lower() in base_model:
            logger.debug(f"Ignoring version {version.id}: base model {version.base_model!r}")
            return True
    return False


def model_ignored(model: CatalogModel, settings: DownloadSettings) -> bool:
    """True when the model's first non-empty version base model equals an ignore entry."""

    if not settings.ignore_base_models:
        return False
    first_base = next((v.base_model for v in model.model_versions if v.base_model), "")
    if not first_base:
        return False
    for entry in settings.ignore_base_models:
        if entry and entry.lower() == first_base.lower():
            logger.debug(f"Ignoring model {model.id}: base model {first_base!r}")
            return True
    return False
