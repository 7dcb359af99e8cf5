"""Slug transform and brace-pattern expansion for on-disk layout."""

from __future__ import annotations

import logging
import os
import re
import unicodedata
from typing import Dict, Mapping, Optional

from .errors import PathPatternError
from .models import CatalogModel, ModelVersion

__all__ = [
    "ALLOWED_TAGS",
    "UNKNOWN_CREATOR",
    "UNKNOWN_BASE_MODEL",
    "slugify",
    "generate_path",
    "build_path_data",
    "model_info_filename",
    "version_file_basename",
    "bytes_to_size",
]

logger = logging.getLogger(__name__)

ALLOWED_TAGS = frozenset(
    {
        "modelId",
        "modelName",
        "modelType",
        "creatorName",
        "username",
        "versionId",
        "versionName",
        "baseModel",
        "imageId",
    }
)

UNKNOWN_CREATOR = "unknown_creator"
UNKNOWN_BASE_MODEL = "unknown_baseModel"

_TAG_RE = re.compile(r"\{([^}]+)\}")
_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")
_UNDERSCORES_RE = re.compile(r"_+")
_DASH_RUN_RE = re.compile(r"[_-]*-[_-]*")


def slugify(value: object) -> str:
    """Return a case-preserving, filename-safe form of ``value``.

    >>> slugify("Toon Model: v1.5")
    'Toon_Model-v1.5'
    """
    text = unicodedata.normalize("NFKD", str(value)).encode("ascii", "ignore").decode("ascii")
    text = _WHITESPACE_RE.sub("_", text.strip())
    text = text.replace(":", "-")
    text = _UNSAFE_RE.sub("", text)
    text = _UNDERSCORES_RE.sub("_", text)
    text = _DASH_RUN_RE.sub("-", text)
    return text.strip("._-")


def generate_path(pattern: str, data: Mapping[str, str]) -> str:
    """
    Expand ``{tag}`` placeholders in ``pattern`` into a relative directory.

    Each value is slugified; a missing or empty slug becomes ``empty_<tag>``.

    Args:
        pattern: Brace template such as ``{modelType}/{modelName}/{baseModel}``
        data: Tag values, usually from :func:`build_path_data`

    Returns:
        Normalised relative path without a leading separator

    Raises:
        PathPatternError: Unknown tag, empty result, or a ``..`` sequence
    """
    expanded = pattern
    for match in _TAG_RE.finditer(pattern):
        tag = match.group(1)
        if tag not in ALLOWED_TAGS:
            raise PathPatternError(f"unknown tag in path pattern: {match.group(0)}", pattern=pattern)
        value = slugify(data.get(tag, "") or "")
        if not value:
            value = f"empty_{tag}"
        expanded = expanded.replace(match.group(0), value)

    if not expanded.strip():
        raise PathPatternError(f"path pattern {pattern!r} expanded to an empty path", pattern=pattern)
    cleaned = os.path.normpath(expanded)
    if cleaned in ("", "."):
        raise PathPatternError(f"path pattern {pattern!r} expanded to an empty path", pattern=pattern)
    cleaned = cleaned.lstrip(os.sep)
    if not cleaned:
        raise PathPatternError(f"path pattern {pattern!r} expanded to an empty path", pattern=pattern)
    if ".." in cleaned:
        raise PathPatternError(f"generated path contains '..': {cleaned}", pattern=pattern)
    return cleaned


def build_path_data(
    model: Optional[CatalogModel], version: Optional[ModelVersion]
) -> Dict[str, str]:
    """Collect tag values, preferring the model record and falling back to the version."""

    data: Dict[str, str] = {}
    if model is not None:
        data["modelId"] = str(model.id)
        data["modelName"] = model.name
        data["modelType"] = model.type
        data["creatorName"] = model.creator.username
        data["username"] = model.creator.username
    if version is not None:
        data["versionId"] = str(version.id)
        data["versionName"] = version.name
        data["baseModel"] = version.base_model or UNKNOWN_BASE_MODEL
        if data.get("modelId", "0") in ("", "0"):
            data["modelId"] = str(version.model_id)
        if not data.get("modelName"):
            data["modelName"] = version.model.name
        if not data.get("modelType"):
            data["modelType"] = version.model.type
    if not data.get("creatorName"):
        data["creatorName"] = UNKNOWN_CREATOR
    return data


def model_info_filename(model: CatalogModel) -> str:
    """``<modelId>-<slug(name)>.json``; an empty slug becomes ``unknown_model``."""

    slug = slugify(model.name) or "unknown_model"
    return f"{model.id}-{slug}.json"


def version_file_basename(version_id: int, file_name: str) -> str:
    return f"{version_id}_{slugify(file_name)}"


_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def bytes_to_size(num_bytes: int) -> str:
    """Human-readable size with binary units, e.g. ``1.50 GB``."""

    size = float(max(num_bytes, 0))
    for unit in _SIZE_UNITS:
        if size < 1024 or unit == _SIZE_UNITS[-1]:
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"
