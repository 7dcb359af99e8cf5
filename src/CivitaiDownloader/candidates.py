"""Immutable download candidates assembled from catalog records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .config.models import DownloadSettings
from .errors import PathPatternError
from .filters import passes_file_filters, version_ignored
from .models import CatalogModel, Creator, ModelFile, ModelImage, ModelVersion
from .paths import build_path_data, generate_path, version_file_basename
from .store import entry_key

__all__ = ["Candidate", "build_candidates", "build_version_candidates"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """One file of one version, resolved to its on-disk target.

    ``full_model`` is None when the candidate came from a bare version lookup;
    model-info sidecars are skipped in that case.
    """

    model_id: int
    model_name: str
    model_type: str
    creator: Creator
    version: ModelVersion
    file: ModelFile
    rel_folder: str
    target_path: Path
    images: Tuple[ModelImage, ...] = ()
    full_model: Optional[CatalogModel] = None

    @property
    def version_id(self) -> int:
        return self.version.id

    @property
    def key(self) -> str:
        return entry_key(self.version.id)

    @property
    def base_model(self) -> str:
        return self.version.base_model

    @property
    def size_bytes(self) -> int:
        return self.file.size_bytes


def _versions_to_consume(model: CatalogModel, all_versions: bool) -> Sequence[ModelVersion]:
    if all_versions:
        return model.model_versions
    return model.model_versions[:1]


def _candidates_for_version(
    model: CatalogModel,
    version: ModelVersion,
    settings: DownloadSettings,
    save_root: Path,
    full_model: Optional[CatalogModel],
) -> List[Candidate]:
    if version_ignored(version, settings):
        return []

    if not version.model_id and model.id:
        version = version.model_copy(update={"model_id": model.id})

    model_type = model.type or version.model.type
    found: List[Candidate] = []
    for file in version.files:
        if not passes_file_filters(file, model_type, settings):
            continue
        data = build_path_data(model, version)
        try:
            rel_folder = generate_path(settings.version_path_pattern, data)
        except PathPatternError as exc:
            logger.error(f"Skipping version {version.id} file {file.name!r}: {exc}")
            continue
        target = save_root / rel_folder / version_file_basename(version.id, file.name)
        found.append(
            Candidate(
                model_id=model.id or version.model_id,
                model_name=model.name or version.model.name,
                model_type=model_type,
                creator=model.creator,
                version=version,
                file=file,
                rel_folder=rel_folder,
                target_path=target,
                images=tuple(version.images),
                full_model=full_model,
            )
        )
    return found


def build_candidates(
    model: CatalogModel, settings: DownloadSettings, save_root: Path
) -> List[Candidate]:
    """Walk the model's versions (first only unless ``all_versions``) into candidates."""

    found: List[Candidate] = []
    for version in _versions_to_consume(model, settings.all_versions):
        found.extend(_candidates_for_version(model, version, settings, save_root, model))
    return found


def build_version_candidates(
    version: ModelVersion, settings: DownloadSettings, save_root: Path
) -> List[Candidate]:
    """Candidates for a single version fetched without its parent model."""

    pseudo = CatalogModel(id=version.model_id, name=version.model.name, type=version.model.type)
    return _candidates_for_version(pseudo, version, settings, save_root, None)
