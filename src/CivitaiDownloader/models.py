# === NAVMAP v1 ===
# {
#   "module": "CivitaiDownloader.models",
#   "purpose": "Catalog entities and the persistent entry stored per model version.",
#   "sections": [
#     {
#       "id": "catalogmodel",
#       "name": "CatalogModel",
#       "anchor": "class-catalogmodel",
#       "kind": "class"
#     },
#     {
#       "id": "modelversion",
#       "name": "ModelVersion",
#       "anchor": "class-modelversion",
#       "kind": "class"
#     },
#     {
#       "id": "entrystatus",
#       "name": "EntryStatus",
#       "anchor": "class-entrystatus",
#       "kind": "class"
#     },
#     {
#       "id": "persistententry",
#       "name": "PersistentEntry",
#       "anchor": "class-persistententry",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Catalog entities and the persistent entry stored per model version.

Responsibilities
----------------
- Decode the catalog's camelCase JSON (``/models``, ``/models/{id}``,
  ``/model-versions/{id}``, ``/images``) into typed records.
- Preserve fields this package does not model (``extra="allow"``) so version
  and model snapshots written to sidecars and the store survive unchanged.
- Define :class:`PersistentEntry`, the value stored under ``v_<versionId>``,
  with a stable JSON shape and ``to_json``/``from_json`` round-tripping.

Design Notes
------------
- The catalog sends ``null`` for many optional strings. Fields that feed path
  generation are normalised to ``""`` so callers can rely on ``str`` values.
- Hash keys keep the catalog's spelling (``SHA256``, ``BLAKE3``, ``CRC32``,
  ``AutoV2``); every other field uses camelCase aliases.
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "CatalogRecord",
    "Creator",
    "Stats",
    "Hashes",
    "FileMetadata",
    "ModelFile",
    "ModelImage",
    "BaseModelInfo",
    "ModelVersion",
    "CatalogModel",
    "PaginationMetadata",
    "ModelsPage",
    "ImageItem",
    "ImagesPage",
    "EntryStatus",
    "PersistentEntry",
]


class CatalogRecord(BaseModel):
    """Base for catalog payloads: camelCase aliases, unknown fields preserved."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
        protected_namespaces=(),
    )

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready dict using the catalog's field names."""

        return self.model_dump(mode="json", by_alias=True)


def _none_to_empty(value: Any) -> Any:
    return "" if value is None else value


class Creator(CatalogRecord):
    username: str = ""
    image: Optional[str] = None

    @field_validator("username", mode="before")
    @classmethod
    def _empty_when_null(cls, v: Any) -> Any:
        return _none_to_empty(v)


class Stats(CatalogRecord):
    download_count: Optional[int] = None
    favorite_count: Optional[int] = None
    comment_count: Optional[int] = None
    rating_count: Optional[int] = None
    rating: Optional[float] = None


class Hashes(CatalogRecord):
    """Declared file hashes; any subset may be present."""

    sha256: str = Field(default="", alias="SHA256")
    blake3: str = Field(default="", alias="BLAKE3")
    crc32: str = Field(default="", alias="CRC32")
    autov2: str = Field(default="", alias="AutoV2")

    @field_validator("sha256", "blake3", "crc32", "autov2", mode="before")
    @classmethod
    def _empty_when_null(cls, v: Any) -> Any:
        return _none_to_empty(v)

    def has_any(self) -> bool:
        return bool(self.sha256 or self.blake3 or self.crc32 or self.autov2)


class FileMetadata(CatalogRecord):
    fp: str = ""
    size: str = ""
    format: str = ""

    @field_validator("fp", "size", "format", mode="before")
    @classmethod
    def _empty_when_null(cls, v: Any) -> Any:
        return _none_to_empty(v)


class ModelFile(CatalogRecord):
    """A downloadable file attached to a model version."""

    id: int = 0
    name: str = ""
    type: str = ""
    size_kb: float = Field(default=0.0, alias="sizeKB")
    download_url: str = ""
    primary: bool = False
    metadata: FileMetadata = Field(default_factory=FileMetadata)
    hashes: Hashes = Field(default_factory=Hashes)

    @field_validator("name", "type", "download_url", mode="before")
    @classmethod
    def _empty_when_null(cls, v: Any) -> Any:
        return _none_to_empty(v)

    @field_validator("size_kb", mode="before")
    @classmethod
    def _zero_when_null(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @field_validator("metadata", "hashes", mode="before")
    @classmethod
    def _default_when_null(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def size_bytes(self) -> int:
        return int(self.size_kb * 1024) if self.size_kb > 0 else 0


class ModelImage(CatalogRecord):
    """Preview image attached to a version."""

    id: int = 0
    url: str = ""
    hash: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    nsfw_level: Any = None
    post_id: Optional[int] = None
    username: Optional[str] = None

    @field_validator("url", mode="before")
    @classmethod
    def _empty_when_null(cls, v: Any) -> Any:
        return _none_to_empty(v)


class BaseModelInfo(CatalogRecord):
    """The abbreviated parent model embedded in a version payload."""

    name: str = ""
    type: str = ""
    nsfw: bool = False
    poi: bool = False
    mode: Optional[str] = None

    @field_validator("name", "type", mode="before")
    @classmethod
    def _empty_when_null(cls, v: Any) -> Any:
        return _none_to_empty(v)


class ModelVersion(CatalogRecord):
    """One version of a model with its files and preview images."""

    id: int = 0
    model_id: int = 0
    name: str = ""
    base_model: str = ""
    description: Optional[str] = None
    download_url: str = ""
    created_at: Optional[str] = None
    published_at: Optional[str] = None
    updated_at: Optional[str] = None
    trained_words: List[str] = Field(default_factory=list)
    model: BaseModelInfo = Field(default_factory=BaseModelInfo)
    files: List[ModelFile] = Field(default_factory=list)
    images: List[ModelImage] = Field(default_factory=list)
    stats: Stats = Field(default_factory=Stats)

    @field_validator("name", "base_model", "download_url", mode="before")
    @classmethod
    def _empty_when_null(cls, v: Any) -> Any:
        return _none_to_empty(v)

    @field_validator("id", "model_id", mode="before")
    @classmethod
    def _zero_when_null(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("trained_words", "files", "images", mode="before")
    @classmethod
    def _list_when_null(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("model", "stats", mode="before")
    @classmethod
    def _default_when_null(cls, v: Any) -> Any:
        return {} if v is None else v

    def trimmed(self) -> "ModelVersion":
        """Copy without inline ``files``/``images`` arrays, as stored in entries."""

        return self.model_copy(update={"files": [], "images": []})


class CatalogModel(CatalogRecord):
    """A catalog model with its embedded versions."""

    id: int = 0
    name: str = ""
    type: str = ""
    description: Optional[str] = None
    nsfw: bool = False
    poi: bool = False
    mode: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    creator: Creator = Field(default_factory=Creator)
    stats: Stats = Field(default_factory=Stats)
    model_versions: List[ModelVersion] = Field(default_factory=list)

    @field_validator("name", "type", mode="before")
    @classmethod
    def _empty_when_null(cls, v: Any) -> Any:
        return _none_to_empty(v)

    @field_validator("tags", "model_versions", mode="before")
    @classmethod
    def _list_when_null(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("creator", "stats", mode="before")
    @classmethod
    def _default_when_null(cls, v: Any) -> Any:
        return {} if v is None else v


class PaginationMetadata(CatalogRecord):
    next_cursor: Optional[str] = None
    next_page: Optional[str] = None
    total_items: Optional[int] = None
    current_page: Optional[int] = None
    page_size: Optional[int] = None

    @field_validator("next_cursor", mode="before")
    @classmethod
    def _cursor_as_text(cls, v: Any) -> Any:
        if v is None:
            return None
        return str(v)


class ModelsPage(CatalogRecord):
    items: List[CatalogModel] = Field(default_factory=list)
    metadata: PaginationMetadata = Field(default_factory=PaginationMetadata)

    @field_validator("items", mode="before")
    @classmethod
    def _list_when_null(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_when_null(cls, v: Any) -> Any:
        return {} if v is None else v


class ImageItem(CatalogRecord):
    """An item from the ``/images`` listing."""

    id: int = 0
    url: str = ""
    hash: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    username: Optional[str] = None
    base_model: Optional[str] = None
    model_id: Optional[int] = None
    model_version_id: Optional[int] = None
    post_id: Optional[int] = None


class ImagesPage(CatalogRecord):
    items: List[ImageItem] = Field(default_factory=list)
    metadata: PaginationMetadata = Field(default_factory=PaginationMetadata)

    @field_validator("items", mode="before")
    @classmethod
    def _list_when_null(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_when_null(cls, v: Any) -> Any:
        return {} if v is None else v


class EntryStatus(str, Enum):
    """Lifecycle of a persistent entry."""

    PENDING = "Pending"
    DOWNLOADED = "Downloaded"
    ERROR = "Error"


class PersistentEntry(BaseModel):
    """The record stored under ``v_<versionId>``.

    ``folder`` is relative to the save root; ``error_details`` is non-empty
    exactly when ``status`` is ``Error``.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
        protected_namespaces=(),
    )

    creator: Creator = Field(default_factory=Creator)
    model_name: str = ""
    model_type: str = ""
    filename: str = ""
    folder: str = ""
    status: EntryStatus = EntryStatus.PENDING
    error_details: str = ""
    file: ModelFile = Field(default_factory=ModelFile)
    version: ModelVersion = Field(default_factory=ModelVersion)
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    model_id: int = 0

    @field_validator("model_name", "model_type", "filename", "folder", "error_details", mode="before")
    @classmethod
    def _empty_when_null(cls, v: Any) -> Any:
        return _none_to_empty(v)

    @property
    def version_id(self) -> int:
        return self.version.id

    def mark_pending(self) -> None:
        self.status = EntryStatus.PENDING
        self.error_details = ""

    def mark_downloaded(self) -> None:
        self.status = EntryStatus.DOWNLOADED
        self.error_details = ""

    def mark_error(self, details: str) -> None:
        self.status = EntryStatus.ERROR
        self.error_details = details or "unknown error"

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        if not data.get("errorDetails"):
            data.pop("errorDetails", None)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "PersistentEntry":
        return cls.model_validate_json(raw)
