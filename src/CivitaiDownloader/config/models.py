"""
Pydantic v2 Configuration Models for CivitaiDownloader

Provides strict, typed configuration records consumed by the library layer:
- Catalog query settings (sort, period, type and base-model filters)
- File filters and path patterns
- Worker concurrency, limits and sidecar toggles
- Retry policy inputs and HTTP client settings
- Database verification behaviour

All models use extra="forbid" for strict validation. The loader composes them
from file < env < CLI, so commands only ever see fully-resolved records.
"""

from __future__ import annotations

import hashlib
import json
from typing import ClassVar, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_USER_AGENT",
    "VALID_SORTS",
    "VALID_PERIODS",
    "DownloadSettings",
    "VerifySettings",
    "DBSettings",
    "DownloaderConfig",
]

DEFAULT_BASE_URL = "https://civitai.com/api/v1"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_DATABASE_NAME = "civitai.db"

VALID_SORTS = ("Highest Rated", "Most Downloaded", "Newest")
VALID_PERIODS = ("AllTime", "Year", "Month", "Week", "Day")

_LOG_LEVELS = ("trace", "debug", "info", "warn", "warning", "error", "fatal", "panic")


# ============================================================================
# Download Settings
# ============================================================================


class DownloadSettings(BaseModel):
    """Catalog query, filter and sidecar settings for the ``download`` command."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    tag: str = Field(default="", description="Filter by tag name")
    query: str = Field(default="", description="Free-text search query")
    sort: str = Field(default="Most Downloaded", description="Catalog sort order")
    period: str = Field(default="AllTime", description="Time window applied to the sort")
    version_path_pattern: str = Field(
        default="{modelType}/{modelName}/{baseModel}",
        description="Directory pattern (relative to save_path) for version files",
    )
    model_info_path_pattern: str = Field(
        default="{modelType}/{modelName}",
        description="Directory pattern (relative to save_path) for model info JSON",
    )
    model_types: List[str] = Field(default_factory=list, description="Catalog model types")
    base_models: List[str] = Field(default_factory=list, description="Catalog base models")
    usernames: List[str] = Field(
        default_factory=list, description="Creator usernames; the first one is queried"
    )
    ignore_base_models: List[str] = Field(
        default_factory=list, description="Base-model substrings to skip (case-insensitive)"
    )
    ignore_filename_strings: List[str] = Field(
        default_factory=list, description="Filename substrings to skip (case-insensitive)"
    )

    concurrency: int = Field(default=4, description="Worker threads for downloads")
    limit: int = Field(default=0, description="Maximum files to queue (0 = unlimited)")
    max_pages: int = Field(default=0, description="Maximum catalog pages (0 = unlimited)")
    model_version_id: int = Field(default=0, description="Download a single version")
    model_id: int = Field(default=0, description="Download a single model")

    nsfw: bool = Field(default=True, description="Include NSFW models")
    primary_only: bool = Field(default=False, description="Only primary files")
    pruned: bool = Field(default=False, description="Checkpoints must be pruned")
    fp16: bool = Field(default=False, description="Checkpoints must be fp16")
    all_versions: bool = Field(default=False, description="Consume every version of a model")
    skip_confirmation: bool = Field(default=False, description="Do not prompt before downloading")

    save_metadata: bool = Field(default=True, description="Write version metadata JSON")
    save_model_info: bool = Field(default=True, description="Write model info JSON")
    save_version_images: bool = Field(default=False, description="Download version previews")
    save_model_images: bool = Field(default=False, description="Download model gallery images")
    download_meta_only: bool = Field(
        default=False, description="Write sidecars only, skip model files"
    )

    allow_no_credit: Optional[bool] = Field(default=None, description="License filter")
    allow_derivatives: Optional[bool] = Field(default=None, description="License filter")
    allow_different_license: Optional[bool] = Field(default=None, description="License filter")
    allow_commercial_use: Optional[str] = Field(default=None, description="License filter")

    @field_validator("concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("concurrency must be >= 1")
        return v

    @field_validator("limit", "max_pages", "model_version_id", "model_id")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Must be >= 0")
        return v

    @field_validator(
        "model_types", "base_models", "usernames", "ignore_base_models", "ignore_filename_strings",
        mode="before",
    )
    @classmethod
    def split_comma_lists(cls, v: object) -> object:
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @property
    def image_saving_requested(self) -> bool:
        return self.save_version_images or self.save_model_images


# ============================================================================
# Database Settings
# ============================================================================


class VerifySettings(BaseModel):
    """Behaviour of ``db verify``."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    check_hash: bool = Field(default=True, description="Recompute hashes of existing files")
    auto_redownload: bool = Field(
        default=False, description="Redownload problems without prompting"
    )


class DBSettings(BaseModel):
    """Database maintenance settings."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    verify: VerifySettings = Field(default_factory=VerifySettings)


# ============================================================================
# Top-Level Configuration
# ============================================================================


class DownloaderConfig(BaseModel):
    """
    Single source of truth for CivitaiDownloader configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    save_path: str = Field(default="downloads", description="Save root for all artifacts")
    database_path: str = Field(
        default="", description="KV store location (defaults to <save_path>/civitai.db)"
    )
    log_level: str = Field(default="info", description="Logging level")
    log_format: Literal["text", "json"] = Field(default="text", description="Log format")
    api_key: str = Field(default="", description="Bearer token for the catalog API")
    api_delay_ms: int = Field(default=200, description="Sleep between catalog pages")
    api_client_timeout_sec: int = Field(default=120, description="HTTP client timeout")
    max_retries: int = Field(default=3, description="Retries after the first attempt")
    initial_retry_delay_ms: int = Field(default=1000, description="First backoff delay")
    log_api_requests: bool = Field(default=False, description="Trace HTTP traffic to a file")
    api_log_path: str = Field(default="api.log", description="File receiving the HTTP trace")
    base_url: str = Field(default=DEFAULT_BASE_URL, description="Catalog API base URL")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header")

    download: DownloadSettings = Field(default_factory=DownloadSettings)
    db: DBSettings = Field(default_factory=DBSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        lowered = v.strip().lower()
        if lowered not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return lowered

    @field_validator("api_delay_ms", "api_client_timeout_sec")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Must be >= 0")
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def config_hash(self) -> str:
        """Deterministic SHA256 of the normalized config (API key excluded)."""

        payload = self.model_dump(mode="json", exclude={"api_key"})
        normalized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()
