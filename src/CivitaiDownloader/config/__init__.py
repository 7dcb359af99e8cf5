"""Configuration records and the file/env/CLI loader."""

from .loader import DEFAULT_ENV_PREFIX, find_default_config, load_config
from .models import (
    DEFAULT_BASE_URL,
    DEFAULT_USER_AGENT,
    VALID_PERIODS,
    VALID_SORTS,
    DBSettings,
    DownloaderConfig,
    DownloadSettings,
    VerifySettings,
)

__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_ENV_PREFIX",
    "DEFAULT_USER_AGENT",
    "VALID_PERIODS",
    "VALID_SORTS",
    "DBSettings",
    "DownloaderConfig",
    "DownloadSettings",
    "VerifySettings",
    "find_default_config",
    "load_config",
]
