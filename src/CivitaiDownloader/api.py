"""
Catalog API client and query builders.

``CatalogClient`` wraps the four catalog endpoints used by the downloader
(``/models``, ``/models/{id}``, ``/model-versions/{id}``, ``/images``). Every
call goes through :func:`fetch_with_retry`, so retry, backoff and error
classification are shared with file downloads. Response bodies are decoded
with pydantic; an undecodable body raises :class:`DecodeError` carrying a
truncated sample.

Query parameters are built as lists of ``(name, value)`` pairs because the
models endpoint takes repeated ``types`` and ``baseModels`` keys.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .config.models import VALID_PERIODS, VALID_SORTS, DownloaderConfig, DownloadSettings
from .errors import DecodeError, truncate_body
from .models import CatalogModel, ImagesPage, ModelsPage, ModelVersion
from .net.client import auth_headers
from .net.retry import RetryPolicy, fetch_with_retry

__all__ = [
    "QueryParams",
    "MODELS_PAGE_LIMIT",
    "IMAGES_PAGE_LIMIT",
    "CatalogClient",
    "normalize_sort",
    "normalize_period",
    "build_models_query",
    "build_images_query",
]

logger = logging.getLogger(__name__)

QueryParams = List[Tuple[str, str]]

MODELS_PAGE_LIMIT = 100
IMAGES_PAGE_LIMIT = 200

DEFAULT_SORT = "Most Downloaded"
DEFAULT_PERIOD = "AllTime"

_T = TypeVar("_T", bound=BaseModel)


def _bool_param(value: bool) -> str:
    return "true" if value else "false"


def normalize_sort(value: str) -> str:
    """Return ``value`` when it is a catalog sort, otherwise ``Most Downloaded``."""

    if value in VALID_SORTS:
        return value
    if value:
        logger.warning(f"Invalid sort {value!r}; using {DEFAULT_SORT!r}")
    return DEFAULT_SORT


def normalize_period(value: str) -> str:
    """Return ``value`` when it is a catalog period, otherwise ``AllTime``."""

    if value in VALID_PERIODS:
        return value
    if value:
        logger.warning(f"Invalid period {value!r}; using {DEFAULT_PERIOD!r}")
    return DEFAULT_PERIOD


def build_models_query(settings: DownloadSettings) -> QueryParams:
    """Translate download settings into ``/models`` query parameters (cursor excluded)."""

    if 0 < settings.limit < MODELS_PAGE_LIMIT:
        page_limit = settings.limit
    else:
        page_limit = MODELS_PAGE_LIMIT

    params: QueryParams = [
        ("limit", str(page_limit)),
        ("sort", normalize_sort(settings.sort)),
        ("period", normalize_period(settings.period)),
        ("nsfw", _bool_param(settings.nsfw)),
    ]
    if settings.query:
        params.append(("query", settings.query))
    if settings.tag:
        params.append(("tag", settings.tag))
    if settings.usernames:
        if len(settings.usernames) > 1:
            logger.warning(
                f"Catalog accepts one username; querying {settings.usernames[0]!r} only"
            )
        params.append(("username", settings.usernames[0]))
    for model_type in settings.model_types:
        params.append(("types", model_type))
    for base_model in settings.base_models:
        params.append(("baseModels", base_model))
    if settings.primary_only:
        params.append(("primaryFileOnly", "true"))
    if settings.allow_no_credit is not None:
        params.append(("allowNoCredit", _bool_param(settings.allow_no_credit)))
    if settings.allow_derivatives is not None:
        params.append(("allowDerivatives", _bool_param(settings.allow_derivatives)))
    if settings.allow_different_license is not None:
        params.append(("allowDifferentLicense", _bool_param(settings.allow_different_license)))
    if settings.allow_commercial_use:
        params.append(("allowCommercialUse", settings.allow_commercial_use))
    return params


def build_images_query(
    *,
    image_id: int = 0,
    model_id: int = 0,
    model_version_id: int = 0,
    post_id: int = 0,
    username: str = "",
    limit: int = 0,
    sort: str = "",
    period: str = "",
    nsfw: str = "",
) -> QueryParams:
    """Build ``/images`` query parameters.

    Identifiers are sent only when non-zero, ``limit`` is clamped to 1-200
    when positive, and an ``nsfw`` value of ``none`` is sent as ``false``.
    """
    params: QueryParams = []
    if image_id:
        params.append(("imageId", str(image_id)))
    if model_id:
        params.append(("modelId", str(model_id)))
    if model_version_id:
        params.append(("modelVersionId", str(model_version_id)))
    if post_id:
        params.append(("postId", str(post_id)))
    if username:
        params.append(("username", username))
    if limit > 0:
        params.append(("limit", str(min(max(limit, 1), IMAGES_PAGE_LIMIT))))
    if sort:
        params.append(("sort", sort))
    if period:
        params.append(("period", period))
    if nsfw:
        params.append(("nsfw", "false" if nsfw.strip().lower() == "none" else nsfw))
    return params


class CatalogClient:
    """Typed access to the catalog endpoints over a shared ``httpx.Client``."""

    def __init__(
        self,
        http_client: httpx.Client,
        config: DownloaderConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = http_client
        self._base_url = config.base_url
        self._headers = auth_headers(config.api_key)
        self._policy = RetryPolicy.from_config(config)
        self._sleep = sleep

    def _get(self, path: str, params: Optional[Sequence[Tuple[str, str]]] = None) -> bytes:
        url = f"{self._base_url}{path}"
        return fetch_with_retry(
            self._client,
            "GET",
            url,
            policy=self._policy,
            params=list(params) if params else None,
            headers=self._headers,
            sleep=self._sleep,
            label="api",
        )

    @staticmethod
    def _decode(body: bytes, model_cls: Type[_T], what: str) -> _T:
        try:
            return model_cls.model_validate_json(body)
        except ValidationError as exc:
            sample = truncate_body(body)
            logger.error(f"Cannot decode {what}; body sample: {sample}")
            raise DecodeError(f"failed to decode {what}: {exc.error_count()} error(s)", body_sample=sample) from exc

    @staticmethod
    def _with_cursor(params: Sequence[Tuple[str, str]], cursor: Optional[str]) -> QueryParams:
        merged = [(key, value) for key, value in params if key != "cursor"]
        if cursor:
            merged.append(("cursor", cursor))
        return merged

    def get_models(self, params: Sequence[Tuple[str, str]], cursor: Optional[str] = None) -> ModelsPage:
        body = self._get("/models", self._with_cursor(params, cursor))
        return self._decode(body, ModelsPage, "models page")

    def get_model(self, model_id: int) -> CatalogModel:
        body = self._get(f"/models/{model_id}")
        return self._decode(body, CatalogModel, f"model {model_id}")

    def get_version(self, version_id: int) -> ModelVersion:
        body = self._get(f"/model-versions/{version_id}")
        return self._decode(body, ModelVersion, f"model version {version_id}")

    def get_images(self, params: Sequence[Tuple[str, str]], cursor: Optional[str] = None) -> ImagesPage:
        body = self._get("/images", self._with_cursor(params, cursor))
        return self._decode(body, ImagesPage, "images page")
