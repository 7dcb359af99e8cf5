"""Cursor-driven traversal of the ``/models`` listing.

Termination, checked in order: the page cap is reached, the server returns an
empty page, the server omits ``nextCursor``, or the consumer stops iterating.
Unauthorized and rate-limited failures propagate; any other failure ends the
traversal and the pages already yielded stay valid.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, Optional, Sequence, Tuple

from .api import CatalogClient
from .errors import CivitaiDownloaderError, is_fatal_to_traversal
from .models import CatalogModel, ModelsPage, ModelVersion

__all__ = ["CatalogPaginator"]

logger = logging.getLogger(__name__)


class CatalogPaginator:
    """Lazy page/model iterator plus the single-target shortcuts."""

    def __init__(
        self,
        api: CatalogClient,
        *,
        api_delay_ms: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api = api
        self._delay_s = api_delay_ms / 1000.0 if api_delay_ms > 0 else 0.0
        self._sleep = sleep
        self.pages_fetched = 0
        self.stopped_by: Optional[BaseException] = None

    def iter_pages(
        self, params: Sequence[Tuple[str, str]], max_pages: int = 0
    ) -> Iterator[ModelsPage]:
        """Yield non-empty pages until a termination condition holds.

        Args:
            params: ``/models`` query parameters without a cursor
            max_pages: Hard page cap; ``0`` means unbounded

        Raises:
            UnauthorizedError: Credentials were rejected
            RateLimitedError: 429 persisted through every retry
        """
        self.pages_fetched = 0
        self.stopped_by = None
        cursor: Optional[str] = None

        while True:
            if max_pages and self.pages_fetched >= max_pages:
                logger.info(f"Reached page cap ({max_pages}); stopping pagination")
                return
            if self.pages_fetched > 0 and self._delay_s:
                self._sleep(self._delay_s)

            try:
                page = self._api.get_models(params, cursor)
            except CivitaiDownloaderError as exc:
                if is_fatal_to_traversal(exc):
                    raise
                logger.error(f"Pagination stopped after {self.pages_fetched} page(s): {exc}")
                self.stopped_by = exc
                return

            self.pages_fetched += 1
            if not page.items:
                logger.info(f"Page {self.pages_fetched} is empty; pagination complete")
                return

            logger.debug(f"Page {self.pages_fetched}: {len(page.items)} model(s)")
            yield page

            cursor = page.metadata.next_cursor
            if not cursor:
                logger.info("No next cursor; pagination complete")
                return

    def iter_models(
        self, params: Sequence[Tuple[str, str]], max_pages: int = 0
    ) -> Iterator[CatalogModel]:
        for page in self.iter_pages(params, max_pages):
            yield from page.items

    def refresh_model(self, listed: CatalogModel) -> CatalogModel:
        """Fetch full details for a listed model, falling back to the listing on error."""

        try:
            return self._api.get_model(listed.id)
        except CivitaiDownloaderError as exc:
            if is_fatal_to_traversal(exc):
                raise
            logger.warning(f"Using listing data for model {listed.id}: detail fetch failed ({exc})")
            return listed

    def fetch_version(self, version_id: int) -> ModelVersion:
        return self._api.get_version(version_id)

    def fetch_model(self, model_id: int) -> CatalogModel:
        return self._api.get_model(model_id)
