"""Cursor traversal and its termination rules."""

from __future__ import annotations

import pytest

from CivitaiDownloader.api import CatalogClient
from CivitaiDownloader.errors import HttpStatusError, UnauthorizedError
from CivitaiDownloader.models import CatalogModel, ModelsPage
from CivitaiDownloader.net.client import build_http_client
from CivitaiDownloader.paginator import CatalogPaginator
from fixtures.catalog import API, model_payload, models_page

MODELS = f"{API}/models"


@pytest.fixture
def make_paginator(router, make_config, fake_sleep):
    clients = []

    def _make(api_delay_ms: int = 0) -> CatalogPaginator:
        config = make_config().model_copy(update={"max_retries": 0})
        client = build_http_client(config, transport=router.transport())
        clients.append(client)
        api = CatalogClient(client, config, sleep=fake_sleep)
        return CatalogPaginator(api, api_delay_ms=api_delay_ms, sleep=fake_sleep)

    yield _make
    for client in clients:
        client.close()


def test_follows_cursor_until_absent(router, make_paginator, sleeps):
    router.add_json(MODELS, models_page([model_payload(1)], next_cursor="p2"))
    router.add_json(MODELS, models_page([model_payload(2)], next_cursor="p3"))
    router.add_json(MODELS, models_page([model_payload(3)]))

    paginator = make_paginator(api_delay_ms=250)
    ids = [model.id for model in paginator.iter_models([("limit", "100")])]

    assert ids == [1, 2, 3]
    assert paginator.pages_fetched == 3
    assert sleeps == [0.25, 0.25]
    cursors = [request.url.params.get("cursor") for request in router.calls(MODELS)]
    assert cursors == [None, "p2", "p3"]


def test_max_pages_one_stops_despite_cursor(router, make_paginator):
    router.add_json(MODELS, models_page([model_payload(1)], next_cursor="p2"))

    paginator = make_paginator()
    assert [m.id for m in paginator.iter_models([], max_pages=1)] == [1]
    assert len(router.calls(MODELS)) == 1


def test_empty_first_page_yields_nothing(router, make_paginator):
    router.add_json(MODELS, models_page([], next_cursor="ignored"))

    paginator = make_paginator()
    assert list(paginator.iter_models([])) == []
    assert paginator.pages_fetched == 1
    assert paginator.stopped_by is None


def test_non_fatal_error_keeps_partial_sequence(router, make_paginator):
    router.add_json(MODELS, models_page([model_payload(1)], next_cursor="p2"))
    router.add(MODELS, 500, b"broken")

    paginator = make_paginator()
    assert [m.id for m in paginator.iter_models([])] == [1]
    assert isinstance(paginator.stopped_by, HttpStatusError)


def test_unauthorized_propagates(router, make_paginator):
    router.add(MODELS, 401, b"no")
    paginator = make_paginator()
    with pytest.raises(UnauthorizedError):
        list(paginator.iter_models([]))


def test_refresh_model_falls_back_to_listing(router, make_paginator):
    router.add(f"{API}/models/7", 500, b"boom")
    paginator = make_paginator()
    listed = models_page([model_payload(7, name="listed")])

    model = ModelsPage.model_validate(listed).items[0]
    assert paginator.refresh_model(model) is model


def test_refresh_model_prefers_details(router, make_paginator):
    router.add_json(f"{API}/models/7", model_payload(7, name="detailed"))
    paginator = make_paginator()

    refreshed = paginator.refresh_model(CatalogModel(id=7, name="listed"))
    assert refreshed.name == "detailed"
