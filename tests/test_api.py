"""Catalog client decoding and query construction."""

from __future__ import annotations

import pytest

from CivitaiDownloader.api import (
    CatalogClient,
    build_images_query,
    build_models_query,
    normalize_period,
    normalize_sort,
)
from CivitaiDownloader.config.models import DownloadSettings
from CivitaiDownloader.errors import DecodeError
from CivitaiDownloader.net.client import build_http_client
from fixtures.catalog import API, model_payload, models_page, version_payload


@pytest.fixture
def api(router, make_config, fake_sleep):
    config = make_config().model_copy(update={"api_key": "secret-token"})
    client = build_http_client(config, transport=router.transport())
    yield CatalogClient(client, config, sleep=fake_sleep)
    client.close()


def test_models_query_defaults():
    params = build_models_query(DownloadSettings())
    assert params == [
        ("limit", "100"),
        ("sort", "Most Downloaded"),
        ("period", "AllTime"),
        ("nsfw", "true"),
    ]


def test_models_query_full():
    settings = DownloadSettings(
        query="toon",
        tag="style",
        usernames=["alice", "bob"],
        model_types=["Checkpoint", "LORA"],
        base_models=["SD 1.5"],
        primary_only=True,
        nsfw=False,
        limit=25,
        allow_commercial_use="Sell",
        allow_derivatives=False,
    )
    params = build_models_query(settings)

    assert ("limit", "25") in params
    assert ("nsfw", "false") in params
    assert ("username", "alice") in params
    assert ("username", "bob") not in params
    assert [v for k, v in params if k == "types"] == ["Checkpoint", "LORA"]
    assert ("baseModels", "SD 1.5") in params
    assert ("primaryFileOnly", "true") in params
    assert ("allowCommercialUse", "Sell") in params
    assert ("allowDerivatives", "false") in params
    assert not any(k == "allowNoCredit" for k, _ in params)


def test_large_limit_uses_full_pages():
    params = dict(build_models_query(DownloadSettings(limit=500)))
    assert params["limit"] == "100"


def test_invalid_sort_and_period_fall_back(caplog):
    assert normalize_sort("Most Liked") == "Most Downloaded"
    assert normalize_period("Decade") == "AllTime"
    assert normalize_sort("Newest") == "Newest"
    assert "Invalid sort" in caplog.text


def test_images_query():
    params = build_images_query(model_version_id=100, limit=500, nsfw="None", sort="Newest")
    assert params == [
        ("modelVersionId", "100"),
        ("limit", "200"),
        ("sort", "Newest"),
        ("nsfw", "false"),
    ]
    assert build_images_query() == []


def test_images_query_ids_only_when_non_zero():
    params = build_images_query(image_id=5, model_id=0, model_version_id=0, post_id=9, username="alice")
    assert params == [("imageId", "5"), ("postId", "9"), ("username", "alice")]


@pytest.mark.parametrize(
    "limit, expected",
    [(1, [("limit", "1")]), (200, [("limit", "200")]), (201, [("limit", "200")]), (0, []), (-3, [])],
)
def test_images_query_limit_clamp(limit, expected):
    assert build_images_query(limit=limit) == expected


@pytest.mark.parametrize(
    "nsfw, sent",
    [("None", "false"), ("none", "false"), ("Soft", "Soft"), ("X", "X"), ("", None)],
)
def test_images_query_nsfw_mapping(nsfw, sent):
    params = dict(build_images_query(nsfw=nsfw))
    assert params.get("nsfw") == sent


def test_get_models_sends_cursor_and_auth(api, router):
    router.add_json(f"{API}/models", models_page([model_payload()], next_cursor="abc"))

    page = api.get_models([("limit", "100"), ("types", "LORA"), ("types", "Checkpoint")], cursor="c1")

    assert page.items[0].name == "toon"
    assert page.metadata.next_cursor == "abc"
    request = router.calls(f"{API}/models")[0]
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert request.url.params.get_list("types") == ["LORA", "Checkpoint"]
    assert request.url.params["cursor"] == "c1"


def test_get_model_and_version(api, router):
    router.add_json(f"{API}/models/10", model_payload())
    router.add_json(f"{API}/model-versions/100", version_payload())

    model = api.get_model(10)
    version = api.get_version(100)

    assert model.model_versions[0].files[0].hashes.crc32
    assert version.model.type == "CKPT"
    assert version.base_model == "SD1.5"


def test_undecodable_body_raises_decode_error(api, router):
    router.add(f"{API}/models/10", 200, b"<html>" + b"x" * 400)
    with pytest.raises(DecodeError) as excinfo:
        api.get_model(10)
    assert excinfo.value.body_sample.startswith("<html>")
    assert excinfo.value.body_sample.endswith("...")


def test_unknown_fields_survive_snapshot(api, router):
    payload = model_payload()
    payload["allowCommercialUse"] = ["Image"]
    router.add_json(f"{API}/models/10", payload)

    snapshot = api.get_model(10).snapshot()

    assert snapshot["allowCommercialUse"] == ["Image"]
    assert snapshot["modelVersions"][0]["files"][0]["hashes"]["SHA256"]


def test_get_images_decodes_listing(api, router):
    router.add_json(
        f"{API}/images",
        {"items": [{"id": 7, "url": "https://image.civitai.com/x/7.jpeg", "modelVersionId": 100}], "metadata": {"nextCursor": 42}},
    )

    page = api.get_images(build_images_query(model_version_id=100), cursor="c1")

    assert [item.id for item in page.items] == [7]
    assert page.items[0].model_version_id == 100
    assert page.metadata.next_cursor == "42"
    params = router.calls(f"{API}/images")[0].url.params
    assert params.get("modelVersionId") == "100"
    assert params.get("cursor") == "c1"


def test_get_images_follows_cursor_and_tolerates_nulls(api, router):
    router.add_json(
        f"{API}/images",
        {"items": [{"id": 1, "url": "https://image.civitai.com/x/1.png"}], "metadata": {"nextCursor": "n2"}},
    )
    router.add_json(f"{API}/images", {"items": None, "metadata": None})
    params = build_images_query(model_id=10, limit=50)

    first = api.get_images(params)
    second = api.get_images(params, cursor=first.metadata.next_cursor)

    assert [item.url for item in first.items] == ["https://image.civitai.com/x/1.png"]
    assert second.items == [] and second.metadata.next_cursor is None
    sent = [request.url.params for request in router.calls(f"{API}/images")]
    assert [p.get("cursor") for p in sent] == [None, "n2"]
    assert all(p.get("modelId") == "10" and p.get("limit") == "50" for p in sent)
    assert all(r.headers["Authorization"] == "Bearer secret-token" for r in router.calls(f"{API}/images"))
