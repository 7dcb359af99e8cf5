"""SQLite key/value store and persistent entry round trips."""

from __future__ import annotations

import json

import pytest

from CivitaiDownloader.errors import KeyNotFoundError, StoreGetError
from CivitaiDownloader.models import EntryStatus, ModelFile, ModelVersion, PersistentEntry
from CivitaiDownloader.store import (
    SQLiteKVStore,
    entry_key,
    iter_entries,
    load_entry,
    save_entry,
)
from fixtures.catalog import file_payload, version_payload


def _entry(version_id: int = 100, **kwargs) -> PersistentEntry:
    return PersistentEntry(
        model_name="toon",
        model_type="CKPT",
        filename=f"{version_id}_toon.safetensors",
        folder="CKPT/toon/SD1.5",
        file=ModelFile.model_validate(file_payload()),
        version=ModelVersion.model_validate(version_payload(version_id)).trimmed(),
        model_id=10,
        **kwargs,
    )


def test_entry_key():
    assert entry_key(123) == "v_123"


def test_get_missing_key(store):
    with pytest.raises(KeyNotFoundError) as excinfo:
        store.get("v_1")
    assert excinfo.value.key == "v_1"


def test_put_get_overwrite_delete(store):
    store.put("v_1", b"one")
    store.put("v_1", "two")
    assert store.get("v_1") == b"two"

    store.delete("v_1")
    with pytest.raises(KeyNotFoundError):
        store.get("v_1")
    with pytest.raises(KeyNotFoundError):
        store.delete("v_1")


def test_keys_and_fold_by_prefix(store):
    store.put("v_2", "{}")
    store.put("v_1", "{}")
    store.put("meta", "{}")

    assert store.keys("v_") == ["v_1", "v_2"]
    seen = []
    store.fold(lambda key, value: seen.append((key, value)), prefix="v_")
    assert seen == [("v_1", b"{}"), ("v_2", b"{}")]


def test_fold_callback_may_write(store):
    store.put("v_1", "{}")
    store.fold(lambda key, value: store.put(key, '{"touched": true}'), prefix="v_")
    assert json.loads(store.get("v_1")) == {"touched": True}


def test_store_persists_across_reopen(tmp_path):
    path = tmp_path / "nested" / "civitai.db"
    with SQLiteKVStore(path) as kv:
        kv.put("v_1", "{}")
    with SQLiteKVStore(path) as kv:
        assert kv.get("v_1") == b"{}"


def test_entry_round_trip(store):
    entry = _entry()
    save_entry(store, "v_100", entry)
    loaded = load_entry(store, "v_100")

    assert loaded == entry
    assert loaded.version_id == 100
    assert loaded.file.hashes.crc32 == entry.file.hashes.crc32


def test_entry_json_shape():
    data = json.loads(_entry().to_json())
    assert set(data) == {
        "creator",
        "modelName",
        "modelType",
        "filename",
        "folder",
        "status",
        "file",
        "version",
        "timestamp",
        "modelId",
    }
    assert data["status"] == "Pending"
    assert data["file"]["sizeKB"] == 1024.0
    assert "SHA256" in data["file"]["hashes"]


def test_error_details_present_only_for_errors():
    entry = _entry()
    entry.mark_error("boom")
    data = json.loads(entry.to_json())
    assert data["status"] == "Error"
    assert data["errorDetails"] == "boom"

    entry.mark_downloaded()
    assert entry.status == EntryStatus.DOWNLOADED
    assert "errorDetails" not in json.loads(entry.to_json())


def test_corrupt_entry(store):
    store.put("v_9", "not json")
    with pytest.raises(StoreGetError):
        load_entry(store, "v_9")
    assert list(iter_entries(store)) == [("v_9", None)]
