"""Skip / enqueue decisions against the entry store."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from CivitaiDownloader.candidates import Candidate, build_candidates
from CivitaiDownloader.config.models import DownloadSettings
from CivitaiDownloader.models import CatalogModel, EntryStatus
from CivitaiDownloader.reconciler import Reconciler, new_pending_entry
from CivitaiDownloader.store import load_entry, save_entry
from fixtures.catalog import file_payload, model_payload, version_payload


def _candidates(tmp_path: Path, settings: DownloadSettings, **model_kwargs) -> List[Candidate]:
    model = CatalogModel.model_validate(model_payload(**model_kwargs))
    return build_candidates(model, settings, tmp_path)


@pytest.fixture
def candidate(tmp_path) -> Candidate:
    return _candidates(tmp_path, DownloadSettings())[0]


def test_new_candidate_writes_pending_before_emitting(store, candidate):
    reconciler = Reconciler(store, DownloadSettings())
    job = reconciler.offer(candidate)

    assert job is not None and job.key == "v_100"
    entry = load_entry(store, "v_100")
    assert entry.status == EntryStatus.PENDING
    assert entry.folder == "CKPT/toon/SD1.5"
    assert entry.filename == "100_toon.safetensors"
    assert entry.version.files == []
    assert reconciler.total_bytes == 1024 * 1024


def test_downloaded_same_content_is_skipped(store, candidate):
    entry = new_pending_entry(candidate)
    entry.mark_downloaded()
    save_entry(store, candidate.key, entry)
    before = store.get(candidate.key)

    reconciler = Reconciler(store, DownloadSettings())
    assert reconciler.offer(candidate) is None
    assert reconciler.skipped == 1
    assert store.get(candidate.key) == before


def test_downloaded_requeued_for_images_without_mutation(store, candidate):
    entry = new_pending_entry(candidate)
    entry.mark_downloaded()
    save_entry(store, candidate.key, entry)
    before = store.get(candidate.key)

    reconciler = Reconciler(store, DownloadSettings(save_version_images=True))
    assert reconciler.offer(candidate) is not None
    assert store.get(candidate.key) == before


def test_error_entry_reset_to_pending_with_folder_fix(store, candidate):
    entry = new_pending_entry(candidate)
    entry.mark_error("boom")
    entry.folder = "old/folder"
    save_entry(store, candidate.key, entry)

    Reconciler(store, DownloadSettings()).offer(candidate)

    stored = load_entry(store, candidate.key)
    assert stored.status == EntryStatus.PENDING
    assert stored.error_details == ""
    assert stored.folder == candidate.rel_folder


def test_changed_crc32_requeues_downloaded(store, tmp_path, candidate):
    entry = new_pending_entry(candidate)
    entry.mark_downloaded()
    save_entry(store, candidate.key, entry)

    changed = _candidates(
        tmp_path,
        DownloadSettings(),
        versions=[version_payload(100, files=[file_payload(hashes={"CRC32": "0BADF00D"})])],
    )[0]
    assert Reconciler(store, DownloadSettings()).offer(changed) is not None
    stored = load_entry(store, candidate.key)
    assert stored.status == EntryStatus.PENDING
    assert stored.file.hashes.crc32 == "0BADF00D"


def test_undecodable_entry_replaced(store, candidate):
    store.put(candidate.key, "{broken")
    assert Reconciler(store, DownloadSettings()).offer(candidate) is not None
    assert load_entry(store, candidate.key).status == EntryStatus.PENDING


def test_duplicate_keys_emitted_once(store, candidate):
    reconciler = Reconciler(store, DownloadSettings())
    assert reconciler.offer(candidate) is not None
    assert reconciler.offer(candidate) is None
    assert len(reconciler.jobs) == 1


def test_limit_truncates_mid_batch(store, tmp_path):
    versions = [version_payload(100 + i) for i in range(5)]
    candidates = _candidates(tmp_path, DownloadSettings(all_versions=True), versions=versions)
    assert len(candidates) == 5

    reconciler = Reconciler(store, DownloadSettings(), limit=2)
    emitted = reconciler.offer_all(candidates)

    assert [job.key for job in emitted] == ["v_100", "v_101"]
    assert reconciler.limit_reached
    assert store.keys("v_") == ["v_100", "v_101"]


def test_second_file_of_downloaded_version_is_dropped(store, tmp_path):
    files = [
        file_payload(1000, "toon.safetensors"),
        file_payload(1001, "toon_fp32.safetensors", primary=False, fp="fp32"),
    ]
    first, second = _candidates(tmp_path, DownloadSettings(), versions=[version_payload(files=files)])
    entry = new_pending_entry(first)
    entry.mark_downloaded()
    save_entry(store, first.key, entry)

    reconciler = Reconciler(store, DownloadSettings())
    assert reconciler.offer(first) is None
    assert reconciler.offer(second) is None

    stored = load_entry(store, first.key)
    assert stored.status == EntryStatus.DOWNLOADED
    assert stored.file.id == 1000
    assert reconciler.skipped == 1
