"""Command-line entry points driven through ``typer.testing.CliRunner``."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from CivitaiDownloader import cli
from CivitaiDownloader.models import Creator, EntryStatus, ModelFile, ModelVersion, PersistentEntry
from CivitaiDownloader.net.client import build_http_client
from CivitaiDownloader.store import SQLiteKVStore, entry_key, load_entry, save_entry
from fixtures.catalog import API, file_payload, model_payload, models_page, version_payload

runner = CliRunner()

CONTENT = b"model-bytes"


@pytest.fixture
def save_root(tmp_path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path / "downloads"


@pytest.fixture(autouse=True)
def _mock_network(router, monkeypatch):
    def _client(config):
        return build_http_client(config, transport=router.transport())

    monkeypatch.setattr(cli, "build_http_client", _client)


def _invoke(save_root: Path, *args: str, input: str = None):
    return runner.invoke(
        cli.app, ["--save-path", str(save_root), "--api-delay", "0", *args], input=input
    )


def _seed_entry(save_root: Path, version_id: int = 100, with_file: bool = True) -> Path:
    entry = PersistentEntry(
        creator=Creator(username="alice"),
        model_name="toon",
        model_type="CKPT",
        filename=f"{version_id}_toon.safetensors",
        folder="CKPT/toon/SD1.5",
        status=EntryStatus.DOWNLOADED,
        file=ModelFile.model_validate(file_payload(content=CONTENT)),
        version=ModelVersion.model_validate(version_payload(version_id)).trimmed(),
        model_id=10,
    )
    save_root.mkdir(parents=True, exist_ok=True)
    with SQLiteKVStore(save_root / "civitai.db") as store:
        save_entry(store, entry_key(version_id), entry)
    path = save_root / entry.folder / entry.filename
    if with_file:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(CONTENT)
    return path


def _stored_keys(save_root: Path):
    with SQLiteKVStore(save_root / "civitai.db") as store:
        return store.keys("v_")


def test_download_with_yes(router, save_root):
    router.add_json(f"{API}/models", models_page([model_payload()]))
    router.add_json(f"{API}/models/10", model_payload())
    router.add("/api/download/models/1000", 200, CONTENT)

    result = _invoke(save_root, "download", "--yes", "--no-model-info")

    assert result.exit_code == 0, result.output
    assert (save_root / "CKPT/toon/SD1.5/100_toon.safetensors").read_bytes() == CONTENT
    assert not (save_root / "CKPT/toon/10-toon.json").exists()
    assert "Download summary" in result.output
    query = router.calls(f"{API}/models")[0].url.params
    assert query.get("limit") == "100"


def test_download_declined_prompt(router, save_root):
    router.add_json(f"{API}/models", models_page([model_payload()]))
    router.add_json(f"{API}/models/10", model_payload())

    result = _invoke(save_root, "download", input="n\n")

    assert result.exit_code == 0, result.output
    assert "Aborted." in result.output
    assert not router.calls("/api/download/models/1000")


def test_download_unauthorized_exits_nonzero(router, save_root):
    router.add(f"{API}/models", 401, b"denied")

    result = _invoke(save_root, "download", "--yes")

    assert result.exit_code == 1
    assert "Download failed" in result.output


def test_show_config_masks_api_key(save_root, monkeypatch):
    monkeypatch.setenv("CIVITAI_API_KEY", "super-secret")

    result = _invoke(save_root, "download", "--show-config", "--concurrency", "7")

    assert result.exit_code == 0, result.output
    assert "super-secret" not in result.output
    assert "***masked***" in result.output
    assert '"concurrency": 7' in result.output


def test_config_file_from_env_var(save_root, tmp_path, monkeypatch):
    config_file = tmp_path / "settings.yaml"
    config_file.write_text("download:\n  concurrency: 5\n", encoding="utf-8")
    monkeypatch.setenv("CIVITAI_CONFIG", str(config_file))

    result = _invoke(save_root, "download", "--show-config")

    assert result.exit_code == 0, result.output
    assert '"concurrency": 5' in result.output


def test_invalid_flag_value_is_config_error(save_root):
    result = _invoke(save_root, "download", "--concurrency", "0")
    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_db_view(save_root):
    assert "No entries in the database." in _invoke(save_root, "db", "view").output

    _seed_entry(save_root)
    result = _invoke(save_root, "db", "view")
    assert result.exit_code == 0, result.output
    assert "Total entries: 1" in result.output


def test_db_verify_auto_redownload(router, save_root):
    path = _seed_entry(save_root, with_file=False)
    router.add("/api/download/models/1000", 200, CONTENT)

    result = _invoke(save_root, "db", "verify", "--yes")

    assert result.exit_code == 0, result.output
    assert path.read_bytes() == CONTENT
    assert "succeeded=1" in result.output


def test_db_redownload_unknown_version(save_root):
    result = _invoke(save_root, "db", "redownload", "5")
    assert result.exit_code == 1
    assert "No database entry found for model version 5" in result.output


def test_db_redownload_failure_exits_nonzero(router, save_root):
    _seed_entry(save_root, with_file=False)
    router.add("/api/download/models/1000", 404, b"gone")

    result = _invoke(save_root, "--log-level", "error", "db", "redownload", "100")

    assert result.exit_code == 1
    with SQLiteKVStore(save_root / "civitai.db") as store:
        assert load_entry(store, "v_100").status == EntryStatus.ERROR


def test_delete_requires_criteria(save_root):
    result = _invoke(save_root, "delete")
    assert result.exit_code == 1
    assert "At least one selection is required" in result.output


def test_delete_dry_run_changes_nothing(save_root):
    path = _seed_entry(save_root)

    result = _invoke(save_root, "delete", "-v", "100", "--dry-run")

    assert result.exit_code == 0, result.output
    assert "[DRY RUN] No changes were made." in result.output
    assert path.exists()
    assert _stored_keys(save_root) == ["v_100"]


def test_delete_confirmed(save_root):
    path = _seed_entry(save_root)

    result = _invoke(save_root, "delete", "--model-id", "10", input="y\n")

    assert result.exit_code == 0, result.output
    assert "Deletion complete: 1 deleted" in result.output
    assert not path.exists()
    assert _stored_keys(save_root) == []


def test_delete_search_interactive_selection(save_root):
    _seed_entry(save_root, 100)
    _seed_entry(save_root, 200)

    result = _invoke(save_root, "delete", "--search", "TOON", "--force", "--keep-files", input="2\n")

    assert result.exit_code == 0, result.output
    assert _stored_keys(save_root) == ["v_100"]


def test_delete_search_cancelled(save_root):
    _seed_entry(save_root)

    result = _invoke(save_root, "delete", "-s", "toon", input="q\n")

    assert "No entries selected for deletion." in result.output
    assert _stored_keys(save_root) == ["v_100"]
