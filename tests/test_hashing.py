"""Digest computation and strongest-hash verification."""

from __future__ import annotations

import hashlib
import zlib

import blake3
import pytest

from CivitaiDownloader.hashing import check_hash, compute_hashes
from CivitaiDownloader.models import Hashes

CONTENT = b"civitai test payload"


@pytest.fixture
def sample(tmp_path):
    path = tmp_path / "model.safetensors"
    path.write_bytes(CONTENT)
    return path


def test_compute_hashes(sample):
    sha = hashlib.sha256(CONTENT).hexdigest().upper()
    digests = compute_hashes(sample)

    assert digests["SHA256"] == sha
    assert digests["BLAKE3"] == blake3.blake3(CONTENT).hexdigest().upper()
    assert digests["CRC32"] == f"{zlib.crc32(CONTENT):08X}"
    assert digests["AutoV2"] == sha[:10]


def test_check_hash_is_case_insensitive(sample):
    sha = hashlib.sha256(CONTENT).hexdigest().lower()
    assert check_hash(sample, Hashes(sha256=sha))


def test_strongest_hash_decides(sample):
    crc = f"{zlib.crc32(CONTENT):08X}"
    # A correct CRC32 does not rescue a wrong SHA256.
    assert not check_hash(sample, Hashes(sha256="00" * 32, crc32=crc))
    assert check_hash(sample, Hashes(crc32=crc, autov2="WRONG"))


def test_crc32_without_leading_zeros(tmp_path):
    # Find content whose CRC32 starts with a zero nibble.
    for i in range(10_000):
        data = f"payload-{i}".encode()
        crc = f"{zlib.crc32(data):08X}"
        if crc.startswith("0"):
            break
    path = tmp_path / "f.bin"
    path.write_bytes(data)
    assert check_hash(path, Hashes(crc32=crc.lstrip("0")))


def test_no_hashes_or_missing_file_is_false(sample, tmp_path):
    assert not check_hash(sample, Hashes())
    assert not check_hash(tmp_path / "absent.bin", Hashes(crc32="DEADBEEF"))
