"""File hashing and verification against catalog-declared hashes."""

from __future__ import annotations

import hashlib
import logging
import zlib
from pathlib import Path
from typing import Dict, Union

import blake3

from .models import Hashes

__all__ = ["CHUNK_SIZE", "compute_hashes", "check_hash"]

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 20


def compute_hashes(path: Union[str, Path]) -> Dict[str, str]:
    """Stream ``path`` once and return its SHA256, BLAKE3, CRC32 and AutoV2 digests.

    Hex digests are uppercase, matching the catalog.
    """

    sha = hashlib.sha256()
    b3 = blake3.blake3()
    crc = 0
    with Path(path).open("rb") as stream:
        for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
            sha.update(chunk)
            b3.update(chunk)
            crc = zlib.crc32(chunk, crc)
    sha_hex = sha.hexdigest().upper()
    return {
        "SHA256": sha_hex,
        "BLAKE3": b3.hexdigest().upper(),
        "CRC32": f"{crc & 0xFFFFFFFF:08X}",
        "AutoV2": sha_hex[:10],
    }


def check_hash(path: Union[str, Path], hashes: Hashes) -> bool:
    """
    Verify ``path`` against the strongest declared hash.

    Preference order is SHA256, BLAKE3, CRC32, AutoV2; comparison ignores case.

    Returns:
        False when no hash is declared, the file is missing, or the digest differs
    """
    target = Path(path)
    if not hashes.has_any():
        return False
    if not target.is_file():
        logger.debug(f"Hash check skipped, file missing: {target}")
        return False

    actual = compute_hashes(target)
    for name, expected in (
        ("SHA256", hashes.sha256),
        ("BLAKE3", hashes.blake3),
        ("CRC32", hashes.crc32),
        ("AutoV2", hashes.autov2),
    ):
        if not expected:
            continue
        wanted = expected.strip().upper()
        if name == "CRC32":
            wanted = wanted.zfill(8)
        if actual[name] == wanted:
            return True
        logger.debug(f"{name} mismatch for {target.name}: expected {wanted}, got {actual[name]}")
        return False
    return False
