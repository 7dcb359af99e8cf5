"""Builders for catalog JSON payloads used across the suite."""

from __future__ import annotations

import hashlib
import zlib
from typing import Any, Dict, List, Optional

API = "/api/v1"
BASE_URL = "https://civitai.com/api/v1"


def digests(content: bytes) -> Dict[str, str]:
    sha = hashlib.sha256(content).hexdigest().upper()
    return {"SHA256": sha, "CRC32": f"{zlib.crc32(content) & 0xFFFFFFFF:08X}"}


def file_payload(
    file_id: int = 1000,
    name: str = "toon.safetensors",
    *,
    content: Optional[bytes] = None,
    hashes: Optional[Dict[str, str]] = None,
    size_kb: float = 1024.0,
    fmt: str = "SafeTensor",
    primary: bool = True,
    fp: str = "fp16",
    size: str = "pruned",
    download_url: Optional[str] = None,
) -> Dict[str, Any]:
    if hashes is None:
        hashes = digests(content if content is not None else b"model-bytes")
    return {
        "id": file_id,
        "name": name,
        "type": "Model",
        "sizeKB": size_kb,
        "primary": primary,
        "downloadUrl": download_url or f"https://civitai.com/api/download/models/{file_id}",
        "metadata": {"fp": fp, "size": size, "format": fmt},
        "hashes": hashes,
    }


def version_payload(
    version_id: int = 100,
    *,
    model_id: int = 10,
    name: str = "v1.0",
    base_model: str = "SD1.5",
    files: Optional[List[Dict[str, Any]]] = None,
    images: Optional[List[Dict[str, Any]]] = None,
    model_name: str = "toon",
    model_type: str = "CKPT",
) -> Dict[str, Any]:
    return {
        "id": version_id,
        "modelId": model_id,
        "name": name,
        "baseModel": base_model,
        "downloadUrl": f"https://civitai.com/api/download/models/{version_id}",
        "model": {"name": model_name, "type": model_type, "nsfw": False, "poi": False},
        "files": files if files is not None else [file_payload()],
        "images": images or [],
        "trainedWords": ["toon style"],
    }


def model_payload(
    model_id: int = 10,
    *,
    name: str = "toon",
    model_type: str = "CKPT",
    creator: str = "alice",
    versions: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    return {
        "id": model_id,
        "name": name,
        "type": model_type,
        "nsfw": False,
        "creator": {"username": creator, "image": None},
        "tags": ["style"],
        "modelVersions": versions if versions is not None else [version_payload(model_id=model_id)],
    }


def models_page(items: List[Dict[str, Any]], next_cursor: Optional[str] = None) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {}
    if next_cursor is not None:
        metadata["nextCursor"] = next_cursor
    return {"items": items, "metadata": metadata}
