"""Content sniffing from leading bytes, used to correct file extensions."""

from __future__ import annotations

from typing import Optional

__all__ = ["SNIFF_BYTES", "detect_mime", "extension_for_mime", "sniff_extension"]

SNIFF_BYTES = 512

_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/avif": ".avif",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
}


def detect_mime(head: bytes) -> Optional[str]:
    """Return the media type recognised from ``head``, or None when unknown."""

    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/webm"
    if len(head) >= 12 and head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand in (b"avif", b"avis"):
            return "image/avif"
        return "video/mp4"
    return None


def extension_for_mime(mime: Optional[str]) -> Optional[str]:
    if not mime:
        return None
    return _MIME_EXTENSIONS.get(mime)


def sniff_extension(head: bytes) -> Optional[str]:
    """Extension (with dot) for the content in ``head``; None keeps the current one."""

    return extension_for_mime(detect_mime(head[:SNIFF_BYTES]))
