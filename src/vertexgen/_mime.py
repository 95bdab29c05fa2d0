"""Content-type inference: magic-byte sniffing with extension fallback."""

from __future__ import annotations

import mimetypes
from pathlib import PurePosixPath
from urllib.parse import urlparse

OCTET_STREAM = "application/octet-stream"

# Only the head of the payload is inspected.
SNIFF_LENGTH = 512

# Ordered (offset, signature, mime type); first match wins.
_SIGNATURES: tuple[tuple[int, bytes, str], ...] = (
    (0, b"%PDF-", "application/pdf"),
    (0, b"%!PS-Adobe-", "application/postscript"),
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"BM", "image/bmp"),
    (0, b"\x00\x00\x01\x00", "image/x-icon"),
    (0, b"\x00\x00\x02\x00", "image/x-icon"),
    (0, b"ID3", "audio/mpeg"),
    (0, b"fLaC", "audio/flac"),
    (0, b"OggS\x00", "application/ogg"),
    (0, b"MThd\x00\x00\x00\x06", "audio/midi"),
    (0, b"\x1aE\xdf\xa3", "video/webm"),
    (0, b"PK\x03\x04", "application/zip"),
    (0, b"\x1f\x8b\x08", "application/x-gzip"),
    (0, b"Rar!\x1a\x07", "application/x-rar-compressed"),
    (0, b"\x00asm", "application/wasm"),
    (0, b"wOFF", "font/woff"),
    (0, b"wOF2", "font/woff2"),
)

# RIFF containers carry their format at offset 8.
_RIFF_FORMATS: dict[bytes, str] = {
    b"WEBP": "image/webp",
    b"WAVE": "audio/wav",
    b"AVI ": "video/avi",
}

# ISO base media (ftyp) major brands that are not plain MP4 video.
_FTYP_BRANDS: dict[bytes, str] = {
    b"qt  ": "video/quicktime",
    b"M4A ": "audio/mp4",
    b"M4B ": "audio/mp4",
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"mif1": "image/heif",
    b"msf1": "image/heif",
    b"avif": "image/avif",
    b"3gp4": "video/3gpp",
    b"3gp5": "video/3gpp",
    b"3gp6": "video/3gpp",
    b"3g2a": "video/3gpp2",
}

_TEXT_BOMS: tuple[tuple[bytes, str], ...] = (
    (b"\xef\xbb\xbf", "text/plain"),
    (b"\xfe\xff", "text/plain"),
    (b"\xff\xfe", "text/plain"),
)

_MARKUP_PREFIXES: tuple[tuple[bytes, str], ...] = (
    (b"<?xml", "text/xml"),
    (b"<!doctype html", "text/html"),
    (b"<html", "text/html"),
    (b"<head", "text/html"),
    (b"<body", "text/html"),
    (b"<svg", "image/svg+xml"),
)

# Bytes that never appear in plain text (control chars other than
# tab, newline, form feed, carriage return and escape).
_BINARY_BYTES = frozenset(
    [*range(0x00, 0x09), 0x0B, *range(0x0E, 0x1B), *range(0x1C, 0x20)]
)

# Extensions the platform table is often missing but the backend accepts.
_EXTRA_EXTENSION_TYPES: dict[str, str] = {
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".avif": "image/avif",
    ".flac": "audio/flac",
    ".aac": "audio/aac",
    ".m4a": "audio/mp4",
    ".opus": "audio/ogg",
    ".ogg": "audio/ogg",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".md": "text/markdown",
}


def sniff_mime_type(data: bytes) -> str:
    """Infer a MIME type from the leading bytes of *data*.

    Returns ``application/octet-stream`` when nothing matches.
    """
    head = data[:SNIFF_LENGTH]
    if not head:
        return OCTET_STREAM

    for offset, signature, mime_type in _SIGNATURES:
        if head[offset : offset + len(signature)] == signature:
            return mime_type

    if head[:4] == b"RIFF" and len(head) >= 12:
        riff = _RIFF_FORMATS.get(head[8:12])
        if riff is not None:
            return riff

    if len(head) >= 12 and head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand[:3] == b"3gp":
            return _FTYP_BRANDS.get(brand, "video/3gpp")
        return _FTYP_BRANDS.get(brand, "video/mp4")

    # BOMs first: the UTF-16LE mark also looks like an MPEG frame sync.
    for bom, mime_type in _TEXT_BOMS:
        if head.startswith(bom):
            return mime_type

    # MPEG audio frame sync without an ID3 tag.
    if len(head) >= 2 and head[0] == 0xFF and (head[1] & 0xE0) == 0xE0:
        return "audio/mpeg"

    stripped = head.lstrip(b" \t\r\n").lower()
    for prefix, mime_type in _MARKUP_PREFIXES:
        if stripped.startswith(prefix):
            return mime_type

    if not any(b in _BINARY_BYTES for b in head):
        return "text/plain"

    return OCTET_STREAM


def _path_component(path: str) -> str:
    if "://" in path:
        try:
            return urlparse(path).path
        except ValueError:  # e.g. unbalanced IPv6 brackets in the host
            return path
    return path


def guess_mime_type_from_extension(path: str) -> str | None:
    """Map the extension of a filesystem path or URL to a MIME type."""
    suffix = PurePosixPath(_path_component(path)).suffix.lower()
    if not suffix:
        return None
    extra = _EXTRA_EXTENSION_TYPES.get(suffix)
    if extra is not None:
        return extra
    guessed, _encoding = mimetypes.guess_type(f"file{suffix}", strict=False)
    return guessed


def detect_mime_type(data: bytes, path: str) -> str:
    """Sniff *data* first, then fall back to *path*'s extension.

    Never fails: the generic octet-stream type is returned when neither step
    yields a match.
    """
    sniffed = sniff_mime_type(data)
    if sniffed != OCTET_STREAM:
        return sniffed
    return guess_mime_type_from_extension(path) or OCTET_STREAM
