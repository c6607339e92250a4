"""Content-based MIME detection and file categorisation.

The caller-declared Content-Type is only a hint: the magic bytes at the start
of the payload decide, and the declared type (or the filename extension) is
only used to tell container formats apart, e.g. a ZIP that is really a .docx.
"""
import codecs
import mimetypes
from typing import Optional

from .application.ports.file_repo import FileCategory

OLE_STORAGE = "application/x-ole-storage"

# (offset, signature, mime type)
MAGIC_SIGNATURES = [
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"BM", "image/bmp"),
    (0, b"II*\x00", "image/tiff"),
    (0, b"MM\x00*", "image/tiff"),
    (0, b"%PDF-", "application/pdf"),
    (0, b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", OLE_STORAGE),
    (0, b"PK\x03\x04", "application/zip"),
    (0, b"PK\x05\x06", "application/zip"),
    (0, b"PK\x07\x08", "application/zip"),
    (0, b"\x1f\x8b", "application/gzip"),
    (0, b"Rar!\x1a\x07", "application/vnd.rar"),
    (0, b"7z\xbc\xaf\x27\x1c", "application/x-7z-compressed"),
    (0, b"\x1aE\xdf\xa3", "video/webm"),
    (4, b"ftyp", "video/mp4"),
    (0, b"OggS", "audio/ogg"),
    (0, b"ID3", "audio/mpeg"),
    (0, b"MZ", "application/x-msdownload"),
    (0, b"\x7fELF", "application/x-executable"),
]

RIFF_SUBTYPES = {
    b"WEBP": "image/webp",
    b"WAVE": "audio/wav",
    b"AVI ": "video/x-msvideo",
}

RASTER_IMAGE_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
})

OOXML_TYPES = frozenset({
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
})

OLE_TYPES = frozenset({
    "application/msword",
    "application/vnd.ms-excel",
    "application/vnd.ms-powerpoint",
})

TEXT_TYPES = frozenset({
    "text/plain",
    "text/csv",
    "text/markdown",
    "application/json",
})

DOCUMENT_TYPES = frozenset({"application/pdf"}) | OOXML_TYPES | OLE_TYPES | TEXT_TYPES

SUBDIRECTORIES = {
    FileCategory.IMAGE: "images",
    FileCategory.DOCUMENT: "documents",
    FileCategory.OTHER: "other",
}


def normalize_mime_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.split(";", 1)[0].strip().lower() or None


def guess_mime_from_name(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    mime_type, _ = mimetypes.guess_type(filename)
    return normalize_mime_type(mime_type)


def sniff_mime_type(data: bytes) -> Optional[str]:
    """Detect a MIME type from magic bytes, or None when nothing matches."""
    head = data[:512]
    if head[:4] == b"RIFF" and len(head) >= 12:
        return RIFF_SUBTYPES.get(head[8:12])
    for offset, signature, mime_type in MAGIC_SIGNATURES:
        if head[offset:offset + len(signature)] == signature:
            return mime_type
    stripped = head.lstrip()
    if stripped.startswith(b"<svg") or (stripped.startswith(b"<?xml") and b"<svg" in data[:2048]):
        return "image/svg+xml"
    return None


def looks_like_text(data: bytes, sample_size: int = 4096) -> bool:
    sample = data[:sample_size]
    if not sample or b"\x00" in sample:
        return False
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        # final=False tolerates a multi-byte sequence cut by the sample boundary
        decoder.decode(sample, final=len(data) <= sample_size)
    except UnicodeDecodeError:
        return False
    return True


def resolve_mime_type(data: bytes, declared_mime_type: Optional[str], original_name: Optional[str]) -> str:
    """Effective MIME type of an upload, driven by its content."""
    declared = normalize_mime_type(declared_mime_type)
    by_name = guess_mime_from_name(original_name)
    hints = [h for h in (declared, by_name) if h]

    sniffed = sniff_mime_type(data)
    if sniffed == "application/zip":
        return next((h for h in hints if h in OOXML_TYPES), sniffed)
    if sniffed == OLE_STORAGE:
        return next((h for h in hints if h in OLE_TYPES), sniffed)
    if sniffed:
        return sniffed
    if looks_like_text(data):
        return next((h for h in hints if h in TEXT_TYPES), "text/plain")
    return "application/octet-stream"


def category_for(mime_type: str) -> FileCategory:
    if mime_type.startswith("image/"):
        return FileCategory.IMAGE
    if mime_type in DOCUMENT_TYPES:
        return FileCategory.DOCUMENT
    return FileCategory.OTHER


def is_processable_image(mime_type: str) -> bool:
    return mime_type in RASTER_IMAGE_TYPES


def subdirectory_for(category: FileCategory) -> str:
    return SUBDIRECTORIES.get(category, "other")
