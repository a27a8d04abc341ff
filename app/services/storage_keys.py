"""Content classification, bucket routing and storage key generation.

Everything here is pure: no I/O and no database access.
"""

from __future__ import annotations

import hashlib
import re
import secrets
import time
import uuid
from pathlib import PurePosixPath

from app.models.stored_file import FileKind

UNSAFE_BASENAME_RE = re.compile(r"[^A-Za-z0-9_-]+")
UNSAFE_EXTENSION_RE = re.compile(r"[^A-Za-z0-9]+")

OFFICE_DOCUMENT_TYPES = frozenset(
    {
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    }
)
DOCUMENT_TYPE_MARKERS = ("document", "spreadsheet", "presentation")

BUCKET_SUFFIX_BY_KIND: dict[FileKind, str] = {
    FileKind.image: "images",
    FileKind.video: "videos",
    FileKind.pdf: "documents",
    FileKind.document: "documents",
}


def _normalize_content_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def classify_content_type(content_type: str | None) -> FileKind:
    """Map a content type onto exactly one ``FileKind``."""
    normalized = _normalize_content_type(content_type)
    if normalized.startswith("image/"):
        return FileKind.image
    if normalized == "application/pdf":
        return FileKind.pdf
    if normalized.startswith("video/"):
        return FileKind.video
    if normalized in OFFICE_DOCUMENT_TYPES or any(
        marker in normalized for marker in DOCUMENT_TYPE_MARKERS
    ):
        return FileKind.document
    if normalized.startswith("text/"):
        return FileKind.text
    return FileKind.other


def route_bucket(content_type: str | None) -> str | None:
    """Return the bucket suffix for a content type, or None for the default bucket."""
    return BUCKET_SUFFIX_BY_KIND.get(classify_content_type(content_type))


def _split_filename(original_filename: str) -> tuple[str, str]:
    name = PurePosixPath(original_filename.replace("\\", "/")).name
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        # "README" or ".bashrc": no usable extension
        return name, ""
    return stem, ext


def sanitize_basename(original_filename: str) -> str:
    stem, _ = _split_filename(original_filename)
    return UNSAFE_BASENAME_RE.sub("", stem) or "file"


def sanitize_extension(original_filename: str) -> str:
    _, ext = _split_filename(original_filename)
    cleaned = UNSAFE_EXTENSION_RE.sub("", ext)
    return f".{cleaned}" if cleaned else ""


def generate_key(owner_id: uuid.UUID | str, original_filename: str) -> str:
    """Build ``<owner>/<unix-millis>-<16 hex>-<basename><ext>``."""
    owner_segment = UNSAFE_BASENAME_RE.sub("", str(owner_id)) or "anonymous"
    millis = int(time.time() * 1000)
    random_part = secrets.token_hex(8)
    basename = sanitize_basename(original_filename)
    extension = sanitize_extension(original_filename)
    return f"{owner_segment}/{millis}-{random_part}-{basename}{extension}"


def compute_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
