"""
Upload filename and MIME type helpers.
"""

import os
import re
import uuid
from typing import Optional

MIME_TYPES = {
    "pdf": {"application/pdf", "application/x-pdf"},
    "docx": {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"},
    "txt": {"text/plain"},
    "md": {"text/markdown", "text/x-markdown", "text/plain"},
}

# Browsers and curl send this when they do not know better
GENERIC_MIME_TYPES = {"application/octet-stream", "binary/octet-stream"}

_unsafe_chars = re.compile(r"[^A-Za-z0-9_-]+")


def get_extension(filename: str) -> str:
    """Lower-case extension without the dot, '' when there is none."""
    return os.path.splitext(os.path.basename(filename or ""))[1].lower().lstrip(".")


def mime_matches_extension(content_type: Optional[str], extension: str) -> bool:
    if not content_type:
        return True
    mime = content_type.split(";", 1)[0].strip().lower()
    if not mime or mime in GENERIC_MIME_TYPES:
        return True
    return mime in MIME_TYPES.get(extension, set())


def sanitize_stem(filename: str, max_length: int = 50) -> str:
    stem = os.path.splitext(os.path.basename(filename or ""))[0]
    stem = _unsafe_chars.sub("-", stem).strip("-")[:max_length]
    return stem or "document"


def build_storage_key(owner_id: str, knowledge_base_id: int, filename: str) -> str:
    """``<owner>/<kb>/<sanitized-stem>-<uuid12>.<ext>``"""
    ext = get_extension(filename)
    unique = f"{sanitize_stem(filename)}-{uuid.uuid4().hex[:12]}"
    stored_name = f"{unique}.{ext}" if ext else unique
    owner_segment = _unsafe_chars.sub("-", owner_id or "").strip("-")[:64] or "owner"
    return f"{owner_segment}/{knowledge_base_id}/{stored_name}"
