from __future__ import annotations

import mimetypes
import re
import time
from typing import Optional
from urllib.parse import urlparse

from genmedia.domain.enums import StorageCategory

_UNSAFE = re.compile(r"[^0-9A-Za-z가-힣_-]")

_EXT_BY_TYPE = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "text/plain": "txt",
}


def _clean_segment(s: str) -> str:
    return "/".join(
        seg for seg in (s or "").replace("\\", "/").split("/") if seg.strip() and seg not in (".", "..")
    )


def sanitize_base_name(name: str, default: str = "output") -> str:
    """Strip the extension and replace anything outside [A-Za-z0-9_-] (Hangul kept) with '_'."""
    base = (name or "").strip().rsplit("/", 1)[-1]
    if "." in base:
        base = base.rsplit(".", 1)[0]
    base = _UNSAFE.sub("_", base)
    return base or default


def ext_for_content_type(content_type: Optional[str]) -> Optional[str]:
    ct = (content_type or "").lower().split(";")[0].strip()
    if not ct:
        return None
    if ct in _EXT_BY_TYPE:
        return _EXT_BY_TYPE[ct]
    guessed = mimetypes.guess_extension(ct)
    return guessed.lstrip(".") if guessed else None


def ext_from_url(url: str) -> Optional[str]:
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return None
    ext = last.rsplit(".", 1)[-1].lower()
    return ext if ext.isalnum() and len(ext) <= 5 else None


def content_type_for_ext(ext: Optional[str]) -> Optional[str]:
    if not ext:
        return None
    ct, _ = mimetypes.guess_type(f"x.{ext}")
    return ct


def build_storage_path(
    *,
    owner_id: str,
    category: StorageCategory,
    base_name: str,
    ext: Optional[str],
    timestamp_ms: Optional[int] = None,
) -> str:
    """
    users/{owner_id}/{category path}/{epoch_ms}_{safe base}.{ext}

    The timestamp prefix keeps repeated uploads of the same name from colliding.
    """
    owner = _clean_segment(str(owner_id))
    if not owner:
        raise ValueError("owner_id is required")
    ts = int(timestamp_ms if timestamp_ms is not None else time.time() * 1000)
    e = (ext or "bin").lstrip(".").lower() or "bin"
    filename = f"{ts}_{sanitize_base_name(base_name)}.{e}"
    return f"users/{owner}/{category.path_segment}/{filename}"
