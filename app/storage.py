from __future__ import annotations

import logging
import os
import secrets
import string
from pathlib import Path
from typing import Container, Optional

from app.config import FILE_ID_LENGTH, PREVIEW_DIR

os.makedirs(PREVIEW_DIR, exist_ok=True)

logger = logging.getLogger("compression_studio.storage")

_SLUG_ALPHABET = string.ascii_letters + string.digits
_MAX_SLUG_ATTEMPTS = 5
PREVIEW_ROOT = Path(PREVIEW_DIR).resolve()


def generate_id(length: int = FILE_ID_LENGTH, taken: Container[str] = ()) -> str:
    for _ in range(_MAX_SLUG_ATTEMPTS):
        candidate = "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(length))
        if candidate not in taken:
            return candidate
    raise RuntimeError("Unable to allocate a unique id")


def _reserve_path(ext: str) -> tuple[str, Path]:
    for _ in range(_MAX_SLUG_ATTEMPTS):
        handle = f"{generate_id()}{ext}"
        path = PREVIEW_ROOT / handle
        if not path.exists():
            return handle, path
    raise RuntimeError("Unable to allocate a unique preview slug")


def save_preview(data: bytes, original_name: str) -> str:
    ext = os.path.splitext(original_name)[1].lower() or ".bin"
    handle, path = _reserve_path(ext)
    with open(path, "wb") as f:
        f.write(data)
    return handle


def resolve_preview(handle: str) -> Optional[Path]:
    try:
        path = (PREVIEW_ROOT / handle).resolve()
        path.relative_to(PREVIEW_ROOT)
    except (ValueError, RuntimeError):
        return None
    if path == PREVIEW_ROOT:
        return None
    return path


def release_preview(handle: str) -> None:
    path = resolve_preview(handle)
    if path is None:
        logger.warning("event=preview_release_refused handle=%s", handle)
        return
    path.unlink(missing_ok=True)
    logger.debug("event=preview_released handle=%s", handle)
