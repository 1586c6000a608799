"""Filesystem and input helpers."""

import re
from pathlib import Path
from typing import List, Optional

import aiofiles

from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)

_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\r\n\t]')
_WHITESPACE = re.compile(r"\s+")
MAX_FOLDER_NAME = 100
EMPTY_FOLDER_NAME = "(no name)"


def sanitize_folder_name(name: Optional[str]) -> str:
    """Make a vendor-supplied name safe to use as a folder name."""
    if not name or not isinstance(name, str):
        return EMPTY_FOLDER_NAME

    sanitized = _INVALID_NAME_CHARS.sub("_", name)
    sanitized = _WHITESPACE.sub(" ", sanitized).strip()
    sanitized = sanitized[:MAX_FOLDER_NAME]

    return sanitized or EMPTY_FOLDER_NAME


def parse_target_ids(raw: Optional[str]) -> List[str]:
    """Split comma-separated target ids, dropping blanks."""
    if not raw or not isinstance(raw, str):
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


async def save_caption(media_path: Path, caption: Optional[str]) -> Optional[Path]:
    """
    Write a caption next to a media file as <name>.txt.

    Captions are optional extras, so write errors are logged, not raised.

    Returns:
        Path of the caption file, or None if nothing was written
    """
    if not caption or not caption.strip():
        return None

    caption_path = media_path.with_suffix(".txt")
    try:
        async with aiofiles.open(caption_path, "w", encoding="utf-8") as f:
            await f.write(caption.strip())
    except OSError as e:
        logger.warning(f"Failed to save caption {caption_path}: {e}")
        return None
    return caption_path
