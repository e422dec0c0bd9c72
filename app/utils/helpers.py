"""Helper utilities."""
import logging
import os
import secrets
import shutil
import uuid
from datetime import datetime
from typing import Optional

import aiofiles.os

logger = logging.getLogger(__name__)

_rmtree = aiofiles.os.wrap(shutil.rmtree)


def get_current_month(now: Optional[datetime] = None) -> str:
    """Usage month key (YYYY-MM, UTC)."""
    now = now or datetime.utcnow()
    return now.strftime("%Y-%m")


def get_file_extension(filename: str) -> str:
    """Lowercased extension without the dot ("" when there is none)."""
    return os.path.splitext(filename or "")[1].lower().lstrip(".")


def generate_upload_filename(original_filename: str) -> str:
    """
    Build a collision-free storage name for an upload.

    Example: clip.MP4 -> video-1718000000000-3f9a0c1d.mp4
    """
    timestamp = int(datetime.utcnow().timestamp() * 1000)
    ext = get_file_extension(original_filename)
    suffix = f".{ext}" if ext else ""
    return f"video-{timestamp}-{secrets.token_hex(4)}{suffix}"


def to_uuid(value) -> uuid.UUID:
    """Coerce a string id to UUID (ValueError when malformed)."""
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


async def remove_file(path: Optional[str]) -> None:
    """Delete a file if it exists. Failures are logged, not raised."""
    if not path:
        return
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")


async def remove_tree(path: Optional[str]) -> None:
    """Delete a directory and everything below it, if present."""
    if not path or not await aiofiles.os.path.isdir(path):
        return
    try:
        await _rmtree(path)
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")
