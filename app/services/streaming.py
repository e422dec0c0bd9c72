"""HTTP byte-range parsing, file streaming and HLS playlist delivery."""
import os
import re
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import aiofiles
import aiofiles.os

STREAM_CHUNK_SIZE = 64 * 1024

HLS_MEDIA_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
}

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


class RangeNotSatisfiable(Exception):
    """The requested range lies outside the resource."""

    def __init__(self, file_size: int):
        self.file_size = file_size
        super().__init__(f"Range not satisfiable for {file_size} bytes")

    @property
    def content_range(self) -> str:
        return f"bytes */{self.file_size}"


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte range within a file of ``file_size`` bytes."""

    start: int
    end: int
    file_size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.file_size}"


def parse_range_header(header: Optional[str], file_size: int) -> Optional[ByteRange]:
    """
    Parse a single-range ``Range`` header.

    Supports ``bytes=start-end``, open-ended ``bytes=start-`` and suffix
    ``bytes=-length`` forms. An end past the file is clamped to the last byte.

    Returns:
        ByteRange, or None when there is no usable header (serve the whole file)

    Raises:
        RangeNotSatisfiable: Start lies beyond the file or the range is inverted
    """
    if not header:
        return None

    match = _RANGE_RE.match(header.strip())
    if not match:
        # Malformed or multi-range headers are ignored
        return None

    start_str, end_str = match.groups()
    if not start_str and not end_str:
        return None

    if file_size <= 0:
        raise RangeNotSatisfiable(file_size)

    last = file_size - 1

    if not start_str:
        suffix = int(end_str)
        if suffix == 0:
            raise RangeNotSatisfiable(file_size)
        start = max(0, file_size - suffix)
        return ByteRange(start=start, end=last, file_size=file_size)

    start = int(start_str)
    end = int(end_str) if end_str else last
    if start > last or end < start:
        raise RangeNotSatisfiable(file_size)

    return ByteRange(start=start, end=min(end, last), file_size=file_size)


async def iter_file(
    path: str,
    start: int = 0,
    length: Optional[int] = None,
    chunk_size: int = STREAM_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """Yield ``length`` bytes of a file from ``start`` (to EOF when None)."""
    if length is None:
        length = await aiofiles.os.path.getsize(path) - start
    remaining = length
    async with aiofiles.open(path, "rb") as f:
        await f.seek(start)
        while remaining > 0:
            chunk = await f.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


def resolve_child_path(directory: str, name: str) -> Optional[str]:
    """Join ``name`` onto ``directory``, refusing anything that escapes it."""
    base = os.path.realpath(directory)
    candidate = os.path.realpath(os.path.join(base, name))
    if os.path.dirname(candidate) != base:
        return None
    return candidate


def rewrite_playlist(playlist: str, segment_prefix: str) -> str:
    """
    Point every bare segment reference of an HLS playlist at ``segment_prefix``.

    ffmpeg writes segment names relative to the playlist file. When the
    playlist is served from a different URL than its segments, players
    resolve those names against the wrong path, so each one is prefixed.
    Tags, comments and absolute URIs are left as they are.
    """
    lines = []
    for line in playlist.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#") and "://" not in stripped and not stripped.startswith("/"):
            line = f"{segment_prefix}{stripped}"
        lines.append(line)
    return "\n".join(lines) + "\n"


async def read_playlist(path: str, segment_prefix: str) -> str:
    async with aiofiles.open(path, "r") as f:
        return rewrite_playlist(await f.read(), segment_prefix)
