"""FFmpeg/ffprobe wrapper.

Every external call runs as an asyncio subprocess under a deadline. A process
that outlives its deadline is killed and reported as ``TranscodeTimeoutError``.
"""
import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

import aiofiles.os

from app.config import settings

logger = logging.getLogger(__name__)


class TranscodeError(Exception):
    """An ffmpeg or ffprobe invocation failed."""


class TranscodeTimeoutError(TranscodeError):
    """An ffmpeg or ffprobe invocation exceeded its deadline."""


@dataclass(frozen=True)
class TranscodeProfile:
    """Target rendition for one resolution."""

    resolution: str
    width: int
    height: int
    bitrate_kbps: int
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"

    @property
    def bitrate(self) -> str:
        return f"{self.bitrate_kbps}k"


# Processed in this order
RESOLUTIONS: List[TranscodeProfile] = [
    TranscodeProfile(resolution="720p", width=1280, height=720, bitrate_kbps=2500),
    TranscodeProfile(resolution="1080p", width=1920, height=1080, bitrate_kbps=5000),
]


@dataclass
class VideoMetadata:
    """Subset of ffprobe output the platform stores."""

    duration: float = 0.0
    width: Optional[int] = None
    height: Optional[int] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    bitrate: Optional[int] = None
    format_name: Optional[str] = None
    fps: Optional[float] = None

    @classmethod
    def from_ffprobe(cls, data: dict) -> "VideoMetadata":
        fmt = data.get("format", {})
        streams = data.get("streams", [])
        video = next((s for s in streams if s.get("codec_type") == "video"), {})
        audio = next((s for s in streams if s.get("codec_type") == "audio"), {})

        return cls(
            duration=_to_float(fmt.get("duration")) or _to_float(video.get("duration")) or 0.0,
            width=video.get("width"),
            height=video.get("height"),
            video_codec=video.get("codec_name"),
            audio_codec=audio.get("codec_name"),
            bitrate=_to_int(fmt.get("bit_rate")),
            format_name=fmt.get("format_name"),
            fps=_parse_frame_rate(video.get("r_frame_rate")),
        )


def _to_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_frame_rate(value: Optional[str]) -> Optional[float]:
    """ffprobe reports frame rates as fractions, e.g. "30000/1001"."""
    if not value:
        return None
    num, _, den = value.partition("/")
    try:
        numerator = float(num)
        denominator = float(den) if den else 1.0
    except ValueError:
        return None
    if denominator == 0:
        return None
    return round(numerator / denominator, 3)


class FFmpegTranscoder:
    """Async front end to the ffmpeg and ffprobe binaries."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        probe_timeout_seconds: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path
        self.timeout_seconds = timeout_seconds or settings.ffmpeg_timeout_seconds
        self.probe_timeout_seconds = probe_timeout_seconds or settings.ffprobe_timeout_seconds

    async def _run(self, cmd: List[str], timeout: float) -> bytes:
        """
        Run a command and return its stdout.

        Raises:
            TranscodeTimeoutError: The deadline passed; the process was killed
            TranscodeError: Non-zero exit status or missing binary
        """
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscodeError(f"Executable not found: {cmd[0]}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TranscodeTimeoutError(f"{os.path.basename(cmd[0])} timed out after {timeout}s")

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip().splitlines()
            tail = message[-1] if message else f"exit status {process.returncode}"
            raise TranscodeError(f"{os.path.basename(cmd[0])} failed: {tail}")

        return stdout

    async def probe(self, input_path: str) -> VideoMetadata:
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            input_path,
        ]
        stdout = await self._run(cmd, self.probe_timeout_seconds)
        try:
            data = json.loads(stdout or b"{}")
        except json.JSONDecodeError as e:
            raise TranscodeError(f"Unreadable ffprobe output: {e}") from e
        return VideoMetadata.from_ffprobe(data)

    async def extract_thumbnail(
        self,
        input_path: str,
        output_path: str,
        timestamp: Optional[str] = None,
    ) -> str:
        """Grab a single 1280x720 JPEG frame."""
        await aiofiles.os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-ss", timestamp or settings.thumbnail_timestamp,
            "-i", input_path,
            "-frames:v", "1",
            "-s", "1280x720",
            "-q:v", "2",
            output_path,
        ]
        await self._run(cmd, self.probe_timeout_seconds)
        return output_path

    def build_transcode_command(self, input_path: str, output_path: str, profile: TranscodeProfile) -> List[str]:
        return [
            self.ffmpeg_path,
            "-y",
            "-i", input_path,
            "-c:v", profile.video_codec,
            "-b:v", profile.bitrate,
            "-s", f"{profile.width}x{profile.height}",
            "-c:a", profile.audio_codec,
            "-b:a", profile.audio_bitrate,
            "-movflags", "+faststart",
            output_path,
        ]

    async def transcode(self, input_path: str, output_path: str, profile: TranscodeProfile) -> str:
        await aiofiles.os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        logger.info(f"Transcoding {input_path} to {profile.resolution}")
        await self._run(
            self.build_transcode_command(input_path, output_path, profile),
            self.timeout_seconds,
        )
        return output_path

    async def generate_hls(self, input_path: str, output_dir: str) -> str:
        """Segment the source into 10-second HLS chunks. Returns the playlist path."""
        await aiofiles.os.makedirs(output_dir, exist_ok=True)
        playlist_path = os.path.join(output_dir, "playlist.m3u8")
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-i", input_path,
            "-codec", "copy",
            "-start_number", "0",
            "-hls_time", "10",
            "-hls_list_size", "0",
            "-f", "hls",
            playlist_path,
        ]
        await self._run(cmd, self.timeout_seconds)
        return playlist_path
