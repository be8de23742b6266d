from __future__ import annotations
"""Frame extraction via FFmpeg.

Used for last-frame continuation and for providers that ship no thumbnail.
FFmpeg runs in a worker thread so the event loop keeps polling other jobs.
"""

import asyncio
import logging
import os
import subprocess

from clipweaver.config import get_settings
from clipweaver.errors import FrameExtractionError

logger = logging.getLogger(__name__)

# Seek to 99% of the duration; the very last timestamp is often an empty frame.
LAST_FRAME_POSITION = 0.99


async def extract_last_frame(video_path: str, output_path: str) -> str:
    """Write the final frame of ``video_path`` to ``output_path``.

    The output format follows the extension (.png, .jpg, .webp).
    Raises FrameExtractionError if FFmpeg is missing or fails.
    """
    return await asyncio.to_thread(_extract_last_frame, video_path, output_path)


def _extract_last_frame(video_path: str, output_path: str) -> str:
    if not os.path.exists(video_path):
        raise FrameExtractionError(f"Video not found: {video_path}")

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    ffmpeg = get_settings().FFMPEG_BINARY

    duration = probe_duration(video_path)
    if duration:
        seek = ["-ss", f"{duration * LAST_FRAME_POSITION:.3f}"]
    else:
        seek = ["-sseof", "-0.1"]

    cmd = [ffmpeg, "-y", *seek, "-i", video_path, "-frames:v", "1", output_path]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
    except (subprocess.TimeoutExpired, FileNotFoundError) as exc:
        raise FrameExtractionError(f"FFmpeg unavailable or timed out: {exc}") from exc

    if result.returncode != 0 or not os.path.exists(output_path):
        logger.error("FFmpeg frame extraction failed: %s", result.stderr[-500:])
        raise FrameExtractionError(f"Could not extract last frame of {video_path}")

    logger.info("Extracted last frame: %s → %s", video_path, output_path)
    return output_path


def probe_duration(video_path: str) -> float | None:
    """Container duration in seconds, or None when ffprobe can't tell."""
    ffprobe = os.path.join(
        os.path.dirname(get_settings().FFMPEG_BINARY),
        "ffprobe",
    )
    try:
        result = subprocess.run(
            [ffprobe, "-v", "error", "-show_entries", "format=duration",
             "-of", "default=noprint_wrappers=1:nokey=1", video_path],
            capture_output=True, text=True, timeout=10,
        )
        return float(result.stdout.strip())
    except (subprocess.TimeoutExpired, FileNotFoundError, ValueError):
        return None
