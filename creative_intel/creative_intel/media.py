"""
Media utilities for downloading, probing, and decoding video ad creatives.

Every blocking call has a hard ceiling: downloads use a requests timeout and
every ffmpeg/ffprobe subprocess is started with ``timeout=``.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import requests

from .pipeline.errors import DecodeError, FetchError

logger = logging.getLogger(__name__)

KEYFRAME_FRACTIONS = (0.0, 0.25, 0.5, 0.75, 0.99)
FALLBACK_KEYFRAME_OFFSETS = (0.0, 1.0, 2.0, 3.0, 4.0)
DOWNLOAD_CHUNK_SIZE = 1024 * 256


@dataclass
class MediaInfo:
    """Subset of ffprobe output the tagging pipeline needs."""
    duration_seconds: Optional[float]
    has_audio: bool
    has_video: bool = True


def _ensure_binary_exists(binary: str) -> None:
    if shutil.which(binary) is None:
        raise RuntimeError(
            f"Required binary '{binary}' not found on PATH. Please install ffmpeg."
        )


def make_scratch_dir(prefix: str = "creative_intel_") -> Path:
    return Path(tempfile.mkdtemp(prefix=prefix))


def download_to_path(url: str, dest: Path, timeout: float) -> Path:
    """
    Stream a remote video to ``dest``.

    ``timeout`` bounds both connect and each read; a stalled transfer raises
    instead of hanging.
    """
    logger.debug("Downloading %s -> %s", url, dest)
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(dest, "wb") as fh:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
    except requests.RequestException as exc:
        raise FetchError(f"Failed to download video: {exc}", "download", cause=exc) from exc
    if not dest.exists() or dest.stat().st_size == 0:
        raise FetchError(f"Failed to download video: empty body from {url}", "download")
    return dest


def inspect_media(path: Path, timeout: float) -> MediaInfo:
    """
    Use ffprobe to read duration and which stream types exist.

    Duration is ``None`` when ffprobe cannot determine it; callers fall back
    to fixed keyframe offsets.
    """
    _ensure_binary_exists("ffprobe")
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    logger.debug("Running ffprobe: %s", " ".join(cmd))
    try:
        result = subprocess.run(  # noqa: S603,S607
            cmd, capture_output=True, text=True, check=True, timeout=timeout
        )
    except subprocess.TimeoutExpired as exc:
        raise DecodeError(f"ffprobe timed out after {timeout:.0f}s", "inspect", cause=exc) from exc
    except subprocess.CalledProcessError as exc:
        raise DecodeError(f"ffprobe failed: {(exc.stderr or '').strip()[:200]}", "inspect", cause=exc) from exc

    try:
        info = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise DecodeError("ffprobe returned invalid JSON", "inspect", cause=exc) from exc

    duration: Optional[float] = None
    raw_duration = (info.get("format") or {}).get("duration")
    if raw_duration not in (None, "", "N/A"):
        try:
            duration = float(raw_duration)
        except ValueError:
            duration = None
    if duration is not None and duration <= 0:
        duration = None

    streams = info.get("streams", [])
    return MediaInfo(
        duration_seconds=duration,
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
        has_video=any(s.get("codec_type") == "video" for s in streams),
    )


def keyframe_timestamps(duration: Optional[float]) -> List[float]:
    """0/25/50/75/99% of the duration, or fixed 1-second offsets when unknown."""
    if not duration or duration <= 0:
        return list(FALLBACK_KEYFRAME_OFFSETS)
    return [round(duration * fraction, 3) for fraction in KEYFRAME_FRACTIONS]


def extract_frame(video_path: Path, timestamp: float, out_path: Path, timeout: float) -> bool:
    """Extract one JPEG frame; returns False instead of raising on failure."""
    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-ss",
        f"{timestamp:.3f}",
        "-i",
        str(video_path),
        "-frames:v",
        "1",
        "-qscale:v",
        "2",
        str(out_path),
    ]
    try:
        subprocess.run(cmd, check=True, capture_output=True, timeout=timeout)  # noqa: S603,S607
    except subprocess.TimeoutExpired:
        logger.warning("Frame extraction at %.2fs timed out after %.0fs", timestamp, timeout)
        return False
    except subprocess.CalledProcessError as exc:
        logger.warning("Failed to extract frame at %.2fs: %s", timestamp, exc)
        return False
    return out_path.exists() and out_path.stat().st_size > 0


def extract_keyframes(
    video_path: Path,
    out_dir: Path,
    duration: Optional[float],
    timeout: float,
    timestamps: Optional[Sequence[float]] = None,
) -> List[Path]:
    """
    Extract the sampled keyframes in timestamp order.

    Individual failures are logged and skipped; the caller decides whether
    the number of frames returned is enough.
    """
    _ensure_binary_exists("ffmpeg")
    out_dir.mkdir(parents=True, exist_ok=True)
    frames: List[Path] = []
    for idx, ts in enumerate(timestamps if timestamps is not None else keyframe_timestamps(duration)):
        frame_path = out_dir / f"keyframe_{idx:02d}.jpg"
        if extract_frame(video_path, ts, frame_path, timeout):
            frames.append(frame_path)
    logger.debug("Extracted %d keyframes from %s", len(frames), video_path.name)
    return frames


def extract_audio(video_path: Path, out_path: Path, timeout: float) -> Optional[Path]:
    """
    Extract a compressed mono MP3 track suitable for speech-to-text.

    Returns None for silent videos or when extraction fails; a missing audio
    track never aborts tagging.
    """
    _ensure_binary_exists("ffmpeg")
    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-i",
        str(video_path),
        "-vn",
        "-ac",
        "1",
        "-acodec",
        "libmp3lame",
        "-q:a",
        "4",
        str(out_path),
    ]
    logger.debug("Running ffmpeg: %s", " ".join(cmd))
    try:
        subprocess.run(cmd, check=True, capture_output=True, timeout=timeout)  # noqa: S603,S607
    except subprocess.TimeoutExpired:
        logger.warning("Audio extraction timed out after %.0fs for %s", timeout, video_path.name)
        return None
    except subprocess.CalledProcessError as exc:
        logger.info("No audio extracted from %s: %s", video_path.name, exc)
        return None
    if not out_path.exists() or out_path.stat().st_size == 0:
        return None
    return out_path


def cleanup_dir(path: Optional[Path]) -> None:
    if path is None:
        return
    shutil.rmtree(path, ignore_errors=True)


__all__ = [
    "MediaInfo",
    "make_scratch_dir",
    "download_to_path",
    "inspect_media",
    "keyframe_timestamps",
    "extract_frame",
    "extract_keyframes",
    "extract_audio",
    "cleanup_dir",
]
