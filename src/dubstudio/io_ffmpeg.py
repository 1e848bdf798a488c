"""
Audio and video utilities built on the ffmpeg/ffprobe command line tools.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import MediaDecodeError

logger = logging.getLogger("dubstudio")


def run(cmd: list[str], *, check: bool = True) -> str:
    """Run a shell command and return stdout."""
    logger.debug(f"Running: {' '.join(map(str, cmd))}")
    try:
        proc = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, check=False
        )
    except FileNotFoundError as e:
        raise RuntimeError(f"{cmd[0]} not found on PATH") from e
    if proc.returncode != 0 and check:
        logger.error(f"Command failed with code {proc.returncode}: {proc.stderr.strip()}")
        msg = f"Command failed with code {proc.returncode}"
        raise RuntimeError(msg)
    return proc.stdout


def ensure_dir(path: str) -> None:
    """Ensure directory exists."""
    if path:
        Path(path).mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class MediaInfo:
    path: str
    duration: float  # seconds
    width: int | None
    height: int | None
    has_audio: bool


def probe_media(path: str) -> MediaInfo:
    """Read duration, natural video size and audio presence with ffprobe."""
    if not Path(path).exists():
        raise MediaDecodeError(f"Media file not found: {path}")
    try:
        out = run(
            [
                "ffprobe",
                "-v",
                "error",
                "-print_format",
                "json",
                "-show_format",
                "-show_streams",
                path,
            ]
        )
        data = json.loads(out or "{}")
    except (RuntimeError, json.JSONDecodeError) as e:
        raise MediaDecodeError(f"Could not probe {path}: {e}") from e

    streams = data.get("streams", []) or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    has_audio = any(s.get("codec_type") == "audio" for s in streams)
    if video is None:
        raise MediaDecodeError(f"No video stream in {path}")

    duration = 0.0
    for raw in (data.get("format", {}).get("duration"), video.get("duration")):
        try:
            duration = float(raw)
            break
        except (TypeError, ValueError):
            continue
    if duration <= 0:
        raise MediaDecodeError(f"Could not determine duration of {path}")

    width = int(video["width"]) if video.get("width") else None
    height = int(video["height"]) if video.get("height") else None
    return MediaInfo(path=path, duration=duration, width=width, height=height, has_audio=has_audio)


def extract_audio(input_video: str, out_wav: str, sample_rate: int = 16000) -> None:
    """Extract audio from video file (mono 16-bit WAV for transcription)."""
    ensure_dir(str(Path(out_wav).parent))
    cmd = [
        "ffmpeg",
        "-y",
        "-v",
        "error",
        "-i",
        input_video,
        "-vn",
        "-acodec",
        "pcm_s16le",
        "-ar",
        str(sample_rate),
        "-ac",
        "1",
        out_wav,
    ]
    try:
        run(cmd)
    except RuntimeError as e:
        raise MediaDecodeError(f"Could not extract audio from {input_video}") from e


def extract_audio_bytes(input_video: str, sample_rate: int = 16000) -> bytes:
    """Extract audio as an in-memory mono WAV, ready to upload to a recognizer."""
    cmd = [
        "ffmpeg",
        "-v",
        "error",
        "-i",
        input_video,
        "-vn",
        "-acodec",
        "pcm_s16le",
        "-ar",
        str(sample_rate),
        "-ac",
        "1",
        "-f",
        "wav",
        "pipe:1",
    ]
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=False)
    except FileNotFoundError as e:
        raise MediaDecodeError("ffmpeg not found on PATH") from e
    if proc.returncode != 0 or not proc.stdout:
        logger.error(f"Audio extraction failed: {proc.stderr.decode('utf-8', 'replace').strip()}")
        raise MediaDecodeError(f"Could not extract audio from {input_video}")
    return proc.stdout
