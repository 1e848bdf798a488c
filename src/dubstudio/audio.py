"""
Decoded audio buffers and audio routing for the render pipeline.
"""

import io
import logging
import os
import shutil
import tempfile
import wave
from dataclasses import dataclass, field

import numpy as np
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from .errors import MediaDecodeError

logger = logging.getLogger("dubstudio")

# Speech backends that answer with headerless PCM send 16-bit mono at this rate.
RAW_PCM_SAMPLE_RATE = 24000
RAW_PCM_CHANNELS = 1
RAW_PCM_SAMPLE_WIDTH = 2


@dataclass
class DecodedAudio:
    """In-memory PCM: ``samples`` is float32 shaped (channels, frames) in [-1, 1]."""

    sample_rate: int
    samples: np.ndarray

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples[np.newaxis, :]
        if samples.ndim != 2:
            raise ValueError("samples must be shaped (channels, frames)")
        self.samples = samples

    @property
    def channel_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frame_count / float(self.sample_rate)

    @classmethod
    def from_segment(cls, segment: AudioSegment) -> "DecodedAudio":
        raw = np.array(segment.get_array_of_samples(), dtype=np.float32)
        scale = float(1 << (8 * segment.sample_width - 1))
        frames = raw.reshape(-1, segment.channels).T / scale
        return cls(sample_rate=segment.frame_rate, samples=frames)

    def to_segment(self) -> AudioSegment:
        """16-bit interleaved AudioSegment, e.g. for export to WAV."""
        clipped = np.clip(self.samples, -1.0, 1.0)
        pcm = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0).astype("<i2")
        return AudioSegment(
            data=pcm.T.reshape(-1).tobytes(),
            sample_width=2,
            frame_rate=self.sample_rate,
            channels=self.channel_count,
        )


def _looks_like_wav(data: bytes) -> bool:
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def _decode_container(data: bytes) -> AudioSegment:
    if _looks_like_wav(data):
        # parsed in-process, no ffmpeg round trip
        return AudioSegment.from_file(io.BytesIO(data), format="wav")
    return AudioSegment.from_file(io.BytesIO(data))


def _decode_raw_pcm(data: bytes, sample_rate: int, channels: int) -> AudioSegment:
    frame_size = RAW_PCM_SAMPLE_WIDTH * channels
    if len(data) % frame_size:
        raise MediaDecodeError(
            f"Raw PCM payload of {len(data)} bytes is not a whole number of {frame_size}-byte frames"
        )
    return AudioSegment(
        data=data, sample_width=RAW_PCM_SAMPLE_WIDTH, frame_rate=sample_rate, channels=channels
    )


def decode_audio_bytes(
    data: bytes,
    fallback_sample_rate: int = RAW_PCM_SAMPLE_RATE,
    fallback_channels: int = RAW_PCM_CHANNELS,
) -> DecodedAudio:
    """Decode synthesized speech.

    A standard container (WAV, MP3, FLAC, ...) is tried first; if that fails
    the payload is read as headerless signed 16-bit little-endian PCM.
    """
    if not data:
        raise MediaDecodeError("Audio payload is empty")
    try:
        segment = _decode_container(data)
    except (CouldntDecodeError, OSError, EOFError, ValueError, wave.Error) as e:
        logger.info(f"Container decode failed ({e}); reading payload as raw PCM")
        segment = _decode_raw_pcm(data, fallback_sample_rate, fallback_channels)

    audio = DecodedAudio.from_segment(segment)
    if audio.frame_count == 0:
        raise MediaDecodeError("Decoded audio has no samples")
    logger.info(f"Decoded audio: {audio.duration:.2f}s, {audio.sample_rate} Hz, {audio.channel_count} channel(s)")
    return audio


@dataclass(eq=False)
class AudioRoute:
    """The single audio signal fed to the encoder for one render.

    ``kind`` is ``"override"`` (a decoded buffer played from time 0, the
    source's own audio muted), ``"source"`` (the video's native track) or
    ``"none"`` (the source has no audio and nothing replaces it).
    """

    kind: str
    args: list[str] = field(default_factory=list)
    path: str | None = None
    _engine: "AudioEngine | None" = field(default=None, repr=False)

    @property
    def has_audio(self) -> bool:
        return self.kind != "none"

    def input_args(self) -> list[str]:
        return list(self.args)

    def map_args(self, input_index: int) -> list[str]:
        if not self.has_audio:
            return []
        return ["-map", f"{input_index}:a:0"]

    def release(self) -> None:
        if self.path and os.path.exists(self.path):
            try:
                os.remove(self.path)
            except OSError as e:
                logger.warning(f"Could not remove routed audio {self.path}: {e}")
        self.path = None
        if self._engine is not None:
            self._engine._forget(self)
            self._engine = None


class AudioEngine:
    """Lifecycle-scoped owner of audio routes and their scratch files.

    Pass one explicitly to whatever renders; closing it releases every route
    that is still open.
    """

    def __init__(self, scratch_dir: str | None = None) -> None:
        self._scratch_dir = scratch_dir
        self._owns_dir = scratch_dir is None
        self._routes: list[AudioRoute] = []
        self._counter = 0

    @property
    def open_routes(self) -> int:
        return len(self._routes)

    @property
    def scratch_dir(self) -> str:
        if self._scratch_dir is None:
            self._scratch_dir = tempfile.mkdtemp(prefix="dubstudio-audio-")
        return self._scratch_dir

    def _forget(self, route: AudioRoute) -> None:
        if route in self._routes:
            self._routes.remove(route)

    def select_audio_source(self, source, override: DecodedAudio | None) -> AudioRoute:
        """Route the override buffer if given, else the source's native audio. Never both."""
        if override is not None:
            self._counter += 1
            path = os.path.join(self.scratch_dir, f"override_{self._counter:04d}.wav")
            override.to_segment().export(path, format="wav").close()
            route = AudioRoute(kind="override", args=["-i", path], path=path, _engine=self)
            logger.info(f"Audio route: synthesized track ({override.duration:.2f}s), source audio muted")
        elif source.has_audio:
            route = AudioRoute(kind="source", args=source.audio_input_args(), _engine=self)
            logger.info("Audio route: source audio")
        else:
            route = AudioRoute(kind="none", _engine=self)
            logger.info("Audio route: none (source has no audio track)")
        self._routes.append(route)
        return route

    def close(self) -> None:
        for route in list(self._routes):
            route.release()
        if self._owns_dir and self._scratch_dir and os.path.isdir(self._scratch_dir):
            shutil.rmtree(self._scratch_dir, ignore_errors=True)
            self._scratch_dir = None

    def __enter__(self) -> "AudioEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
