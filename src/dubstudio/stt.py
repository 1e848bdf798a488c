"""
Speech-to-text backends. Each returns raw ``{start, end, text}`` segments;
validation and id assignment happen when the caption store ingests them.
"""

import io
import logging
import os
import tempfile
from typing import Protocol

from openai import OpenAI, OpenAIError
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from .config import Settings, make_openai_client
from .errors import ConfigurationError, TranscriptionError
from .hf_inference import HuggingFaceClient

logger = logging.getLogger("dubstudio")


class Transcriber(Protocol):
    def transcribe(self, audio_bytes: bytes) -> list[dict]: ...


def _audio_length_s(audio_bytes: bytes) -> float:
    try:
        return len(AudioSegment.from_file(io.BytesIO(audio_bytes), format="wav")) / 1000.0
    except (CouldntDecodeError, OSError, EOFError, ValueError):
        return 0.0


def _segments_from_response(resp) -> list[dict] | None:
    segs = getattr(resp, "segments", None)
    if segs is None and isinstance(resp, dict):
        segs = resp.get("segments")
    if not segs:
        return None
    out: list[dict] = []
    for seg in segs:
        if isinstance(seg, dict):
            start, end, text = seg.get("start"), seg.get("end"), seg.get("text")
        else:
            start, end, text = getattr(seg, "start", None), getattr(seg, "end", None), getattr(seg, "text", "")
        out.append(
            {
                "start": float(start or 0.0),
                "end": None if end is None else float(end),
                "text": str(text or "").strip(),
            }
        )
    return out


class OpenAIWhisperTranscriber:
    """Transcribe with the OpenAI Whisper API (verbose_json segments)."""

    def __init__(self, client: OpenAI, model: str = "whisper-1", language: str | None = None) -> None:
        self.client = client
        self.model = model
        self.language = language

    def transcribe(self, audio_bytes: bytes) -> list[dict]:
        logger.info(f"Transcribing with {self.model} (language: {self.language or 'auto'}) …")
        kwargs = {
            "model": self.model,
            "file": ("audio.wav", audio_bytes, "audio/wav"),
            "response_format": "verbose_json",
        }
        if self.language:
            kwargs["language"] = self.language
        try:
            resp = self.client.audio.transcriptions.create(**kwargs)
        except OpenAIError as e:
            raise TranscriptionError(f"Whisper transcription failed: {e}") from e

        segs = _segments_from_response(resp)
        if segs:
            return segs
        full_text = getattr(resp, "text", None)
        if full_text is None and isinstance(resp, dict):
            full_text = resp.get("text", "")
        if full_text:
            logger.warning("No segments in response; using one segment for the whole clip")
            return [{"start": 0.0, "end": _audio_length_s(audio_bytes) or None, "text": str(full_text).strip()}]
        return []


class HuggingFaceTranscriber:
    """Transcribe with Whisper on the Hugging Face inference API."""

    def __init__(self, hf: HuggingFaceClient, model: str = "openai/whisper-large-v3") -> None:
        self.hf = hf
        self.model = model

    def close(self) -> None:
        self.hf.close()

    def transcribe(self, audio_bytes: bytes) -> list[dict]:
        logger.info(f"Transcribing with {self.model} (Hugging Face) …")
        result = self.hf.query(
            self.model, audio_bytes, binary_input=True, error_cls=TranscriptionError
        )
        if not isinstance(result, dict):
            raise TranscriptionError(f"Unexpected transcription response: {type(result).__name__}")

        chunks = result.get("chunks")
        if not chunks:
            text = str(result.get("text") or "").strip()
            if not text:
                return []
            logger.warning("No timestamped chunks in response; using one segment for the whole clip")
            return [{"start": 0.0, "end": _audio_length_s(audio_bytes) or None, "text": text}]

        out: list[dict] = []
        for chunk in chunks:
            ts = chunk.get("timestamp") or [0.0, None]
            start = float(ts[0] or 0.0)
            end = ts[1] if len(ts) > 1 else None
            out.append({"start": start, "end": end, "text": str(chunk.get("text", "")).strip()})
        return out


class LocalWhisperTranscriber:
    """Transcribe locally with faster-whisper (install the ``local`` extra)."""

    def __init__(self, model: str = "base", language: str | None = None, beam_size: int = 1) -> None:
        self.model = model
        self.language = language
        self.beam_size = beam_size

    def transcribe(self, audio_bytes: bytes) -> list[dict]:
        try:
            from faster_whisper import WhisperModel
        except ImportError as e:
            raise ConfigurationError(
                "faster-whisper is not installed. Install with: pip install 'dubstudio[local]'"
            ) from e

        logger.info(f"Transcribing locally with faster-whisper ({self.model}, language: {self.language or 'auto'}) …")
        fd, wav_path = tempfile.mkstemp(suffix=".wav", prefix="dubstudio-stt-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(audio_bytes)
            model = WhisperModel(self.model, device="cpu", compute_type="int8")
            segments_iter, _info = model.transcribe(
                wav_path,
                language=self.language,
                vad_filter=True,
                beam_size=self.beam_size,
                word_timestamps=False,
            )
            return [
                {"start": float(s.start), "end": float(s.end), "text": str(s.text).strip()}
                for s in segments_iter
            ]
        except (RuntimeError, ValueError, OSError) as e:
            raise TranscriptionError(f"Local transcription failed: {e}") from e
        finally:
            try:
                os.remove(wav_path)
            except OSError:
                pass


def build_transcriber(settings: Settings) -> Transcriber:
    if settings.stt_provider == "openai":
        return OpenAIWhisperTranscriber(
            make_openai_client(settings), settings.whisper_model, settings.source_language
        )
    if settings.stt_provider == "huggingface":
        hf = HuggingFaceClient(settings.hf_api_token, settings.hf_base_url, settings.request_timeout)
        return HuggingFaceTranscriber(hf, settings.hf_whisper_model)
    if settings.stt_provider == "local":
        return LocalWhisperTranscriber(settings.local_whisper_model, settings.source_language)
    raise ConfigurationError(f"Unknown speech-to-text provider: {settings.stt_provider}")
