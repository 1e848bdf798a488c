"""
Text-to-speech backends. Each returns the raw audio payload: a standard
container (WAV, MP3, FLAC) or headerless PCM, decoded later by
``audio.decode_audio_bytes``.
"""

import logging
from typing import Protocol

import httpx
from openai import OpenAI, OpenAIError

from .config import Settings, make_openai_client
from .errors import ConfigurationError, SynthesisError
from .hf_inference import HuggingFaceClient

logger = logging.getLogger("dubstudio")


class Synthesizer(Protocol):
    def synthesize(self, text: str) -> bytes: ...


class OpenAISpeechSynthesizer:
    """Synthesize speech using OpenAI TTS."""

    def __init__(
        self,
        client: OpenAI,
        model: str = "gpt-4o-mini-tts",
        voice: str = "alloy",
        instructions: str | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.voice = voice
        self.instructions = instructions

    def synthesize(self, text: str) -> bytes:
        if not text.strip():
            raise SynthesisError("Nothing to synthesize: text is empty")
        kwargs = {"model": self.model, "voice": self.voice, "input": text, "response_format": "wav"}
        if self.instructions:
            kwargs["instructions"] = self.instructions
        try:
            resp = self.client.audio.speech.create(**kwargs)
        except OpenAIError as e:
            logger.error(f"OpenAI TTS failed for text '{text[:50]}...': {e}")
            raise SynthesisError(f"OpenAI speech synthesis failed: {e}") from e
        return resp.content


class HuggingFaceSynthesizer:
    """Synthesize speech with an MMS TTS model on the Hugging Face inference API."""

    def __init__(self, hf: HuggingFaceClient, model: str = "facebook/mms-tts-eng") -> None:
        self.hf = hf
        self.model = model

    def close(self) -> None:
        self.hf.close()

    def synthesize(self, text: str) -> bytes:
        if not text.strip():
            raise SynthesisError("Nothing to synthesize: text is empty")
        data = self.hf.query(self.model, {"inputs": text}, binary_output=True, error_cls=SynthesisError)
        if not data:
            raise SynthesisError("Failed to generate speech: no audio data returned.")
        return data


class ElevenLabsSynthesizer:
    """Synthesize speech using ElevenLabs TTS."""

    def __init__(
        self,
        api_key: str,
        voice_id: str,
        model_id: str = "eleven_multilingual_v2",
        timeout: float = 60.0,
    ) -> None:
        if not api_key:
            raise ConfigurationError("ELEVENLABS_API_KEY is not set.")
        if not voice_id:
            raise ConfigurationError("ElevenLabs voice_id is required (ELEVENLABS_VOICE_ID).")
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.timeout = timeout

    def synthesize(self, text: str) -> bytes:
        url = f"https://api.elevenlabs.io/v1/text-to-speech/{self.voice_id}"
        headers = {
            "xi-api-key": self.api_key,
            "accept": "audio/mpeg",
            "Content-Type": "application/json",
            "User-Agent": "dubstudio/0.1",
        }
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
        }
        try:
            with httpx.Client(follow_redirects=True, timeout=self.timeout) as client:
                r = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise SynthesisError(f"ElevenLabs request failed: {e}") from e
        ctype = r.headers.get("content-type", "")
        if r.status_code != 200 or not ctype.startswith(("audio/", "application/octet-stream")):
            raise SynthesisError(f"ElevenLabs TTS failed: {r.status_code} {r.text[:300]}")
        return r.content


def build_synthesizer(settings: Settings) -> Synthesizer:
    if settings.tts_provider == "openai":
        return OpenAISpeechSynthesizer(
            make_openai_client(settings), settings.tts_model, settings.tts_voice, settings.voice_instructions
        )
    if settings.tts_provider == "huggingface":
        hf = HuggingFaceClient(settings.hf_api_token, settings.hf_base_url, settings.request_timeout)
        return HuggingFaceSynthesizer(hf, settings.hf_tts_model)
    if settings.tts_provider == "elevenlabs":
        return ElevenLabsSynthesizer(
            settings.elevenlabs_api_key or "",
            settings.elevenlabs_voice_id or "",
            settings.elevenlabs_model_id,
        )
    raise ConfigurationError(f"Unknown speech synthesis provider: {settings.tts_provider}")
