"""
Settings loaded from the environment (and a .env file).
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from openai import OpenAI

from .errors import ConfigurationError

logger = logging.getLogger("dubstudio")

STT_PROVIDERS = ("openai", "huggingface", "local")
TRANSLATION_PROVIDERS = ("openai", "huggingface")
TTS_PROVIDERS = ("openai", "huggingface", "elevenlabs")


def load_env() -> None:
    """Load .env from the project root (parent of src), else from the working directory."""
    project_root = Path(__file__).parent.parent.parent
    env_path = project_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


@dataclass
class Settings:
    stt_provider: str = "openai"
    translation_provider: str = "openai"
    tts_provider: str = "openai"

    openai_api_key: str | None = None
    hf_api_token: str | None = None
    elevenlabs_api_key: str | None = None
    elevenlabs_voice_id: str | None = None

    whisper_model: str = "whisper-1"
    local_whisper_model: str = "base"
    source_language: str | None = None
    gpt_model: str = "gpt-4o-mini"
    tts_model: str = "gpt-4o-mini-tts"
    tts_voice: str = "alloy"
    voice_instructions: str | None = None
    elevenlabs_model_id: str = "eleven_multilingual_v2"

    hf_base_url: str = "https://api-inference.huggingface.co/models"
    hf_whisper_model: str = "openai/whisper-large-v3"
    hf_translation_model: str = "facebook/nllb-200-distilled-600M"
    hf_tts_model: str = "facebook/mms-tts-eng"
    request_timeout: float = 120.0

    output_format: str = "webm"
    output_dir: str = "out"
    workdir: str = ".work"
    font_path: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            stt_provider=os.getenv("DUBSTUDIO_STT", cls.stt_provider),
            translation_provider=os.getenv("DUBSTUDIO_TRANSLATOR", cls.translation_provider),
            tts_provider=os.getenv("DUBSTUDIO_TTS", cls.tts_provider),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            hf_api_token=os.getenv("HF_API_TOKEN") or os.getenv("HUGGINGFACEHUB_API_TOKEN"),
            elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY"),
            elevenlabs_voice_id=os.getenv("ELEVENLABS_VOICE_ID"),
            whisper_model=os.getenv("DUBSTUDIO_WHISPER_MODEL", cls.whisper_model),
            local_whisper_model=os.getenv("DUBSTUDIO_LOCAL_WHISPER_MODEL", cls.local_whisper_model),
            source_language=os.getenv("DUBSTUDIO_SOURCE_LANGUAGE") or None,
            gpt_model=os.getenv("DUBSTUDIO_GPT_MODEL", cls.gpt_model),
            tts_model=os.getenv("DUBSTUDIO_TTS_MODEL", cls.tts_model),
            tts_voice=os.getenv("DUBSTUDIO_TTS_VOICE", cls.tts_voice),
            voice_instructions=os.getenv("OPENAI_TTS_INSTRUCTIONS") or None,
            hf_base_url=os.getenv("DUBSTUDIO_HF_BASE_URL", cls.hf_base_url),
            request_timeout=_float_env("DUBSTUDIO_REQUEST_TIMEOUT", cls.request_timeout),
            output_format=os.getenv("DUBSTUDIO_FORMAT", cls.output_format),
            output_dir=os.getenv("DUBSTUDIO_OUTPUT_DIR", cls.output_dir),
            workdir=os.getenv("DUBSTUDIO_WORKDIR", cls.workdir),
            font_path=os.getenv("DUBSTUDIO_FONT") or None,
        )

    def validate(self) -> "Settings":
        checks = (
            ("stt_provider", self.stt_provider, STT_PROVIDERS),
            ("translation_provider", self.translation_provider, TRANSLATION_PROVIDERS),
            ("tts_provider", self.tts_provider, TTS_PROVIDERS),
        )
        for name, value, allowed in checks:
            if value not in allowed:
                raise ConfigurationError(f"{name} must be one of {', '.join(allowed)}, got {value!r}")
        return self


def make_openai_client(settings: Settings) -> OpenAI:
    if not settings.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY is not set. Put it in .env or environment.")
    return OpenAI(api_key=settings.openai_api_key, timeout=settings.request_timeout)
