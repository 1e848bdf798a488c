"""
Caption translation backends.

A translator returns captions with the same ids and intervals and only new
text. Any missing or unparsable line fails the whole call with
``TranslationError`` so callers never see a half-translated set.
"""

import logging
import re
from collections.abc import Sequence
from typing import Protocol

from openai import OpenAI, OpenAIError

from .config import Settings, make_openai_client
from .errors import ConfigurationError, TranslationError
from .hf_inference import HuggingFaceClient
from .models import SUPPORTED_LANGUAGES, Caption, Language

logger = logging.getLogger("dubstudio")

_NUMBERED_LINE_RE = re.compile(r"^\s*\[(\d+)\]\s*:\s?(.*)$")

# NLLB-200 language codes for the supported target languages
NLLB_CODES = {
    "Urdu": "urd_Arab",
    "Hindi": "hin_Deva",
    "Spanish": "spa_Latn",
    "French": "fra_Latn",
    "German": "deu_Latn",
    "Chinese": "zho_Hans",
    "Japanese": "jpn_Jpan",
    "Arabic": "arb_Arab",
    "Portuguese": "por_Latn",
    "Italian": "ita_Latn",
    "English": "eng_Latn",
}


class Translator(Protocol):
    def translate(self, captions: Sequence[Caption], target_language: str) -> list[Caption]: ...


def resolve_language(value: str) -> Language:
    """Accept a code (``ur-PK``, ``ur``) or a name (``Urdu``)."""
    needle = value.strip().lower()
    for lang in SUPPORTED_LANGUAGES:
        if needle in (lang.code.lower(), lang.code.split("-")[0].lower(), lang.name.lower()):
            return lang
    raise ValueError(
        f"Unsupported language {value!r}; choose from "
        + ", ".join(f"{lang.code} ({lang.name})" for lang in SUPPORTED_LANGUAGES)
    )


def get_language_name(language_code: str) -> str:
    """Get human-readable language name from language code."""
    try:
        return resolve_language(language_code).name
    except ValueError:
        return language_code.upper()


def _with_text(cap: Caption, text: str) -> Caption:
    return Caption(id=cap.id, start=cap.start, end=cap.end, text=text)


class OpenAITranslator:
    """Translate captions in numbered batches with a GPT chat model."""

    def __init__(self, client: OpenAI, model: str = "gpt-4o-mini", batch_size: int = 20) -> None:
        self.client = client
        self.model = model
        self.batch_size = batch_size

    def _translate_batch(self, batch: Sequence[Caption], target_language: str) -> dict[int, str]:
        numbered = "\n".join(f"[{j}]: {' '.join(cap.text.split())}" for j, cap in enumerate(batch))
        prompt = f"""Translate the following numbered caption lines into {target_language}.
Each line is numbered with [number]: format. Translate each one separately and keep every number.
Maintain the original tone, style, and meaning. Return only the translations in the same numbered format, one per line.

Lines to translate:
{numbered}"""
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": "You are a professional subtitle translator. Always provide accurate, natural translations.",
                    },
                    {"role": "user", "content": prompt},
                ],
                temperature=0.1,
            )
        except OpenAIError as e:
            raise TranslationError(f"Translation request failed: {e}") from e

        content = (response.choices[0].message.content or "").strip()
        translated: dict[int, str] = {}
        for line in content.splitlines():
            m = _NUMBERED_LINE_RE.match(line)
            if m:
                translated[int(m.group(1))] = m.group(2).strip()
        return translated

    def translate(self, captions: Sequence[Caption], target_language: str) -> list[Caption]:
        out: list[Caption] = []
        for i in range(0, len(captions), self.batch_size):
            batch = captions[i : i + self.batch_size]
            logger.info(f"Translating batch {i // self.batch_size + 1} ({len(batch)} captions) to {target_language}...")
            todo = [cap for cap in batch if cap.text.strip()]
            translated = self._translate_batch(todo, target_language) if todo else {}
            missing = [j for j in range(len(todo)) if not translated.get(j)]
            if missing:
                raise TranslationError(
                    f"Model left {len(missing)} of {len(todo)} lines untranslated in batch {i // self.batch_size + 1}"
                )
            by_id = {cap.id: translated[j] for j, cap in enumerate(todo)}
            out.extend(_with_text(cap, by_id.get(cap.id, cap.text)) for cap in batch)
        return out


class HuggingFaceTranslator:
    """Translate caption by caption with NLLB-200 on the Hugging Face inference API."""

    def __init__(
        self,
        hf: HuggingFaceClient,
        model: str = "facebook/nllb-200-distilled-600M",
        source_code: str = "eng_Latn",
    ) -> None:
        self.hf = hf
        self.model = model
        self.source_code = source_code

    def close(self) -> None:
        self.hf.close()

    def translate(self, captions: Sequence[Caption], target_language: str) -> list[Caption]:
        target_code = NLLB_CODES.get(target_language)
        if target_code is None:
            raise TranslationError(f"No NLLB language code for {target_language!r}")
        out: list[Caption] = []
        for cap in captions:
            if not cap.text.strip():
                out.append(_with_text(cap, cap.text))
                continue
            result = self.hf.query(
                self.model,
                {"inputs": cap.text, "parameters": {"src_lang": self.source_code, "tgt_lang": target_code}},
                error_cls=TranslationError,
            )
            text = None
            if isinstance(result, list) and result and isinstance(result[0], dict):
                text = result[0].get("translation_text")
            if not text:
                raise TranslationError(f"No translation returned for caption {cap.id!r}")
            out.append(_with_text(cap, text.strip()))
        return out


def build_translator(settings: Settings) -> Translator:
    if settings.translation_provider == "openai":
        return OpenAITranslator(make_openai_client(settings), settings.gpt_model)
    if settings.translation_provider == "huggingface":
        hf = HuggingFaceClient(settings.hf_api_token, settings.hf_base_url, settings.request_timeout)
        return HuggingFaceTranslator(hf, settings.hf_translation_model)
    raise ConfigurationError(f"Unknown translation provider: {settings.translation_provider}")
