"""
Headless studio session: transcribe, translate, dub and export one video.

Each operation ends in exactly one of success, cancellation or error and
leaves ``status`` at ``COMPLETED``, ``IDLE`` or ``ERROR`` accordingly.
"""

import logging
from collections.abc import Callable

from .audio import AudioEngine, DecodedAudio, decode_audio_bytes
from .captions import CaptionStore
from .compositor import CaptionStyle
from .config import Settings
from .encoder import RenderArtifact
from .errors import OperationCancelled, RenderBusyError, StudioError
from .io_ffmpeg import extract_audio, extract_audio_bytes
from .media import MediaSource
from .models import Caption, ProcessingStatus
from .pipeline import RenderPipeline
from .scheduler import CancelToken, Scheduler
from .stt import Transcriber, build_transcriber
from .translation import Translator, build_translator, resolve_language
from .tts import Synthesizer, build_synthesizer

logger = logging.getLogger("dubstudio")


class Studio:
    def __init__(
        self,
        video_path: str,
        settings: Settings | None = None,
        *,
        transcriber: Transcriber | None = None,
        translator: Translator | None = None,
        synthesizer: Synthesizer | None = None,
        audio_engine: AudioEngine | None = None,
        media_source: MediaSource | None = None,
    ) -> None:
        self.video_path = video_path
        self.media_source = media_source
        self.settings = settings or Settings()
        self._transcriber = transcriber
        self._translator = translator
        self._synthesizer = synthesizer
        self.audio_engine = audio_engine
        self.store = CaptionStore()
        self.dubbed_audio: DecodedAudio | None = None
        self.use_dubbing = False
        self.target_language: str | None = None
        self.status = ProcessingStatus.IDLE
        self.error: BaseException | None = None
        self._render: RenderPipeline | None = None

    # Collaborators are built on first use so a render-only session needs no API keys.
    @property
    def transcriber(self) -> Transcriber:
        if self._transcriber is None:
            self._transcriber = build_transcriber(self.settings)
        return self._transcriber

    @property
    def translator(self) -> Translator:
        if self._translator is None:
            self._translator = build_translator(self.settings)
        return self._translator

    @property
    def synthesizer(self) -> Synthesizer:
        if self._synthesizer is None:
            self._synthesizer = build_synthesizer(self.settings)
        return self._synthesizer

    @property
    def rendering(self) -> bool:
        return self._render is not None

    @property
    def captions(self) -> list[Caption]:
        return list(self.store)

    def _finish(self, exc: BaseException | None) -> None:
        if exc is None:
            self.status = ProcessingStatus.COMPLETED
            self.error = None
        elif isinstance(exc, OperationCancelled):
            self.status = ProcessingStatus.IDLE
            self.error = None
        else:
            self.status = ProcessingStatus.ERROR
            self.error = exc

    def _run(self, status: ProcessingStatus, action: Callable, cancel_token: CancelToken | None):
        self.status = status
        try:
            result = action()
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
        except OperationCancelled as e:
            self._finish(e)
            logger.info(f"{status.value} cancelled")
            raise
        except Exception as e:
            self._finish(e)
            logger.error(f"{status.value} failed: {e}")
            raise
        return result

    def generate_captions(
        self, cancel_token: CancelToken | None = None, audio_path: str | None = None
    ) -> list[Caption]:
        """Extract the soundtrack, transcribe it and replace every caption.

        With ``audio_path`` the extracted WAV is also kept on disk.
        """
        self.status = ProcessingStatus.EXTRACTING_AUDIO
        try:
            if audio_path:
                extract_audio(self.video_path, audio_path)
                with open(audio_path, "rb") as f:
                    wav = f.read()
            else:
                wav = extract_audio_bytes(self.video_path)
        except Exception as e:
            self._finish(e)
            raise

        segments = self._run(ProcessingStatus.TRANSCRIBING, lambda: self.transcriber.transcribe(wav), cancel_token)
        try:
            captions = self.store.replace_all(segments)
            if not captions:
                raise StudioError("Transcription returned no usable captions")
        except StudioError as e:
            self._finish(e)
            raise
        self.dubbed_audio = None
        self.use_dubbing = False
        self._finish(None)
        for a, b in self.store.find_overlaps():
            logger.warning(f"Captions {a.id} and {b.id} overlap; {a.id} wins while both are active")
        return captions

    def load_captions(self, captions) -> None:
        self.store.load(captions)

    def edit_caption(self, caption_id: str, text: str) -> Caption:
        return self.store.update_text(caption_id, text)

    def translate(self, language: str, cancel_token: CancelToken | None = None) -> list[Caption]:
        """Translate every caption into ``language`` (code or name), or change nothing."""
        target = resolve_language(language)
        if not self.store:
            raise StudioError("No captions to translate; transcribe first")
        snapshot = self.store.snapshot()

        def action():
            translated = self.translator.translate(snapshot, target.name)
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            self.store.apply_translation(translated)

        self._run(ProcessingStatus.TRANSLATING, action, cancel_token)
        self.target_language = target.code
        # a dub made from the previous text no longer matches
        self.dubbed_audio = None
        self.use_dubbing = False
        self._finish(None)
        logger.info(f"Translated {len(self.store)} captions to {target.name}")
        return self.captions

    def dub(self, cancel_token: CancelToken | None = None) -> DecodedAudio:
        """Synthesize the caption text as one replacement soundtrack."""
        text = self.store.full_text(". ")
        if not text:
            raise StudioError("No caption text to synthesize")

        def action():
            data = self.synthesizer.synthesize(text)
            return decode_audio_bytes(data)

        audio = self._run(ProcessingStatus.GENERATING_SPEECH, action, cancel_token)
        self.set_dubbed_audio(audio)
        self._finish(None)
        logger.info(f"Dub ready: {audio.duration:.2f}s at {audio.sample_rate} Hz")
        return audio

    def close(self) -> None:
        """Release HTTP clients held by the collaborators this session built or was given."""
        for collaborator in (self._transcriber, self._translator, self._synthesizer):
            close = getattr(collaborator, "close", None)
            if close is not None:
                close()

    def __enter__(self) -> "Studio":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def set_dubbed_audio(self, audio: DecodedAudio | None, enabled: bool = True) -> None:
        self.dubbed_audio = audio
        self.use_dubbing = audio is not None and enabled

    async def export(
        self,
        *,
        on_progress: Callable[[float], None] | None = None,
        cancel_token: CancelToken | None = None,
        scheduler: Scheduler | None = None,
        output_format: str | None = None,
        **pipeline_kwargs,
    ) -> RenderArtifact:
        """Render the video with burned-in captions and the selected audio."""
        if self._render is not None:
            raise RenderBusyError("A render is already in progress")
        if self.settings.font_path:
            pipeline_kwargs.setdefault("style", CaptionStyle(font_path=self.settings.font_path))
        pipeline = RenderPipeline(
            self.media_source or MediaSource(self.video_path),
            self.store,
            audio_override=self.dubbed_audio if self.use_dubbing else None,
            on_progress=on_progress,
            cancel_token=cancel_token,
            scheduler=scheduler,
            audio_engine=self.audio_engine,
            output_format=output_format or self.settings.output_format,
            **pipeline_kwargs,
        )
        self._render = pipeline
        self.status = ProcessingStatus.RENDERING
        try:
            artifact = await pipeline.run()
        except BaseException as e:
            self._finish(e if isinstance(e, Exception) else OperationCancelled(str(e)))
            raise
        finally:
            self._render = None
        self._finish(None)
        return artifact

