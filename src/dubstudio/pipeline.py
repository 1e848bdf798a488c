"""
Render pipeline: burn captions into a video and mux it with one audio track.

One ``RenderPipeline`` drives one job through
``IDLE -> PRIMING -> CAPTURING -> COMPLETED | CANCELLED | FAILED``.
Everything the job acquires while priming (frame target, audio route, encoder
sink, frame reader) sits on an ``AsyncExitStack`` and is released on every
exit path before the job reaches its terminal state.
"""

import asyncio
import functools
import logging
import os
from collections.abc import Callable, Sequence
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from enum import Enum

from PIL import Image

from .audio import AudioEngine, AudioRoute, DecodedAudio
from .compositor import CaptionStyle, composite, new_frame_target
from .encoder import (
    DEFAULT_FORMAT,
    EncoderSink,
    FfmpegEncoderSink,
    OutputFormat,
    RenderArtifact,
    get_output_format,
)
from .errors import OperationCancelled, RenderResourceError, StudioError
from .lookup import CaptionIndex
from .media import MediaSource
from .models import Caption
from .scheduler import CancelToken, RealtimeScheduler, Scheduler

logger = logging.getLogger("dubstudio")

FPS = 30
DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720

ProgressCallback = Callable[[float], None]
EncoderFactory = Callable[[int, int, int, AudioRoute, OutputFormat], EncoderSink]


class RenderState(str, Enum):
    IDLE = "idle"
    PRIMING = "priming"
    CAPTURING = "capturing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RenderJob:
    """State owned by the pipeline for the lifetime of one render."""

    source: MediaSource
    caption_snapshot: tuple[Caption, ...]
    audio_override: DecodedAudio | None
    cancel_token: CancelToken
    width: int
    height: int
    duration: float
    start: float = 0.0
    progress: float = 0.0
    frames: int = 0
    index: CaptionIndex | None = None
    frame_target: Image.Image | None = None
    audio_route: AudioRoute | None = None
    encoder: EncoderSink | None = None
    encoder_finalized: bool = False
    reader: object | None = field(default=None, repr=False)


def snapshot_captions(captions) -> tuple[Caption, ...]:
    """Detached copy of a caption store or caption sequence."""
    if hasattr(captions, "snapshot"):
        return captions.snapshot()
    return tuple(cap.copy() for cap in captions)


def _even(value: int) -> int:
    # yuv420p needs even dimensions
    return max(2, value - value % 2)


class RenderPipeline:
    def __init__(
        self,
        source: MediaSource,
        captions,
        *,
        audio_override: DecodedAudio | None = None,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancelToken | None = None,
        scheduler: Scheduler | None = None,
        encoder_factory: EncoderFactory | None = None,
        audio_engine: AudioEngine | None = None,
        output_format: OutputFormat | str = DEFAULT_FORMAT,
        compositor: Callable | None = None,
        style: CaptionStyle | None = None,
        fps: int = FPS,
    ) -> None:
        self.source = source
        self.captions = captions
        self.audio_override = audio_override
        self.on_progress = on_progress
        self.cancel_token = cancel_token or CancelToken()
        self.fps = fps
        self.scheduler = scheduler or RealtimeScheduler(fps)
        self.encoder_factory = encoder_factory or FfmpegEncoderSink
        self.audio_engine = audio_engine
        self.output_format = (
            get_output_format(output_format) if isinstance(output_format, str) else output_format
        )
        self.compositor = compositor or functools.partial(composite, style=style)
        self.state = RenderState.IDLE
        self.job: RenderJob | None = None
        self.frames_rendered = 0
        self.error: BaseException | None = None
        self._last_progress: float | None = None

    @property
    def last_progress(self) -> float | None:
        return self._last_progress

    def _transition(self, state: RenderState) -> None:
        logger.debug(f"Render state {self.state.value} -> {state.value}")
        self.state = state

    def _report(self, value: float) -> None:
        """Forward progress, clamped to [0, 1] and never lower than before."""
        value = min(1.0, max(0.0, value))
        if self._last_progress is not None:
            value = max(value, self._last_progress)
        self._last_progress = value
        if self.job is not None:
            self.job.progress = value
        if self.on_progress is not None:
            self.on_progress(value)

    async def run(self) -> RenderArtifact:
        """Render to completion and return the artifact.

        Raises ``AbortedByCaller`` when the cancel token fires, the originating
        ``StudioError`` on failure. No artifact exists on either path.
        """
        if self.state is not RenderState.IDLE:
            raise RuntimeError("A RenderPipeline runs exactly one job; create a new one")
        self._transition(RenderState.PRIMING)
        owns_engine = self.audio_engine is None
        if owns_engine:
            self.audio_engine = AudioEngine()
        try:
            async with AsyncExitStack() as stack:
                job = await self._prime(stack)
                self._transition(RenderState.CAPTURING)
                logger.info(
                    f"Rendering {job.width}x{job.height} @ {self.fps}fps, "
                    f"{job.duration:.2f}s, {len(job.caption_snapshot)} captions"
                )
                await self.scheduler.run_until(self._tick, job.cancel_token)
                artifact = await job.encoder.finalize()
                job.encoder_finalized = True
            self._report(1.0)
            self._transition(RenderState.COMPLETED)
            logger.info(f"Render completed: {self.frames_rendered} frames, {artifact.filename}")
            return artifact
        except OperationCancelled as e:
            self.error = e
            self._transition(RenderState.CANCELLED)
            logger.info(f"Render cancelled after {self.frames_rendered} frames")
            raise
        except asyncio.CancelledError as e:
            self.error = e
            self._transition(RenderState.CANCELLED)
            logger.info(f"Render task cancelled after {self.frames_rendered} frames")
            raise
        except StudioError as e:
            self.error = e
            self._transition(RenderState.FAILED)
            logger.error(f"Render failed: {e}")
            raise
        except Exception as e:
            self.error = e
            self._transition(RenderState.FAILED)
            logger.error(f"Render failed: {e}", exc_info=True)
            raise RenderResourceError(f"Render failed: {e}") from e
        finally:
            self.job = None
            if owns_engine:
                self.audio_engine.close()

    async def _prime(self, stack: AsyncExitStack) -> RenderJob:
        info = await self.source.load()
        width = _even(info.width or DEFAULT_WIDTH)
        height = _even(info.height or DEFAULT_HEIGHT)
        if not info.width or not info.height:
            logger.warning(f"Source has no natural size, rendering at {width}x{height}")

        job = RenderJob(
            source=self.source,
            caption_snapshot=snapshot_captions(self.captions),
            audio_override=self.audio_override,
            cancel_token=self.cancel_token,
            width=width,
            height=height,
            duration=info.duration,
            start=getattr(self.source, "position", 0.0),
        )
        job.index = CaptionIndex(job.caption_snapshot)
        self.job = job

        try:
            job.frame_target = new_frame_target(width, height)
        except (ValueError, MemoryError) as e:
            raise RenderResourceError(f"Could not allocate a {width}x{height} frame target") from e
        stack.callback(self._release_frame_target, job)

        try:
            job.audio_route = self.audio_engine.select_audio_source(self.source, self.audio_override)
        except OSError as e:
            raise RenderResourceError(f"Could not route audio: {e}") from e
        stack.callback(job.audio_route.release)

        job.encoder = self.encoder_factory(width, height, self.fps, job.audio_route, self.output_format)
        stack.push_async_callback(self._release_encoder, job)
        await job.encoder.open()

        job.reader = self.source.open_frames(width, height, self.fps)
        stack.push_async_callback(job.reader.close)
        await job.reader.open()
        return job

    async def _tick(self) -> bool:
        job = self.job
        item = await job.reader.read()
        if item is None:
            return False
        timestamp, frame = item
        caption = job.index.find(timestamp)
        self.compositor(job.frame_target, frame, caption, job.width, job.height)
        await job.encoder.write_frame(job.frame_target)
        job.frames += 1
        self.frames_rendered = job.frames

        span = job.duration - job.start
        self._report((timestamp - job.start) / span if span > 0 else 1.0)
        return True

    @staticmethod
    def _release_frame_target(job: RenderJob) -> None:
        if job.frame_target is not None:
            job.frame_target.close()
            job.frame_target = None

    @staticmethod
    async def _release_encoder(job: RenderJob) -> None:
        if job.encoder is not None and not job.encoder_finalized:
            await job.encoder.discard()


async def render_video(
    source: MediaSource | str | os.PathLike,
    captions: Sequence[Caption],
    **kwargs,
) -> RenderArtifact:
    """Build and run a one-off :class:`RenderPipeline`."""
    if isinstance(source, (str, os.PathLike)):
        source = MediaSource(os.fspath(source))
    return await RenderPipeline(source, captions, **kwargs).run()
