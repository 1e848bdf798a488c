"""
Tests for the render pipeline using an in-memory source and encoder.
"""

import asyncio
import os

import numpy as np
import pytest

from conftest import EncoderFactory, FakeSource
from dubstudio.audio import AudioEngine, DecodedAudio
from dubstudio.captions import CaptionStore
from dubstudio.errors import AbortedByCaller, RenderResourceError
from dubstudio.models import Caption
from dubstudio.pipeline import RenderPipeline, RenderState, render_video
from dubstudio.scheduler import CancelToken, ImmediateScheduler


def _store():
    return CaptionStore(
        [
            Caption(id="caption-0", start=0.0, end=0.5, text="Hello"),
            Caption(id="caption-1", start=0.5, end=1.0, text="World"),
        ]
    )


class SpyCompositor:
    def __init__(self, on_first=None):
        self.seen: list[str | None] = []
        self.on_first = on_first

    def __call__(self, target, frame, caption, width, height):
        if not self.seen and self.on_first:
            self.on_first()
        self.seen.append(caption.text if caption else None)
        return target


def _pipeline(source, captions, encoder_factory, **kwargs):
    kwargs.setdefault("scheduler", ImmediateScheduler())
    kwargs.setdefault("compositor", SpyCompositor())
    return RenderPipeline(source, captions, encoder_factory=encoder_factory, **kwargs)


def test_render_completes_with_monotonic_progress(fake_source, encoder_factory):
    progress: list[float] = []
    engine = AudioEngine()
    pipeline = _pipeline(fake_source, _store(), encoder_factory, on_progress=progress.append, audio_engine=engine)

    artifact = asyncio.run(pipeline.run())

    assert pipeline.state is RenderState.COMPLETED
    assert artifact.mime_type == "video/webm"
    assert artifact.filename.endswith(".webm")
    assert pipeline.frames_rendered == 30
    assert encoder_factory.last.frames == 30
    assert encoder_factory.last.finalized
    assert not encoder_factory.last.discarded
    assert progress == sorted(progress)
    assert progress[-1] == 1.0
    assert all(0.0 <= p <= 1.0 for p in progress)
    assert fake_source.readers[0].closed
    assert engine.open_routes == 0


def test_active_caption_follows_timestamp(fake_source, encoder_factory):
    spy = SpyCompositor()
    asyncio.run(_pipeline(fake_source, _store(), encoder_factory, compositor=spy).run())

    # frame 15 sits at exactly 0.5s, the shared boundary: the earlier caption wins
    assert spy.seen[0] == "Hello"
    assert spy.seen[15] == "Hello"
    assert spy.seen[16] == "World"
    assert spy.seen[-1] == "World"


def test_frames_without_caption_get_none(encoder_factory):
    source = FakeSource(duration=1.0)
    captions = [Caption(id="caption-0", start=0.2, end=0.3, text="Only")]
    spy = SpyCompositor()
    asyncio.run(_pipeline(source, captions, encoder_factory, compositor=spy).run())

    assert spy.seen[0] is None
    assert spy.seen[6] == "Only"
    assert spy.seen[20] is None


def test_cancel_mid_render_leaves_no_artifact(fake_source, encoder_factory):
    token = CancelToken()
    progress: list[float] = []

    def on_progress(value):
        progress.append(value)
        if value >= 0.4:
            token.cancel()

    engine = AudioEngine()
    pipeline = _pipeline(
        fake_source, _store(), encoder_factory, on_progress=on_progress, cancel_token=token, audio_engine=engine
    )

    with pytest.raises(AbortedByCaller):
        asyncio.run(pipeline.run())

    assert pipeline.state is RenderState.CANCELLED
    assert pipeline.last_progress < 0.4 + 1 / 30 + 1e-9
    assert 1.0 not in progress
    sink = encoder_factory.last
    assert sink.discarded
    assert not sink.finalized
    assert fake_source.readers[0].closed
    assert engine.open_routes == 0


def test_cancel_before_start_renders_nothing(fake_source, encoder_factory):
    token = CancelToken()
    token.cancel()
    pipeline = _pipeline(fake_source, _store(), encoder_factory, cancel_token=token)

    with pytest.raises(AbortedByCaller):
        asyncio.run(pipeline.run())

    assert pipeline.frames_rendered == 0
    assert encoder_factory.last.discarded


def test_encoder_open_failure_fails_job_and_releases(fake_source):
    factory = EncoderFactory(fail_open=RenderResourceError("no encoder"))
    engine = AudioEngine()
    pipeline = _pipeline(fake_source, _store(), factory, audio_engine=engine)

    with pytest.raises(RenderResourceError, match="no encoder"):
        asyncio.run(pipeline.run())

    assert pipeline.state is RenderState.FAILED
    assert factory.last.discarded
    assert fake_source.readers == []
    assert engine.open_routes == 0


def test_unexpected_error_is_wrapped(fake_source, encoder_factory):
    fake_source.fail_reader_open = OSError("decoder crashed")
    pipeline = _pipeline(fake_source, _store(), encoder_factory)

    with pytest.raises(RenderResourceError) as excinfo:
        asyncio.run(pipeline.run())

    assert isinstance(excinfo.value.__cause__, OSError)
    assert pipeline.state is RenderState.FAILED
    assert encoder_factory.last.discarded


def test_caption_edits_during_render_do_not_leak(fake_source, encoder_factory):
    store = _store()
    spy = SpyCompositor(on_first=lambda: store.update_text("caption-0", "Edited"))
    asyncio.run(_pipeline(fake_source, store, encoder_factory, compositor=spy).run())

    assert "Edited" not in spy.seen
    assert store.get("caption-0").text == "Edited"


def test_override_audio_is_routed_and_released(encoder_factory):
    source = FakeSource(has_audio=True)
    dub = DecodedAudio(sample_rate=24000, samples=np.zeros(24000, dtype=np.float32))
    engine = AudioEngine()
    asyncio.run(_pipeline(source, _store(), encoder_factory, audio_override=dub, audio_engine=engine).run())

    sink = encoder_factory.last
    assert sink.route_kind_at_open == "override"
    assert sink.override_file_existed
    assert sink.audio_route.path is None
    assert engine.open_routes == 0
    engine.close()


def test_source_audio_used_without_override(encoder_factory):
    source = FakeSource(has_audio=True)
    asyncio.run(_pipeline(source, _store(), encoder_factory).run())
    assert encoder_factory.last.route_kind_at_open == "source"


def test_odd_dimensions_are_rounded_down(encoder_factory):
    source = FakeSource(width=65, height=37)
    asyncio.run(_pipeline(source, _store(), encoder_factory).run())
    assert (encoder_factory.last.width, encoder_factory.last.height) == (64, 36)


def test_missing_natural_size_falls_back_to_720p(encoder_factory):
    source = FakeSource(duration=0.1, width=None, height=None)
    asyncio.run(_pipeline(source, _store(), encoder_factory).run())
    assert (encoder_factory.last.width, encoder_factory.last.height) == (1280, 720)


def test_render_starts_at_seek_position(encoder_factory):
    source = FakeSource(duration=1.0)
    source.position = 0.5
    progress: list[float] = []
    spy = SpyCompositor()
    asyncio.run(_pipeline(source, _store(), encoder_factory, compositor=spy, on_progress=progress.append).run())

    assert len(spy.seen) == 15
    assert spy.seen[0] == "Hello"
    assert progress[0] == 0.0


def test_pipeline_runs_once(fake_source, encoder_factory):
    pipeline = _pipeline(fake_source, _store(), encoder_factory)
    asyncio.run(pipeline.run())
    with pytest.raises(RuntimeError):
        asyncio.run(pipeline.run())


def test_default_compositor_draws_caption(encoder_factory):
    source = FakeSource(duration=0.1, width=320, height=180)
    artifact = asyncio.run(
        render_video(source, [Caption(id="c", start=0.0, end=1.0, text="Hi")], encoder_factory=encoder_factory,
                     scheduler=ImmediateScheduler(), output_format="mp4")
    )
    assert artifact.filename.endswith(".mp4")
    frame = encoder_factory.last.first_frame
    assert frame is not None
    assert len(frame) == 320 * 180 * 4
    # bottom rows carry the caption panel, the top row is the untouched video
    top_row = frame[: 320 * 4]
    assert top_row == bytes((200, 10, 10, 255)) * 320
    panel_pixel_offset = (165 * 320 + 160) * 4
    assert frame[panel_pixel_offset : panel_pixel_offset + 4] != bytes((200, 10, 10, 255))


def test_render_video_leaves_no_scratch_files(tmp_path, encoder_factory):
    source = FakeSource(has_audio=True)
    dub = DecodedAudio(sample_rate=24000, samples=np.zeros(2400, dtype=np.float32))
    with AudioEngine(scratch_dir=str(tmp_path)) as engine:
        asyncio.run(
            render_video(source, _store(), encoder_factory=encoder_factory, scheduler=ImmediateScheduler(),
                         audio_override=dub, audio_engine=engine)
        )
    assert os.listdir(tmp_path) == []
