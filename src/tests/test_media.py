"""
Tests for the ffmpeg frame reader against a fake decoder process.
"""

import asyncio

import pytest

from conftest import EncoderFactory
from dubstudio.errors import RenderResourceError
from dubstudio.io_ffmpeg import MediaInfo
from dubstudio.media import FrameReader, MediaSource
from dubstudio.pipeline import RenderPipeline, RenderState
from dubstudio.scheduler import ImmediateScheduler

RED = bytes([255, 0, 0]) * 4
BLUE = bytes([0, 0, 255]) * 4


def _read_all(reader):
    async def scenario():
        frames = []
        async with reader:
            while True:
                item = await reader.read()
                if item is None:
                    break
                frames.append(item)
        return frames

    return asyncio.run(scenario())


def test_frames_are_sliced_and_timed_from_the_seek_point(spawn):
    spawner = spawn(stdout=RED + BLUE)
    source = MediaSource("clip.mp4", info=MediaInfo("clip.mp4", 10.0, 2, 2, False))
    source.seek(4.0)

    frames = _read_all(source.open_frames(2, 2, 2))

    assert [t for t, _ in frames] == [4.0, 4.5]
    assert frames[0][1].getpixel((1, 1)) == (255, 0, 0)
    assert frames[1][1].getpixel((0, 0)) == (0, 0, 255)
    cmd = spawner.last.cmd
    assert cmd[cmd.index("-ss") + 1] == "4.000"
    assert cmd[-1] == "pipe:1"


def test_decoder_crash_is_an_error(spawn):
    spawn(stdout=RED + b"\x00" * 5, stderr=b"corrupt macroblock", returncode=1)

    with pytest.raises(RenderResourceError, match="corrupt macroblock"):
        _read_all(FrameReader("clip.mp4", 2, 2, 30))


def test_clean_exit_mid_frame_is_an_error(spawn):
    spawn(stdout=RED + b"\x00" * 5, returncode=0)

    with pytest.raises(RenderResourceError, match="5 stray bytes"):
        _read_all(FrameReader("clip.mp4", 2, 2, 30))


def test_close_kills_running_decoder(spawn):
    spawner = spawn(stdout=RED * 10)

    async def scenario():
        reader = FrameReader("clip.mp4", 2, 2, 30)
        await reader.open()
        await reader.read()
        await reader.close()
        await reader.close()

    asyncio.run(scenario())
    assert spawner.last.killed


def test_decoder_crash_fails_the_render(spawn):
    frame = bytes(4 * 4 * 3)
    spawn(stdout=frame * 3 + b"\x00" * 5, returncode=1)
    source = MediaSource("clip.mp4", info=MediaInfo("clip.mp4", 10.0, 4, 4, False))
    factory = EncoderFactory()
    progress = []
    pipeline = RenderPipeline(
        source, [], scheduler=ImmediateScheduler(), encoder_factory=factory, on_progress=progress.append
    )

    with pytest.raises(RenderResourceError):
        asyncio.run(pipeline.run())

    assert pipeline.state is RenderState.FAILED
    assert pipeline.frames_rendered == 3
    assert factory.last.discarded
    assert not factory.last.finalized
    assert 1.0 not in progress
