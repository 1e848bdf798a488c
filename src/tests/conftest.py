"""
Shared fakes: an in-memory video source and a recording encoder sink.
"""

import asyncio
import os

import pytest
from PIL import Image

from dubstudio.encoder import EncoderSink, RenderArtifact, artifact_filename
from dubstudio.io_ffmpeg import MediaInfo


class FakeReader:
    def __init__(self, source, width, height, fps):
        self.source = source
        self.width = width
        self.height = height
        self.fps = fps
        self.index = 0
        self.opened = False
        self.closed = False

    async def open(self):
        if self.source.fail_reader_open:
            raise self.source.fail_reader_open
        self.opened = True
        return self

    async def read(self):
        t = self.source.position + self.index / self.fps
        if t >= self.source.info.duration - 1e-9:
            return None
        self.index += 1
        return t, Image.new("RGB", (self.width, self.height), self.source.color)

    async def close(self):
        self.closed = True


class FakeSource:
    def __init__(self, duration=1.0, width=64, height=36, has_audio=False, color=(200, 10, 10)):
        self.info = MediaInfo(path="fake.mp4", duration=duration, width=width, height=height, has_audio=has_audio)
        self.position = 0.0
        self.color = color
        self.readers: list[FakeReader] = []
        self.fail_reader_open: Exception | None = None

    @property
    def has_audio(self):
        return self.info.has_audio

    async def load(self):
        return self.info

    def open_frames(self, width, height, fps):
        reader = FakeReader(self, width, height, fps)
        self.readers.append(reader)
        return reader

    def audio_input_args(self):
        return ["-i", self.info.path]


class RecordingEncoder(EncoderSink):
    def __init__(self, width, height, fps, audio_route, output_format):
        self.width = width
        self.height = height
        self.fps = fps
        self.audio_route = audio_route
        self.output_format = output_format
        self.route_kind_at_open = None
        self.override_file_existed = False
        self.opened = False
        self.frames = 0
        self.first_frame: bytes | None = None
        self.finalized = False
        self.discarded = False
        self.fail_open: Exception | None = None

    async def open(self):
        if self.fail_open:
            raise self.fail_open
        self.opened = True
        self.route_kind_at_open = self.audio_route.kind
        if self.audio_route.path:
            self.override_file_existed = os.path.exists(self.audio_route.path)

    async def write_frame(self, frame):
        if self.first_frame is None:
            self.first_frame = frame.tobytes()
        self.frames += 1

    async def finalize(self):
        self.finalized = True
        return RenderArtifact(
            data=b"x" * self.frames,
            mime_type=self.output_format.mime_type,
            filename=artifact_filename(self.output_format, now=0),
        )

    async def discard(self):
        self.discarded = True


class EncoderFactory:
    """Callable factory that remembers every sink it built."""

    def __init__(self, fail_open: Exception | None = None):
        self.fail_open = fail_open
        self.sinks: list[RecordingEncoder] = []

    def __call__(self, width, height, fps, audio_route, output_format):
        sink = RecordingEncoder(width, height, fps, audio_route, output_format)
        sink.fail_open = self.fail_open
        self.sinks.append(sink)
        return sink

    @property
    def last(self) -> RecordingEncoder:
        return self.sinks[-1]


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def encoder_factory():
    return EncoderFactory()


def _stream(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    reader.feed_eof()
    return reader


class FakeStdin:
    def __init__(self, broken=False):
        self.data = bytearray()
        self.broken = broken
        self.closed = False

    def write(self, data):
        if self.broken:
            raise BrokenPipeError("pipe closed")
        self.data += data

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


class FakeProcess:
    """An ffmpeg stand-in with canned stdout/stderr and exit code.

    With ``output`` set, exiting writes those bytes to the last command
    argument, the way the encoder leaves its file behind.
    """

    def __init__(self, cmd, stdout=b"", stderr=b"", returncode=0, output=None, broken_stdin=False):
        self.cmd = cmd
        self.stdout = _stream(stdout)
        self.stderr = _stream(stderr)
        self.stdin = FakeStdin(broken_stdin)
        self.exit_code = returncode
        self.output = output
        self.returncode = None
        self.killed = False

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        if self.returncode is None:
            self.returncode = self.exit_code
            if self.output is not None:
                with open(self.cmd[-1], "wb") as f:
                    f.write(self.output)
        return self.returncode


class ProcessSpawner:
    """Replaces asyncio.create_subprocess_exec; remembers every process it started."""

    def __init__(self, **behaviour):
        self.behaviour = behaviour
        self.procs: list[FakeProcess] = []

    async def __call__(self, *cmd, **kwargs):
        proc = FakeProcess(list(cmd), **self.behaviour)
        self.procs.append(proc)
        return proc

    @property
    def last(self) -> FakeProcess:
        return self.procs[-1]


@pytest.fixture
def spawn(monkeypatch):
    def install(**behaviour) -> ProcessSpawner:
        spawner = ProcessSpawner(**behaviour)
        monkeypatch.setattr(asyncio, "create_subprocess_exec", spawner)
        return spawner

    return install
