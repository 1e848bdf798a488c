"""
Media source adapter: a decodable video file played forward frame by frame.
"""

import asyncio
import logging

from PIL import Image

from .errors import MediaDecodeError, RenderResourceError
from .io_ffmpeg import MediaInfo, probe_media

logger = logging.getLogger("dubstudio")


class FrameReader:
    """Forward playback of a video as RGB frames at a fixed rate.

    The ffmpeg decoder blocks when frames are not pulled, so not calling
    :meth:`read` is the pause.
    """

    def __init__(self, path: str, width: int, height: int, fps: int, start: float = 0.0) -> None:
        self.path = path
        self.width = width
        self.height = height
        self.fps = fps
        self.start = start
        self._frame_bytes = width * height * 3
        self._index = 0
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None

    async def open(self) -> "FrameReader":
        cmd = ["ffmpeg", "-v", "error", "-nostdin"]
        if self.start > 0:
            cmd += ["-ss", f"{self.start:.3f}"]
        cmd += [
            "-i",
            self.path,
            "-an",
            "-vf",
            f"fps={self.fps},scale={self.width}:{self.height}",
            "-f",
            "rawvideo",
            "-pix_fmt",
            "rgb24",
            "pipe:1",
        ]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RenderResourceError("ffmpeg not found on PATH") from e
        self._stderr_task = asyncio.create_task(self._proc.stderr.read())
        return self

    async def _stderr_text(self) -> str:
        if self._stderr_task is None:
            return ""
        raw = await self._stderr_task
        return raw.decode("utf-8", errors="replace").strip()

    async def read(self) -> tuple[float, Image.Image] | None:
        """Next ``(timestamp, frame)``, or ``None`` at end of stream.

        A short read is only the end of stream when the decoder exited cleanly
        on a frame boundary.
        """
        if self._proc is None or self._proc.stdout is None:
            raise RenderResourceError("Frame reader is not open")
        try:
            raw = await self._proc.stdout.readexactly(self._frame_bytes)
        except asyncio.IncompleteReadError as e:
            return_code = await self._proc.wait()
            if return_code != 0 or e.partial:
                raise RenderResourceError(
                    f"Decoder stopped after {self._index} frames "
                    f"(exit code {return_code}, {len(e.partial)} stray bytes): {await self._stderr_text()}"
                ) from e
            return None
        timestamp = self.start + self._index / self.fps
        self._index += 1
        return timestamp, Image.frombytes("RGB", (self.width, self.height), raw)

    async def close(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.returncode is None:
            proc.kill()
        await proc.wait()
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
        self._stderr_task = None

    async def __aenter__(self) -> "FrameReader":
        return await self.open()

    async def __aexit__(self, *exc) -> None:
        await self.close()


class MediaSource:
    """Thin wrapper over a video file: size, duration, seek and playback."""

    def __init__(self, path: str, info: MediaInfo | None = None) -> None:
        self.path = str(path)
        self._info = info
        self._position = 0.0

    @property
    def info(self) -> MediaInfo:
        if self._info is None:
            self._info = probe_media(self.path)
        return self._info

    @property
    def duration(self) -> float:
        return self.info.duration

    @property
    def width(self) -> int | None:
        return self.info.width

    @property
    def height(self) -> int | None:
        return self.info.height

    @property
    def has_audio(self) -> bool:
        return self.info.has_audio

    @property
    def position(self) -> float:
        return self._position

    def seek(self, timestamp: float) -> None:
        """Set where the next playback starts."""
        if timestamp < 0 or timestamp > self.duration:
            raise MediaDecodeError(f"Seek position {timestamp} outside 0..{self.duration}")
        self._position = float(timestamp)

    async def load(self) -> MediaInfo:
        """Probe without blocking the event loop."""
        if self._info is None:
            self._info = await asyncio.to_thread(probe_media, self.path)
        return self._info

    def open_frames(self, width: int, height: int, fps: int) -> FrameReader:
        return FrameReader(self.path, width, height, fps, start=self._position)

    def audio_input_args(self) -> list[str]:
        """ffmpeg input arguments that replay this source's native audio from the seek point."""
        args = ["-ss", f"{self._position:.3f}"] if self._position > 0 else []
        return args + ["-i", self.path]
