"""
Encoder sink: raw RGBA frames plus one routed audio track in, one muxed file out.
"""

import asyncio
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from .audio import AudioRoute
from .errors import RenderResourceError

logger = logging.getLogger("dubstudio")


@dataclass(frozen=True)
class OutputFormat:
    """Container plus the video/audio codec pair used for a whole job."""

    name: str
    extension: str
    mime_type: str
    video_args: tuple[str, ...]
    audio_args: tuple[str, ...]
    container_args: tuple[str, ...] = ()


OUTPUT_FORMATS: dict[str, OutputFormat] = {
    "webm": OutputFormat(
        name="webm",
        extension="webm",
        mime_type="video/webm",
        video_args=(
            "-c:v", "libvpx-vp9", "-b:v", "0", "-crf", "32",
            "-deadline", "realtime", "-cpu-used", "8", "-row-mt", "1",
            "-pix_fmt", "yuv420p",
        ),
        audio_args=("-c:a", "libopus", "-b:a", "128k"),
    ),
    "mp4": OutputFormat(
        name="mp4",
        extension="mp4",
        mime_type="video/mp4",
        video_args=("-c:v", "libx264", "-preset", "veryfast", "-crf", "20", "-pix_fmt", "yuv420p"),
        audio_args=("-c:a", "aac", "-b:a", "160k"),
        container_args=("-movflags", "+faststart"),
    ),
}
DEFAULT_FORMAT = "webm"


def get_output_format(name: str) -> OutputFormat:
    try:
        return OUTPUT_FORMATS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown output format {name!r}; choose from {sorted(OUTPUT_FORMATS)}") from None


def artifact_filename(output_format: OutputFormat, now: float | None = None) -> str:
    """Deterministic export name with a millisecond timestamp suffix."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"dubstudio_export_{millis}.{output_format.extension}"


@dataclass
class RenderArtifact:
    data: bytes
    mime_type: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.data)

    def save(self, directory: str) -> str:
        Path(directory).mkdir(parents=True, exist_ok=True)
        path = os.path.join(directory, self.filename)
        with open(path, "wb") as f:
            f.write(self.data)
        logger.info(f"Saved {self.mime_type} ({self.size} bytes) -> {path}")
        return path


class EncoderSink:
    """What the render pipeline writes frames into."""

    async def open(self) -> None:
        raise NotImplementedError

    async def write_frame(self, frame: Image.Image) -> None:
        raise NotImplementedError

    async def finalize(self) -> RenderArtifact:
        raise NotImplementedError

    async def discard(self) -> None:
        raise NotImplementedError


class FfmpegEncoderSink(EncoderSink):
    """ffmpeg process reading rawvideo RGBA on stdin at a fixed frame rate.

    Writes await ``drain()``, so a slow encoder throttles the render loop.
    """

    def __init__(
        self,
        width: int,
        height: int,
        fps: int,
        audio_route: AudioRoute,
        output_format: OutputFormat,
        scratch_dir: str | None = None,
    ) -> None:
        self.width = width
        self.height = height
        self.fps = fps
        self.audio_route = audio_route
        self.output_format = output_format
        self._scratch_parent = scratch_dir
        self._workdir: str | None = None
        self._out_path: str | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self.frames_written = 0

    def build_command(self, out_path: str) -> list[str]:
        fmt = self.output_format
        cmd = [
            "ffmpeg", "-y", "-v", "error", "-nostats",
            "-f", "rawvideo", "-pix_fmt", "rgba",
            "-s", f"{self.width}x{self.height}", "-r", str(self.fps),
            "-i", "pipe:0",
        ]
        cmd += self.audio_route.input_args()
        cmd += ["-map", "0:v:0"] + self.audio_route.map_args(1)
        cmd += list(fmt.video_args)
        if self.audio_route.has_audio:
            # pad short dubs with silence; the video decides the length
            cmd += list(fmt.audio_args) + ["-af", "apad", "-shortest"]
        else:
            cmd += ["-an"]
        cmd += list(fmt.container_args) + [out_path]
        return cmd

    async def open(self) -> None:
        self._workdir = tempfile.mkdtemp(prefix="dubstudio-render-", dir=self._scratch_parent)
        self._out_path = os.path.join(self._workdir, f"render.{self.output_format.extension}")
        cmd = self.build_command(self._out_path)
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            await self.discard()
            raise RenderResourceError("ffmpeg not found on PATH") from e
        self._stderr_task = asyncio.create_task(self._proc.stderr.read())

    async def _stderr_text(self) -> str:
        if self._stderr_task is None:
            return ""
        raw = await self._stderr_task
        return raw.decode("utf-8", errors="replace").strip()

    async def write_frame(self, frame: Image.Image) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise RenderResourceError("Encoder sink is not open")
        if proc.returncode is not None:
            raise RenderResourceError(f"Encoder exited early ({proc.returncode}): {await self._stderr_text()}")
        try:
            proc.stdin.write(frame.tobytes())
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            await proc.wait()
            raise RenderResourceError(f"Encoder pipe closed: {await self._stderr_text()}") from e
        self.frames_written += 1

    async def finalize(self) -> RenderArtifact:
        proc = self._proc
        if proc is None or proc.stdin is None or self._out_path is None:
            raise RenderResourceError("Encoder sink is not open")
        try:
            proc.stdin.close()
            await proc.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass
        return_code = await proc.wait()
        stderr_text = await self._stderr_text()
        if return_code != 0:
            await self.discard()
            raise RenderResourceError(f"ffmpeg failed with exit code {return_code}. {stderr_text}")

        data = await asyncio.to_thread(Path(self._out_path).read_bytes)
        artifact = RenderArtifact(
            data=data,
            mime_type=self.output_format.mime_type,
            filename=artifact_filename(self.output_format),
        )
        logger.info(f"Encoded {self.frames_written} frames -> {len(data)} bytes ({artifact.mime_type})")
        self._proc = None
        await self.discard()
        return artifact

    async def discard(self) -> None:
        proc, self._proc = self._proc, None
        if proc is not None:
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
        self._stderr_task = None
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
            self._out_path = None
