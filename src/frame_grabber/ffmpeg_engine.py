# src/frame_grabber/ffmpeg_engine.py
"""Decode/render engine backed by ffprobe and ffmpeg."""

import json
import math
import shutil
import asyncio
import logging
import tempfile
import subprocess
from pathlib import Path
from typing import Any

from PIL import Image

from frame_grabber.engine import DecodableResource, EngineEvent, EventKind, MediaEngine
from frame_grabber.models import SourceHandle

logger = logging.getLogger(__name__)


class FfmpegResource(DecodableResource):
    """
    A source copied into a private scratch directory for ffmpeg to read.

    The copy is written by load(), so binding never blocks on large files.

    load() and seek() start a background task on the running event loop;
    the subprocess itself runs in a worker thread and the resulting event
    is emitted back on the loop thread.
    """

    def __init__(
        self,
        source: SourceHandle,
        scratch_dir: str | None = None,
        probe_timeout: int = 30,
        decode_timeout: int = 60,
        lookbehind: float = 2.0,
    ):
        super().__init__()
        self.probe_timeout = probe_timeout
        self.decode_timeout = decode_timeout
        self.lookbehind = lookbehind
        self.work_dir = Path(tempfile.mkdtemp(prefix="frame-grabber-", dir=scratch_dir))
        suffix = Path(source.name).suffix or ".video"
        self.video_path = self.work_dir / f"source{suffix}"
        # Written to disk by load(), off the event loop
        self._content: bytes | None = source.content
        self._duration = float("nan")
        self._video_end = float("nan")
        self._width = 0
        self._height = 0
        self._current: Image.Image | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    def load(self) -> None:
        self._spawn(self._probe())

    def seek(self, time: float) -> None:
        self._spawn(self._decode_at(time))

    def render(self) -> Image.Image | None:
        return self._current

    def _close(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        if self._current is not None:
            self._current.close()
            self._current = None
        shutil.rmtree(self.work_dir, ignore_errors=True)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def probe_command(self) -> list[str]:
        return [
            "ffprobe",
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "format=duration:stream=width,height,duration",
            "-of", "json",
            str(self.video_path)
        ]

    def decode_command(self, time: float, output_path: Path) -> list[str]:
        """
        Build the ffmpeg command that leaves the frame presented at `time`
        in `output_path`.

        At 0 the first decoded frame is written. Otherwise the window
        [time - lookbehind, time) is decoded and each frame overwrites the
        previous one, so the file ends up holding the last frame shown
        before `time`.
        """
        start = max(0.0, time - self.lookbehind)
        span = time - start

        cmd = ["ffmpeg", "-v", "error", "-ss", f"{start:.6f}", "-i", str(self.video_path), "-an"]
        if span > 0:
            cmd += ["-t", f"{span:.6f}"]
        else:
            cmd += ["-frames:v", "1"]
        cmd += ["-update", "1", str(output_path), "-y"]
        return cmd

    def tail_command(self, output_path: Path) -> list[str]:
        """Decode the last `lookbehind` seconds of the file, keeping the final frame."""
        return [
            "ffmpeg",
            "-v", "error",
            "-sseof", f"-{self.lookbehind:.6f}",
            "-i", str(self.video_path),
            "-an",
            "-update", "1",
            str(output_path),
            "-y"
        ]

    def decode_target(self, time: float) -> float:
        """
        Clamp `time` to the end of the video stream.

        The container duration can run past the video when another track
        (usually audio) is longer; past that point the last video frame
        stays on screen.
        """
        if math.isfinite(self._video_end) and 0 < self._video_end < time:
            return self._video_end
        return time

    async def _stage(self) -> None:
        if self._content is None:
            return
        content, self._content = self._content, None
        await asyncio.to_thread(self.video_path.write_bytes, content)

    async def _run(self, cmd: list[str], timeout: int, label: str) -> subprocess.CompletedProcess | None:
        """Run a tool off the event loop. Emits ERROR and returns None on failure."""
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            self._emit_error(f"{label} timed out after {timeout} seconds")
            return None
        except FileNotFoundError:
            self._emit_error(f"{cmd[0]} not found. Ensure ffmpeg is installed.")
            return None

        if result.returncode != 0:
            self._emit_error(f"{label} failed: {result.stderr.strip()}", result.returncode)
            return None
        return result

    async def _probe(self) -> None:
        try:
            await self._stage()
        except OSError as e:
            self._emit_error(f"Could not copy video to scratch space: {e}")
            return

        result = await self._run(self.probe_command(), self.probe_timeout, "Probe")
        if result is None:
            return

        try:
            info = parse_probe_output(result.stdout)
        except ValueError as e:
            self._emit_error(str(e))
            return

        self._duration = info["duration"]
        self._video_end = info["video_duration"]
        self._width = info["width"]
        self._height = info["height"]
        self.emit(EngineEvent(EventKind.METADATA_READY))

    async def _decode_at(self, time: float) -> None:
        output_path = self.work_dir / "frame.bmp"
        output_path.unlink(missing_ok=True)

        target = self.decode_target(time)
        label = f"Seek to {time:.3f}s"
        if await self._run(self.decode_command(target, output_path), self.decode_timeout, label) is None:
            return

        # Stream durations are not always reported; fall back to the file tail
        if time > 0 and not output_path.exists():
            logger.info(f"No frame before {target:.3f}s in {self.video_path.name}, decoding file tail")
            if await self._run(self.tail_command(output_path), self.decode_timeout, label) is None:
                return

        if self._current is not None:
            self._current.close()
            self._current = None

        # No file means nothing was decodable there; render() reports that as None
        if output_path.exists():
            try:
                with Image.open(output_path) as image:
                    image.load()
                    self._current = image.copy()
            except OSError as e:
                self._emit_error(f"Could not read decoded frame: {e}")
                return
            finally:
                output_path.unlink(missing_ok=True)

        self.emit(EngineEvent(EventKind.SEEKED))

    def _emit_error(self, message: str, code: int | None = None) -> None:
        logger.warning(f"Engine error for {self.video_path.name}: {message}")
        self.emit(EngineEvent(EventKind.ERROR, code=code, message=message))


def _as_seconds(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def parse_probe_output(output: str) -> dict[str, Any]:
    """
    Parse ffprobe JSON into duration/video_duration/width/height.

    `duration` is the container duration. `video_duration` is the video
    stream's own length. A missing or non-numeric value ("N/A" for some
    streams) becomes NaN; the pipeline rejects a NaN container duration
    as degenerate media.

    Raises:
        ValueError: If the output is not JSON or has no video stream
    """
    try:
        data = json.loads(output or "{}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Unreadable probe output: {e}")

    streams = data.get("streams") or []
    if not streams:
        raise ValueError("No video stream found")

    stream = streams[0]
    return {
        "duration": _as_seconds(data.get("format", {}).get("duration")),
        "video_duration": _as_seconds(stream.get("duration")),
        "width": int(stream.get("width") or 0),
        "height": int(stream.get("height") or 0),
    }


class FfmpegEngine(MediaEngine):
    """Engine that decodes with the ffmpeg command-line tools."""

    def __init__(
        self,
        scratch_dir: str | None = None,
        probe_timeout: int = 30,
        decode_timeout: int = 60,
        lookbehind: float = 2.0,
    ):
        self.scratch_dir = scratch_dir
        self.probe_timeout = probe_timeout
        self.decode_timeout = decode_timeout
        self.lookbehind = lookbehind

    def bind(self, source: SourceHandle) -> FfmpegResource:
        return FfmpegResource(
            source,
            scratch_dir=self.scratch_dir,
            probe_timeout=self.probe_timeout,
            decode_timeout=self.decode_timeout,
            lookbehind=self.lookbehind,
        )
