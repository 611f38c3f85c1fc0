# src/frame_grabber/pipeline.py
"""First/last frame extraction pipeline."""

import io
import math
import base64
import asyncio
import logging
from enum import Enum
from typing import Callable

from PIL import Image

from frame_grabber.engine import DecodableResource, EngineEvent, EventKind, MediaEngine
from frame_grabber.models import ExtractionResult, FrameData, SourceHandle, VideoMetadata

logger = logging.getLogger(__name__)

# 1ms stays inside the final frame for frame rates up to ~1000 fps
LAST_FRAME_EPSILON = 0.001
JPEG_QUALITY = 90
METADATA_TIMEOUT = 10.0

LogSink = Callable[[str], None]


class ExtractionError(Exception):
    """Error during frame extraction."""
    kind = "ExtractionError"

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class LoadFailure(ExtractionError):
    """The engine could not open or decode the source."""
    kind = "LoadFailure"


class InvalidMedia(ExtractionError):
    """Metadata arrived but the duration is zero, negative or non-finite."""
    kind = "InvalidMedia"


class SeekFailure(ExtractionError):
    kind = "SeekFailure"


class CaptureFailure(ExtractionError):
    """The decoded frame could not be rasterized."""
    kind = "CaptureFailure"


class ExtractionTimeout(ExtractionError):
    kind = "Timeout"


class PipelineState(Enum):
    INIT = "init"
    AWAITING_METADATA = "awaiting_metadata"
    SEEK_FIRST = "seek_first"
    SEEK_LAST = "seek_last"
    FINALIZE = "finalize"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def last_frame_time(duration: float, epsilon: float = LAST_FRAME_EPSILON) -> float:
    """Seek target for the last frame, just before the end-of-stream boundary."""
    return max(0.0, duration - epsilon)


def encode_jpeg(surface: Image.Image, quality: int = JPEG_QUALITY) -> str:
    """Encode a raster as a JPEG data URL."""
    buffer = io.BytesIO()
    surface.convert("RGB").save(buffer, format="JPEG", quality=quality)
    payload = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{payload}"


class FrameExtractionPipeline:
    """
    Drives one extraction through INIT -> AWAITING_METADATA -> SEEK_FIRST ->
    SEEK_LAST -> FINALIZE, ending in SUCCEEDED or FAILED.

    Each engine action is paired with exactly one awaited event. The listener
    is attached just before the action and detached as soon as the event
    lands, so late or duplicate events are dropped.

    Args:
        engine: Engine used to bind the source
        source: Video to extract from; borrowed for this run only
        log: Optional sink for human-readable progress messages
        metadata_timeout: Seconds before the metadata watchdog fires
        enforce_timeout: Fail with ExtractionTimeout when the watchdog fires,
                         instead of only logging it
        epsilon: Offset subtracted from the duration for the last seek
        jpeg_quality: JPEG quality for captured frames (1-95)
    """

    def __init__(
        self,
        engine: MediaEngine,
        source: SourceHandle,
        log: LogSink | None = None,
        metadata_timeout: float = METADATA_TIMEOUT,
        enforce_timeout: bool = False,
        epsilon: float = LAST_FRAME_EPSILON,
        jpeg_quality: int = JPEG_QUALITY,
    ):
        self.engine = engine
        self.source = source
        self.metadata_timeout = metadata_timeout
        self.enforce_timeout = enforce_timeout
        self.epsilon = epsilon
        self.jpeg_quality = jpeg_quality
        self.state = PipelineState.INIT
        self._sink = log
        self._pending: asyncio.Future | None = None
        self._expected: EventKind | None = None
        self._watchdog: asyncio.TimerHandle | None = None
        self._started = False

    def _log(self, message: str) -> None:
        logger.debug(message)
        if self._sink is None:
            return
        try:
            self._sink(message)
        except Exception as e:
            logger.warning(f"Log sink raised, ignoring: {e}")

    async def run(self) -> ExtractionResult:
        """Run the extraction. Can only be called once per pipeline."""
        if self._started:
            raise RuntimeError("Pipeline has already run")
        self._started = True

        self._log(f"Starting extraction for {self.source.name} ({self.source.size} bytes)")
        try:
            try:
                resource = self.engine.bind(self.source)
            except OSError as e:
                raise LoadFailure(f"Could not bind video source: {e}")

            with resource:
                self._log("Resource bound")
                try:
                    result = await self._drive(resource)
                finally:
                    self._disarm_watchdog()
                    self._log("Releasing resource")
        except BaseException as e:
            # Cancellation counts as a failed run too
            self.state = PipelineState.FAILED
            self._log(f"Extraction failed: {e or type(e).__name__}")
            raise

        self.state = PipelineState.SUCCEEDED
        self._log("Extraction complete")
        return result

    async def _drive(self, resource: DecodableResource) -> ExtractionResult:
        self._arm_watchdog()
        self.state = PipelineState.AWAITING_METADATA
        self._log("Loading metadata")
        event = await self._perform(resource, EventKind.METADATA_READY, resource.load)
        self._disarm_watchdog()
        if event.kind is EventKind.ERROR:
            raise LoadFailure(
                f"Failed to load video file: {event.message or 'unknown error'}",
                code=event.code,
            )

        duration = resource.duration
        width = resource.width
        height = resource.height
        self._log(f"Metadata ready: duration={duration}s, size={width}x{height}")
        if not math.isfinite(duration) or duration <= 0:
            raise InvalidMedia(f"Video has no playable duration (reported {duration})")

        self.state = PipelineState.SEEK_FIRST
        first_frame = await self._capture_at(resource, 0.0, "first")

        self.state = PipelineState.SEEK_LAST
        last_frame = await self._capture_at(
            resource, last_frame_time(duration, self.epsilon), "last"
        )

        self.state = PipelineState.FINALIZE
        metadata = VideoMetadata(
            duration=duration,
            width=width,
            height=height,
            name=self.source.name,
            size=self.source.size,
        )
        return ExtractionResult(
            frames=FrameData(first_frame=first_frame, last_frame=last_frame),
            metadata=metadata,
        )

    async def _capture_at(self, resource: DecodableResource, time: float, label: str) -> str:
        self._log(f"Seeking to {time:.3f}s for {label} frame")
        event = await self._perform(resource, EventKind.SEEKED, lambda: resource.seek(time))
        if event.kind is EventKind.ERROR:
            raise SeekFailure(
                f"Error seeking video to {time:.3f}s: {event.message or 'unknown error'}",
                code=event.code,
            )

        surface = resource.render()
        if surface is None:
            raise CaptureFailure(f"No renderable frame at {time:.3f}s")
        try:
            frame = encode_jpeg(surface, self.jpeg_quality)
        except (OSError, ValueError) as e:
            raise CaptureFailure(f"Could not encode {label} frame: {e}")
        self._log(f"Captured {label} frame ({surface.width}x{surface.height})")
        return frame

    async def _perform(
        self,
        resource: DecodableResource,
        expected: EventKind,
        action: Callable[[], None],
    ) -> EngineEvent:
        """Issue `action` and wait for its single completion (or error) event."""
        self._pending = asyncio.get_running_loop().create_future()
        self._expected = expected
        pending = self._pending
        resource.add_listener(self._on_event)
        try:
            action()
            return await pending
        finally:
            resource.remove_listener(self._on_event)
            self._pending = None
            self._expected = None

    def _on_event(self, event: EngineEvent) -> None:
        pending = self._pending
        if pending is None or pending.done():
            self._log(f"Ignoring late event: {event.kind.value}")
            return
        if event.kind is not EventKind.ERROR and event.kind is not self._expected:
            self._log(f"Ignoring unexpected event: {event.kind.value}")
            return
        self._log(f"Event fired: {event.kind.value}")
        pending.set_result(event)

    def _arm_watchdog(self) -> None:
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(self.metadata_timeout, self._on_watchdog)

    def _disarm_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _on_watchdog(self) -> None:
        self._watchdog = None
        if self.state is not PipelineState.AWAITING_METADATA:
            return
        message = f"Metadata not ready after {self.metadata_timeout}s"
        logger.warning(f"{message} ({self.source.name})")
        self._log(message)
        pending = self._pending
        if self.enforce_timeout and pending is not None and not pending.done():
            pending.set_exception(ExtractionTimeout(message))


async def extract_frames(
    source: SourceHandle,
    engine: MediaEngine | None = None,
    log: LogSink | None = None,
    **options,
) -> ExtractionResult:
    """
    Extract the first and last frames of `source`.

    Args:
        source: Video to read
        engine: Decode/render engine; defaults to the ffmpeg engine
        log: Optional diagnostic sink (e.g. a LogTrace)
        **options: Passed to FrameExtractionPipeline (metadata_timeout,
                   enforce_timeout, epsilon, jpeg_quality)

    Returns:
        ExtractionResult with both frames as JPEG data URLs and the metadata

    Raises:
        ExtractionError: LoadFailure, InvalidMedia, SeekFailure,
                         CaptureFailure or ExtractionTimeout
    """
    if engine is None:
        from frame_grabber.ffmpeg_engine import FfmpegEngine
        engine = FfmpegEngine()
    pipeline = FrameExtractionPipeline(engine, source, log=log, **options)
    return await pipeline.run()
