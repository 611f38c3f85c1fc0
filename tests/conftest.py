# tests/conftest.py
import pytest
from PIL import Image

from frame_grabber.engine import DecodableResource, EngineEvent, EventKind, MediaEngine
from frame_grabber.models import SourceHandle


class ScriptedResource(DecodableResource):
    """Resource that answers every action synchronously from a script."""

    def __init__(self, engine: "ScriptedEngine"):
        super().__init__()
        self.engine = engine
        self._seek_count = 0
        self._current = None

    @property
    def duration(self) -> float:
        return self.engine.duration

    @property
    def width(self) -> int:
        return self.engine.width

    @property
    def height(self) -> int:
        return self.engine.height

    def load(self) -> None:
        self.engine.calls.append(("load",))
        if self.engine.silent_load:
            return
        if self.engine.load_error:
            self.emit(EngineEvent(EventKind.ERROR, code=4, message=self.engine.load_error))
            return
        self.emit(EngineEvent(EventKind.METADATA_READY))
        if self.engine.duplicate_events:
            self.emit(EngineEvent(EventKind.METADATA_READY))

    def seek(self, time: float) -> None:
        index = self._seek_count
        self._seek_count += 1
        self.engine.calls.append(("seek", time))
        if index in self.engine.seek_errors:
            self.emit(EngineEvent(EventKind.ERROR, message=self.engine.seek_errors[index]))
            return
        if index in self.engine.blank_seeks:
            self._current = None
        else:
            color = (255, 0, 0) if time == 0 else (0, 0, 255)
            self._current = Image.new("RGB", (self.engine.width, self.engine.height), color)
        self.emit(EngineEvent(EventKind.SEEKED))
        if self.engine.duplicate_events:
            self.emit(EngineEvent(EventKind.SEEKED))

    def render(self):
        self.engine.calls.append(("render",))
        return self._current

    def _close(self) -> None:
        self.engine.released += 1


class ScriptedEngine(MediaEngine):
    """
    Deterministic engine double.

    Records every call in order and counts acquired/released resources.
    """

    def __init__(
        self,
        duration: float = 10.0,
        width: int = 64,
        height: int = 48,
        load_error: str | None = None,
        seek_errors: dict[int, str] | None = None,
        blank_seeks: set[int] | None = None,
        silent_load: bool = False,
        duplicate_events: bool = False,
    ):
        self.duration = duration
        self.width = width
        self.height = height
        self.load_error = load_error
        self.seek_errors = seek_errors or {}
        self.blank_seeks = blank_seeks or set()
        self.silent_load = silent_load
        self.duplicate_events = duplicate_events
        self.calls: list[tuple] = []
        self.acquired = 0
        self.released = 0
        self.resources: list[ScriptedResource] = []

    def bind(self, source: SourceHandle) -> ScriptedResource:
        self.acquired += 1
        resource = ScriptedResource(self)
        self.resources.append(resource)
        return resource

    @property
    def seeks(self) -> list[float]:
        return [call[1] for call in self.calls if call[0] == "seek"]


@pytest.fixture
def make_engine():
    return ScriptedEngine


@pytest.fixture
def source():
    return SourceHandle(
        name="clip.mp4",
        size=2048,
        mime_type="video/mp4",
        content=b"\x00" * 2048
    )
