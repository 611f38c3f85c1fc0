# src/frame_grabber/engine.py
"""Abstract decode/render engine the extraction pipeline drives."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from PIL import Image

from frame_grabber.models import SourceHandle


class EventKind(Enum):
    METADATA_READY = "loadedmetadata"
    SEEKED = "seeked"
    ERROR = "error"


@dataclass(frozen=True)
class EngineEvent:
    kind: EventKind
    code: int | None = None
    message: str | None = None


Listener = Callable[[EngineEvent], None]


class DecodableResource(ABC):
    """
    Binding between one source and the engine.

    Actions (`load`, `seek`) return immediately; completion is reported
    later through the listeners as a single EngineEvent. Metadata
    properties are only meaningful after METADATA_READY.

    Use as a context manager: leaving the block releases the resource.
    """

    def __init__(self):
        self._listeners: list[Listener] = []
        self._released = False

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: EngineEvent) -> None:
        """Deliver an event to every listener attached right now."""
        for listener in list(self._listeners):
            listener(event)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Free the binding. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self._listeners.clear()
        self._close()

    def __enter__(self) -> "DecodableResource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    @abstractmethod
    def duration(self) -> float: ...

    @property
    @abstractmethod
    def width(self) -> int: ...

    @property
    @abstractmethod
    def height(self) -> int: ...

    @abstractmethod
    def load(self) -> None:
        """Start reading metadata. Emits METADATA_READY or ERROR."""

    @abstractmethod
    def seek(self, time: float) -> None:
        """Position on the frame presented at `time`. Emits SEEKED or ERROR."""

    @abstractmethod
    def render(self) -> Image.Image | None:
        """Return the current decoded frame, or None if nothing is renderable."""

    @abstractmethod
    def _close(self) -> None:
        """Free native resources. Called once by release()."""


class MediaEngine(ABC):
    @abstractmethod
    def bind(self, source: SourceHandle) -> DecodableResource:
        """Create a new resource for `source`."""
