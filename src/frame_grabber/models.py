"""Pydantic models for sources, extraction results and tool responses."""

from pydantic import BaseModel, ConfigDict, Field


class SourceHandle(BaseModel):
    """Raw video bytes supplied by the caller."""
    name: str
    size: int = Field(ge=0)
    mime_type: str = "video/mp4"
    content: bytes = Field(repr=False)


class VideoMetadata(BaseModel):
    """Media facts reported once the engine has decodable metadata."""
    model_config = ConfigDict(frozen=True)

    duration: float
    width: int
    height: int
    name: str
    size: int


class FrameData(BaseModel):
    """The two captured frames, as JPEG data URLs."""
    model_config = ConfigDict(frozen=True)

    first_frame: str
    last_frame: str


class ExtractionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    frames: FrameData
    metadata: VideoMetadata


class FrameInfo(BaseModel):
    """A captured frame saved to disk."""
    label: str
    path: str
    timestamp: float
    size: int


class ExtractionResponse(BaseModel):
    """Response from the frame extraction tool."""
    status: str  # "success" or "error"
    metadata: VideoMetadata | None = None
    summary: str | None = None
    frames: list[FrameInfo] = []
    logs: list[str] = []
    error_kind: str | None = None
    message: str
