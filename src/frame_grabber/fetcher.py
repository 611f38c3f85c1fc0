# src/frame_grabber/fetcher.py
"""Local video source loading."""

import mimetypes
from pathlib import Path

from frame_grabber.models import SourceHandle


class SourceError(Exception):
    """The source exists but cannot be used as a video."""
    pass


class VideoFetcher:
    """Resolves filenames inside the videos directory and reads them into SourceHandles."""

    # Containers the mimetypes table may not know about on every platform
    EXTRA_TYPES = {
        ".mkv": "video/x-matroska",
        ".webm": "video/webm",
        ".m4v": "video/x-m4v",
        ".mov": "video/quicktime",
    }

    def __init__(self, videos_dir: str):
        self.videos_dir = Path(videos_dir)

    def get_local_path(self, filename: str) -> Path:
        """Get full path for a local file in the videos directory."""
        full_path = (self.videos_dir / filename).resolve()
        if not full_path.is_relative_to(self.videos_dir.resolve()):
            raise SourceError(f"Refusing path outside the videos directory: {filename}")
        if not full_path.is_file():
            raise FileNotFoundError(f"File not found: {filename} (looked in {self.videos_dir})")
        return full_path

    def detect_mime_type(self, filename: str) -> str | None:
        suffix = Path(filename).suffix.lower()
        if suffix in self.EXTRA_TYPES:
            return self.EXTRA_TYPES[suffix]
        mime_type, _ = mimetypes.guess_type(filename)
        return mime_type

    def load(self, filename: str, max_size: int | None = None) -> SourceHandle:
        """
        Read a local video into memory.

        Args:
            filename: Name relative to the videos directory
            max_size: Refuse files larger than this many bytes

        Raises:
            FileNotFoundError: If the file does not exist
            SourceError: If the file is not a video or is too large
        """
        path = self.get_local_path(filename)

        mime_type = self.detect_mime_type(path.name)
        if not mime_type or not mime_type.startswith("video/"):
            raise SourceError(f"Not a video file: {filename} ({mime_type or 'unknown type'})")

        size = path.stat().st_size
        if max_size is not None and size > max_size:
            raise SourceError(f"File too large: {filename} ({size} bytes, limit {max_size})")

        return SourceHandle(
            name=path.name,
            size=size,
            mime_type=mime_type,
            content=path.read_bytes(),
        )
