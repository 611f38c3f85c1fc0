# src/frame_grabber/presentation.py
"""Formatting and output helpers for extraction results."""

import re
import uuid
import base64
from pathlib import Path

from frame_grabber.models import VideoMetadata

BYTE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def format_bytes(size: int, decimals: int = 2) -> str:
    """Format a byte count with 1024-based units, e.g. 1536 -> '1.5 KB'."""
    if not size:
        return "0 Bytes"
    decimals = max(0, decimals)
    index = 0
    while size >= 1024 ** (index + 1) and index < len(BYTE_UNITS) - 1:
        index += 1
    value = round(size / 1024 ** index, decimals)
    # Strip trailing zeros: 1.50 -> 1.5, 2.00 -> 2
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".") if decimals else f"{value:.0f}"
    return f"{text} {BYTE_UNITS[index]}"


def format_duration(seconds: float) -> str:
    """Format seconds as M:SS timestamp."""
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"


def frame_filename(label: str) -> str:
    """Filename for a saved frame: 'First Frame' -> 'first_frame.jpg'."""
    stem = re.sub(r"\s+", "_", label).lower()
    return f"{stem}.jpg"


def summarize(metadata: VideoMetadata) -> str:
    return (
        f"{metadata.name} · {format_duration(metadata.duration)} · "
        f"{format_bytes(metadata.size)} · {metadata.width}x{metadata.height}"
    )


def create_output_dir(base_dir: str, identifier: str) -> Path:
    """Create a unique output directory for this extraction."""
    # UUID keeps repeated runs on the same video apart
    unique_id = f"{identifier}_{uuid.uuid4().hex[:8]}"
    output_dir = Path(base_dir) / unique_id
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def decode_data_url(data_url: str) -> bytes:
    """Return the payload of a base64 data URL."""
    header, sep, payload = data_url.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data URL")
    return base64.b64decode(payload)


def save_frame(data_url: str, output_dir: Path, label: str) -> Path:
    """Write a captured frame under a filename derived from its label."""
    path = output_dir / frame_filename(label)
    path.write_bytes(decode_data_url(data_url))
    return path
