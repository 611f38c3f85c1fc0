# src/frame_grabber/server.py
"""MCP server for first/last frame extraction."""

import os
import asyncio
import logging
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from frame_grabber.models import FrameInfo, ExtractionResponse
from frame_grabber.fetcher import VideoFetcher, SourceError
from frame_grabber.ffmpeg_engine import FfmpegEngine
from frame_grabber.pipeline import ExtractionError, extract_frames, last_frame_time
from frame_grabber.presentation import create_output_dir, save_frame, summarize
from frame_grabber.trace import LogTrace

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Configuration from environment or defaults
VIDEOS_DIR = os.environ.get("FRAME_GRABBER_VIDEOS_DIR", "/videos")
FRAMES_DIR = os.environ.get("FRAME_GRABBER_FRAMES_DIR", "/tmp/frame-grabber")
METADATA_TIMEOUT = float(os.environ.get("FRAME_GRABBER_METADATA_TIMEOUT", "15"))
ENFORCE_TIMEOUT = os.environ.get("FRAME_GRABBER_ENFORCE_TIMEOUT", "").lower() in ("1", "true", "yes")
MAX_FILE_SIZE = 2 * 1024 ** 3  # 2 GiB

# Initialize MCP server
mcp = FastMCP("frame-grabber")

# Initialize components
fetcher = VideoFetcher(videos_dir=VIDEOS_DIR)
engine = FfmpegEngine()


def error_response(message: str, kind: str, trace: LogTrace, include_logs: bool) -> dict:
    return ExtractionResponse(
        status="error",
        error_kind=kind,
        logs=trace.entries if include_logs else [],
        message=message
    ).model_dump()


@mcp.tool()
async def extract_first_last_frames(source: str, include_logs: bool = False) -> dict:
    """
    Extract the first and last frames of a local video file and report
    its duration, dimensions and size. The video never leaves this machine.

    Args:
        source: Video filename inside the videos directory
        include_logs: Include the step-by-step extraction trace in the response

    Returns:
        Dictionary with status, saved frame paths and video metadata
    """
    trace = LogTrace()

    try:
        logger.info(f"Processing local source: {source}")
        # Reading up to MAX_FILE_SIZE bytes; keep it off the event loop
        video = await asyncio.to_thread(fetcher.load, source, max_size=MAX_FILE_SIZE)

        result = await extract_frames(
            video,
            engine=engine,
            log=trace,
            metadata_timeout=METADATA_TIMEOUT,
            enforce_timeout=ENFORCE_TIMEOUT
        )

        output_dir = create_output_dir(FRAMES_DIR, Path(video.name).stem)
        logger.info(f"Saving frames to {output_dir}")

        metadata = result.metadata
        frames = []
        for label, data_url, timestamp in (
            ("First Frame", result.frames.first_frame, 0.0),
            ("Last Frame", result.frames.last_frame, last_frame_time(metadata.duration)),
        ):
            path = save_frame(data_url, output_dir, label)
            frames.append(FrameInfo(
                label=label,
                path=str(path),
                timestamp=timestamp,
                size=path.stat().st_size
            ))

        summary = summarize(metadata)
        response = ExtractionResponse(
            status="success",
            metadata=metadata,
            summary=summary,
            frames=frames,
            logs=trace.entries if include_logs else [],
            message=f"Extracted first and last frames from {summary}. Frames saved to {output_dir}/"
        )

        logger.info(f"Successfully extracted frames from {video.name}")
        return response.model_dump()

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return error_response(str(e), "FileNotFound", trace, include_logs)

    except SourceError as e:
        logger.error(f"Source error: {e}")
        return error_response(str(e), "InvalidSource", trace, include_logs)

    except ExtractionError as e:
        logger.error(f"Extraction error ({e.kind}): {e}")
        return error_response(str(e), e.kind, trace, include_logs)

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return error_response(f"Unexpected error: {str(e)}", "Unexpected", trace, include_logs)


def main():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
