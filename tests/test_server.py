# tests/test_server.py
import time
import asyncio
import pytest
from pathlib import Path
from unittest.mock import patch, MagicMock

from frame_grabber import server
from frame_grabber.fetcher import VideoFetcher
from frame_grabber.server import extract_first_last_frames


@pytest.fixture
def videos_dir(tmp_path):
    videos = tmp_path / "videos"
    videos.mkdir()
    (videos / "clip.mp4").write_bytes(b"\x00" * 64)
    (videos / "notes.txt").write_text("not a video")
    return videos


@pytest.fixture
def configured(videos_dir, tmp_path, make_engine):
    engine = make_engine(duration=4.0, width=32, height=24)
    frames_dir = tmp_path / "frames"
    with patch.object(server, "fetcher", VideoFetcher(videos_dir=str(videos_dir))), \
            patch.object(server, "engine", engine), \
            patch.object(server, "FRAMES_DIR", str(frames_dir)):
        yield engine


@pytest.mark.asyncio
async def test_extract_success_saves_frames(configured):
    result = await extract_first_last_frames(source="clip.mp4")

    assert result["status"] == "success"
    assert result["metadata"]["duration"] == 4.0
    assert result["metadata"]["size"] == 64
    assert result["summary"] == "clip.mp4 · 0:04 · 64 Bytes · 32x24"
    assert [f["label"] for f in result["frames"]] == ["First Frame", "Last Frame"]
    for frame in result["frames"]:
        assert Path(frame["path"]).exists()
        assert frame["size"] > 0
    assert Path(result["frames"][0]["path"]).name == "first_frame.jpg"
    assert result["logs"] == []
    assert configured.released == 1


@pytest.mark.asyncio
async def test_extract_includes_logs_when_asked(configured):
    result = await extract_first_last_frames(source="clip.mp4", include_logs=True)

    assert result["status"] == "success"
    assert any("Resource bound" in entry for entry in result["logs"])


@pytest.mark.asyncio
async def test_extract_missing_file(configured):
    result = await extract_first_last_frames(source="missing.mp4")

    assert result["status"] == "error"
    assert result["error_kind"] == "FileNotFound"
    assert "not found" in result["message"].lower()


@pytest.mark.asyncio
async def test_extract_non_video_file(configured):
    result = await extract_first_last_frames(source="notes.txt")

    assert result["status"] == "error"
    assert result["error_kind"] == "InvalidSource"
    assert configured.acquired == 0


@pytest.mark.asyncio
async def test_extract_reports_engine_failure(configured):
    configured.load_error = "moov atom not found"

    result = await extract_first_last_frames(source="clip.mp4", include_logs=True)

    assert result["status"] == "error"
    assert result["error_kind"] == "LoadFailure"
    assert "moov atom not found" in result["message"]
    assert any("Extraction failed" in entry for entry in result["logs"])
    assert configured.released == 1


@pytest.mark.asyncio
async def test_extract_reports_invalid_media(configured):
    configured.duration = 0.0

    result = await extract_first_last_frames(source="clip.mp4")

    assert result["status"] == "error"
    assert result["error_kind"] == "InvalidMedia"


@pytest.mark.asyncio
async def test_reading_source_keeps_event_loop_responsive(configured):
    real_fetcher = server.fetcher

    def slow_load(filename, max_size=None):
        time.sleep(0.3)
        return real_fetcher.load(filename, max_size=max_size)

    ticks = 0
    stop = asyncio.Event()

    async def ticker():
        nonlocal ticks
        while not stop.is_set():
            await asyncio.sleep(0.01)
            ticks += 1

    ticking = asyncio.create_task(ticker())
    with patch.object(server, "fetcher", MagicMock(load=slow_load)):
        result = await extract_first_last_frames(source="clip.mp4")
    stop.set()
    await ticking

    assert result["status"] == "success"
    assert ticks >= 5
