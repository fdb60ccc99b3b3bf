import json
import sys
import pytest
from pathlib import Path
from vtq.config.models import AppConfig, StorageConfig
from vtq.domain.models import SourceVideoInfo

def _ffprobe_output(width=1920, height=1080, duration="10.0", rotate=None, display_rotation=None,
                   audio=True, avg_frame_rate="30/1", codec="h264"):
    """Builds ffprobe -print_format json output for a single-video-stream file."""
    video = {
        "index": 0,
        "codec_name": codec,
        "codec_type": "video",
        "width": width,
        "height": height,
        "r_frame_rate": "30/1",
        "avg_frame_rate": avg_frame_rate,
        "bit_rate": "5000000",
    }
    if rotate is not None:
        video["tags"] = {"rotate": str(rotate)}
    if display_rotation is not None:
        video["side_data_list"] = [{"side_data_type": "Display Matrix", "rotation": display_rotation}]
    streams = [video]
    if audio:
        streams.append({"index": 1, "codec_name": "aac", "codec_type": "audio"})
    return json.dumps({"streams": streams, "format": {"duration": duration, "bit_rate": "5200000"}})

@pytest.fixture
def ffprobe_output():
    return _ffprobe_output

@pytest.fixture
def source_file(tmp_path) -> Path:
    path = tmp_path / "upload.mp4"
    path.write_bytes(b"\x00" * 64)
    return path

@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(storage=StorageConfig(
        root_dir=str(tmp_path / "site"),
        base_url="http://cdn.example.com",
    ))

@pytest.fixture
def landscape_info() -> SourceVideoInfo:
    return SourceVideoInfo(
        width=1920,
        height=1080,
        duration_seconds=10.0,
        bitrate_bps=5000000,
        codec_name="h264",
        frame_rate=30.0,
        has_audio=True,
        rotation_degrees=0,
    )

@pytest.fixture
def fake_tool(tmp_path):
    """Writes an executable Python script that stands in for ffmpeg/ffprobe."""
    if sys.platform == "win32":
        pytest.skip("needs executable scripts")

    def _make(name: str, body: str) -> Path:
        path = tmp_path / "bin" / name
        path.parent.mkdir(exist_ok=True)
        path.write_text(f"#!{sys.executable}\nimport os, sys, time\n{body}\n")
        path.chmod(0o755)
        return path

    return _make
