import subprocess
import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional, Tuple
from vtq.domain.errors import ProbeError
from vtq.domain.models import SourceVideoInfo

logger = logging.getLogger(__name__)

def normalize_rotation(degrees: float) -> int:
    """Maps any angle onto {0, 90, 180, 270}."""
    return (int(round(float(degrees) / 90.0)) * 90) % 360

def parse_frame_rate(value: Optional[str]) -> float:
    """Parses ffprobe rates like '30000/1001' or '25'. Returns 0.0 when unknown."""
    if not value:
        return 0.0
    try:
        if "/" in value:
            num, den = map(float, value.split("/"))
            if den == 0:
                return 0.0
            fps = num / den
        else:
            fps = float(value)
    except ValueError:
        return 0.0
    # Anything above 240 is a timebase, not a frame rate
    if fps <= 0 or fps > 240:
        return 0.0
    return round(fps, 3)

def extract_rotation(video_stream: Dict[str, Any]) -> int:
    """Rotation from the stream's rotate tag, else from its display matrix.

    The rotate tag wins when both are present. Display-matrix rotation is
    counter-clockwise, so it is negated before normalization.
    """
    tag = (video_stream.get("tags") or {}).get("rotate")
    if tag not in (None, ""):
        try:
            return normalize_rotation(float(tag))
        except ValueError:
            logger.warning(f"Ignoring unparseable rotate tag: {tag!r}")

    for side_data in video_stream.get("side_data_list") or []:
        if "rotation" in side_data:
            try:
                return normalize_rotation(-float(side_data["rotation"]))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring unparseable display matrix rotation: {side_data['rotation']!r}")
    return 0

class FFprobeAdapter:
    """Wrapper around ffprobe to extract stream information."""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path

    def _run(self, file_path: Path) -> Dict[str, Any]:
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, encoding="utf-8", errors="replace")
        except OSError as e:
            raise ProbeError(f"ffprobe could not be started: {e}") from e
        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"ffprobe returned invalid JSON for {file_path}: {e}") from e

    def probe(self, file_path: Path) -> SourceVideoInfo:
        """Inspects a source file. Raises ProbeError when it is not a usable video."""
        file_path = Path(file_path)
        if not file_path.is_file() or not os.access(file_path, os.R_OK):
            raise ProbeError(f"Source file is missing or unreadable: {file_path}")

        data = self._run(file_path)
        streams = data.get("streams", [])
        fmt = data.get("format", {})

        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ProbeError(f"No video stream found in {file_path}")
        has_audio = any(s.get("codec_type") == "audio" for s in streams)

        try:
            width = int(video_stream.get("width") or 0)
            height = int(video_stream.get("height") or 0)
            duration = float(fmt.get("duration") or video_stream.get("duration") or 0.0)
            bitrate = int(float(fmt.get("bit_rate") or video_stream.get("bit_rate") or 0))
        except (TypeError, ValueError) as e:
            raise ProbeError(f"Unparseable metadata in {file_path}: {e}") from e

        if width <= 0 or height <= 0:
            raise ProbeError(f"Invalid video resolution {width}x{height} in {file_path}")
        if duration <= 0:
            raise ProbeError(f"Invalid video duration {duration} in {file_path}")

        fps = parse_frame_rate(video_stream.get("avg_frame_rate"))
        if not fps:
            fps = parse_frame_rate(video_stream.get("r_frame_rate"))

        info = SourceVideoInfo(
            width=width,
            height=height,
            duration_seconds=duration,
            bitrate_bps=bitrate,
            codec_name=video_stream.get("codec_name") or "unknown",
            frame_rate=fps,
            has_audio=has_audio,
            rotation_degrees=extract_rotation(video_stream),
        )
        logger.debug(f"Probed {file_path.name}: {info}")
        return info

    def validate_media(self, file_path: Path) -> Tuple[bool, str, Optional[SourceVideoInfo]]:
        """Returns (valid, message, info) instead of raising."""
        file_path = Path(file_path)
        if not file_path.exists():
            return False, "Video file does not exist", None
        try:
            info = self.probe(file_path)
        except ProbeError as e:
            return False, str(e), None
        if info.codec_name == "unknown":
            return False, "Unrecognized video codec", info
        return True, "ok", info
