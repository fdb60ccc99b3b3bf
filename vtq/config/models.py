from typing import List, Dict, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

VALID_ANGLES = {0, 90, 180, 270}
VALID_HWACCEL = ["cuda", "qsv", "videotoolbox", "vaapi", "dxva2", "amf", "vdpau"]

class LadderRung(BaseModel):
    height: int = Field(gt=0)
    width: Optional[int] = Field(default=None, gt=0)
    bitrate_kbps: Optional[int] = Field(default=None, gt=0)

def _default_rungs() -> List[LadderRung]:
    return [
        LadderRung(height=2160, width=3840, bitrate_kbps=16000),
        LadderRung(height=1080, width=1920, bitrate_kbps=5000),
        LadderRung(height=720, width=1280, bitrate_kbps=2500),
        LadderRung(height=480, width=854, bitrate_kbps=1000),
        LadderRung(height=360, width=640, bitrate_kbps=600),
    ]

class LadderConfig(BaseModel):
    rungs: List[LadderRung] = Field(default_factory=_default_rungs)
    include_original: bool = True
    original_max_bitrate_kbps: int = Field(default=8000, gt=0)
    min_bitrate_kbps: int = Field(default=300, gt=0)
    max_bitrate_kbps: int = Field(default=16000, gt=0)
    # Bitrate estimate for rungs without a configured bitrate
    estimate_fps: float = Field(default=30.0, gt=0)
    bit_depth_factor: float = Field(default=0.1, gt=0)
    compression_ratio: float = Field(default=1000.0, gt=0)

    @model_validator(mode="after")
    def check_bitrate_bounds(self) -> "LadderConfig":
        if self.min_bitrate_kbps > self.max_bitrate_kbps:
            raise ValueError(
                f"min_bitrate_kbps ({self.min_bitrate_kbps}) exceeds max_bitrate_kbps ({self.max_bitrate_kbps})"
            )
        return self

class EncoderConfig(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    video_codec: str = "libx264"
    preset: str = "medium"
    profile: str = "main"
    pixel_format: str = "yuv420p"
    crf: Optional[int] = None
    gop_size: Optional[int] = None
    b_frames: Optional[int] = None
    ref_frames: Optional[int] = None
    threads: int = Field(default=0, ge=0)  # 0 = let ffmpeg decide
    hardware_accel: Optional[str] = None
    audio_bitrate_kbps: int = Field(default=128, gt=0)
    audio_sample_rate: int = Field(default=44100, gt=0)
    scale_flags: str = "lanczos"

class PackagingConfig(BaseModel):
    segment_duration: int = Field(default=4, gt=0)
    manifest_name: str = "manifest.mpd"

class RotationConfig(BaseModel):
    detect_pre_applied: bool = True
    manual_rotation: Optional[int] = None
    patterns: Dict[str, int] = Field(default_factory=dict)

    @field_validator("manual_rotation")
    @classmethod
    def validate_manual(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in VALID_ANGLES:
            raise ValueError(f"Invalid rotation angle {v}. Must be 0, 90, 180, or 270.")
        return v

    @field_validator("patterns")
    @classmethod
    def validate_angles(cls, v: Dict[str, int]) -> Dict[str, int]:
        for pattern, angle in v.items():
            if angle not in VALID_ANGLES:
                raise ValueError(f"Invalid rotation angle {angle} for pattern {pattern}. Must be 0, 90, 180, or 270.")
        return v

class StorageConfig(BaseModel):
    root_dir: str = "."
    base_url: str = ""
    upload_dir: str = "uploads/videos"
    output_subdir: str = "dash"
    output_format: str = "{date}/{owner_id}/{timestamp}"
    delete_original: bool = False

class QueueConfig(BaseModel):
    max_concurrent: int = Field(default=2, ge=1, le=16)
    history_size: int = Field(default=100, ge=0)

class AppConfig(BaseModel):
    enabled: bool = True
    debug: bool = False
    ladder: LadderConfig = Field(default_factory=LadderConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    packaging: PackagingConfig = Field(default_factory=PackagingConfig)
    rotation: RotationConfig = Field(default_factory=RotationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
