from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

class SourceVideoInfo(BaseModel):
    """What ffprobe told us about a source file. Built once per job."""
    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    duration_seconds: float
    bitrate_bps: int = 0
    codec_name: str = "unknown"
    frame_rate: float = 0.0
    has_audio: bool = False
    rotation_degrees: int = 0

    @field_validator("rotation_degrees")
    @classmethod
    def validate_rotation(cls, v: int) -> int:
        if v not in {0, 90, 180, 270}:
            raise ValueError(f"rotation_degrees must be 0, 90, 180 or 270, got {v}")
        return v

class Rendition(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    bitrate_kbps: int = Field(gt=0)
    label: str
    is_original: bool = False

    @model_validator(mode="after")
    def check_even(self) -> "Rendition":
        if self.width % 2 or self.height % 2:
            raise ValueError(f"Rendition dimensions must be even, got {self.width}x{self.height}")
        return self

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

class ResolutionLadder(BaseModel):
    """Ordered renditions; the original (if any) comes first."""
    model_config = ConfigDict(frozen=True)

    source_width: int
    source_height: int
    renditions: List[Rendition]

    @field_validator("renditions")
    @classmethod
    def not_empty(cls, v: List[Rendition]) -> List[Rendition]:
        if not v:
            raise ValueError("Resolution ladder must contain at least one rendition")
        if any(r.is_original for r in v[1:]):
            raise ValueError("Original rendition must be first in the ladder")
        return v

    def __len__(self) -> int:
        return len(self.renditions)

    def __iter__(self):
        return iter(self.renditions)

    def __getitem__(self, index: int) -> Rendition:
        return self.renditions[index]

    @property
    def original(self) -> Optional[Rendition]:
        first = self.renditions[0]
        return first if first.is_original else None

class TranscodeResult(BaseModel):
    manifest_url: str
    output_dir: Path
    renditions: List[Rendition]
    source_info: SourceVideoInfo

class EncodeJob(BaseModel):
    id: int
    source_path: Path
    owner_id: Union[int, str]
    original_url: str
    status: JobStatus = JobStatus.PENDING
    progress_percent: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[TranscodeResult] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

class QueueStats(BaseModel):
    pending_count: int
    processing_count: int
    max_concurrent: int
    total_submitted: int
