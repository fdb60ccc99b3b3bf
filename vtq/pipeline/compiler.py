"""Turns a resolution ladder into ffmpeg arguments.

Nothing here touches the filesystem or spawns processes; the output is an
EncodePlan that the ffmpeg adapter executes.
"""
import logging
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from vtq.config.models import EncoderConfig, PackagingConfig, VALID_HWACCEL
from vtq.domain.models import Rendition, ResolutionLadder, SourceVideoInfo

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30.0
CRF_RANGE = (10, 51)

ROTATION_FILTERS = {
    90: ["transpose=1"],
    270: ["transpose=2"],
    180: ["hflip", "vflip"],
}

class FilterSpec(BaseModel):
    """Filter chain for one output video stream: rotation stages, then scale."""
    model_config = ConfigDict(frozen=True)

    stream_index: int
    stages: List[str]

    @property
    def expression(self) -> str:
        return ",".join(self.stages)

    def to_args(self) -> List[str]:
        return [f"-filter:v:{self.stream_index}", self.expression]

class EncodePlan(BaseModel):
    """Everything needed to run the encoder for one job."""
    input_path: Path
    manifest_path: Path
    duration_seconds: float
    renditions: List[Rendition]
    filters: List[FilterSpec]
    input_args: List[str] = Field(default_factory=list)
    output_args: List[str] = Field(default_factory=list)

    def to_command(self, ffmpeg_path: str = "ffmpeg") -> List[str]:
        return [
            ffmpeg_path,
            "-y",
            *self.input_args,
            "-i", str(self.input_path),
            *self.output_args,
            str(self.manifest_path),
        ]

def build_filter_chain(stream_index: int, rendition: Rendition, rotation_degrees: int,
                       already_applied: bool = False, scale_flags: str = "lanczos") -> FilterSpec:
    """Rotation (when still needed) followed by an aspect-preserving scale.

    Only the height is fixed; -2 lets the scaler derive an even width.
    """
    stages: List[str] = []
    if not already_applied:
        stages.extend(ROTATION_FILTERS.get(rotation_degrees, []))
    stages.append(f"scale=-2:{rendition.height}:flags={scale_flags}")
    return FilterSpec(stream_index=stream_index, stages=stages)

def build_rate_control(stream_index: int, rendition: Rendition, config: EncoderConfig) -> List[str]:
    """CRF with a bitrate ceiling when a valid CRF is configured, VBR otherwise."""
    i = stream_index
    target = rendition.bitrate_kbps
    crf = config.crf
    if crf is not None and CRF_RANGE[0] <= crf <= CRF_RANGE[1]:
        return [
            f"-crf:v:{i}", str(crf),
            f"-maxrate:v:{i}", f"{int(target * 1.2)}k",
            f"-bufsize:v:{i}", f"{int(target * 2)}k",
        ]
    if crf is not None:
        logger.warning(f"CRF {crf} outside {CRF_RANGE[0]}-{CRF_RANGE[1]}, using VBR")
    # No minrate: the encoder may drop as low as the content allows
    return [
        f"-b:v:{i}", f"{target}k",
        f"-maxrate:v:{i}", f"{int(target * 1.5)}k",
        f"-bufsize:v:{i}", f"{int(target * 3)}k",
    ]

def gop_size(frame_rate: float, config: EncoderConfig) -> int:
    if config.gop_size is not None and config.gop_size > 0:
        return config.gop_size
    return int(round((frame_rate or DEFAULT_FPS) * 2))

def build_video_stream_args(stream_index: int, rendition: Rendition, frame_rate: float,
                            config: EncoderConfig) -> List[str]:
    i = stream_index
    args = [
        "-map", "0:v:0",
        f"-c:v:{i}", config.video_codec,
        f"-profile:v:{i}", config.profile,
        f"-preset:v:{i}", config.preset,
        f"-pix_fmt:v:{i}", config.pixel_format,
    ]
    args.extend(build_rate_control(i, rendition, config))
    args.extend([f"-g:v:{i}", str(gop_size(frame_rate, config))])
    if config.b_frames is not None and config.b_frames >= 0:
        args.extend([f"-bf:v:{i}", str(config.b_frames)])
    if config.ref_frames is not None and config.ref_frames > 0:
        args.extend([f"-refs:v:{i}", str(config.ref_frames)])
    return args

def build_audio_args(config: EncoderConfig) -> List[str]:
    return [
        "-map", "0:a:0",
        "-c:a", "aac",
        "-b:a", f"{config.audio_bitrate_kbps}k",
        "-ar", str(config.audio_sample_rate),
        "-ac", "2",
    ]

def build_packaging_args(config: PackagingConfig) -> List[str]:
    return [
        "-f", "dash",
        "-seg_duration", str(config.segment_duration),
        "-use_template", "1",
        "-use_timeline", "1",
        "-init_seg_name", "init-stream$RepresentationID$.$ext$",
        "-media_seg_name", "chunk-stream$RepresentationID$-$Number%05d$.$ext$",
        "-single_file", "0",
    ]

def build_input_args(config: EncoderConfig) -> List[str]:
    # We apply rotation ourselves, ffmpeg must not rotate again
    args = ["-noautorotate"]
    if config.hardware_accel:
        accel = config.hardware_accel.lower().strip()
        if accel in VALID_HWACCEL:
            args.extend(["-hwaccel", accel])
        else:
            logger.warning(f"Unsupported hardware acceleration '{accel}', ignoring")
    return args

def compile_encode_plan(source_path: Path, manifest_path: Path, info: SourceVideoInfo,
                        ladder: ResolutionLadder, rotation_degrees: int, already_applied: bool,
                        encoder: Optional[EncoderConfig] = None,
                        packaging: Optional[PackagingConfig] = None) -> EncodePlan:
    """Compiles a validated ladder into a complete encoder invocation."""
    encoder = encoder or EncoderConfig()
    packaging = packaging or PackagingConfig()

    output_args: List[str] = []
    if encoder.threads > 0:
        output_args.extend(["-threads", str(encoder.threads)])

    filters: List[FilterSpec] = []
    for index, rendition in enumerate(ladder):
        spec = build_filter_chain(index, rendition, rotation_degrees, already_applied, encoder.scale_flags)
        filters.append(spec)
        output_args.extend(build_video_stream_args(index, rendition, info.frame_rate, encoder))
        output_args.extend(spec.to_args())

    if info.has_audio:
        output_args.extend(build_audio_args(encoder))

    output_args.extend(build_packaging_args(packaging))

    return EncodePlan(
        input_path=source_path,
        manifest_path=manifest_path,
        duration_seconds=info.duration_seconds,
        renditions=list(ladder),
        filters=filters,
        input_args=build_input_args(encoder),
        output_args=output_args,
    )
