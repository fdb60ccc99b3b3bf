import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple, Union
from vtq.config.models import AppConfig, StorageConfig
from vtq.domain.errors import TranscodeError
from vtq.domain.models import TranscodeResult
from vtq.infrastructure.ffmpeg import FFmpegAdapter, ProgressCallback
from vtq.infrastructure.ffprobe import FFprobeAdapter
from vtq.pipeline.compiler import compile_encode_plan
from vtq.pipeline.ladder import select_resolutions, validate_ladder
from vtq.pipeline.rotation import display_dimensions, resolve_rotation

logger = logging.getLogger(__name__)

def format_output_path(template: str, owner_id: Union[int, str], now: datetime) -> str:
    """Fills {date}, {owner_id} (or {userId}) and {timestamp} in an output template."""
    return (
        template
        .replace("{date}", now.strftime("%Y-%m-%d"))
        .replace("{owner_id}", str(owner_id))
        .replace("{userId}", str(owner_id))
        .replace("{timestamp}", str(int(now.timestamp() * 1000)))
    )

def build_manifest_url(storage: StorageConfig, relative_dir: str, manifest_name: str) -> str:
    parts = [
        storage.base_url.rstrip("/"),
        storage.upload_dir.strip("/"),
        relative_dir.strip("/"),
        manifest_name,
    ]
    return "/".join(parts)

class Transcoder:
    """Runs one source file through probe, ladder, compile and encode."""

    def __init__(
        self,
        config: AppConfig,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.config = config
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.clock = clock

    def output_location(self, owner_id: Union[int, str]) -> Tuple[Path, str]:
        """Returns (absolute output dir, path relative to the upload dir)."""
        storage = self.config.storage
        formatted = format_output_path(storage.output_format, owner_id, self.clock())
        relative = f"{storage.output_subdir.strip('/')}/{formatted.strip('/')}"
        output_dir = Path(storage.root_dir) / storage.upload_dir / relative
        return output_dir, relative

    def transcode(self, source_path: Path, owner_id: Union[int, str],
                  on_progress: Optional[ProgressCallback] = None) -> TranscodeResult:
        if not self.config.enabled:
            raise TranscodeError("video transcoding is disabled")

        source_path = Path(source_path)
        started = time.monotonic()
        logger.info(f"Transcoding {source_path}")

        info = self.ffprobe_adapter.probe(source_path)
        rotation, already_applied = resolve_rotation(info, self.config.rotation, source_path)
        width, height = display_dimensions(info.width, info.height, rotation, already_applied)

        ladder = validate_ladder(select_resolutions(width, height, config=self.config.ladder))

        output_dir, relative = self.output_location(owner_id)
        manifest_name = self.config.packaging.manifest_name
        plan = compile_encode_plan(
            source_path,
            output_dir / manifest_name,
            info,
            ladder,
            rotation,
            already_applied,
            encoder=self.config.encoder,
            packaging=self.config.packaging,
        )

        self.ffmpeg_adapter.encode(plan, on_progress=on_progress)

        if self.config.storage.delete_original:
            try:
                source_path.unlink()
                logger.info(f"Deleted source {source_path}")
            except OSError as e:
                logger.warning(f"Failed to delete source {source_path}: {e}")

        manifest_url = build_manifest_url(self.config.storage, relative, manifest_name)
        logger.info(f"Transcoded {source_path.name} in {time.monotonic() - started:.1f}s: {manifest_url}")
        return TranscodeResult(
            manifest_url=manifest_url,
            output_dir=output_dir,
            renditions=list(ladder),
            source_info=info,
        )
