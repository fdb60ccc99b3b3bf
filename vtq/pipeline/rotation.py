import re
import logging
from pathlib import Path
from typing import Optional, Tuple
from vtq.config.models import RotationConfig
from vtq.domain.models import SourceVideoInfo

logger = logging.getLogger(__name__)

def is_rotation_already_applied(encoded_width: int, encoded_height: int, rotation_degrees: int) -> bool:
    """True when a 90/270 rotation tag sits on frames that are already portrait.

    Some phone encoders rotate the pixels and still write the rotation tag.
    Correcting those again would turn the video sideways. This is a heuristic:
    a genuinely portrait source tagged 90 is indistinguishable from it.
    180 is never considered applied.
    """
    if rotation_degrees not in (90, 270):
        return False
    if encoded_width == encoded_height:
        return False
    return encoded_width < encoded_height

def _pattern_rotation(source_path: Optional[Path], config: RotationConfig) -> Optional[int]:
    if source_path is None:
        return None
    filename = Path(source_path).name
    for pattern, angle in config.patterns.items():
        if re.search(pattern, filename):
            return angle
    return None

def resolve_rotation(info: SourceVideoInfo, config: RotationConfig,
                     source_path: Optional[Path] = None) -> Tuple[int, bool]:
    """Decides the correction to apply.

    Returns (rotation_degrees, already_applied). A manual or pattern override
    is always treated as needing correction.
    """
    forced = config.manual_rotation
    if forced is None:
        forced = _pattern_rotation(source_path, config)
    if forced is not None:
        logger.info(f"Rotation override: {forced} degrees")
        return forced, False

    rotation = info.rotation_degrees
    if not config.detect_pre_applied:
        return rotation, False

    applied = is_rotation_already_applied(info.width, info.height, rotation)
    if applied:
        logger.info(
            f"Rotation {rotation} already baked into {info.width}x{info.height} frames, skipping correction"
        )
    return rotation, applied

def display_dimensions(width: int, height: int, rotation_degrees: int, already_applied: bool) -> Tuple[int, int]:
    """Frame size after rotation correction."""
    if rotation_degrees in (90, 270) and not already_applied:
        return height, width
    return width, height
