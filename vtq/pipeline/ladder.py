"""Resolution ladder construction.

Every non-original rendition keeps the source aspect ratio, has even
dimensions, and is strictly smaller than the source. The ladder is never
empty: a source smaller than every rung gets a single original-quality
rendition.
"""
import math
import logging
from typing import List, Optional, Sequence
from vtq.config.models import LadderConfig, LadderRung
from vtq.domain.errors import LadderError
from vtq.domain.models import Rendition, ResolutionLadder

logger = logging.getLogger(__name__)

ASPECT_TOLERANCE = 0.01
ORIGINAL_LABEL = "original"

def round_even(value: float) -> int:
    """Rounds half up, then bumps odd results to the next even number."""
    n = int(math.floor(value + 0.5))
    return n if n % 2 == 0 else n + 1

def calculate_aspect_ratio_size(source_width: int, source_height: int, target_height: int) -> tuple:
    """Width/height for target_height that keeps the source aspect ratio."""
    if source_width <= 0 or source_height <= 0 or target_height <= 0:
        raise ValueError("Invalid dimensions: width, height, and target_height must be positive numbers")
    target_width = target_height * source_width / source_height
    return round_even(target_width), round_even(target_height)

def aspect_matches(source_width: int, source_height: int, width: int, height: int) -> bool:
    return abs(source_width / source_height - width / height) < ASPECT_TOLERANCE

def estimate_bitrate(width: int, height: int, config: LadderConfig) -> int:
    """kbps from pixel count, clamped to the configured bounds."""
    bitrate = int(width * height * config.estimate_fps * config.bit_depth_factor / config.compression_ratio)
    return max(config.min_bitrate_kbps, min(bitrate, config.max_bitrate_kbps))

def _rung_size(source_width: int, source_height: int, rung: LadderRung) -> tuple:
    if rung.width is not None:
        width, height = round_even(rung.width), round_even(rung.height)
        if aspect_matches(source_width, source_height, width, height):
            return width, height
    return calculate_aspect_ratio_size(source_width, source_height, rung.height)

def _original(source_width: int, source_height: int, bitrate_kbps: int) -> Rendition:
    return Rendition(
        width=round_even(source_width),
        height=round_even(source_height),
        bitrate_kbps=bitrate_kbps,
        label=ORIGINAL_LABEL,
        is_original=True,
    )

def select_resolutions(source_width: int, source_height: int,
                       standard_ladder: Optional[Sequence[LadderRung]] = None,
                       include_original: Optional[bool] = None,
                       original_max_bitrate_kbps: Optional[int] = None,
                       config: Optional[LadderConfig] = None) -> ResolutionLadder:
    """Builds the ladder for a source of the given (display) dimensions.

    A rung is skipped when its height reaches the larger source dimension or
    the source height itself, so no rendition upscales or duplicates the
    original. Configured widths are used only when they match the source
    aspect ratio; otherwise the width is derived from the rung height.
    """
    if source_width <= 0 or source_height <= 0:
        raise LadderError(f"Cannot build a ladder for {source_width}x{source_height}")

    config = config or LadderConfig()
    rungs = list(standard_ladder) if standard_ladder is not None else list(config.rungs)
    if include_original is None:
        include_original = config.include_original
    if original_max_bitrate_kbps is None:
        original_max_bitrate_kbps = config.original_max_bitrate_kbps

    source_max_dimension = max(source_width, source_height)
    logger.debug(
        f"Source {source_width}x{source_height}, aspect {source_width / source_height:.3f}"
    )

    renditions: List[Rendition] = []
    for rung in sorted(rungs, key=lambda r: r.height, reverse=True):
        if rung.height >= source_max_dimension or rung.height >= source_height:
            logger.debug(f"Skipping {rung.height}p (source {source_width}x{source_height})")
            continue

        width, height = _rung_size(source_width, source_height, rung)
        if not aspect_matches(source_width, source_height, width, height):
            logger.warning(
                f"Skipping {rung.height}p: {width}x{height} drifts from source aspect ratio"
            )
            continue

        bitrate = rung.bitrate_kbps or estimate_bitrate(width, height, config)
        renditions.append(Rendition(
            width=width,
            height=height,
            bitrate_kbps=bitrate,
            label=f"{rung.height}p",
        ))

    if include_original:
        renditions.insert(0, _original(source_width, source_height, original_max_bitrate_kbps))
    elif not renditions:
        logger.info("Source is below every rung, using original resolution only")
        fallback = estimate_bitrate(round_even(source_width), round_even(source_height), config)
        renditions.append(_original(
            source_width, source_height, max(1, min(fallback, original_max_bitrate_kbps))
        ))

    ladder = ResolutionLadder(
        source_width=source_width,
        source_height=source_height,
        renditions=renditions,
    )
    logger.info(
        "Selected renditions: " + ", ".join(f"{r.label} {r.resolution}@{r.bitrate_kbps}k" for r in ladder)
    )
    return ladder

def validate_ladder(ladder: ResolutionLadder) -> ResolutionLadder:
    """Re-checks ladder invariants before compiling. Raises LadderError."""
    if not ladder.renditions:
        raise LadderError("Resolution ladder is empty")

    source_max_dimension = max(ladder.source_width, ladder.source_height)
    for index, rendition in enumerate(ladder.renditions):
        if rendition.width % 2 or rendition.height % 2:
            raise LadderError(f"Rendition {rendition.label} has odd dimensions {rendition.resolution}")
        if rendition.is_original:
            if index != 0:
                raise LadderError("Original rendition must come first")
            continue
        if rendition.height >= source_max_dimension:
            raise LadderError(f"Rendition {rendition.label} is not smaller than the source")
        if not aspect_matches(ladder.source_width, ladder.source_height, rendition.width, rendition.height):
            raise LadderError(f"Rendition {rendition.label} does not preserve the source aspect ratio")
    return ladder
