"""Destination platform presets keyed by name."""
import logging
from typing import Dict

from .types import PlatformSpec

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM = "vertical"

PLATFORM_SPECS: Dict[str, PlatformSpec] = {
    "vertical": PlatformSpec(
        name="vertical",
        aspect_ratio="9:16",
        width=1080,
        height=1920,
        min_duration=3.0,
        max_duration=60.0,
        max_file_size_mb=256.0,
        video_bitrate="4000k",
    ),
    "tiktok": PlatformSpec(
        name="tiktok",
        aspect_ratio="9:16",
        width=720,
        height=1280,
        min_duration=3.0,
        max_duration=180.0,
        max_file_size_mb=274.5,
        video_bitrate="2500k",
    ),
    "instagram": PlatformSpec(
        name="instagram",
        aspect_ratio="9:16",
        width=1080,
        height=1920,
        min_duration=3.0,
        max_duration=90.0,
        max_file_size_mb=100.0,
        video_bitrate="3500k",
    ),
    "youtube": PlatformSpec(
        name="youtube",
        aspect_ratio="9:16",
        width=1080,
        height=1920,
        min_duration=1.0,
        max_duration=60.0,
        max_file_size_mb=2048.0,
        video_bitrate="1500k",
    ),
    "twitter": PlatformSpec(
        name="twitter",
        aspect_ratio="16:9",
        width=1280,
        height=720,
        min_duration=0.5,
        max_duration=140.0,
        max_file_size_mb=512.0,
        video_bitrate="2000k",
        fit="pad",
    ),
}


def get_platform_spec(name: str | None) -> PlatformSpec:
    """Look up a preset, falling back to the vertical default for unknown names."""
    key = (name or "").strip().lower()
    spec = PLATFORM_SPECS.get(key)
    if spec is None:
        logger.warning(f"Unknown platform '{name}', using {DEFAULT_PLATFORM} preset")
        return PLATFORM_SPECS[DEFAULT_PLATFORM]
    return spec
