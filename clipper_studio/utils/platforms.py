"""Source platform detection from URL hosts."""
from typing import Optional
from urllib.parse import urlparse

OTHER = "other"

# Host suffix -> platform name
PLATFORM_HOSTS = {
    "youtube.com": "youtube",
    "youtu.be": "youtube",
    "twitch.tv": "twitch",
    "kick.com": "kick",
    "rumble.com": "rumble",
    "tiktok.com": "tiktok",
    "instagram.com": "instagram",
    "vimeo.com": "vimeo",
}

SUPPORTED_PLATFORMS = frozenset(PLATFORM_HOSTS.values())


def _host(url: str) -> Optional[str]:
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    host = urlparse(candidate).hostname
    return host.lower() if host else None


def detect_platform(url: str) -> str:
    """Return the platform name for a URL, or ``other`` when no host matches."""
    host = _host(url)
    if not host:
        return OTHER
    for suffix, platform in PLATFORM_HOSTS.items():
        if host == suffix or host.endswith(f".{suffix}"):
            return platform
    return OTHER


def is_http_url(url: str) -> bool:
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)
