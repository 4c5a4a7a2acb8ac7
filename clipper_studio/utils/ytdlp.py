"""yt-dlp utilities for source video download."""
import json
import logging
import re
import shutil
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from clipper_studio.config import settings
from clipper_studio.errors import ExternalToolError
from clipper_studio.utils.process import capture_output, run_process

logger = logging.getLogger(__name__)

DESTINATION_RE = re.compile(r"\[download\] Destination: (.+)")
MERGE_RE = re.compile(r'\[Merger\] Merging formats into "(.+)"')
ALREADY_RE = re.compile(r"\[download\] (.+) has already been downloaded")
PROGRESS_RE = re.compile(r"\[download\]\s+(\d+(?:\.\d+)?)%")

VIDEO_EXTENSIONS = ("mp4", "mkv", "webm", "mov")

ROBUSTNESS_FLAGS = [
    "--ignore-errors",
    "--no-check-certificate",
    "--extractor-retries", "5",
]


class DownloadOutputParser:
    """Tracks destination and progress from yt-dlp's line-buffered output.

    A merge line always wins over an earlier destination line, since the
    destination announced for each format stream is an intermediate file.
    """

    def __init__(self):
        self.destination: Optional[Path] = None
        self.merged: Optional[Path] = None
        self.progress: float = 0.0

    def feed(self, line: str) -> Optional[float]:
        """Consume one line. Returns the new progress percentage if the line reported one."""
        line = line.strip()
        merge_match = MERGE_RE.search(line)
        if merge_match:
            self.merged = Path(merge_match.group(1))
            return None

        dest_match = DESTINATION_RE.search(line)
        if dest_match:
            self.destination = Path(dest_match.group(1).strip())
            return None

        already_match = ALREADY_RE.search(line)
        if already_match:
            self.destination = Path(already_match.group(1).strip())
            return None

        progress_match = PROGRESS_RE.search(line)
        if progress_match:
            self.progress = float(progress_match.group(1))
            return self.progress
        return None

    @property
    def output_path(self) -> Optional[Path]:
        return self.merged or self.destination


def check_ytdlp_available() -> bool:
    """Check if yt-dlp is available."""
    return shutil.which(settings.ytdlp_path) is not None


def build_download_args(
    url: str,
    output_template: str,
    quality: Optional[str] = None,
    platform: Optional[str] = None,
) -> List[str]:
    """Build the yt-dlp command line for a single-video download."""
    cmd = [
        settings.ytdlp_path,
        "--format", quality or settings.download_quality,
        "--output", output_template,
        "--merge-output-format", "mp4",
        "--no-playlist",
        "--newline",
        "--no-warnings",
    ]
    if platform and platform in settings.robust_download_platforms:
        cmd.extend(ROBUSTNESS_FLAGS)
    cmd.append(url)
    return cmd


def _find_by_template(output_dir: Path, filename: str) -> Optional[Path]:
    for ext in VIDEO_EXTENSIONS:
        candidate = output_dir / f"{filename}.{ext}"
        if candidate.exists():
            return candidate
    return None


async def download_video(
    url: str,
    output_dir: Path,
    filename: str = "source",
    quality: Optional[str] = None,
    platform: Optional[str] = None,
    progress_callback: Optional[Callable[[float, str], Awaitable[None]]] = None,
) -> Path:
    """
    Download a video with yt-dlp.

    Args:
        url: Source URL
        output_dir: Directory to save the video
        filename: Base filename without extension
        quality: yt-dlp format selector
        platform: Detected platform, used to add robustness flags
        progress_callback: Optional async callback(progress: float, message: str)

    Returns:
        Path to downloaded video file

    Raises:
        ExternalToolError: Missing binary, non-zero exit, or no output file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    output_template = str(output_dir / f"{filename}.%(ext)s")
    cmd = build_download_args(url, output_template, quality, platform)
    logger.info(f"Running yt-dlp command: {' '.join(cmd)}")

    parser = DownloadOutputParser()

    async def on_line(line: str):
        progress = parser.feed(line)
        if progress is not None and progress_callback:
            await progress_callback(progress, f"Downloading: {progress:.1f}%")

    result = await run_process(
        cmd,
        timeout=settings.download_timeout_seconds,
        on_line=on_line,
    )

    final_path = parser.output_path
    if final_path is not None and not final_path.is_absolute():
        final_path = output_dir / final_path
    if final_path is None or not final_path.exists():
        final_path = _find_by_template(output_dir, filename)

    if final_path is None:
        logger.error(f"No video file found in {output_dir}")
        raise ExternalToolError(
            "Download completed but video file not found",
            diagnostics=result.diagnostics,
        )

    logger.info(f"Downloaded {url} to {final_path}")
    return final_path


async def fetch_metadata(url: str) -> dict:
    """Get video information without downloading."""
    cmd = [
        settings.ytdlp_path,
        "--dump-json",
        "--no-download",
        "--no-playlist",
        "--no-warnings",
        url,
    ]
    stdout = await capture_output(cmd, timeout=settings.probe_timeout_seconds)
    try:
        return json.loads(stdout.decode())
    except json.JSONDecodeError as e:
        raise ExternalToolError("Failed to parse video info", diagnostics=str(e)) from e
