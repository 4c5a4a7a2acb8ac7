"""FFmpeg and ffprobe utilities."""
import json
import logging
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from clipper_studio.config import settings
from clipper_studio.errors import ExternalToolError
from clipper_studio.utils.process import capture_output, run_process

logger = logging.getLogger(__name__)


@dataclass
class VideoInfo:
    """Video metadata container."""
    duration: float
    width: int
    height: int
    fps: float
    video_codec: str
    audio_codec: Optional[str]
    format_name: str
    bit_rate: Optional[int]


@dataclass
class EncodeOptions:
    """Encoder settings for a rendered clip."""
    width: int
    height: int
    fit: str = "crop"  # "crop" fills the frame, "pad" letterboxes
    video_codec: str = "libx264"
    preset: str = "medium"
    crf: int = 23
    video_bitrate: Optional[str] = None
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"

    def to_dict(self) -> dict:
        return asdict(self)


def check_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    """Check if ffprobe is available."""
    return shutil.which(settings.ffprobe_path) is not None


def _parse_fps(value: str) -> float:
    if "/" in value:
        num, den = value.split("/")
        return float(num) / float(den) if float(den) > 0 else 30.0
    return float(value)


def parse_probe_output(data: dict) -> VideoInfo:
    """Build VideoInfo from ffprobe's JSON document."""
    video_stream = None
    audio_stream = None
    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio" and audio_stream is None:
            audio_stream = stream

    if not video_stream:
        raise ExternalToolError("No video stream found")

    fmt = data.get("format", {})
    duration = float(fmt.get("duration") or 0)
    if duration == 0:
        duration = float(video_stream.get("duration") or 0)

    return VideoInfo(
        duration=duration,
        width=int(video_stream.get("width", 0)),
        height=int(video_stream.get("height", 0)),
        fps=_parse_fps(video_stream.get("r_frame_rate", "30/1")),
        video_codec=video_stream.get("codec_name", "unknown"),
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        format_name=fmt.get("format_name", "unknown"),
        bit_rate=int(fmt.get("bit_rate") or 0) or None,
    )


async def get_video_info(video_path: str | Path) -> VideoInfo:
    """
    Get video metadata using ffprobe.

    Raises:
        ExternalToolError: If the file is missing or ffprobe fails
    """
    video_path = Path(video_path)
    if not video_path.exists():
        raise ExternalToolError(f"Video file not found: {video_path.name}")

    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]
    stdout = await capture_output(cmd, timeout=settings.probe_timeout_seconds)
    try:
        data = json.loads(stdout.decode())
    except json.JSONDecodeError as e:
        raise ExternalToolError("Failed to parse ffprobe output", diagnostics=str(e)) from e
    return parse_probe_output(data)


def build_scale_filter(width: int, height: int, fit: str = "crop") -> str:
    """Scale to the target frame, either cropping the overflow or padding the remainder."""
    if fit == "pad":
        return (
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
        )
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height},setsar=1"
    )


def escape_filter_path(path: str | Path) -> str:
    """Quote a path for use as a filtergraph option value."""
    value = str(path).replace("\\", "/")
    value = value.replace(":", "\\:").replace("'", "\\'")
    return f"'{value}'"


def build_export_command(
    source_path: str | Path,
    output_path: str | Path,
    start_time: float,
    duration: float,
    options: EncodeOptions,
    burn_subtitles: Optional[Path] = None,
    attach_subtitles: Optional[Path] = None,
) -> List[str]:
    """Build the ffmpeg command for one rendered clip."""
    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{start_time:.3f}",
        "-i", str(source_path),
    ]
    if attach_subtitles:
        cmd.extend(["-i", str(attach_subtitles)])

    video_filter = build_scale_filter(options.width, options.height, options.fit)
    if burn_subtitles:
        video_filter += f",subtitles={escape_filter_path(burn_subtitles)}"

    cmd.extend([
        "-t", f"{duration:.3f}",
        "-vf", video_filter,
        "-map", "0:v:0",
        "-map", "0:a?",
    ])
    if attach_subtitles:
        cmd.extend(["-map", "1:0", "-c:s", "mov_text"])

    cmd.extend([
        "-c:v", options.video_codec,
        "-preset", options.preset,
        "-crf", str(options.crf),
    ])
    if options.video_bitrate:
        cmd.extend(["-maxrate", options.video_bitrate, "-bufsize", options.video_bitrate])
    cmd.extend([
        "-c:a", options.audio_codec,
        "-b:a", options.audio_bitrate,
        "-movflags", "+faststart",
        "-avoid_negative_ts", "make_zero",
        str(output_path),
    ])
    return cmd


async def export_clip(
    source_path: str | Path,
    output_path: str | Path,
    start_time: float,
    duration: float,
    options: EncodeOptions,
    burn_subtitles: Optional[Path] = None,
    attach_subtitles: Optional[Path] = None,
) -> Path:
    """Cut and transcode a clip from the source video."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = build_export_command(
        source_path, output_path, start_time, duration, options,
        burn_subtitles=burn_subtitles,
        attach_subtitles=attach_subtitles,
    )
    await run_process(cmd, timeout=settings.ffmpeg_timeout_seconds)
    if not output_path.exists():
        raise ExternalToolError("Export finished without producing a file")
    return output_path


async def generate_thumbnail(
    video_path: str | Path,
    output_path: str | Path,
    timestamp: float,
    width: Optional[int] = None,
) -> Path:
    """Capture a single frame at ``timestamp`` scaled to ``width``."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    width = width or settings.thumbnail_width

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{max(timestamp, 0.0):.3f}",
        "-i", str(video_path),
        "-frames:v", "1",
        "-vf", f"scale={width}:-2",
        "-q:v", "3",
        str(output_path),
    ]
    await run_process(cmd, timeout=settings.ffmpeg_timeout_seconds)
    return output_path


async def extract_audio(
    video_path: str | Path,
    output_path: str | Path,
    sample_rate: int = 16000,
) -> Path:
    """Extract mono PCM audio suitable for speech recognition."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-i", str(video_path),
        "-vn",
        "-acodec", "pcm_s16le",
        "-ar", str(sample_rate),
        "-ac", "1",
        str(output_path),
    ]
    await run_process(cmd, timeout=settings.ffmpeg_timeout_seconds)
    return output_path


async def extract_clip_audio(
    video_path: str | Path,
    output_path: str | Path,
    start_time: float,
    duration: float,
    audio_bitrate: str = "128k",
) -> Path:
    """Extract the audio of a time range as AAC."""
    output_path = Path(output_path)
    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{start_time:.3f}",
        "-i", str(video_path),
        "-t", f"{duration:.3f}",
        "-vn",
        "-c:a", "aac",
        "-b:a", audio_bitrate,
        str(output_path),
    ]
    await run_process(cmd, timeout=settings.ffmpeg_timeout_seconds)
    return output_path


async def split_audio(
    audio_path: str | Path,
    output_dir: str | Path,
    chunk_seconds: float,
) -> List[Tuple[float, Path]]:
    """Split audio into fixed-length chunks. Returns (offset_seconds, path) pairs."""
    audio_path = Path(audio_path)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    pattern = output_dir / f"{audio_path.stem}_%03d{audio_path.suffix}"
    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-i", str(audio_path),
        "-f", "segment",
        "-segment_time", f"{chunk_seconds:.3f}",
        "-c", "copy",
        str(pattern),
    ]
    await run_process(cmd, timeout=settings.ffmpeg_timeout_seconds)
    chunks = sorted(output_dir.glob(f"{audio_path.stem}_*{audio_path.suffix}"))
    return [(index * chunk_seconds, path) for index, path in enumerate(chunks)]
