"""Render accepted candidates into platform-encoded clip files."""
import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from clipper_studio.config import settings
from clipper_studio.errors import ExternalToolError
from clipper_studio.utils import ffmpeg
from .captions import render_srt, render_webvtt, validate_webvtt
from .platform_specs import get_platform_spec
from .types import CaptionTrack, ClipCandidate, MaterializedClip, PlatformSpec

logger = logging.getLogger(__name__)

CAPTION_MODES = ("none", "burn", "attach")


@dataclass
class MaterializeOptions:
    """Per-request rendering choices."""
    captions: str = "attach"  # "none", "burn" (hard subtitles) or "attach" (mov_text + .vtt sidecar)
    extract_audio: bool = False
    thumbnail_offset: Optional[float] = None


def encode_options_for(spec: PlatformSpec) -> ffmpeg.EncodeOptions:
    return ffmpeg.EncodeOptions(
        width=spec.width,
        height=spec.height,
        fit=spec.fit,
        video_codec=spec.video_codec or settings.export_video_codec,
        preset=settings.export_video_preset,
        crf=settings.export_video_crf,
        video_bitrate=spec.video_bitrate,
        audio_codec=spec.audio_codec or settings.export_audio_codec,
        audio_bitrate=spec.audio_bitrate or settings.export_audio_bitrate,
    )


class ClipMaterializer:
    """Cuts and encodes clips inside a throwaway workspace.

    Every intermediate file lives in a temporary directory under the scratch
    root. Outputs are moved to ``output_dir`` only once all steps succeed, and
    the workspace is removed on every exit path.
    """

    def __init__(self, scratch_root: Optional[Path] = None):
        self.scratch_root = Path(scratch_root or settings.scratch_dir)

    async def materialize(
        self,
        source_file: str | Path,
        candidate: ClipCandidate,
        platform: Optional[str],
        output_dir: str | Path,
        caption_track: Optional[CaptionTrack] = None,
        options: Optional[MaterializeOptions] = None,
        name: str = "clip",
    ) -> MaterializedClip:
        """
        Render one candidate for one platform.

        Raises:
            ExternalToolError: The transcoder is missing or failed; carries its output tail
        """
        options = options or MaterializeOptions()
        spec = get_platform_spec(platform)
        output_dir = Path(output_dir)

        duration = candidate.duration
        if duration > spec.max_duration:
            logger.warning(
                f"{name}: {duration:.1f}s exceeds {spec.name} limit of {spec.max_duration}s, trimming"
            )
            duration = spec.max_duration

        encode = encode_options_for(spec)
        caption_mode = options.captions if options.captions in CAPTION_MODES else "none"
        has_captions = caption_mode != "none" and caption_track is not None and not caption_track.is_empty

        self.scratch_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix=f"{name}-", dir=self.scratch_root) as work_dir:
            work = Path(work_dir)
            produced = {}

            vtt_path = None
            srt_path = None
            if has_captions:
                vtt_path = work / f"{name}.vtt"
                vtt = render_webvtt(caption_track)
                check = validate_webvtt(vtt)
                if not check.valid:
                    logger.warning(f"{name}: caption track failed validation: {check.errors}")
                vtt_path.write_text(vtt, encoding="utf-8")
                produced["caption"] = vtt_path
                if caption_mode == "burn":
                    srt_path = work / f"{name}.srt"
                    srt_path.write_text(render_srt(caption_track), encoding="utf-8")

            video_path = work / f"{name}.mp4"
            await ffmpeg.export_clip(
                source_file,
                video_path,
                candidate.start_time,
                duration,
                encode,
                burn_subtitles=srt_path,
                attach_subtitles=vtt_path if caption_mode == "attach" and has_captions else None,
            )
            produced["file"] = video_path

            offset = options.thumbnail_offset
            if offset is None:
                offset = settings.thumbnail_offset_seconds
            offset = min(max(offset, 0.0), duration / 2)
            thumbnail_path = work / f"{name}.jpg"
            await ffmpeg.generate_thumbnail(video_path, thumbnail_path, offset)
            produced["thumbnail"] = thumbnail_path

            if options.extract_audio:
                audio_path = work / f"{name}.m4a"
                await ffmpeg.extract_clip_audio(
                    source_file, audio_path, candidate.start_time, duration, encode.audio_bitrate,
                )
                produced["audio"] = audio_path

            size_bytes = video_path.stat().st_size
            exceeds = size_bytes > spec.max_file_size_mb * 1024 * 1024
            if exceeds:
                logger.warning(f"{name}: {size_bytes} bytes exceeds {spec.name} size limit")

            output_dir.mkdir(parents=True, exist_ok=True)
            final = {}
            for kind, path in produced.items():
                destination = output_dir / path.name
                shutil.move(str(path), destination)
                final[kind] = str(destination)

        encode_params = encode.to_dict()
        encode_params.update({
            "platform": spec.name,
            "start_time": candidate.start_time,
            "duration": duration,
            "captions": caption_mode if has_captions else "none",
        })

        logger.info(f"Materialized {name} for {spec.name} ({size_bytes} bytes)")
        return MaterializedClip(
            candidate=candidate,
            platform=spec.name,
            file_path=final.get("file"),
            thumbnail_path=final.get("thumbnail"),
            caption_path=final.get("caption"),
            audio_path=final.get("audio"),
            size_bytes=size_bytes,
            exceeds_size_limit=exceeds,
            encode_params=encode_params,
        )

    async def materialize_with_retries(
        self,
        *args,
        retries: Optional[int] = None,
        backoff_seconds: float = 1.0,
        **kwargs,
    ) -> MaterializedClip:
        """Run ``materialize`` again on tool failure, up to ``retries`` extra attempts."""
        retries = settings.materialize_retries if retries is None else retries
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ExternalToolError),
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential(multiplier=backoff_seconds, max=30),
            reraise=True,
        ):
            with attempt:
                result = await self.materialize(*args, **kwargs)
                result.attempts = attempt.retry_state.attempt_number
        return result
