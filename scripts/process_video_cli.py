#!/usr/bin/env python3
"""
CLI tool to run the clip pipeline on a video file or URL without the database.

Usage:
    python scripts/process_video_cli.py <file-or-url> [--output-dir <dir>] [--render]

Example:
    python scripts/process_video_cli.py ~/Videos/podcast.mp4 --output-dir ./output --render
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clipper_studio.config import settings
from clipper_studio.errors import ClipperError
from clipper_studio.pipeline.analyzer import AnalysisInput, ContentAnalyzer, create_strategy, default_options
from clipper_studio.pipeline.captions import format_clip_captions
from clipper_studio.pipeline.materializer import ClipMaterializer, MaterializeOptions
from clipper_studio.services.acquisition import AcquisitionGateway
from clipper_studio.services.transcription import TranscriptionAdapter
from clipper_studio.utils.platforms import is_http_url


logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)


async def process_video(
    source: str,
    output_dir: Path,
    strategy: str = None,
    platform: str = None,
    captions: str = "attach",
    render: bool = False,
    language: str = None,
):
    """
    Acquire, transcribe and analyse a video, optionally rendering the clips.

    Args:
        source: Local file path or public video URL
        output_dir: Directory for the summary and rendered files
        strategy: Analysis strategy ("transcript" or "frames")
        platform: Render target, used with ``render``
        captions: Caption mode for rendered clips
        render: Whether to materialize the accepted candidates
        language: Transcription language hint
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    gateway = AcquisitionGateway()

    if is_http_url(source):
        logger.info(f"Downloading: {source}")
        video = await gateway.resolve_source(source, output_dir=output_dir / "source")
    else:
        video = await gateway.resolve_upload(Path(source).expanduser())
    logger.info(f"Duration: {video.duration:.1f}s, Resolution: {video.width}x{video.height}")

    transcript = await TranscriptionAdapter().transcribe(video.file_path, language=language)
    logger.info(f"Transcript: {len(transcript.segments)} segments ({transcript.language})")

    analyzer = ContentAnalyzer(create_strategy(strategy))
    candidates = await analyzer.analyze(
        AnalysisInput(
            source_duration=video.duration,
            transcript=transcript,
            source_path=video.file_path,
            title=video.metadata.title if video.metadata else video.file_path.stem,
        ),
        default_options(),
    )
    logger.info(f"Accepted {len(candidates)} candidates")

    rendered = []
    if render:
        materializer = ClipMaterializer()
        for i, candidate in enumerate(candidates):
            track = format_clip_captions(
                transcript.segments,
                candidate.start_time,
                candidate.end_time,
                max_line_length=settings.caption_max_line_length,
                position=settings.caption_position,
                gap_fill_seconds=settings.caption_gap_fill_seconds,
                title=candidate.title,
            )
            try:
                result = await materializer.materialize_with_retries(
                    video.file_path,
                    candidate,
                    platform,
                    output_dir / "clips",
                    caption_track=track,
                    options=MaterializeOptions(captions=captions),
                    name=f"clip_{i + 1:02d}",
                )
                rendered.append({"index": i, "file": result.file_path, "size_bytes": result.size_bytes})
            except ClipperError as e:
                logger.error(f"Clip {i + 1} failed: {e.message}")
                rendered.append({"index": i, "error": e.message})

    output_file = output_dir / "clips.json"
    with open(output_file, 'w') as f:
        json.dump({
            "source": source,
            "duration": video.duration,
            "language": transcript.language,
            "segment_count": len(transcript.segments),
            "clip_count": len(candidates),
            "clips": [c.to_dict() for c in candidates],
            "rendered": rendered,
        }, f, indent=2)

    logger.info(f"Summary written to: {output_file}")
    for i, candidate in enumerate(candidates):
        logger.info(
            f"  {i + 1}. {candidate.start_time:.1f}s - {candidate.end_time:.1f}s "
            f"(score: {candidate.score:.0f}) {candidate.title}"
        )


def main():
    parser = argparse.ArgumentParser(
        description="Find and optionally render short clips from a long video",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Analyse a local file
    python scripts/process_video_cli.py video.mp4

    # Analyse a URL and render TikTok clips with burned-in captions
    python scripts/process_video_cli.py https://youtu.be/xyz --render --platform tiktok --captions burn
        """
    )

    parser.add_argument("source", help="Path to a video file or a public video URL")
    parser.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=Path("./clipper_output"),
        help="Output directory (default: ./clipper_output)"
    )
    parser.add_argument(
        "--strategy", "-s",
        choices=["transcript", "frames"],
        default=None,
        help="Analysis strategy (default: from settings)"
    )
    parser.add_argument("--render", action="store_true", help="Render accepted clips")
    parser.add_argument("--platform", "-p", default=None, help="Render target platform")
    parser.add_argument("--captions", choices=["none", "attach", "burn"], default="attach")
    parser.add_argument("--language", default=None, help="Transcription language hint")

    args = parser.parse_args()

    try:
        asyncio.run(process_video(
            source=args.source,
            output_dir=args.output_dir,
            strategy=args.strategy,
            platform=args.platform,
            captions=args.captions,
            render=args.render,
            language=args.language,
        ))
    except ClipperError as e:
        logger.error(e.message)
        if e.diagnostics:
            logger.debug(e.diagnostics)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)
    except Exception as e:
        logger.exception(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
