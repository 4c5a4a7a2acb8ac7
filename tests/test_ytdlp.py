"""Tests for yt-dlp output parsing and download handling."""
from pathlib import Path

import pytest

from clipper_studio.config import settings
from clipper_studio.errors import ExternalToolError
from clipper_studio.utils import ytdlp
from clipper_studio.utils.process import ProcessResult
from clipper_studio.utils.ytdlp import DownloadOutputParser, ROBUSTNESS_FLAGS, build_download_args


class TestDownloadOutputParser:
    """Tests for the line-buffered output state machine."""

    def test_progress_lines(self):
        parser = DownloadOutputParser()
        assert parser.feed("[download]  42.5% of 100.00MiB at 2.00MiB/s ETA 00:30") == 42.5
        assert parser.progress == 42.5

    def test_destination(self):
        parser = DownloadOutputParser()
        assert parser.feed("[download] Destination: /tmp/x/source.mp4") is None
        assert parser.output_path == Path("/tmp/x/source.mp4")

    def test_merge_wins_over_destination(self):
        parser = DownloadOutputParser()
        parser.feed("[download] Destination: /tmp/x/source.f137.mp4")
        parser.feed('[Merger] Merging formats into "/tmp/x/source.mp4"')
        parser.feed("[download] Destination: /tmp/x/source.f140.m4a")
        assert parser.output_path == Path("/tmp/x/source.mp4")

    def test_already_downloaded(self):
        parser = DownloadOutputParser()
        parser.feed("[download] /tmp/x/source.mp4 has already been downloaded")
        assert parser.output_path == Path("/tmp/x/source.mp4")

    def test_unrelated_lines_ignored(self):
        parser = DownloadOutputParser()
        assert parser.feed("[youtube] abc: Downloading webpage") is None
        assert parser.output_path is None


class TestBuildDownloadArgs:
    """Tests for the command line."""

    def test_basic_flags(self):
        cmd = build_download_args("https://youtu.be/x", "/out/source.%(ext)s", "best")
        assert cmd[0] == settings.ytdlp_path
        assert cmd[cmd.index("--format") + 1] == "best"
        assert cmd[cmd.index("--output") + 1] == "/out/source.%(ext)s"
        assert "--no-playlist" in cmd
        assert cmd[-1] == "https://youtu.be/x"

    def test_robust_platform_adds_flags(self):
        cmd = build_download_args("https://rumble.com/v1", "/out/t", platform="rumble")
        assert "--ignore-errors" in cmd
        assert cmd[-1] == "https://rumble.com/v1"

    def test_other_platform_has_no_extra_flags(self):
        cmd = build_download_args("https://youtu.be/x", "/out/t", platform="youtube")
        assert not any(flag in cmd for flag in ROBUSTNESS_FLAGS if flag.startswith("--"))


@pytest.mark.asyncio
async def test_download_uses_merged_path(monkeypatch, tmp_path):
    merged = tmp_path / "source.mp4"

    async def fake_run_process(cmd, timeout=None, on_line=None, **kwargs):
        merged.write_bytes(b"video")
        for line in (
            f"[download] Destination: {tmp_path / 'source.f137.mp4'}",
            "[download] 100.0% of 10MiB",
            f'[Merger] Merging formats into "{merged}"',
        ):
            await on_line(line)
        return ProcessResult(returncode=0, output_tail=[])

    monkeypatch.setattr(ytdlp, "run_process", fake_run_process)
    progress = []

    async def on_progress(value, message):
        progress.append(value)

    path = await ytdlp.download_video("https://youtu.be/x", tmp_path, progress_callback=on_progress)

    assert path == merged
    assert progress == [100.0]


@pytest.mark.asyncio
async def test_download_falls_back_to_template(monkeypatch, tmp_path):
    async def fake_run_process(cmd, timeout=None, on_line=None, **kwargs):
        (tmp_path / "source.webm").write_bytes(b"video")
        return ProcessResult(returncode=0, output_tail=[])

    monkeypatch.setattr(ytdlp, "run_process", fake_run_process)

    path = await ytdlp.download_video("https://youtu.be/x", tmp_path)
    assert path == tmp_path / "source.webm"


@pytest.mark.asyncio
async def test_download_without_output_file_raises(monkeypatch, tmp_path):
    async def fake_run_process(cmd, timeout=None, on_line=None, **kwargs):
        return ProcessResult(returncode=0, output_tail=["ERROR: nothing written"])

    monkeypatch.setattr(ytdlp, "run_process", fake_run_process)

    with pytest.raises(ExternalToolError) as exc_info:
        await ytdlp.download_video("https://youtu.be/x", tmp_path)
    assert "nothing written" in exc_info.value.diagnostics
