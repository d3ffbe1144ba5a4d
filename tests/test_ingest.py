"""Tests for remote acquisition: yt-dlp download and ffmpeg transcode."""

from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bgmpipeline.ffmpeg import TranscodeError, build_transcode_cmd, run_ffmpeg, transcode_audio
from bgmpipeline.ingest import (
    AcquireOptions,
    DownloadCancelled,
    DownloadError,
    DownloadResult,
    RemoteLocator,
    YtDlpRemoteSource,
    download_audio,
)

from fakes import wait_until


def _mock_ydl(info=None, error=None) -> MagicMock:
    instance = MagicMock()
    if error is not None:
        instance.extract_info.side_effect = error
    else:
        instance.extract_info.return_value = info
    cls = MagicMock()
    cls.return_value.__enter__.return_value = instance
    return cls


class TestRemoteLocator:
    def test_default_template(self):
        assert RemoteLocator("abc123").url == "https://youtu.be/abc123"

    def test_custom_template(self):
        loc = RemoteLocator("abc123", "https://www.youtube.com/watch?v={id}")
        assert loc.url == "https://www.youtube.com/watch?v=abc123"


class TestDownloadAudio:
    def test_returns_requested_download(self, tmp_path: Path):
        audio = tmp_path / "abc123.webm"
        audio.write_bytes(b"opus")
        info = {
            "id": "abc123",
            "title": "Above the Treetops",
            "requested_downloads": [{"filepath": str(audio)}],
        }
        ydl_cls = _mock_ydl(info)

        with patch("yt_dlp.YoutubeDL", ydl_cls):
            result = download_audio("https://youtu.be/abc123", tmp_path)

        assert isinstance(result, DownloadResult)
        assert result.audio_path == audio
        assert result.video_id == "abc123"
        opts = ydl_cls.call_args[0][0]
        assert opts["format"] == "bestaudio/best"
        assert opts["noplaylist"] is True
        assert "socket_timeout" not in opts

    def test_falls_back_to_newest_file(self, tmp_path: Path):
        (tmp_path / "abc123.m4a").write_bytes(b"aac")
        (tmp_path / "abc123.m4a.part").write_bytes(b"partial")
        with patch("yt_dlp.YoutubeDL", _mock_ydl({"id": "abc123"})):
            result = download_audio("https://youtu.be/abc123", tmp_path)
        assert result.audio_path.name == "abc123.m4a"

    def test_extractor_failure_raises_download_error(self, tmp_path: Path):
        with patch("yt_dlp.YoutubeDL", _mock_ydl(error=RuntimeError("Video unavailable"))):
            with pytest.raises(DownloadError, match="Video unavailable"):
                download_audio("https://youtu.be/gone", tmp_path)

    def test_no_file_raises_download_error(self, tmp_path: Path):
        with patch("yt_dlp.YoutubeDL", _mock_ydl({"id": "abc123"})):
            with pytest.raises(DownloadError):
                download_audio("https://youtu.be/abc123", tmp_path)

    def test_socket_timeout_passed_through(self, tmp_path: Path):
        (tmp_path / "abc123.webm").write_bytes(b"opus")
        ydl_cls = _mock_ydl({"id": "abc123"})
        with patch("yt_dlp.YoutubeDL", ydl_cls):
            download_audio("https://youtu.be/abc123", tmp_path, socket_timeout=30.0)
        assert ydl_cls.call_args[0][0]["socket_timeout"] == 30.0

    def test_cancel_event_aborts_and_removes_work_dir(self, tmp_path: Path):
        work_dir = tmp_path / "work"
        cancel = threading.Event()
        ydl_cls = _mock_ydl()

        def extract_info(url, download):
            (work_dir / "abc123.webm.part").write_bytes(b"partial")
            cancel.set()
            hook = ydl_cls.call_args[0][0]["progress_hooks"][0]
            hook({"status": "downloading", "downloaded_bytes": 10, "total_bytes": 100})

        ydl_cls.return_value.__enter__.return_value.extract_info.side_effect = extract_info
        with patch("yt_dlp.YoutubeDL", ydl_cls):
            with pytest.raises(DownloadCancelled):
                download_audio("https://youtu.be/abc123", work_dir, cancel_event=cancel)

        assert not work_dir.exists()

    def test_hook_is_silent_until_cancelled(self, tmp_path: Path):
        (tmp_path / "abc123.webm").write_bytes(b"opus")
        ydl_cls = _mock_ydl({"id": "abc123"})
        with patch("yt_dlp.YoutubeDL", ydl_cls):
            download_audio("https://youtu.be/abc123", tmp_path, cancel_event=threading.Event())
        hook = ydl_cls.call_args[0][0]["progress_hooks"][0]
        hook({"status": "finished"})


class TestTranscode:
    def test_build_cmd_mp3(self, tmp_path: Path):
        cmd = build_transcode_cmd("ffmpeg", tmp_path / "in.webm", tmp_path / "out.mp3", fmt="mp3", bitrate="160k")
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-c:a") + 1] == "libmp3lame"
        assert cmd[cmd.index("-b:a") + 1] == "160k"
        assert "-vn" in cmd
        assert cmd[-1] == str(tmp_path / "out.mp3")

    def test_build_cmd_rejects_unknown_format(self, tmp_path: Path):
        with pytest.raises(ValueError):
            build_transcode_cmd("ffmpeg", tmp_path / "a", tmp_path / "b", fmt="wma")

    @pytest.mark.asyncio
    async def test_output_renamed_from_part(self, tmp_path: Path):
        dst = tmp_path / "out.mp3"

        def fake_ffmpeg(cmd):
            Path(cmd[-1]).write_bytes(b"mp3")

        with patch("bgmpipeline.ffmpeg._require_cmd", return_value="ffmpeg"), \
                patch("bgmpipeline.ffmpeg.run_ffmpeg", AsyncMock(side_effect=fake_ffmpeg)) as run:
            await transcode_audio(tmp_path / "in.webm", dst)

        assert run.call_args[0][0][-1].endswith("out.mp3.part")
        assert dst.read_bytes() == b"mp3"
        assert not (tmp_path / "out.mp3.part").exists()

    @pytest.mark.asyncio
    async def test_failure_leaves_no_partial_output(self, tmp_path: Path):
        dst = tmp_path / "out.mp3"

        def failing_ffmpeg(cmd):
            Path(cmd[-1]).write_bytes(b"trunc")
            raise TranscodeError("ffmpeg exited with 1")

        with patch("bgmpipeline.ffmpeg._require_cmd", return_value="ffmpeg"), \
                patch("bgmpipeline.ffmpeg.run_ffmpeg", AsyncMock(side_effect=failing_ffmpeg)):
            with pytest.raises(TranscodeError):
                await transcode_audio(tmp_path / "in.webm", dst)

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_cancel_kills_child_process(self):
        procs: list[asyncio.subprocess.Process] = []
        spawn = asyncio.create_subprocess_exec

        async def tracking_spawn(*args, **kwargs):
            proc = await spawn(*args, **kwargs)
            procs.append(proc)
            return proc

        with patch.object(asyncio, "create_subprocess_exec", side_effect=tracking_spawn):
            task = asyncio.create_task(run_ffmpeg([sys.executable, "-c", "import time; time.sleep(30)"]))
            await wait_until(lambda: bool(procs))
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert procs[0].returncode is not None

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self):
        cmd = [sys.executable, "-c", "import sys; sys.stderr.write('Invalid data found'); sys.exit(1)"]
        with pytest.raises(TranscodeError, match="Invalid data found"):
            await run_ffmpeg(cmd)


class TestYtDlpRemoteSource:
    @pytest.mark.asyncio
    async def test_fetch_downloads_then_transcodes(self, tmp_path: Path):
        target = tmp_path / "Bgm00" / "A.mp3"
        target.parent.mkdir()

        def fake_download(url, work_dir, **kwargs):
            path = Path(work_dir) / "abc.webm"
            path.write_bytes(b"opus")
            return DownloadResult(audio_path=path, video_id="abc")

        async def fake_transcode(src, dst, *, fmt, bitrate):
            assert Path(src).read_bytes() == b"opus"
            Path(dst).write_bytes(f"{fmt}@{bitrate}".encode())
            return Path(dst)

        source = YtDlpRemoteSource(AcquireOptions(fmt="mp3", bitrate="128k", timeout_seconds=45.0))
        with patch("bgmpipeline.ingest.remote.download_audio", side_effect=fake_download) as dl, \
                patch("bgmpipeline.ingest.remote.transcode_audio", side_effect=fake_transcode):
            out = await source.fetch(RemoteLocator("abc"), target)

        assert out == target
        assert target.read_bytes() == b"mp3@128k"
        assert dl.call_args[0][0] == "https://youtu.be/abc"
        assert dl.call_args.kwargs["socket_timeout"] == 45.0
        # Work directory is gone.
        assert [p.name for p in target.parent.iterdir()] == ["A.mp3"]

    @pytest.mark.asyncio
    async def test_download_failure_cleans_work_dir(self, tmp_path: Path):
        source = YtDlpRemoteSource()
        with patch("bgmpipeline.ingest.remote.download_audio", side_effect=DownloadError("403")):
            with pytest.raises(DownloadError):
                await source.fetch(RemoteLocator("abc"), tmp_path / "A.mp3")
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_timeout_signals_download_thread(self, tmp_path: Path):
        events: list[threading.Event] = []

        def stalled_download(url, work_dir, *, socket_timeout=None, cancel_event=None):
            events.append(cancel_event)
            if cancel_event.wait(timeout=5):
                raise DownloadCancelled(f"Download of {url} cancelled")
            raise AssertionError("download thread was never told to stop")

        source = YtDlpRemoteSource()
        with patch("bgmpipeline.ingest.remote.download_audio", side_effect=stalled_download):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(source.fetch(RemoteLocator("abc"), tmp_path / "A.mp3"), timeout=0.1)

        assert events and events[0].is_set()
        assert list(tmp_path.iterdir()) == []
