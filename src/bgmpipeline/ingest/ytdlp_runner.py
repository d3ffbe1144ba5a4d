"""yt-dlp download runner for audio streams."""

from __future__ import annotations

import logging
import shutil
import threading
from pathlib import Path
from typing import Any, Optional

from .models import DownloadResult


logger = logging.getLogger(__name__)

AUDIO_FORMAT_SELECTOR = "bestaudio/best"


class DownloadError(RuntimeError):
    """Raised when yt-dlp fails to fetch a stream."""


class DownloadCancelled(DownloadError):
    """Raised from the progress hook once the owning task has been cancelled."""


class _YtDlpLogger:
    """Route yt-dlp output into our logger instead of stdout/stderr."""

    def debug(self, msg: str) -> None:
        logger.debug("yt-dlp: %s", msg)

    def warning(self, msg: str) -> None:
        logger.debug("yt-dlp warning: %s", msg)

    def error(self, msg: str) -> None:
        logger.warning("yt-dlp error: %s", msg)


def _find_downloaded(output_dir: Path, info: dict[str, Any]) -> Path:
    for item in info.get("requested_downloads") or []:
        filepath = item.get("filepath")
        if filepath and Path(filepath).exists():
            return Path(filepath)

    candidates = [
        p for p in output_dir.iterdir()
        if p.is_file() and not p.name.endswith((".part", ".ytdl", ".json"))
    ]
    if not candidates:
        raise DownloadError("No audio file found after download")
    candidates.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    return candidates[0]


def download_audio(
    url: str,
    output_dir: Path,
    *,
    socket_timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> DownloadResult:
    """Download the best audio stream for ``url`` into ``output_dir``.

    Blocking; callers on the event loop run it through ``asyncio.to_thread``.
    A worker thread cannot be cancelled from the loop, so the caller sets
    ``cancel_event`` instead: the next progress callback aborts the transfer
    and ``output_dir`` is removed.

    Raises:
        ImportError: If yt-dlp is not installed
        DownloadCancelled: If ``cancel_event`` was set mid-download
        DownloadError: If the download fails
    """
    try:
        from yt_dlp import YoutubeDL
    except ImportError:
        raise ImportError("yt-dlp is required for remote downloads. Install with: pip install yt-dlp")

    output_dir.mkdir(parents=True, exist_ok=True)

    def progress_hook(d: dict[str, Any]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise DownloadCancelled(f"Download of {url} cancelled")

    ydl_opts: dict[str, Any] = {
        "format": AUDIO_FORMAT_SELECTOR,
        "outtmpl": str(output_dir / "%(id)s.%(ext)s"),
        "noplaylist": True,
        "restrictfilenames": True,
        "progress_hooks": [progress_hook],
        "logger": _YtDlpLogger(),
        "quiet": True,
        "no_warnings": True,
        "noprogress": True,
    }
    if socket_timeout:
        ydl_opts["socket_timeout"] = socket_timeout

    try:
        with YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=True)
    except Exception as e:
        if cancel_event is not None and cancel_event.is_set():
            # The owning task is gone and will not clean up after us.
            shutil.rmtree(output_dir, ignore_errors=True)
            raise DownloadCancelled(f"Download of {url} cancelled") from e
        raise DownloadError(f"Download failed for {url}: {e}") from e

    if not info:
        raise DownloadError(f"Download failed for {url}: no info returned")

    return DownloadResult(audio_path=_find_downloaded(output_dir, info), video_id=info.get("id", ""))
